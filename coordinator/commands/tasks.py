"""
coord tasks / coord approve - Generate tasks under a feature.

Tasks are read from a YAML or JSON file:

    tasks:
      - id: T1
        description: Add login form
        acceptance_criteria: [Form renders, Errors shown inline]
        dependencies: []
        touch_set: [src/login.py]
"""

import json
from pathlib import Path

import yaml

from coordinator.lib.constants import EXIT_CONFLICT, EXIT_OK
from coordinator.lib.errors import ValidationError
from coordinator.lib.validate import validate
from coordinator.workflow.engine import Orchestrator


def load_task_specs(path: Path) -> list[dict]:
    """Load and schema-check a tasks file.

    Raises:
        ValidationError: if the file is missing, unparsable or malformed
    """
    if not path.exists():
        raise ValidationError("tasks_file", f"File not found: {path}")
    try:
        if path.suffix == ".json":
            data = json.loads(path.read_text())
        else:
            data = yaml.safe_load(path.read_text())
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValidationError("tasks_file", f"Could not parse {path}: {e}") from None

    if isinstance(data, list):
        data = {"tasks": data}
    if not isinstance(data, dict):
        raise ValidationError("tasks_file", f"Expected a mapping or list in {path}")
    validate(data, "tasks_file")
    return data["tasks"]


def cmd_tasks(args, orch: Orchestrator) -> int:
    """Create tasks under a feature, all or nothing."""
    specs = load_task_specs(Path(args.file))
    tasks = orch.create_tasks(args.feature_id, specs)

    print(f"Created {len(tasks)} task(s) under {args.feature_id}:")
    for task in tasks:
        deps = f" <- {', '.join(task.dependencies)}" if task.dependencies else ""
        print(f"  {task.id:<16} {len(task.acceptance_criteria)} criteria  {task.description}{deps}")
    return EXIT_OK


def cmd_approve(args, orch: Orchestrator) -> int:
    """Mark tasks as covered by an approved PRD."""
    for task_id in args.task_ids:
        task = orch.approve_prd(task_id)
        print(f"{task.id}: {task.status}")
    return EXIT_OK


def cmd_depend(args, orch: Orchestrator) -> int:
    """Add a dependency edge between existing tasks."""
    task = orch.add_dependency(args.task_id, args.dep_id)
    print(f"{task.id} now depends on: {', '.join(task.dependencies)}")
    return EXIT_OK


def cmd_touch(args, orch: Orchestrator) -> int:
    """Replace a task's touch set and re-check it against active peers."""
    conflict = orch.update_touch_set(args.task_id, args.keys)
    task = orch.store.get_task(args.task_id)
    print(f"{task.id} touch set: {', '.join(task.touch_set) or '(empty)'}")
    if conflict is None:
        return EXIT_OK
    print(f"CONFLICT: {conflict}")
    print(f"{task.id} is now {task.status}")
    return EXIT_CONFLICT
