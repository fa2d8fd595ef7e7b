"""
coord plan / coord replan / coord reopen - Record a task's impact matrix.

The impact matrix defaults to "modify" for every key in the touch set. A
custom matrix can be given as a YAML/JSON mapping of resource key to
description of change.
"""

import json
from pathlib import Path

import yaml

from coordinator.lib.constants import EXIT_OK
from coordinator.lib.errors import ValidationError
from coordinator.workflow.engine import Orchestrator


def _load_impact(path_str: str | None) -> dict | None:
    if not path_str:
        return None
    path = Path(path_str)
    if not path.exists():
        raise ValidationError("plan", f"Impact file not found: {path}")
    try:
        data = json.loads(path.read_text()) if path.suffix == ".json" else yaml.safe_load(path.read_text())
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValidationError("plan", f"Could not parse {path}: {e}") from None
    if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
        raise ValidationError("plan", "Impact matrix must map resource keys to descriptions")
    return data


def _print_plan(plan) -> None:
    print(f"Plan for {plan.task_id} ({plan.created_at})")
    for key, change in sorted(plan.impact_matrix.items()):
        print(f"  {key:<40} {change}")
    if plan.duplicate_risk_notes:
        print()
        print("Duplicate risk notes:")
        for line in plan.duplicate_risk_notes.splitlines():
            print(f"  {line}")


def cmd_plan(args, orch: Orchestrator) -> int:
    """Plan a PRD-approved task."""
    plan = orch.plan(
        args.task_id,
        impact_matrix=_load_impact(args.impact),
        duplicate_risk_notes=args.notes or "",
        serialize=args.serialize,
    )
    _print_plan(plan)
    return EXIT_OK


def cmd_replan(args, orch: Orchestrator) -> int:
    """Replan a blocked task."""
    plan = orch.replan(
        args.task_id,
        impact_matrix=_load_impact(args.impact),
        duplicate_risk_notes=args.notes or "",
    )
    _print_plan(plan)
    return EXIT_OK


def cmd_reopen(args, orch: Orchestrator) -> int:
    """Send a blocked task back to draft for PRD approval."""
    task = orch.reopen(args.task_id)
    print(f"{task.id} reopened as {task.status}. Run 'coord approve {task.id}' next.")
    return EXIT_OK
