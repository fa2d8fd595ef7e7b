"""
Feature, task and plan storage.

Records are stored as JSON under the state directory:
  features/FEAT-0001.json (+ FEAT-0001.md for humans)
  features/_archived/FEAT-0001.json
  tasks/<task_id>.json
  plans/<task_id>.json, superseded plans in plans/_superseded/
  prds/PRD-0001.md

The store is the single source of truth for status. Its mutators are called
by the Orchestrator only; everything else reads.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Iterable, Optional

from coordinator.lib.constants import (
    FEATURE_ID_PREFIX,
    MAX_ACCEPTANCE_CRITERIA,
    MAX_TASK_ID_LEN,
    PRD_ID_PREFIX,
    TASK_ID_PATTERN,
)
from coordinator.lib.errors import (
    AcceptanceCriteriaLimitExceeded,
    DuplicateTask,
    UnknownFeature,
    UnknownTask,
    ValidationError,
)
from coordinator.lib.history import utc_now
from coordinator.lib.resources import normalize_keys
from coordinator.lib.validate import validate_before_write
from coordinator.pm.models import Feature, Plan, Task
from coordinator.workflow.graph import TaskGraph

logger = logging.getLogger(__name__)


def _next_id(prefix: str, existing: Iterable[str]) -> str:
    """Generate the next PREFIX-NNNN id."""
    nums = []
    for x in existing:
        try:
            nums.append(int(x.split("-")[1]))
        except (ValueError, IndexError):
            logger.warning(f"Malformed {prefix} ID ignored: {x}")
    return f"{prefix}-{max(nums, default=0) + 1:04d}"


class FeatureStore:
    """Holds features, their tasks and plans."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.features_dir = self.state_dir / "features"
        self.archived_dir = self.features_dir / "_archived"
        self.tasks_dir = self.state_dir / "tasks"
        self.plans_dir = self.state_dir / "plans"
        self.superseded_dir = self.plans_dir / "_superseded"
        self.prds_dir = self.state_dir / "prds"

        self._features: dict[str, Feature] = {}
        self._tasks: dict[str, Task] = {}
        self._plans: dict[str, Plan] = {}
        self.graph = TaskGraph(self.task_status)
        self._load()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self) -> None:
        for directory in (self.features_dir, self.archived_dir):
            if not directory.exists():
                continue
            for f in sorted(directory.glob(f"{FEATURE_ID_PREFIX}-*.json")):
                try:
                    feature = Feature(**json.loads(f.read_text()))
                    self._features[feature.id] = feature
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Failed to load feature file {f}: {e}")

        if self.tasks_dir.exists():
            for f in sorted(self.tasks_dir.glob("*.json")):
                try:
                    task = Task(**json.loads(f.read_text()))
                    self._tasks[task.id] = task
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Failed to load task file {f}: {e}")

        if self.plans_dir.exists():
            for f in sorted(self.plans_dir.glob("*.json")):
                try:
                    plan = Plan(**json.loads(f.read_text()))
                    self._plans[plan.task_id] = plan
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Failed to load plan file {f}: {e}")

        self._rebuild_graph()

    def _rebuild_graph(self) -> None:
        """Insert loaded tasks into the graph, dependencies first."""
        pending = dict(self._tasks)
        while pending:
            ready = [t for t in pending.values() if all(d in self.graph for d in t.dependencies)]
            if not ready:
                logger.warning(f"[GRAPH] Unresolvable dependencies, skipping tasks: {sorted(pending)}")
                for task_id in pending:
                    del self._tasks[task_id]
                break
            for task in sorted(ready, key=lambda t: t.id):
                self.graph.add_task(task.id, task.dependencies, task.feature_id)
                del pending[task.id]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_feature(self, feature_id: str) -> Feature:
        feature = self._features.get(feature_id)
        if feature is None:
            raise UnknownFeature(feature_id)
        return feature

    def get_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTask(task_id)
        return task

    def has_task(self, task_id: str) -> bool:
        return task_id in self._tasks

    def task_status(self, task_id: str) -> str:
        return self.get_task(task_id).status

    def feature_status(self, feature_id: str) -> str:
        return self.get_feature(feature_id).status

    def list_features(self, include_archived: bool = False) -> list[Feature]:
        return [
            f for _, f in sorted(self._features.items())
            if include_archived or not f.archived
        ]

    def list_tasks(self, feature_id: Optional[str] = None) -> list[Task]:
        if feature_id is not None:
            feature = self.get_feature(feature_id)
            return [self._tasks[t] for t in feature.task_ids if t in self._tasks]
        return [t for _, t in sorted(self._tasks.items())]

    def tasks_with_status(self, *statuses: str) -> list[Task]:
        return [t for t in self.list_tasks() if t.status in statuses]

    def get_plan(self, task_id: str) -> Optional[Plan]:
        return self._plans.get(task_id)

    def list_superseded_plans(self, task_id: str) -> list[Plan]:
        if not self.superseded_dir.exists():
            return []
        plans = []
        for f in sorted(self.superseded_dir.glob(f"{task_id}--*.json")):
            plans.append(Plan(**json.loads(f.read_text())))
        return plans

    def read_prd(self, prd_id: str) -> str:
        path = self.prds_dir / f"{prd_id}.md"
        if not path.exists():
            raise ValidationError("prd", f"PRD not found: {prd_id}")
        return path.read_text()

    # ------------------------------------------------------------------
    # Writes (Orchestrator only)
    # ------------------------------------------------------------------

    def save_feature(self, feature: Feature) -> None:
        directory = self.archived_dir if feature.archived else self.features_dir
        directory.mkdir(parents=True, exist_ok=True)
        data = asdict(feature)
        json_path = directory / f"{feature.id}.json"
        validate_before_write(data, "feature", json_path)
        json_path.write_text(json.dumps(data, indent=2))
        write_feature_markdown(directory / f"{feature.id}.md", feature, self._tasks)
        self._features[feature.id] = feature

    def save_task(self, task: Task) -> None:
        self.tasks_dir.mkdir(parents=True, exist_ok=True)
        data = asdict(task)
        json_path = self.tasks_dir / f"{task.id}.json"
        validate_before_write(data, "task", json_path)
        json_path.write_text(json.dumps(data, indent=2))
        self._tasks[task.id] = task

    def create_feature(self, description: str) -> Feature:
        feature = Feature(
            id=_next_id(FEATURE_ID_PREFIX, self._features),
            description=description.strip(),
            status="draft",
            created=utc_now(),
        )
        self.save_feature(feature)
        logger.info(f"Created feature {feature.id}: {feature.description}")
        return feature

    def attach_prd(self, feature_id: str, content: str) -> str:
        """Store a PRD artifact and link it to the feature. Returns the PRD id."""
        feature = self.get_feature(feature_id)
        existing = [p.stem for p in self.prds_dir.glob(f"{PRD_ID_PREFIX}-*.md")] if self.prds_dir.exists() else []
        prd_id = _next_id(PRD_ID_PREFIX, existing)

        self.prds_dir.mkdir(parents=True, exist_ok=True)
        (self.prds_dir / f"{prd_id}.md").write_text(content)
        feature.prd_ids.append(prd_id)
        self.save_feature(feature)
        return prd_id

    def _check_task_spec(
        self,
        graph: TaskGraph,
        feature: Feature,
        task_id: str,
        acceptance_criteria: list[str],
        dependencies: list[str],
    ) -> None:
        if not isinstance(task_id, str) or not TASK_ID_PATTERN.match(task_id) or len(task_id) > MAX_TASK_ID_LEN:
            raise ValidationError("task", f"Invalid task id {task_id!r}")
        if len(acceptance_criteria) > MAX_ACCEPTANCE_CRITERIA:
            raise AcceptanceCriteriaLimitExceeded(task_id, len(acceptance_criteria), MAX_ACCEPTANCE_CRITERIA)
        if task_id in self._tasks or task_id in graph:
            raise DuplicateTask(task_id)
        if feature.status == "done" or feature.archived:
            raise ValidationError("task", f"Feature {feature.id} is closed")
        graph.add_task(task_id, dependencies, feature.id)

    def create_tasks(self, feature_id: str, specs: list[dict]) -> list[Task]:
        """Create several tasks under a feature, all or nothing.

        Each spec has id, description and optionally acceptance_criteria,
        dependencies (existing tasks or earlier specs) and touch_set.

        Raises:
            AcceptanceCriteriaLimitExceeded, CycleDetected, DuplicateTask,
            UnknownTask, ValidationError: nothing is persisted
        """
        feature = self.get_feature(feature_id)

        # Dry run against a copy so a failure leaves the graph untouched
        trial = self.graph.copy()
        tasks = []
        now = utc_now()
        for spec in specs:
            task_id = spec.get("id")
            criteria = list(spec.get("acceptance_criteria", []))
            deps = sorted(set(spec.get("dependencies", [])))
            self._check_task_spec(trial, feature, task_id, criteria, deps)
            task = Task(
                id=task_id,
                feature_id=feature_id,
                description=spec.get("description", ""),
                status="draft",
                created=now,
                acceptance_criteria=criteria,
                dependencies=deps,
                touch_set=normalize_keys(spec.get("touch_set", [])),
            )
            validate_before_write(asdict(task), "task", self.tasks_dir / f"{task_id}.json")
            tasks.append(task)

        for task in tasks:
            self.graph.add_task(task.id, task.dependencies, feature_id)
            self.save_task(task)
            feature.task_ids.append(task.id)
            logger.info(f"Created task {task.id} under {feature_id}")
        self.save_feature(feature)
        return tasks

    def create_task(
        self,
        feature_id: str,
        task_id: str,
        description: str = "",
        acceptance_criteria: Optional[list[str]] = None,
        dependencies: Iterable[str] = (),
        touch_set: Iterable[str] = (),
    ) -> Task:
        """Create one task. See create_tasks()."""
        return self.create_tasks(feature_id, [{
            "id": task_id,
            "description": description,
            "acceptance_criteria": acceptance_criteria or [],
            "dependencies": list(dependencies),
            "touch_set": list(touch_set),
        }])[0]

    def add_dependency(self, task_id: str, dep_id: str) -> Task:
        """Make an existing task depend on another. Raises CycleDetected."""
        task = self.get_task(task_id)
        self.graph.add_dependency(task_id, dep_id)
        task.dependencies = sorted(set(task.dependencies) | {dep_id})
        self.save_task(task)
        return task

    def set_touch_set(self, task_id: str, keys: Iterable[str]) -> Task:
        task = self.get_task(task_id)
        task.touch_set = normalize_keys(keys)
        self.save_task(task)
        return task

    def save_plan(self, plan: Plan) -> Plan:
        """Store the current plan for a task, superseding any previous one."""
        self.get_task(plan.task_id)
        data = asdict(plan)
        json_path = self.plans_dir / f"{plan.task_id}.json"
        validate_before_write(data, "plan", json_path)

        self.supersede_plan(plan.task_id)
        self.plans_dir.mkdir(parents=True, exist_ok=True)
        json_path.write_text(json.dumps(data, indent=2))
        self._plans[plan.task_id] = plan
        return plan

    def supersede_plan(self, task_id: str) -> Optional[Plan]:
        """Move the current plan to the superseded archive. Never deletes it."""
        plan = self._plans.pop(task_id, None)
        current = self.plans_dir / f"{task_id}.json"
        if plan is None or not current.exists():
            return None
        self.superseded_dir.mkdir(parents=True, exist_ok=True)
        stamp = plan.created_at.replace(":", "").replace("-", "")
        target = self.superseded_dir / f"{task_id}--{stamp}.json"
        n = 1
        while target.exists():
            n += 1
            target = self.superseded_dir / f"{task_id}--{stamp}-{n}.json"
        current.rename(target)
        logger.info(f"Superseded plan for {task_id} -> {target.name}")
        return plan

    def archive_feature(self, feature_id: str) -> Feature:
        """Move a feature record to the archive. Archived features stay readable."""
        feature = self.get_feature(feature_id)
        if feature.archived:
            return feature
        old_json = self.features_dir / f"{feature_id}.json"
        old_md = self.features_dir / f"{feature_id}.md"
        feature.archived = True
        self.save_feature(feature)
        for path in (old_json, old_md):
            if path.exists():
                path.unlink()
        logger.info(f"Archived feature {feature_id}")
        return feature


def write_feature_markdown(path: Path, feature: Feature, tasks: dict[str, Task]):
    """Write feature as human-readable markdown."""
    lines = [
        f"# {feature.id}: {feature.description}",
        "",
        f"**Status:** {feature.status}" + (" [ARCHIVED]" if feature.archived else ""),
        f"**Created:** {feature.created}",
    ]
    if feature.prd_ids:
        lines.append(f"**PRDs:** {', '.join(feature.prd_ids)}")
    lines.append("")

    if feature.task_ids:
        lines.extend(["## Tasks", ""])
        for task_id in feature.task_ids:
            task = tasks.get(task_id)
            if task is None:
                continue
            lines.append(f"- [{'x' if task.status == 'done' else ' '}] {task.id} ({task.status}): {task.description}")
            for ac in task.acceptance_criteria:
                lines.append(f"  - {ac}")
        lines.append("")

    path.write_text("\n".join(lines))
