"""
coord validate - Record an external validation verdict for a task.
"""

from coordinator.lib.constants import EXIT_OK
from coordinator.workflow.engine import Orchestrator


def cmd_validate(args, orch: Orchestrator) -> int:
    """Pass or fail an implemented task."""
    task = orch.validate(args.task_id, passed=args.passed, notes=args.notes or "")
    verdict = "passed" if args.passed else "rejected"
    print(f"{task.id}: validation {verdict} (status: {task.status})")

    feature = orch.store.get_feature(task.feature_id)
    if feature.status == "done":
        print(f"{feature.id} is done.")
    return EXIT_OK
