"""
coord cancel / coord archive - Stop or archive a feature.
"""

from coordinator.lib.constants import EXIT_OK
from coordinator.workflow.engine import Orchestrator


def cmd_cancel(args, orch: Orchestrator) -> int:
    """Block every unfinished task of a feature."""
    cancelled = orch.cancel_feature(args.feature_id)
    if not cancelled:
        print(f"{args.feature_id}: nothing to cancel")
        return EXIT_OK
    print(f"{args.feature_id}: cancelled {len(cancelled)} task(s)")
    for task_id in cancelled:
        print(f"  {task_id}")
    return EXIT_OK


def cmd_archive(args, orch: Orchestrator) -> int:
    """Move a finished or cancelled feature to the archive."""
    feature = orch.archive_feature(args.feature_id)
    print(f"{feature.id} archived (status: {feature.status})")
    return EXIT_OK
