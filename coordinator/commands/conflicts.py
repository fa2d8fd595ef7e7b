"""
coord conflicts - Check touch-set overlap between eligible tasks.
"""

from coordinator.lib.constants import EXIT_CONFLICT, EXIT_OK
from coordinator.workflow.engine import Orchestrator


def cmd_conflicts(args, orch: Orchestrator) -> int:
    """Show the batch the next round would admit and what it would exclude."""
    selection = orch.preview_batch(scheduled_only=args.scheduled)

    print("Next concurrent batch:")
    if selection.admitted:
        for task_id in selection.admitted:
            task = orch.store.get_task(task_id)
            print(f"  {task_id:<16} {', '.join(task.touch_set) or '(no resources)'}")
    else:
        print("  (none)")
    print()

    if selection.deferred:
        print(f"Deferred (worker limit {orch.max_workers}): {', '.join(selection.deferred)}")
        print()

    if not selection.excluded:
        print("No conflicts between eligible tasks.")
        return EXIT_OK

    print(f"CONFLICTS FOUND for {len(selection.excluded)} task(s):\n")
    for task_id, peers in sorted(selection.excluded.items()):
        task = orch.store.get_task(task_id)
        print(f"  {task_id} ({selection.reason(task_id)}):")
        for peer in peers:
            peer_task = orch.store.get_task(peer)
            shared = sorted(set(task.touch_set) & set(peer_task.touch_set))
            for key in shared:
                print(f"    - {key}")
        print()

    return EXIT_CONFLICT
