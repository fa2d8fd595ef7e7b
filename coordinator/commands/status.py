"""
coord status - Show features, tasks and their statuses.
"""

from coordinator.lib.constants import EXIT_OK
from coordinator.workflow.engine import Orchestrator


def _print_feature(orch: Orchestrator, feature) -> None:
    archived = " [archived]" if feature.archived else ""
    print(f"{feature.id}  {feature.status}{archived}  {feature.description}")
    if feature.prd_ids:
        print(f"  PRDs: {', '.join(feature.prd_ids)}")

    tasks = orch.store.list_tasks(feature.id)
    if not tasks:
        print("  (no tasks)")
        return
    for task in tasks:
        flags = []
        if task.scheduled:
            flags.append("scheduled")
        if task.assigned_worker:
            flags.append(task.assigned_worker)
        flag_str = f" [{', '.join(flags)}]" if flags else ""
        deps = f" <- {', '.join(task.dependencies)}" if task.dependencies else ""
        print(f"  {task.id:<16} {task.status:<13}{flag_str} {task.description}{deps}")
        if task.blocked_reason:
            print(f"  {'':<16} reason: {task.blocked_reason}")


def cmd_status(args, orch: Orchestrator) -> int:
    """Show one feature, or all of them."""
    if args.feature_id:
        _print_feature(orch, orch.store.get_feature(args.feature_id))
        return EXIT_OK

    features = orch.store.list_features(include_archived=args.all)
    if not features:
        print("No features. Create one with: coord feature <description>")
        return EXIT_OK

    for feature in features:
        _print_feature(orch, feature)
        print()

    batches = orch.store.graph.topological_batches()
    print(f"{len(features)} feature(s), {len(orch.store.list_tasks())} task(s), "
          f"{len(batches)} dependency layer(s), {len(orch.history)} changelog entries")
    return EXIT_OK
