"""
coord log / coord snapshots / coord revert - Changelog and legacy archive.
"""

from coordinator.lib.constants import EXIT_OK
from coordinator.workflow.engine import Orchestrator


def format_entry(entry) -> str:
    roles = f" [{', '.join(entry.agent_roles)}]" if entry.agent_roles else ""
    keys = ", ".join(entry.resource_keys) or "-"
    return f"#{entry.sequence:<4} {entry.timestamp}  {entry.change_type:<8} {keys}  {entry.description}{roles}"


def cmd_log(args, orch: Orchestrator) -> int:
    """Show changelog entries, oldest first."""
    history = orch.history
    if args.resource:
        entries = history.for_resource(args.resource)
    elif args.task:
        entries = history.for_task(args.task)
    else:
        entries = history.between(args.since, args.until)

    if args.type:
        entries = [e for e in entries if e.change_type == args.type]
    if args.limit:
        entries = entries[-args.limit:]

    if not entries:
        print("No changelog entries.")
        return EXIT_OK
    for entry in entries:
        print(format_entry(entry))
    return EXIT_OK


def cmd_snapshots(args, orch: Orchestrator) -> int:
    """List legacy snapshots."""
    snapshots = orch.archive.list_snapshots(args.resource)
    if not snapshots:
        print("No legacy snapshots.")
        return EXIT_OK
    for snap in snapshots:
        print(f"{snap['handle']}\n    {snap['resource_key']}  {snap['reason']}")
    print(f"{len(snapshots)} snapshot(s)")
    return EXIT_OK


def cmd_revert(args, orch: Orchestrator) -> int:
    """Restore a resource from a snapshot."""
    entry = orch.revert(args.handle)
    print(format_entry(entry))
    return EXIT_OK
