"""
coord code / coord run / coord resume - Schedule tasks and drive the coordinator loop.
"""

from coordinator.lib.constants import EXIT_OK, EXIT_VALIDATION
from coordinator.workflow.engine import Orchestrator


def cmd_code(args, orch: Orchestrator) -> int:
    """Request that a planned task be scheduled."""
    task = orch.request_code(args.task_id, deadline_seconds=args.deadline)
    deadline = f" (deadline {task.deadline_seconds}s)" if task.deadline_seconds else ""
    print(f"{task.id} scheduled{deadline}. Run 'coord run' to dispatch.")
    return EXIT_OK


def cmd_run(args, orch: Orchestrator) -> int:
    """Dispatch scheduled tasks to workers until nothing is left to do."""
    if orch.worker is None:
        print("ERROR: No worker configured. Set worker_command in coord.yaml.")
        return EXIT_VALIDATION

    before = {t.id: t.status for t in orch.store.list_tasks()}
    try:
        idle = orch.run_until_idle(timeout=args.timeout)
    finally:
        orch.shutdown(wait=True)

    changed = [t for t in orch.store.list_tasks() if before.get(t.id) != t.status]
    if not changed:
        print("Nothing to run.")
    for task in changed:
        reason = f" - {task.blocked_reason}" if task.blocked_reason else ""
        print(f"  {task.id:<16} {before.get(task.id)} -> {task.status}{reason}")

    if not idle:
        print(f"Stopped after {args.timeout}s with {len(orch.running())} task(s) still running.")
    return EXIT_OK


def cmd_resume(args, orch: Orchestrator) -> int:
    """Clear a persisted integrity halt so 'coord run' dispatches again."""
    if orch.halted is None:
        print("Dispatch is not halted.")
        return EXIT_OK
    reason = orch.halted
    orch.resume()
    print(f"Resumed dispatch (was halted: {reason})")
    return EXIT_OK
