#!/usr/bin/env python3
"""Coordinator CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from coordinator.lib.config import load_config
from coordinator.lib.constants import (
    CHANGE_TYPES,
    EXIT_CONFLICT,
    EXIT_INTEGRITY,
    EXIT_VALIDATION,
)
from coordinator.lib.errors import (
    ConflictDetected,
    CoordinationError,
    IntegrityHalt,
    SnapshotWriteFailure,
)
from coordinator.workflow.engine import Orchestrator
from coordinator.workflow.worker import SubprocessWorker
from coordinator.commands import feature as cmd_feature_module
from coordinator.commands import tasks as cmd_tasks_module
from coordinator.commands import plan as cmd_plan_module
from coordinator.commands import code as cmd_code_module
from coordinator.commands import review as cmd_review_module
from coordinator.commands import status as cmd_status_module
from coordinator.commands import conflicts as cmd_conflicts_module
from coordinator.commands import log as cmd_log_module
from coordinator.commands import close as cmd_close_module


def build_orchestrator(args) -> Orchestrator:
    """Load coord.yaml from --root and open the persisted state."""
    config = load_config(Path(args.root) if args.root else None)
    worker = None
    if config.worker_command:
        worker = SubprocessWorker(config.worker_command, config.root, timeout=config.task_deadline_seconds)
    return Orchestrator.from_config(config, worker=worker)


def run_command(args) -> int:
    """Run a command function against a fresh Orchestrator, mapping errors to exit codes."""
    try:
        orch = build_orchestrator(args)
        try:
            return args.func(args, orch)
        finally:
            orch.shutdown(wait=True)
    except ConflictDetected as e:
        print(f"CONFLICT: {e}")
        return EXIT_CONFLICT
    except (SnapshotWriteFailure, IntegrityHalt) as e:
        print(f"INTEGRITY: {e}")
        return EXIT_INTEGRITY
    except CoordinationError as e:
        print(f"ERROR: {e}")
        return EXIT_VALIDATION


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='coord', description='Multi-agent task coordinator')
    parser.add_argument('--root', '-r', help='Project root containing coord.yaml (default: cwd)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log coordinator events to stderr')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # coord feature
    p_feature = subparsers.add_parser('feature', help='Create a feature')
    p_feature.add_argument('description', nargs='+', help='Feature description')
    p_feature.set_defaults(func=cmd_feature_module.cmd_feature)

    # coord prd
    p_prd = subparsers.add_parser('prd', help='Attach a PRD to a feature (reads stdin by default)')
    p_prd.add_argument('feature_id', help='Feature ID (e.g., FEAT-0001)')
    p_prd.add_argument('--file', '-f', help='Read PRD from file')
    p_prd.add_argument('--text', '-t', help='PRD text')
    p_prd.set_defaults(func=cmd_feature_module.cmd_prd)

    # coord tasks
    p_tasks = subparsers.add_parser('tasks', help='Create tasks under a feature from a YAML/JSON file')
    p_tasks.add_argument('feature_id', help='Feature ID')
    p_tasks.add_argument('file', help='Tasks file')
    p_tasks.set_defaults(func=cmd_tasks_module.cmd_tasks)

    # coord depend
    p_depend = subparsers.add_parser('depend', help='Make a task depend on another')
    p_depend.add_argument('task_id', help='Dependent task')
    p_depend.add_argument('dep_id', help='Task it depends on')
    p_depend.set_defaults(func=cmd_tasks_module.cmd_depend)

    # coord touch
    p_touch = subparsers.add_parser('touch', help='Replace the resources a task touches')
    p_touch.add_argument('task_id', help='Task ID')
    p_touch.add_argument('keys', nargs='*', help='Resource keys')
    p_touch.set_defaults(func=cmd_tasks_module.cmd_touch)

    # coord approve
    p_approve = subparsers.add_parser('approve', help='Approve PRD coverage for tasks')
    p_approve.add_argument('task_ids', nargs='+', help='Task IDs')
    p_approve.set_defaults(func=cmd_tasks_module.cmd_approve)

    # coord plan
    p_plan = subparsers.add_parser('plan', help='Record an impact matrix for a task')
    p_plan.add_argument('task_id', help='Task ID')
    p_plan.add_argument('--impact', '-i', help='YAML/JSON mapping of resource key to change')
    p_plan.add_argument('--notes', '-n', help='Duplicate risk notes')
    p_plan.add_argument('--serialize', action='store_true',
                        help='Accept overlap with planned peers and let the scheduler serialize')
    p_plan.set_defaults(func=cmd_plan_module.cmd_plan)

    # coord replan
    p_replan = subparsers.add_parser('replan', help='Replan a blocked task')
    p_replan.add_argument('task_id', help='Task ID')
    p_replan.add_argument('--impact', '-i', help='YAML/JSON mapping of resource key to change')
    p_replan.add_argument('--notes', '-n', help='Duplicate risk notes')
    p_replan.set_defaults(func=cmd_plan_module.cmd_replan)

    # coord reopen
    p_reopen = subparsers.add_parser('reopen', help='Send a blocked task back to draft')
    p_reopen.add_argument('task_id', help='Task ID')
    p_reopen.set_defaults(func=cmd_plan_module.cmd_reopen)

    # coord code
    p_code = subparsers.add_parser('code', help='Schedule a planned task for dispatch')
    p_code.add_argument('task_id', help='Task ID')
    p_code.add_argument('--deadline', '-d', type=float, help='Seconds before the task is timed out')
    p_code.set_defaults(func=cmd_code_module.cmd_code)

    # coord run
    p_run = subparsers.add_parser('run', help='Dispatch scheduled tasks until idle')
    p_run.add_argument('--timeout', type=float, help='Stop waiting after this many seconds')
    p_run.set_defaults(func=cmd_code_module.cmd_run)

    # coord resume
    p_resume = subparsers.add_parser('resume', help='Clear an integrity halt')
    p_resume.set_defaults(func=cmd_code_module.cmd_resume)

    # coord validate
    p_validate = subparsers.add_parser('validate', help='Record a validation verdict')
    p_validate.add_argument('task_id', help='Task ID')
    verdict = p_validate.add_mutually_exclusive_group(required=True)
    verdict.add_argument('--pass', dest='passed', action='store_true', help='Task meets its criteria')
    verdict.add_argument('--fail', dest='passed', action='store_false', help='Task does not meet its criteria')
    p_validate.add_argument('--notes', '-n', help='Validation notes')
    p_validate.set_defaults(func=cmd_review_module.cmd_validate)

    # coord status
    p_status = subparsers.add_parser('status', help='Show features and tasks')
    p_status.add_argument('feature_id', nargs='?', help='Feature ID (all if omitted)')
    p_status.add_argument('--all', '-a', action='store_true', help='Include archived features')
    p_status.set_defaults(func=cmd_status_module.cmd_status)

    # coord conflicts
    p_conflicts = subparsers.add_parser('conflicts', help='Check touch-set conflicts between eligible tasks')
    p_conflicts.add_argument('--scheduled', '-s', action='store_true', help='Only consider scheduled tasks')
    p_conflicts.set_defaults(func=cmd_conflicts_module.cmd_conflicts)

    # coord log
    p_log = subparsers.add_parser('log', help='Show the changelog')
    p_log.add_argument('--resource', help='Only entries touching this resource key')
    p_log.add_argument('--task', help='Only entries for this task')
    p_log.add_argument('--type', choices=CHANGE_TYPES, help='Only entries of this change type')
    p_log.add_argument('--since', help='ISO timestamp lower bound (inclusive)')
    p_log.add_argument('--until', help='ISO timestamp upper bound (inclusive)')
    p_log.add_argument('--limit', '-l', type=int, help='Show only the last N entries')
    p_log.set_defaults(func=cmd_log_module.cmd_log)

    # coord snapshots
    p_snapshots = subparsers.add_parser('snapshots', help='List legacy snapshots')
    p_snapshots.add_argument('resource', nargs='?', help='Only snapshots of this resource key')
    p_snapshots.set_defaults(func=cmd_log_module.cmd_snapshots)

    # coord revert
    p_revert = subparsers.add_parser('revert', help='Restore a resource from a legacy snapshot')
    p_revert.add_argument('handle', help='Snapshot handle (see coord snapshots)')
    p_revert.set_defaults(func=cmd_log_module.cmd_revert)

    # coord cancel
    p_cancel = subparsers.add_parser('cancel', help='Cancel every unfinished task of a feature')
    p_cancel.add_argument('feature_id', help='Feature ID')
    p_cancel.set_defaults(func=cmd_close_module.cmd_cancel)

    # coord archive
    p_archive = subparsers.add_parser('archive', help='Archive a feature with no open tasks')
    p_archive.add_argument('feature_id', help='Feature ID')
    p_archive.set_defaults(func=cmd_close_module.cmd_archive)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return run_command(args)


if __name__ == '__main__':
    sys.exit(main())
