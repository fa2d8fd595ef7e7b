"""
Worker contract.

A worker receives a WorkRequest and a CancelToken, does the work, and
returns a WorkResult describing the new content of the resources it
changed. Workers never touch the stores: the coordinator snapshots and
applies the changes when it processes the completion report.
"""

import json
import logging
import shlex
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation signal shared with one dispatched task."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "") -> None:
        self.reason = reason or self.reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass
class WorkRequest:
    task_id: str
    feature_id: str
    description: str
    acceptance_criteria: list[str]
    touch_set: list[str]
    impact_matrix: dict[str, str] = field(default_factory=dict)


@dataclass
class WorkResult:
    """Outcome of a unit of work.

    changes maps resource keys to their new content; None deletes the resource.
    """
    success: bool = True
    changes: dict[str, Optional[bytes]] = field(default_factory=dict)
    description: str = ""
    change_type: str = "feature"
    agent_roles: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "WorkResult":
        return cls(success=False, error=error)


class Worker(Protocol):
    def __call__(self, request: WorkRequest, cancel: CancelToken) -> WorkResult:
        ...


def run_worker(worker: Worker, request: WorkRequest, cancel: CancelToken) -> WorkResult:
    """Run a worker, turning any exception into a failed result."""
    try:
        result = worker(request, cancel)
    except Exception as e:
        logger.warning(f"[DISPATCH] Worker for {request.task_id} raised: {e}")
        return WorkResult.failed(f"{type(e).__name__}: {e}")
    if not isinstance(result, WorkResult):
        return WorkResult.failed(f"Worker returned {type(result).__name__}, expected WorkResult")
    return result


class SubprocessWorker:
    """Runs a configured command per task.

    The request is sent as JSON on stdin. The command prints a JSON object:

        {"changes": {"src/app.py": "new content"}, "description": "...",
         "change_type": "feature", "agent_roles": ["architecture"]}

    A non-zero exit code, or {"success": false, "error": "..."}, is a failure.
    {task_id}, {feature_id} and {root} are substituted in the template.
    """

    POLL_SECONDS = 0.5

    def __init__(self, command_template: str, root: Path, timeout: Optional[float] = None):
        self.command_template = command_template
        self.root = Path(root)
        self.timeout = timeout

    def build_command(self, request: WorkRequest) -> list[str]:
        context = {
            "task_id": request.task_id,
            "feature_id": request.feature_id,
            "root": str(self.root),
        }
        return [part.format(**context) for part in shlex.split(self.command_template)]

    def __call__(self, request: WorkRequest, cancel: CancelToken) -> WorkResult:
        cmd = self.build_command(request)
        payload = json.dumps({
            "task_id": request.task_id,
            "feature_id": request.feature_id,
            "description": request.description,
            "acceptance_criteria": request.acceptance_criteria,
            "touch_set": request.touch_set,
            "impact_matrix": request.impact_matrix,
        })
        logger.info(f"[DISPATCH] {request.task_id}: running {cmd[0]}")

        proc = subprocess.Popen(
            cmd,
            cwd=self.root,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        pending_input = payload
        waited = 0.0
        while True:
            try:
                stdout, stderr = proc.communicate(input=pending_input, timeout=self.POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                pending_input = None
                waited += self.POLL_SECONDS
                if cancel.cancelled:
                    proc.terminate()
                    proc.communicate()
                    return WorkResult.failed(f"Cancelled: {cancel.reason or 'cancel requested'}")
                if self.timeout is not None and waited >= self.timeout:
                    proc.terminate()
                    proc.communicate()
                    return WorkResult.failed(f"Worker command timed out after {self.timeout}s")

        if proc.returncode != 0:
            return WorkResult.failed(
                f"Worker command exited {proc.returncode}: {stderr.strip()[-500:]}"
            )
        return parse_worker_output(stdout)


def parse_worker_output(stdout: str) -> WorkResult:
    """Parse the JSON printed by a worker command."""
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as e:
        return WorkResult.failed(f"Worker output is not JSON: {e}")
    if not isinstance(data, dict):
        return WorkResult.failed("Worker output must be a JSON object")
    if data.get("success", True) is False:
        return WorkResult.failed(data.get("error") or "Worker reported failure")

    raw_changes = data.get("changes") or {}
    if not isinstance(raw_changes, dict):
        return WorkResult.failed("Worker output 'changes' must be a JSON object")

    # null deletes a resource; any other non-string value is malformed
    changes = {}
    for key, content in raw_changes.items():
        if content is None:
            changes[key] = None
        elif isinstance(content, str):
            changes[key] = content.encode("utf-8")
        else:
            return WorkResult.failed(
                f"Worker output has {type(content).__name__} content for '{key}', expected string or null"
            )

    agent_roles = data.get("agent_roles", [])
    if not isinstance(agent_roles, list) or not all(isinstance(r, str) for r in agent_roles):
        return WorkResult.failed("Worker output 'agent_roles' must be a list of strings")

    return WorkResult(
        success=True,
        changes=changes,
        description=data.get("description", ""),
        change_type=data.get("change_type", "feature"),
        agent_roles=agent_roles,
    )
