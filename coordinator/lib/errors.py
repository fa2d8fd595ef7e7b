"""
Error taxonomy for the coordinator.

Structural errors (cycles, criteria cap, bad input) are raised before
anything is persisted. Conflicts and timeouts end up as task state.
Snapshot write failures are the only errors that halt dispatch.
"""


class CoordinationError(Exception):
    """Base class for all coordinator errors."""


class ValidationError(CoordinationError):
    """Schema or field validation failed."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


class UnknownFeature(CoordinationError):
    def __init__(self, feature_id: str):
        self.feature_id = feature_id
        super().__init__(f"Feature not found: {feature_id}")


class UnknownTask(CoordinationError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class DuplicateTask(CoordinationError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task already exists: {task_id}")


class CycleDetected(CoordinationError):
    """Adding a dependency edge would make a task reachable from itself."""

    def __init__(self, task_id: str, dep_id: str, path: list[str]):
        self.task_id = task_id
        self.dep_id = dep_id
        self.path = path
        super().__init__(
            f"Dependency {task_id} -> {dep_id} would create a cycle: {' -> '.join(path)}"
        )


class AcceptanceCriteriaLimitExceeded(CoordinationError):
    def __init__(self, task_id: str, count: int, limit: int):
        self.task_id = task_id
        self.count = count
        self.limit = limit
        super().__init__(
            f"Task {task_id} has {count} acceptance criteria (limit is {limit})"
        )


class ConflictDetected(CoordinationError):
    """Touch sets overlap between tasks that would run or be planned together.

    `conflicts` maps each conflicting peer task id to the shared resource keys.
    """

    def __init__(self, task_id: str, conflicts: dict[str, list[str]]):
        self.task_id = task_id
        self.conflicts = conflicts
        peers = ", ".join(
            f"{peer} ({', '.join(keys)})" for peer, keys in sorted(conflicts.items())
        )
        super().__init__(f"Task {task_id} conflicts with {peers}")


class SnapshotWriteFailure(CoordinationError):
    """A pre-mutation snapshot could not be persisted. The change was not applied."""

    def __init__(self, resource_key: str, attempts: int, cause: Exception = None):
        self.resource_key = resource_key
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Could not write legacy snapshot for {resource_key} after {attempts} attempt(s)"
            + (f": {cause}" if cause else "")
        )


class IntegrityHalt(CoordinationError):
    """Dispatch refused while an integrity failure is unresolved."""
