"""
Shared record types for the history and legacy archive.

Both records are immutable once written.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChangelogEntry:
    """One applied change. Ordering is append order."""
    timestamp: str
    change_type: str  # feature, fix, refactor, style, docs
    resource_keys: tuple[str, ...]
    description: str
    agent_roles: tuple[str, ...] = ()
    task_id: str | None = None
    sequence: int = 0  # Assigned by HistoryLog on append

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "change_type": self.change_type,
            "resource_keys": list(self.resource_keys),
            "description": self.description,
            "agent_roles": list(self.agent_roles),
            "task_id": self.task_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangelogEntry":
        return cls(
            timestamp=data["timestamp"],
            change_type=data["change_type"],
            resource_keys=tuple(data.get("resource_keys", [])),
            description=data.get("description", ""),
            agent_roles=tuple(data.get("agent_roles", [])),
            task_id=data.get("task_id"),
            sequence=data.get("sequence", 0),
        )


@dataclass(frozen=True)
class LegacySnapshot:
    """Prior state of a resource, captured before an overwrite.

    prior_content is None when the resource did not exist yet, in which
    case reverting deletes it.
    """
    handle: str
    timestamp: str
    resource_key: str
    prior_content: bytes | None
    reason: str
    revert_procedure: dict = field(default_factory=dict)
