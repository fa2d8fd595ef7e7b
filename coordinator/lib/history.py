"""
Append-only changelog of applied changes.

Entries are stored one JSON object per line in changelog.jsonl. There is no
edit or delete operation: corrections and reverts are new entries.
"""

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from coordinator.lib.errors import ValidationError
from coordinator.lib.resources import normalize_keys
from coordinator.lib.types import ChangelogEntry
from coordinator.lib.validate import validate, validate_before_write

logger = logging.getLogger(__name__)

CHANGELOG_FILENAME = "changelog.jsonl"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class HistoryLog:
    """Single-writer, append-only changelog.

    Timestamps are non-decreasing in append order; append order is the
    order the coordinator processed the changes.
    """

    def __init__(self, state_dir: Path):
        self.path = Path(state_dir) / CHANGELOG_FILENAME
        self._entries: list[ChangelogEntry] = self._load()

    def _load(self) -> list[ChangelogEntry]:
        if not self.path.exists():
            return []

        entries = []
        for line_num, line in enumerate(self.path.read_text().splitlines(), 1):
            if not line.strip():
                continue
            try:
                entries.append(ChangelogEntry.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"Skipping corrupted changelog line {line_num} in {self.path}: {e}")
        return entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ChangelogEntry]:
        return iter(tuple(self._entries))

    @property
    def last(self) -> Optional[ChangelogEntry]:
        return self._entries[-1] if self._entries else None

    def next_timestamp(self) -> str:
        """Current UTC time, never earlier than the last recorded entry."""
        now = utc_now()
        if self.last and _parse_ts(now) < _parse_ts(self.last.timestamp):
            return self.last.timestamp
        return now

    def record(self, entry: ChangelogEntry) -> ChangelogEntry:
        """Append an entry and return it with its sequence number assigned.

        Raises:
            ValidationError: if the entry is malformed or older than the last entry
        """
        if self.last and _parse_ts(entry.timestamp) < _parse_ts(self.last.timestamp):
            raise ValidationError(
                "changelog_entry",
                f"Timestamp {entry.timestamp} is earlier than last entry {self.last.timestamp}",
            )

        entry = replace(
            entry,
            resource_keys=tuple(normalize_keys(entry.resource_keys)),
            agent_roles=tuple(entry.agent_roles),
            sequence=len(self._entries) + 1,
        )
        data = entry.to_dict()
        validate_before_write(data, "changelog_entry", self.path)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(data) + "\n")
            f.flush()

        self._entries.append(entry)
        logger.info(
            f"[HISTORY] #{entry.sequence} {entry.change_type}: {entry.description} "
            f"({', '.join(entry.resource_keys) or 'no resources'})"
        )
        return entry

    def build(
        self,
        change_type: str,
        resource_keys: Iterable[str],
        description: str,
        agent_roles: Iterable[str] = (),
        task_id: Optional[str] = None,
    ) -> ChangelogEntry:
        """Build and check an entry without recording it.

        Lets a caller reject a malformed entry before it touches any
        resource. Timestamp and sequence are provisional until record().

        Raises:
            ValidationError: if the entry doesn't match the changelog schema
        """
        entry = ChangelogEntry(
            timestamp=self.next_timestamp(),
            change_type=change_type,
            resource_keys=tuple(normalize_keys(resource_keys)),
            description=description,
            agent_roles=tuple(agent_roles),
            task_id=task_id,
            sequence=len(self._entries) + 1,
        )
        validate(entry.to_dict(), "changelog_entry")
        return entry

    def append(
        self,
        change_type: str,
        resource_keys: Iterable[str],
        description: str,
        agent_roles: Iterable[str] = (),
        task_id: Optional[str] = None,
    ) -> ChangelogEntry:
        """Build an entry stamped with the next timestamp and record it."""
        return self.record(self.build(change_type, resource_keys, description, agent_roles, task_id))

    def record_built(self, entry: ChangelogEntry) -> ChangelogEntry:
        """Record an entry from build(), restamped with the current time."""
        return self.record(replace(entry, timestamp=self.next_timestamp()))

    def entries(self) -> tuple[ChangelogEntry, ...]:
        return tuple(self._entries)

    def between(self, start: Optional[str] = None, end: Optional[str] = None) -> list[ChangelogEntry]:
        """Entries with start <= timestamp <= end (either bound may be omitted)."""
        lo = _parse_ts(start) if start else None
        hi = _parse_ts(end) if end else None
        result = []
        for entry in self._entries:
            ts = _parse_ts(entry.timestamp)
            if lo and ts < lo:
                continue
            if hi and ts > hi:
                continue
            result.append(entry)
        return result

    def for_resource(self, resource_key: str) -> list[ChangelogEntry]:
        key = normalize_keys([resource_key])[0]
        return [e for e in self._entries if key in e.resource_keys]

    def by_change_type(self, change_type: str) -> list[ChangelogEntry]:
        return [e for e in self._entries if e.change_type == change_type]

    def for_task(self, task_id: str) -> list[ChangelogEntry]:
        return [e for e in self._entries if e.task_id == task_id]
