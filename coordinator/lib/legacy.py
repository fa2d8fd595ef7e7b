"""
Legacy archive: snapshots of resources taken before they are overwritten.

Each snapshot is a JSON file under legacy/ holding the prior content
(base64, so restores are bit-for-bit) and a revert procedure that
revert_to() follows mechanically. Snapshots are never modified or removed.
"""

import base64
import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote

from coordinator.lib.errors import SnapshotWriteFailure, ValidationError
from coordinator.lib.history import HistoryLog
from coordinator.lib.resources import ResourceStore, normalize_key
from coordinator.lib.types import ChangelogEntry, LegacySnapshot
from coordinator.lib.validate import validate_before_write, validate_file

logger = logging.getLogger(__name__)

LEGACY_DIRNAME = "legacy"
INDEX_FILENAME = "index.jsonl"


def _revert_procedure(resource_key: str, prior: bytes | None) -> dict:
    if prior is None:
        return {"action": "delete", "resource_key": resource_key, "sha256": None, "size": None}
    return {
        "action": "restore",
        "resource_key": resource_key,
        "sha256": hashlib.sha256(prior).hexdigest(),
        "size": len(prior),
    }


def _snapshot_to_dict(snap: LegacySnapshot) -> dict:
    content = None
    if snap.prior_content is not None:
        content = base64.b64encode(snap.prior_content).decode("ascii")
    return {
        "handle": snap.handle,
        "timestamp": snap.timestamp,
        "resource_key": snap.resource_key,
        "prior_content": content,
        "reason": snap.reason,
        "revert_procedure": snap.revert_procedure,
    }


def _snapshot_from_dict(data: dict) -> LegacySnapshot:
    content = data["prior_content"]
    return LegacySnapshot(
        handle=data["handle"],
        timestamp=data["timestamp"],
        resource_key=data["resource_key"],
        prior_content=base64.b64decode(content) if content is not None else None,
        reason=data["reason"],
        revert_procedure=data["revert_procedure"],
    )


class LegacyArchive:
    """Snapshot store with reversible overwrites."""

    def __init__(
        self,
        state_dir: Path,
        resources: ResourceStore,
        history: HistoryLog,
        write_attempts: int = 2,
    ):
        self.dir = Path(state_dir) / LEGACY_DIRNAME
        self.resources = resources
        self.history = history
        self.write_attempts = max(1, write_attempts)
        self._index: list[dict] = self._load_index()

    def _load_index(self) -> list[dict]:
        index_path = self.dir / INDEX_FILENAME
        if not index_path.exists():
            return []
        index = []
        for line_num, line in enumerate(index_path.read_text().splitlines(), 1):
            if not line.strip():
                continue
            try:
                index.append(json.loads(line))
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupted legacy index line {line_num}: {e}")
        return index

    def _new_handle(self, timestamp: str, resource_key: str) -> str:
        compact = timestamp.replace("-", "").replace(":", "").replace("+0000", "Z")
        return f"{len(self._index) + 1:06d}_{compact}__{quote(resource_key, safe='')}"

    def _write_snapshot(self, snap: LegacySnapshot) -> None:
        """Write the snapshot file and index line. Raises OSError on failure."""
        data = _snapshot_to_dict(snap)
        path = self.dir / f"{snap.handle}.json"
        validate_before_write(data, "legacy_snapshot", path)

        self.dir.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(data, indent=2))
        os.replace(tmp_path, path)

        with open(self.dir / INDEX_FILENAME, "a") as f:
            f.write(json.dumps({
                "handle": snap.handle,
                "timestamp": snap.timestamp,
                "resource_key": snap.resource_key,
                "reason": snap.reason,
            }) + "\n")
            f.flush()

    def snapshot(self, resource_key: str, reason: str) -> str:
        """Capture the current content of a resource before it is overwritten.

        Retries a failed write up to write_attempts in total.

        Returns:
            Snapshot handle for revert_to()

        Raises:
            SnapshotWriteFailure: if the snapshot could not be persisted
        """
        resource_key = normalize_key(resource_key)
        prior = self.resources.read(resource_key)
        timestamp = datetime.now(timezone.utc).isoformat()
        snap = LegacySnapshot(
            handle=self._new_handle(timestamp, resource_key),
            timestamp=timestamp,
            resource_key=resource_key,
            prior_content=prior,
            reason=reason,
            revert_procedure=_revert_procedure(resource_key, prior),
        )

        last_error = None
        for attempt in range(1, self.write_attempts + 1):
            try:
                self._write_snapshot(snap)
                break
            except OSError as e:
                last_error = e
                logger.warning(
                    f"[LEGACY] Snapshot write for {resource_key} failed "
                    f"(attempt {attempt}/{self.write_attempts}): {e}"
                )
        else:
            logger.error(f"[LEGACY] Giving up on snapshot for {resource_key}")
            raise SnapshotWriteFailure(resource_key, self.write_attempts, last_error)

        self._index.append({
            "handle": snap.handle,
            "timestamp": snap.timestamp,
            "resource_key": snap.resource_key,
            "reason": snap.reason,
        })
        logger.info(f"[LEGACY] Snapshot {snap.handle} ({reason})")
        return snap.handle

    def load(self, handle: str) -> LegacySnapshot:
        """Load a snapshot by handle.

        Raises:
            ValidationError: if the handle is unknown or the file is invalid
        """
        path = self.dir / f"{handle}.json"
        if "/" in handle or not path.exists():
            raise ValidationError("legacy_snapshot", f"Unknown snapshot handle: {handle}")
        return _snapshot_from_dict(validate_file(path, "legacy_snapshot"))

    def list_snapshots(self, resource_key: Optional[str] = None) -> list[dict]:
        """Index entries in creation order, optionally filtered by resource."""
        if resource_key is None:
            return list(self._index)
        key = normalize_key(resource_key)
        return [e for e in self._index if e["resource_key"] == key]

    def revert_to(self, handle: str, agent_roles: Iterable[str] = ()) -> ChangelogEntry:
        """Restore a resource to the content captured in a snapshot.

        The current content is itself snapshotted first, so a revert can be
        reverted. Records exactly one changelog entry.
        """
        snap = self.load(handle)
        procedure = snap.revert_procedure
        key = procedure["resource_key"]

        if procedure["action"] == "restore":
            digest = hashlib.sha256(snap.prior_content).hexdigest()
            if digest != procedure.get("sha256"):
                raise ValidationError(
                    "legacy_snapshot",
                    f"Snapshot {handle} content does not match its recorded checksum",
                )

        self.snapshot(key, f"before revert to {handle}")

        if procedure["action"] == "restore":
            self.resources.write(key, snap.prior_content)
        else:
            self.resources.delete(key)

        logger.info(f"[LEGACY] Reverted {key} to {handle}")
        return self.history.append(
            change_type="fix",
            resource_keys=[key],
            description=f"Reverted {key} to snapshot {handle} ({snap.reason})",
            agent_roles=agent_roles,
        )
