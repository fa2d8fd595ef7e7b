"""
Tracked resources: the files tasks declare in their touch sets.

Resource keys are POSIX-style paths relative to the project root.
"""

import logging
from pathlib import Path, PurePosixPath

from coordinator.lib.errors import ValidationError

logger = logging.getLogger(__name__)


def normalize_key(key: str) -> str:
    """Return the canonical form of a resource key.

    Raises:
        ValidationError: if the key is empty, absolute, or escapes the root
    """
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("resource_key", f"Invalid resource key {key!r}")
    path = PurePosixPath(key.strip().replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts:
        raise ValidationError("resource_key", f"Resource key must stay inside the project: {key}")
    normalized = str(path)
    if normalized in ("", "."):
        raise ValidationError("resource_key", f"Invalid resource key {key!r}")
    return normalized


def normalize_keys(keys) -> list[str]:
    """Normalize, dedupe and sort a collection of resource keys."""
    return sorted({normalize_key(k) for k in keys})


class ResourceStore:
    """Reads and writes resources under a root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        return self.root / normalize_key(key)

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def read(self, key: str) -> bytes | None:
        """Return current content, or None if the resource doesn't exist."""
        path = self.path_for(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def write(self, key: str, content: bytes) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.debug(f"Wrote {len(content)} bytes to {key}")

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            path.unlink()
            logger.debug(f"Deleted {key}")
