"""
Configuration loader for the coordinator.

Loads coord.yaml from the project root. If the file is missing or broken,
defaults are used. Invalid individual values fall back to their default
with a warning naming the key.

Example coord.yaml:

    max_parallel_workers: 4
    task_deadline_seconds: 900
    worker_command: "python tools/agent_worker.py {task_id}"
    agent_roles: [requirements, architecture]
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "coord.yaml"

DEFAULT_AGENT_ROLES = ["requirements", "architecture", "design"]


@dataclass
class CoordinatorConfig:
    """Coordinator settings from coord.yaml."""
    root: Path = field(default_factory=Path.cwd)
    max_parallel_workers: int = 2
    task_deadline_seconds: Optional[float] = None
    snapshot_write_attempts: int = 2  # First attempt + one retry
    state_dir: str = ".coord"
    worker_command: Optional[str] = None
    agent_roles: list[str] = field(default_factory=lambda: DEFAULT_AGENT_ROLES.copy())

    @property
    def state_path(self) -> Path:
        return self.root / self.state_dir


def _positive_int(data: dict, key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        logger.warning(f"Invalid {key} {value!r} in {CONFIG_FILENAME}, using {default}")
        return default
    return value


def _optional_seconds(data: dict, key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        logger.warning(f"Invalid {key} {value!r} in {CONFIG_FILENAME}, disabling")
        return None
    return float(value)


def load_config(root: Optional[Path] = None) -> CoordinatorConfig:
    """Load coord.yaml from root and return CoordinatorConfig.

    If root is None the current directory is used.
    """
    root = Path(root) if root is not None else Path.cwd()
    config_path = root / CONFIG_FILENAME
    if not config_path.exists():
        return CoordinatorConfig(root=root)

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return CoordinatorConfig(root=root)

    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping, got {type(data).__name__}")
        return CoordinatorConfig(root=root)

    state_dir = data.get("state_dir", ".coord")
    if not isinstance(state_dir, str) or not state_dir.strip():
        logger.warning(f"Invalid state_dir {state_dir!r} in {CONFIG_FILENAME}, using .coord")
        state_dir = ".coord"

    worker_command = data.get("worker_command")
    if worker_command is not None and not isinstance(worker_command, str):
        logger.warning(f"Invalid worker_command in {CONFIG_FILENAME}, ignoring")
        worker_command = None

    roles = data.get("agent_roles", DEFAULT_AGENT_ROLES)
    if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
        logger.warning(f"Invalid agent_roles in {CONFIG_FILENAME}, using defaults")
        roles = DEFAULT_AGENT_ROLES.copy()

    return CoordinatorConfig(
        root=root,
        max_parallel_workers=_positive_int(data, "max_parallel_workers", 2),
        task_deadline_seconds=_optional_seconds(data, "task_deadline_seconds"),
        snapshot_write_attempts=_positive_int(data, "snapshot_write_attempts", 2),
        state_dir=state_dir,
        worker_command=worker_command,
        agent_roles=list(roles),
    )
