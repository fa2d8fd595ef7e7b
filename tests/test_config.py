"""Tests for coordinator.lib.config module."""

from pathlib import Path

import pytest

from coordinator.lib.config import DEFAULT_AGENT_ROLES, CoordinatorConfig, load_config


def write_config(root: Path, text: str) -> None:
    (root / "coord.yaml").write_text(text)


class TestLoadConfig:

    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path)
        assert config.max_parallel_workers == 2
        assert config.task_deadline_seconds is None
        assert config.snapshot_write_attempts == 2
        assert config.worker_command is None
        assert config.agent_roles == DEFAULT_AGENT_ROLES
        assert config.state_path == tmp_path / ".coord"

    def test_values_from_file(self, tmp_path):
        write_config(tmp_path, (
            "max_parallel_workers: 4\n"
            "task_deadline_seconds: 900\n"
            "state_dir: .state\n"
            "worker_command: python agent.py {task_id}\n"
            "agent_roles: [requirements]\n"
        ))
        config = load_config(tmp_path)
        assert config.max_parallel_workers == 4
        assert config.task_deadline_seconds == 900.0
        assert config.state_path == tmp_path / ".state"
        assert config.worker_command == "python agent.py {task_id}"
        assert config.agent_roles == ["requirements"]

    def test_invalid_worker_count_falls_back(self, tmp_path, caplog):
        write_config(tmp_path, "max_parallel_workers: 0\n")
        config = load_config(tmp_path)
        assert config.max_parallel_workers == 2
        assert "Invalid max_parallel_workers 0" in caplog.text

    def test_bool_is_not_a_count(self, tmp_path, caplog):
        write_config(tmp_path, "snapshot_write_attempts: true\n")
        assert load_config(tmp_path).snapshot_write_attempts == 2
        assert "Invalid snapshot_write_attempts" in caplog.text

    def test_negative_deadline_disabled(self, tmp_path, caplog):
        write_config(tmp_path, "task_deadline_seconds: -5\n")
        assert load_config(tmp_path).task_deadline_seconds is None
        assert "Invalid task_deadline_seconds" in caplog.text

    def test_bad_roles_fall_back(self, tmp_path, caplog):
        write_config(tmp_path, "agent_roles: architecture\n")
        assert load_config(tmp_path).agent_roles == DEFAULT_AGENT_ROLES
        assert "Invalid agent_roles" in caplog.text

    def test_broken_yaml_uses_defaults(self, tmp_path, caplog):
        write_config(tmp_path, "max_parallel_workers: [unclosed\n")
        config = load_config(tmp_path)
        assert config == CoordinatorConfig(root=tmp_path)
        assert "Failed to parse" in caplog.text

    def test_non_mapping_ignored(self, tmp_path, caplog):
        write_config(tmp_path, "- just\n- a list\n")
        assert load_config(tmp_path).max_parallel_workers == 2
        assert "expected a mapping" in caplog.text

    def test_empty_file(self, tmp_path):
        write_config(tmp_path, "")
        assert load_config(tmp_path) == CoordinatorConfig(root=tmp_path)
