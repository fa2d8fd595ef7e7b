"""Tests for command helpers that parse input files."""

import pytest

from coordinator.commands.plan import _load_impact
from coordinator.commands.tasks import load_task_specs
from coordinator.lib.errors import ValidationError


class TestLoadTaskSpecs:

    def test_yaml_mapping(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text("tasks:\n  - id: T1\n    description: x\n")
        assert load_task_specs(path) == [{"id": "T1", "description": "x"}]

    def test_json_list(self, tmp_path):
        path = tmp_path / "tasks.json"
        path.write_text('[{"id": "T1", "description": "x", "touch_set": ["a"]}]')
        assert load_task_specs(path)[0]["touch_set"] == ["a"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="File not found"):
            load_task_specs(tmp_path / "nope.yaml")

    def test_unparsable(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text("tasks: [unclosed\n")
        with pytest.raises(ValidationError, match="Could not parse"):
            load_task_specs(path)

    def test_missing_description(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text("tasks:\n  - id: T1\n")
        with pytest.raises(ValidationError):
            load_task_specs(path)

    def test_unknown_field(self, tmp_path):
        path = tmp_path / "tasks.yaml"
        path.write_text("tasks:\n  - id: T1\n    description: x\n    owner: me\n")
        with pytest.raises(ValidationError):
            load_task_specs(path)


class TestLoadImpact:

    def test_none(self):
        assert _load_impact(None) is None

    def test_mapping(self, tmp_path):
        path = tmp_path / "impact.yaml"
        path.write_text("src/a.py: add handler\n")
        assert _load_impact(str(path)) == {"src/a.py": "add handler"}

    def test_non_string_values_rejected(self, tmp_path):
        path = tmp_path / "impact.yaml"
        path.write_text("src/a.py: [1, 2]\n")
        with pytest.raises(ValidationError):
            _load_impact(str(path))
