"""Tests for coordinator.lib.validate and coordinator.lib.resources."""

import json

import pytest

from coordinator.lib.errors import ValidationError
from coordinator.lib.resources import ResourceStore, normalize_key, normalize_keys
from coordinator.lib.validate import validate, validate_before_write, validate_file


def task_data(**overrides):
    data = {
        "id": "T1",
        "feature_id": "FEAT-0001",
        "description": "x",
        "status": "draft",
        "created": "2024-01-01T00:00:00+00:00",
        "acceptance_criteria": [],
        "dependencies": [],
        "touch_set": [],
    }
    data.update(overrides)
    return data


class TestValidate:

    def test_valid_task(self):
        validate(task_data(), "task")

    def test_error_names_schema_and_path(self):
        with pytest.raises(ValidationError) as exc_info:
            validate(task_data(acceptance_criteria=["a", ""]), "task")
        assert exc_info.value.schema_name == "task"
        assert exc_info.value.path == "acceptance_criteria.1"

    def test_criteria_cap_in_schema(self):
        with pytest.raises(ValidationError):
            validate(task_data(acceptance_criteria=["a"] * 6), "task")

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            validate(task_data(owner="me"), "task")

    def test_unknown_schema(self):
        with pytest.raises(ValidationError, match="Schema file not found"):
            validate({}, "no_such_schema")

    def test_validate_file(self, tmp_path):
        path = tmp_path / "t.json"
        path.write_text(json.dumps(task_data()))
        assert validate_file(path, "task")["id"] == "T1"

    def test_validate_file_bad_json(self, tmp_path):
        path = tmp_path / "t.json"
        path.write_text("{")
        with pytest.raises(ValidationError, match="Invalid JSON"):
            validate_file(path, "task")

    def test_validate_before_write_names_file(self, tmp_path):
        with pytest.raises(ValidationError, match="t.json"):
            validate_before_write(task_data(status="bogus"), "task", tmp_path / "t.json")


class TestResourceKeys:

    def test_normalize(self):
        assert normalize_key("./src//app.py") == "src/app.py"
        assert normalize_key("src\\app.py") == "src/app.py"

    @pytest.mark.parametrize("key", ["", "  ", "/etc/passwd", "../x", "a/../../b", "."])
    def test_rejected(self, key):
        with pytest.raises(ValidationError):
            normalize_key(key)

    def test_normalize_keys_sorted_unique(self):
        assert normalize_keys(["b", "./a", "a"]) == ["a", "b"]


class TestResourceStore:

    def test_read_write_delete(self, tmp_path):
        resources = ResourceStore(tmp_path)
        assert resources.read("dir/a.txt") is None
        resources.write("dir/a.txt", b"\x00\x01")
        assert resources.read("dir/a.txt") == b"\x00\x01"
        assert resources.exists("dir/a.txt")
        resources.delete("dir/a.txt")
        assert not resources.exists("dir/a.txt")
        resources.delete("dir/a.txt")
