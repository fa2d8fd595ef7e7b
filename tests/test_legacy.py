"""Tests for coordinator.lib.legacy module."""

import json
from unittest.mock import patch

import pytest

from coordinator.lib.errors import SnapshotWriteFailure, ValidationError
from coordinator.lib.history import HistoryLog
from coordinator.lib.legacy import LegacyArchive
from coordinator.lib.resources import ResourceStore


@pytest.fixture
def resources(tmp_path):
    return ResourceStore(tmp_path)


@pytest.fixture
def history(state_dir):
    return HistoryLog(state_dir)


@pytest.fixture
def archive(state_dir, resources, history):
    return LegacyArchive(state_dir, resources, history)


class TestSnapshot:

    def test_snapshot_captures_content(self, archive, resources):
        resources.write("src/app.py", b"v1\n")
        handle = archive.snapshot("src/app.py", "before T1")
        snap = archive.load(handle)
        assert snap.prior_content == b"v1\n"
        assert snap.reason == "before T1"
        assert snap.revert_procedure["action"] == "restore"
        assert snap.revert_procedure["size"] == 3

    def test_snapshot_of_missing_resource(self, archive):
        handle = archive.snapshot("new.txt", "creating")
        snap = archive.load(handle)
        assert snap.prior_content is None
        assert snap.revert_procedure["action"] == "delete"

    def test_handles_are_unique_and_ordered(self, archive, resources):
        resources.write("a.txt", b"a")
        handles = [archive.snapshot("a.txt", f"r{i}") for i in range(3)]
        assert len(set(handles)) == 3
        assert handles == sorted(handles)
        assert [s["handle"] for s in archive.list_snapshots("a.txt")] == handles

    def test_index_survives_reload(self, archive, state_dir, resources, history):
        resources.write("a.txt", b"a")
        handle = archive.snapshot("a.txt", "r")
        reloaded = LegacyArchive(state_dir, resources, history)
        assert [s["handle"] for s in reloaded.list_snapshots()] == [handle]

    def test_unknown_handle(self, archive):
        with pytest.raises(ValidationError):
            archive.load("000099_nope")

    def test_corrupted_snapshot_file(self, archive, resources):
        resources.write("a.txt", b"a")
        handle = archive.snapshot("a.txt", "r")
        (archive.dir / f"{handle}.json").write_text("{not json")
        with pytest.raises(ValidationError, match="Invalid JSON"):
            archive.load(handle)


class TestSnapshotFailure:

    def test_retries_once_then_succeeds(self, archive, resources):
        resources.write("a.txt", b"a")
        real_write = archive._write_snapshot
        calls = []

        def flaky(snap):
            calls.append(snap.handle)
            if len(calls) == 1:
                raise OSError("disk hiccup")
            real_write(snap)

        with patch.object(archive, "_write_snapshot", side_effect=flaky):
            handle = archive.snapshot("a.txt", "r")
        assert len(calls) == 2
        assert archive.load(handle).prior_content == b"a"

    def test_gives_up_after_attempts(self, archive, resources, caplog):
        resources.write("a.txt", b"a")
        with patch.object(archive, "_write_snapshot", side_effect=OSError("disk full")) as mock_write:
            with pytest.raises(SnapshotWriteFailure) as exc_info:
                archive.snapshot("a.txt", "r")
        assert mock_write.call_count == 2
        assert exc_info.value.attempts == 2
        assert archive.list_snapshots() == []
        assert "Giving up on snapshot for a.txt" in caplog.text


class TestRevert:

    def test_round_trip_is_bit_for_bit(self, archive, resources, history):
        original = bytes(range(256)) + b"\r\n\x00 trailing"
        resources.write("bin/blob.dat", original)
        handle = archive.snapshot("bin/blob.dat", "before overwrite")
        resources.write("bin/blob.dat", b"overwritten")

        entry = archive.revert_to(handle, agent_roles=["architecture"])

        assert resources.read("bin/blob.dat") == original
        assert len(history) == 1
        assert entry.change_type == "fix"
        assert entry.resource_keys == ("bin/blob.dat",)
        assert handle in entry.description

    def test_revert_of_created_resource_deletes_it(self, archive, resources):
        handle = archive.snapshot("new.txt", "creating")
        resources.write("new.txt", b"hello")
        archive.revert_to(handle)
        assert not resources.exists("new.txt")

    def test_revert_is_itself_revertible(self, archive, resources):
        resources.write("a.txt", b"v1")
        first = archive.snapshot("a.txt", "before v2")
        resources.write("a.txt", b"v2")

        archive.revert_to(first)
        assert resources.read("a.txt") == b"v1"

        undo = archive.list_snapshots("a.txt")[-1]["handle"]
        archive.revert_to(undo)
        assert resources.read("a.txt") == b"v2"

    def test_tampered_snapshot_rejected(self, archive, resources, history):
        resources.write("a.txt", b"v1")
        handle = archive.snapshot("a.txt", "r")
        path = archive.dir / f"{handle}.json"
        data = json.loads(path.read_text())
        data["prior_content"] = "dGFtcGVyZWQ="  # "tampered"
        path.write_text(json.dumps(data))

        with pytest.raises(ValidationError, match="checksum"):
            archive.revert_to(handle)
        assert resources.read("a.txt") == b"v1"
        assert len(history) == 0
