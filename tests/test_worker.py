"""Tests for coordinator.workflow.worker module."""

import sys
from unittest.mock import MagicMock, patch

import pytest

from coordinator.workflow.worker import (
    CancelToken,
    SubprocessWorker,
    WorkRequest,
    WorkResult,
    parse_worker_output,
    run_worker,
)


@pytest.fixture
def request_():
    return WorkRequest(
        task_id="T1",
        feature_id="FEAT-0001",
        description="Add login form",
        acceptance_criteria=["renders"],
        touch_set=["src/login.py"],
    )


class TestCancelToken:

    def test_cancel(self):
        token = CancelToken()
        assert not token.cancelled
        token.cancel("Timeout")
        assert token.cancelled
        assert token.reason == "Timeout"
        assert token.wait(0)

    def test_first_reason_kept_when_recancelled_without_reason(self):
        token = CancelToken()
        token.cancel("Timeout")
        token.cancel()
        assert token.reason == "Timeout"


class TestRunWorker:

    def test_exception_becomes_failure(self, request_):
        def boom(request, cancel):
            raise ValueError("bad input")

        result = run_worker(boom, request_, CancelToken())
        assert not result.success
        assert result.error == "ValueError: bad input"

    def test_wrong_return_type(self, request_):
        result = run_worker(lambda r, c: {"changes": {}}, request_, CancelToken())
        assert not result.success
        assert "expected WorkResult" in result.error

    def test_passes_result_through(self, request_):
        expected = WorkResult(changes={"src/login.py": b"x"})
        assert run_worker(lambda r, c: expected, request_, CancelToken()) is expected


class TestParseWorkerOutput:

    def test_changes_encoded(self):
        result = parse_worker_output(
            '{"changes": {"a.txt": "hi", "old.txt": null}, "description": "d", '
            '"change_type": "refactor", "agent_roles": ["design"]}'
        )
        assert result.success
        assert result.changes == {"a.txt": b"hi", "old.txt": None}
        assert result.change_type == "refactor"
        assert result.agent_roles == ["design"]

    def test_reported_failure(self):
        result = parse_worker_output('{"success": false, "error": "tests failed"}')
        assert not result.success
        assert result.error == "tests failed"

    def test_not_json(self):
        assert "not JSON" in parse_worker_output("Traceback ...").error

    def test_not_an_object(self):
        assert not parse_worker_output("[1, 2]").success

    @pytest.mark.parametrize("content", ["42", "[1]", '{"text": "x"}', "true"])
    def test_non_string_content_fails_instead_of_deleting(self, content):
        result = parse_worker_output(f'{{"changes": {{"a.txt": {content}}}}}')
        assert not result.success
        assert "a.txt" in result.error
        assert result.changes == {}

    def test_changes_must_be_object(self):
        assert not parse_worker_output('{"changes": ["a.txt"]}').success

    @pytest.mark.parametrize("roles", ['"design"', "[1]", '{"a": "b"}'])
    def test_agent_roles_must_be_string_list(self, roles):
        result = parse_worker_output(f'{{"changes": {{"a.txt": "x"}}, "agent_roles": {roles}}}')
        assert not result.success
        assert "agent_roles" in result.error


class TestSubprocessWorker:

    def test_build_command_substitutes(self, request_, tmp_path):
        worker = SubprocessWorker("agent --task {task_id} --feature {feature_id} --root {root}", tmp_path)
        assert worker.build_command(request_) == [
            "agent", "--task", "T1", "--feature", "FEAT-0001", "--root", str(tmp_path),
        ]

    def test_runs_command(self, request_, tmp_path):
        script = tmp_path / "agent.py"
        script.write_text(
            "import json, sys\n"
            "req = json.load(sys.stdin)\n"
            "print(json.dumps({'changes': {k: req['task_id'] for k in req['touch_set']}}))\n"
        )
        worker = SubprocessWorker(f"{sys.executable} {script}", tmp_path)
        result = worker(request_, CancelToken())
        assert result.success
        assert result.changes == {"src/login.py": b"T1"}

    def test_nonzero_exit_is_failure(self, request_, tmp_path):
        script = tmp_path / "agent.py"
        script.write_text("import sys\nsys.stderr.write('no api key')\nsys.exit(3)\n")
        result = SubprocessWorker(f"{sys.executable} {script}", tmp_path)(request_, CancelToken())
        assert not result.success
        assert "exited 3" in result.error
        assert "no api key" in result.error

    @patch("coordinator.workflow.worker.subprocess.Popen")
    def test_cancel_terminates_child(self, mock_popen, request_, tmp_path):
        import subprocess

        proc = MagicMock()
        proc.communicate.side_effect = [subprocess.TimeoutExpired("agent", 0.5), ("", "")]
        mock_popen.return_value = proc
        token = CancelToken()
        token.cancel("Timeout")

        result = SubprocessWorker("agent", tmp_path)(request_, token)

        proc.terminate.assert_called_once()
        assert not result.success
        assert result.error == "Cancelled: Timeout"
