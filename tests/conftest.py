"""Shared fixtures for coordinator tests."""

import threading

import pytest

from coordinator.lib.config import CoordinatorConfig
from coordinator.lib.history import HistoryLog
from coordinator.lib.legacy import LegacyArchive
from coordinator.lib.resources import ResourceStore
from coordinator.pm.features import FeatureStore
from coordinator.workflow.engine import Orchestrator
from coordinator.workflow.worker import WorkResult


class WriteTouchSetWorker:
    """Writes '<task_id> done' to every key in the touch set."""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, request, cancel):
        with self._lock:
            self.calls.append(request.task_id)
        return WorkResult(
            changes={key: f"{request.task_id} done\n".encode() for key in request.touch_set},
            description=request.description,
        )


class GatedWorker:
    """Blocks each task until its gate is opened. Records concurrency."""

    def __init__(self):
        self.gates: dict[str, threading.Event] = {}
        self.started: dict[str, threading.Event] = {}
        self.running: set[str] = set()
        self.touching: dict[str, set[str]] = {}
        self.overlaps: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def gate(self, task_id: str) -> threading.Event:
        return self.gates.setdefault(task_id, threading.Event())

    def started_event(self, task_id: str) -> threading.Event:
        return self.started.setdefault(task_id, threading.Event())

    def __call__(self, request, cancel):
        with self._lock:
            for other, keys in self.touching.items():
                if keys & set(request.touch_set):
                    self.overlaps.append((request.task_id, other))
            self.touching[request.task_id] = set(request.touch_set)
            self.running.add(request.task_id)
            gate = self.gate(request.task_id)
            started = self.started_event(request.task_id)
        started.set()
        while not gate.wait(0.01):
            if cancel.cancelled:
                break
        with self._lock:
            self.running.discard(request.task_id)
            self.touching.pop(request.task_id, None)
        if cancel.cancelled:
            return WorkResult.failed(f"Cancelled: {cancel.reason}")
        return WorkResult(changes={key: f"{request.task_id}\n".encode() for key in request.touch_set})


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / ".coord"


@pytest.fixture
def store(state_dir):
    return FeatureStore(state_dir)


@pytest.fixture
def make_orch(tmp_path):
    """Build an Orchestrator over tmp_path with the given worker."""

    built = []

    def _make(worker=None, clock=None, **config_kwargs):
        config = CoordinatorConfig(root=tmp_path, **config_kwargs)
        state_dir = config.state_path
        resources = ResourceStore(tmp_path)
        history = HistoryLog(state_dir)
        archive = LegacyArchive(state_dir, resources, history, config.snapshot_write_attempts)
        store = FeatureStore(state_dir)
        kwargs = {"clock": clock} if clock is not None else {}
        orch = Orchestrator(store, history, archive, resources, worker=worker, config=config, **kwargs)
        built.append(orch)
        return orch

    yield _make
    for orch in built:
        orch.shutdown(wait=True)


@pytest.fixture
def write_worker():
    return WriteTouchSetWorker()


@pytest.fixture
def gated_worker():
    worker = GatedWorker()
    yield worker
    for gate in worker.gates.values():
        gate.set()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def planned_feature():
    """Create a feature with tasks and move every task to planned (and scheduled)."""
    return _planned_feature


def _planned_feature(orch, specs, schedule=True):
    feature = orch.create_feature("Test feature")
    orch.attach_prd(feature.id, "# PRD\n")
    orch.create_tasks(feature.id, specs)
    for spec in specs:
        orch.approve_prd(spec["id"])
        orch.plan(spec["id"], serialize=True)
        if schedule:
            orch.request_code(spec["id"])
    return feature
