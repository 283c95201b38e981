"""Shared fixtures for the task scheduler tests."""

import threading

import pytest

from taskscheduler.config import SchedulerConfig
from taskscheduler.models import TaskCallbacks
from taskscheduler.service import TaskScheduler


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Keep config and log files out of the home directory."""
    monkeypatch.setenv("TASK_SCHEDULER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("TASK_SCHEDULER_CONFIG", raising=False)
    monkeypatch.delenv("TASK_SCHEDULER_LOG_DIR", raising=False)


@pytest.fixture
def config(tmp_path):
    return SchedulerConfig(str(tmp_path / "config.json"))


@pytest.fixture
def service(config):
    service = TaskScheduler(config=config)
    service.start()
    yield service
    service.shutdown(wait=False)


class Recorder:
    """Collects lifecycle callback invocations from a task."""

    def __init__(self):
        self.events = []
        self.started = threading.Event()
        self.ended = threading.Event()
        self._lock = threading.Lock()

    def on_start(self, process, start_time):
        with self._lock:
            self.events.append(('start', start_time))
        self.started.set()

    def on_end(self, process, end_time, elapsed):
        with self._lock:
            self.events.append(('end', end_time, elapsed))
        self.ended.set()

    def on_error(self, message):
        with self._lock:
            self.events.append(('error', message))

    def callbacks(self):
        return TaskCallbacks(on_start=self.on_start, on_end=self.on_end, on_error=self.on_error)

    def times(self, kind):
        with self._lock:
            return [e[1] for e in self.events if e[0] == kind]

    def kinds(self):
        with self._lock:
            return [e[0] for e in self.events]

    def errors(self):
        with self._lock:
            return [e[1] for e in self.events if e[0] == 'error']


@pytest.fixture
def recorder():
    return Recorder()
