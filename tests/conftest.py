"""
Shared pytest fixtures for wellkeep tests.

Everything runs against a real SQLite store in tmp_path. Timers are replaced
by ManualTimer so debounce behaviour can be driven without sleeping.
"""

import pytest

from wellkeep.backup import BackupCodec
from wellkeep.bus import PersistenceChangeBus
from wellkeep.document_store import DocumentStore
from wellkeep.repository import create_repositories
from wellkeep.restore import RestoreCoordinator


class ManualTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled:
            self.function()


class ManualTimerFactory:
    """Records every timer created so tests can fire the live one."""

    def __init__(self):
        self.timers: list[ManualTimer] = []

    def __call__(self, interval, function):
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> list[ManualTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


@pytest.fixture(autouse=True)
def isolated_store_env(tmp_path, monkeypatch):
    """Keep the error log and default store path inside tmp_path."""
    home = tmp_path / "home"
    monkeypatch.setenv("WELLKEEP_STORE_PATH", str(home))
    monkeypatch.delenv("WELLKEEP_VERBOSE", raising=False)
    return home


@pytest.fixture
def store(tmp_path):
    s = DocumentStore(tmp_path / "wellkeep.db")
    yield s
    s.close()


@pytest.fixture
def bus():
    return PersistenceChangeBus()


@pytest.fixture
def repos(store, bus):
    registry = create_repositories(store, bus)
    yield registry
    registry.close()


@pytest.fixture
def codec(repos):
    return BackupCodec(repos)


@pytest.fixture
def coordinator(store, bus, codec, repos):
    return RestoreCoordinator(store, bus, codec, repos)


@pytest.fixture
def timers():
    return ManualTimerFactory()
