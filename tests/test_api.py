"""End-to-end tests through the Wellkeep facade."""

import json
import logging

import pytest

from wellkeep import (
    CURRENT_SCHEMA_VERSION,
    Goal,
    GoalCategory,
    Habit,
    Status,
    ValidationError,
    VersionMismatchError,
    Wellkeep,
)
from wellkeep.config import DATABASE_FILENAME
from wellkeep.document_store import DocumentStore
from wellkeep.logging_config import OPS_LOG_FILENAME
from wellkeep.migrations import SCHEMA_VERSION_KEY
from wellkeep.serialization import encode_collection


@pytest.fixture
def kp(tmp_path, timers):
    wk = Wellkeep(tmp_path / "store", timer_factory=timers)
    yield wk
    wk.close()


def test_open_creates_store_and_config(kp, tmp_path):
    store_dir = tmp_path / "store"
    assert (store_dir / "wellkeep.toml").exists()
    assert (store_dir / DATABASE_FILENAME).exists()
    assert (store_dir / OPS_LOG_FILENAME).exists()
    assert kp.migration_report.from_version == 1


def test_boot_migrates_before_repositories_load(tmp_path, timers):
    store_dir = tmp_path / "store"
    with DocumentStore(store_dir / DATABASE_FILENAME) as raw:
        raw.put("goals", encode_collection([{
            "id": "g1", "title": "Old", "category": "GoalCategory.career",
            "isActive": False, "createdAt": "2024-05-01T10:00:00",
        }]))
        raw.put("_staging/dead/goals", b"[]")

    with Wellkeep(store_dir, timer_factory=timers) as wk:
        goal = wk.goals.get_by_id("g1")
        assert goal.category is GoalCategory.CAREER
        assert goal.status is Status.BACKLOG
        assert wk.migration_report.from_version == 1

    with DocumentStore(store_dir / DATABASE_FILENAME) as raw:
        assert raw.get(SCHEMA_VERSION_KEY) == str(CURRENT_SCHEMA_VERSION).encode()
        assert raw.keys("_staging/") == []


def test_newer_store_refused(tmp_path, timers):
    store_dir = tmp_path / "store"
    with DocumentStore(store_dir / DATABASE_FILENAME) as raw:
        raw.put(SCHEMA_VERSION_KEY, str(CURRENT_SCHEMA_VERSION + 1))

    with pytest.raises(VersionMismatchError):
        Wellkeep(store_dir, timer_factory=timers)


def test_export_import_file(kp, tmp_path):
    kp.goals.add(Goal(id="g1", title="Keep"))
    path = kp.export_file(tmp_path / "backup.json")

    kp.goals.add(Goal(id="g2", title="Added after export"))
    result = kp.import_file(path)

    assert result.collections
    assert [g.id for g in kp.goals.list()] == ["g1"]


def test_import_data_dict_and_bytes(kp):
    kp.habits.add(Habit(id="h1", title="Walk"))
    data = kp.export_data()
    assert data["schemaVersion"] == CURRENT_SCHEMA_VERSION

    kp.habits.delete("h1")
    kp.import_data(data)
    assert kp.habits.get_by_id("h1") is not None

    kp.habits.delete("h1")
    kp.import_data(json.dumps(data).encode("utf-8"))
    assert kp.habits.get_by_id("h1") is not None


def test_rejected_import_is_logged(kp, isolated_store_env):
    with pytest.raises(ValidationError):
        kp.import_data({"schemaVersion": 3, "exportedAt": "x", "collections": {"goals": [{}]}})
    assert "ValidationError" in (isolated_store_env / "wellkeep-errors.log").read_text()


def test_changes_schedule_auto_backup_and_close_flushes(tmp_path, timers):
    wk = Wellkeep(tmp_path / "store", timer_factory=timers)
    wk.goals.add(Goal(title="t"))
    assert wk.auto_backup.is_scheduled
    wk.close()

    backups = list((tmp_path / "store" / "auto_backups").glob("auto_backup_*.json"))
    assert len(backups) == 1


def test_corrupt_collection_does_not_block_other_collections(tmp_path, timers):
    store_dir = tmp_path / "store"
    with DocumentStore(store_dir / DATABASE_FILENAME) as raw:
        raw.put("goals", encode_collection([{
            "id": "g1", "title": "Fine", "category": "health", "status": "active",
            "createdAt": "2025-01-01T00:00:00+00:00",
        }]))
        raw.put("habits", b"{not json")

    with Wellkeep(store_dir, timer_factory=timers) as wk:
        assert wk.migration_report.unreadable == ["habits"]
        assert [g.title for g in wk.goals.list()] == ["Fine"]
        assert wk.habits.list() == []
        wk.habits.add(Habit(id="h1", title="Walk"))

    with DocumentStore(store_dir / DATABASE_FILENAME) as raw:
        assert raw.get("habits.corrupt") == b"{not json"
        assert [h["id"] for h in json.loads(raw.get("habits"))] == ["h1"]


# ---------------------------------------------------------------------------
# Console logging
# ---------------------------------------------------------------------------

@pytest.fixture
def saved_logging():
    root = logging.getLogger()
    ours = logging.getLogger("wellkeep")
    saved = (root.level, list(root.handlers), ours.level)
    ours.setLevel(logging.NOTSET)
    yield ours
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]
    ours.setLevel(saved[2])


def test_verbose_env_enables_debug_logging(tmp_path, timers, monkeypatch, saved_logging):
    monkeypatch.setenv("WELLKEEP_VERBOSE", "1")
    with Wellkeep(tmp_path / "store", timer_factory=timers):
        assert saved_logging.level == logging.DEBUG


def test_explicit_verbose_false_wins_over_env(tmp_path, timers, monkeypatch, saved_logging):
    monkeypatch.setenv("WELLKEEP_VERBOSE", "1")
    with Wellkeep(tmp_path / "store", timer_factory=timers, verbose=False):
        assert saved_logging.level == logging.INFO
