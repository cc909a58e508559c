"""Tests for the domain repositories."""

from dataclasses import replace

import pytest

from wellkeep.bus import ChangeKind
from wellkeep.errors import DuplicateDocumentError, IOFailure
from wellkeep.models import (
    AssessmentType,
    ClinicalAssessment,
    Goal,
    GoalCategory,
    Habit,
    JournalEntry,
    Milestone,
    PulseType,
    SeverityLevel,
    Status,
)
from wellkeep.protocol import RepositoryProtocol
from wellkeep.serialization import decode_collection, encode_collection


class FailingStore:
    """DocumentStore wrapper whose writes can be made to fail."""

    def __init__(self, real_store):
        self._real = real_store
        self.fail_put = False

    def __getattr__(self, name):
        return getattr(self._real, name)

    def put(self, key, value):
        if self.fail_put:
            raise IOFailure(f"simulated write failure for {key!r}", key=key)
        return self._real.put(key, value)


def _stored(store, key):
    raw = store.get(key)
    return None if raw is None else decode_collection(raw, key)


class TestCrud:

    def test_every_repository_satisfies_protocol(self, repos):
        for repo in repos:
            assert isinstance(repo, RepositoryProtocol)

    def test_add_assigns_id_and_created_at(self, repos, store):
        goal = repos["goals"].add(Goal(title="Run a 10k", category=GoalCategory.FITNESS))

        assert goal.id
        assert goal.created_at
        stored = _stored(store, "goals")
        assert stored[0]["id"] == goal.id
        assert stored[0]["category"] == "fitness"
        assert stored[0]["createdAt"] == goal.created_at

    def test_add_keeps_given_id(self, repos):
        goal = repos["goals"].add(Goal(id="g1", title="t"))
        assert goal.id == "g1"
        assert repos["goals"].get_by_id("g1") == goal

    def test_add_duplicate_id_raises(self, repos):
        repos["goals"].add(Goal(id="g1", title="first"))
        with pytest.raises(DuplicateDocumentError):
            repos["goals"].add(Goal(id="g1", title="second"))
        assert [g.title for g in repos["goals"].list()] == ["first"]

    def test_add_rejects_wrong_type(self, repos):
        with pytest.raises(TypeError):
            repos["goals"].add(Habit(title="not a goal"))

    def test_insertion_order_is_kept(self, repos):
        for n in range(5):
            repos["journal_entries"].add(JournalEntry(id=f"j{n}", content=str(n)))
        assert [e.id for e in repos["journal_entries"].list()] == ["j0", "j1", "j2", "j3", "j4"]

    def test_update_replaces(self, repos, store):
        goal = repos["goals"].add(Goal(id="g1", title="before"))
        assert repos["goals"].update(replace(goal, title="after")) is True
        assert _stored(store, "goals")[0]["title"] == "after"

    def test_update_rejects_wrong_type(self, repos, store):
        repos["goals"].add(Goal(id="g1", title="goal"))
        with pytest.raises(TypeError):
            repos["goals"].update(Habit(id="g1", title="not a goal"))
        assert _stored(store, "goals")[0]["title"] == "goal"

    def test_modify_rejects_wrong_type(self, repos, store):
        repos["goals"].add(Goal(id="g1", title="goal"))
        with pytest.raises(TypeError):
            repos["goals"].modify("g1", lambda g: Habit(id=g.id, title="not a goal"))
        assert _stored(store, "goals")[0]["title"] == "goal"

    def test_update_absent_id_is_noop(self, repos, store):
        assert repos["goals"].update(Goal(id="ghost", title="boo")) is False
        assert store.get("goals") is None

    def test_update_stamps_updated_at(self, repos):
        m = repos["milestones"].add(Milestone(id="m1", goal_id="g1", title="halfway",
                                              updated_at="2000-01-01T00:00:00+00:00"))
        repos["milestones"].update(m.completed("2025-05-01T00:00:00+00:00"))
        stored = repos["milestones"].get_by_id("m1")
        assert stored.is_completed
        assert stored.updated_at > "2000-01-01T00:00:00+00:00"

    def test_delete(self, repos):
        repos["goals"].add(Goal(id="g1", title="t"))
        assert repos["goals"].delete("g1") is True
        assert repos["goals"].delete("g1") is False
        assert repos["goals"].list() == []

    def test_unknown_fields_survive_update(self, repos, store):
        store.put("goals", encode_collection([{
            "id": "g1", "title": "old", "category": "career", "status": "active",
            "createdAt": "2025-01-01T00:00:00", "addedInNewerVersion": {"x": 1},
        }]))
        goal = repos["goals"].get_by_id("g1")
        repos["goals"].update(replace(goal, title="new"))

        stored = _stored(store, "goals")[0]
        assert stored["title"] == "new"
        assert stored["addedInNewerVersion"] == {"x": 1}


class TestReadModifyWrite:

    def test_stale_cache_does_not_resurrect_documents(self, repos, store):
        goals = repos["goals"]
        goals.add(Goal(id="g1", title="one"))
        assert [g.id for g in goals.list()] == ["g1"]

        # Collection replaced underneath the repository; no event delivered
        store.put("goals", encode_collection([Goal(id="g2", title="two").to_dict()]))
        goals.add(Goal(id="g3", title="three"))

        assert [d["id"] for d in _stored(store, "goals")] == ["g2", "g3"]

    def test_restored_event_drops_cache(self, repos, store, bus):
        goals = repos["goals"]
        goals.add(Goal(id="g1", title="one"))
        store.put("goals", encode_collection([Goal(id="g2", title="two").to_dict()]))
        assert [g.id for g in goals.list()] == ["g1"]

        bus.publish("goals", ChangeKind.RESTORED)

        assert [g.id for g in goals.list()] == ["g2"]

    def test_restored_event_for_other_collection_keeps_cache(self, repos, store, bus):
        goals = repos["goals"]
        goals.add(Goal(id="g1", title="one"))
        store.put("goals", encode_collection([]))

        bus.publish("habits", ChangeKind.RESTORED)

        assert [g.id for g in goals.list()] == ["g1"]

    def test_reload_rereads_store(self, repos, store):
        goals = repos["goals"]
        goals.add(Goal(id="g1", title="one"))
        store.put("goals", encode_collection([]))
        goals.reload()
        assert goals.list() == []

    def test_mutation_publishes_write(self, repos, bus):
        events = []
        bus.subscribe(events.append)

        goal = repos["goals"].add(Goal(title="t"))
        repos["goals"].update(replace(goal, title="u"))
        repos["goals"].delete(goal.id)
        repos["goals"].delete(goal.id)

        assert [(e.collection, e.kind) for e in events] == [("goals", ChangeKind.WRITE)] * 3


class TestFailures:

    def test_write_failure_raises_and_publishes_nothing(self, store, bus):
        from wellkeep.repository import GoalRepository

        failing = FailingStore(store)
        goals = GoalRepository(failing, bus)
        goals.add(Goal(id="g1", title="kept"))
        events = []
        bus.subscribe(events.append)

        failing.fail_put = True
        with pytest.raises(IOFailure):
            goals.add(Goal(id="g2", title="lost"))

        assert events == []
        assert [g.id for g in goals.list()] == ["g1"]

    def test_corrupt_collection_loads_empty_and_is_quarantined(self, repos, store):
        store.put("goals", b"\xff\xfe not json")

        assert repos["goals"].list() == []
        assert store.get("goals.corrupt") == b"\xff\xfe not json"

        repos["goals"].add(Goal(id="g1", title="fresh"))
        assert [d["id"] for d in _stored(store, "goals")] == ["g1"]

    def test_undecodable_document_is_hidden_but_preserved(self, repos, store):
        odd = {"id": "g0", "title": "?", "category": "spaceflight", "status": "active",
               "createdAt": "2025-01-01T00:00:00"}
        store.put("goals", encode_collection([odd]))

        assert repos["goals"].list() == []
        repos["goals"].add(Goal(id="g1", title="normal"))

        assert repos["goals"].export_documents() == [odd, repos["goals"].get_by_id("g1").to_dict()]


class TestDomainAccessors:

    def test_goal_filters(self, repos):
        goals = repos["goals"]
        goals.add(Goal(id="a", title="a", category=GoalCategory.HEALTH))
        goals.add(Goal(id="b", title="b", category=GoalCategory.HEALTH, status=Status.BACKLOG))
        goals.add(Goal(id="c", title="c", category=GoalCategory.CAREER))

        assert [g.id for g in goals.active()] == ["a", "c"]
        assert [g.id for g in goals.by_category(GoalCategory.HEALTH)] == ["a", "b"]

    def test_milestones_for_goal_in_order(self, repos):
        ms = repos["milestones"]
        ms.add(Milestone(id="m2", goal_id="g1", title="second", order=2))
        ms.add(Milestone(id="x", goal_id="g2", title="other", order=0))
        ms.add(Milestone(id="m1", goal_id="g1", title="first", order=1))

        assert [m.id for m in ms.for_goal("g1")] == ["m1", "m2"]

    def test_habit_completion_streaks(self, repos):
        habits = repos["habits"]
        habits.add(Habit(id="h1", title="Walk", linked_goal_id="g1"))

        habits.record_completion("h1", "2025-03-01T08:00:00+00:00")
        habits.record_completion("h1", "2025-03-01T20:00:00+00:00")
        habit = habits.record_completion("h1", "2025-03-02T07:30:00+00:00")

        assert len(habit.completion_dates) == 2
        assert habit.current_streak == 2
        assert habit.longest_streak == 2
        assert habits.get_by_id("h1").current_streak == 2
        assert [h.id for h in habits.linked_to_goal("g1")] == ["h1"]

    def test_record_completion_unknown_habit(self, repos):
        assert repos["habits"].record_completion("nope") is None

    def test_journal_recent_newest_first(self, repos):
        journal = repos["journal_entries"]
        journal.add(JournalEntry(id="old", created_at="2025-01-01T00:00:00+00:00"))
        journal.add(JournalEntry(id="new", created_at="2025-02-01T00:00:00+00:00"))
        journal.add(JournalEntry(id="mid", created_at="2025-01-15T00:00:00+00:00"))

        assert [e.id for e in journal.recent(2)] == ["new", "mid"]

    def test_pulse_types_ordered_and_active(self, repos):
        types = repos["pulse_types"]
        types.add(PulseType(id="energy", name="Energy", order=2))
        types.add(PulseType(id="mood", name="Mood", order=1))
        types.add(PulseType(id="old", name="Old", order=0, is_active=False))

        assert [t.id for t in types.ordered()] == ["mood", "energy"]

    def test_latest_assessment(self, repos):
        assessments = repos["assessments"]
        assessments.add(ClinicalAssessment(id="a1", type=AssessmentType.PHQ9,
                                           completed_at="2025-01-01T00:00:00+00:00",
                                           total_score=12, severity=SeverityLevel.MODERATE))
        assessments.add(ClinicalAssessment(id="a2", type=AssessmentType.PHQ9,
                                           completed_at="2025-02-01T00:00:00+00:00",
                                           total_score=6, severity=SeverityLevel.MILD))
        assessments.add(ClinicalAssessment(id="a3", type=AssessmentType.GAD7,
                                           completed_at="2025-03-01T00:00:00+00:00"))

        assert assessments.latest(AssessmentType.PHQ9).id == "a2"
        assert assessments.latest(AssessmentType.PSS10) is None
