"""
Domain repositories.

A repository is the only writer of its collection key. The DocumentStore is
the source of truth; the repository's in-memory list is a read cache and is
never written back wholesale. Every mutation is:

    read current persisted list → apply one change → persist the result

so a repository holding a stale cache (for example across a restore) can
never resurrect documents the store no longer has. ``reload()`` only
refreshes what ``list()`` and ``get_by_id()`` return.

Each committed mutation publishes a WRITE event on the change bus before the
call returns. A RESTORED event for the collection drops the cache.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Callable, Generic, Iterator, Optional, TypeVar

from .bus import ChangeEvent, ChangeKind, PersistenceChangeBus
from .errors import CorruptionError, DuplicateDocumentError, IOFailure
from .models import (
    ClinicalAssessment,
    AssessmentType,
    Document,
    Goal,
    GoalCategory,
    Habit,
    JournalEntry,
    Milestone,
    PulseEntry,
    PulseType,
    Status,
    Win,
)
from .protocol import DocumentStoreProtocol
from .schema import (
    ASSESSMENTS,
    GOALS,
    HABITS,
    JOURNAL_ENTRIES,
    MILESTONES,
    PULSE_ENTRIES,
    PULSE_TYPES,
    WINS,
)
from .serialization import decode_collection, encode_collection
from .types import new_id, parse_utc_timestamp, utc_now, validate_id

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=Document)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _ts_key(value: Optional[str]) -> datetime:
    """Sort key for stored timestamps; unparseable values sort first."""
    if not value:
        return _EPOCH
    try:
        return parse_utc_timestamp(value)
    except ValueError:
        return _EPOCH


class Repository(Generic[D]):
    """
    CRUD over one collection of one entity type.

    Subclasses set ``collection`` and ``model``.
    """

    collection: str = ""
    model: type[Document] = Document

    def __init__(self, store: DocumentStoreProtocol, bus: PersistenceChangeBus):
        self._store = store
        self._bus = bus
        self._cache: Optional[list[D]] = None
        # One writer per collection: serialize read-modify-write cycles
        self._lock = threading.RLock()
        self._unsubscribe = bus.subscribe(self._on_change)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.collection}>"

    @property
    def write_lock(self):
        """Held for every read-modify-write cycle; restore holds it across the swap."""
        return self._lock

    # -------------------------------------------------------------------------
    # Persisted state
    # -------------------------------------------------------------------------

    def _read_documents(self, strict: bool) -> list:
        """
        Read the persisted collection as raw dicts.

        A corrupted value is quarantined and treated as empty. An I/O failure
        propagates when ``strict`` (write path, export) and degrades to an
        empty collection otherwise (read path), so the app can still start.
        """
        try:
            raw = self._store.get(self.collection)
            if raw is None:
                return []
            return decode_collection(raw, self.collection)
        except CorruptionError as e:
            logger.warning("Collection %s is corrupted (%s); starting empty",
                           self.collection, e.reason)
            self._store.quarantine(self.collection)
            return []
        except IOFailure as e:
            if strict:
                raise
            logger.error("Failed to load %s: %s", self.collection, e.message)
            return []

    def _decode(self, docs: list) -> list[D]:
        """Typed view of raw documents; undecodable ones are skipped, not dropped."""
        out = []
        for doc in docs:
            try:
                out.append(self.model.from_dict(doc))
            except (ValueError, TypeError) as e:
                doc_id = doc.get("id") if isinstance(doc, dict) else None
                logger.warning("Skipping undecodable %s document %r: %s",
                               self.collection, doc_id, e)
        return out

    def _commit(self, docs: list) -> None:
        """Persist the full raw list, refresh the cache, then notify."""
        try:
            self._store.put(self.collection, encode_collection(docs))
        except IOFailure:
            self._cache = None
            raise
        self._cache = self._decode(docs)

    def _publish(self) -> None:
        self._bus.publish(self.collection, ChangeKind.WRITE)

    @staticmethod
    def _index_of(docs: list, id: str) -> int:
        for i, doc in enumerate(docs):
            if isinstance(doc, dict) and doc.get("id") == id:
                return i
        return -1

    # -------------------------------------------------------------------------
    # Stamping
    # -------------------------------------------------------------------------

    def _has_field(self, doc: D, name: str) -> bool:
        return any(f.name == name for f in fields(doc))

    def _stamp_new(self, doc: D) -> D:
        now = utc_now()
        changes = {}
        if not doc.id:
            changes["id"] = new_id()
        if not getattr(doc, doc.CREATED_FIELD, None):
            changes[doc.CREATED_FIELD] = now
        if self._has_field(doc, "updated_at"):
            changes["updated_at"] = now
        return replace(doc, **changes) if changes else doc

    def _check_model(self, doc) -> None:
        if not isinstance(doc, self.model):
            raise TypeError(f"{self!r} stores {self.model.__name__}, got {type(doc).__name__}")

    def _stamp_updated(self, doc: D) -> D:
        if self._has_field(doc, "updated_at"):
            return replace(doc, updated_at=utc_now())
        return doc

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add(self, doc: D) -> D:
        """
        Append a new document.

        Assigns an id when the document has none and stamps creation (and
        update) time when missing.

        Returns:
            The document as stored

        Raises:
            DuplicateDocumentError: If the id is already present
            IOFailure: If the write fails
        """
        self._check_model(doc)
        doc = self._stamp_new(doc)
        validate_id(doc.id)
        with self._lock:
            docs = self._read_documents(strict=True)
            if self._index_of(docs, doc.id) >= 0:
                raise DuplicateDocumentError(self.collection, doc.id)
            docs.append(doc.to_dict())
            self._commit(docs)
        self._publish()
        return doc

    def update(self, doc: D) -> bool:
        """
        Replace the stored document with the same id.

        Never inserts: if the id is not in the persisted collection the call
        is a no-op.

        Returns:
            True if a document was replaced

        Raises:
            IOFailure: If the write fails
        """
        self._check_model(doc)
        with self._lock:
            docs = self._read_documents(strict=True)
            index = self._index_of(docs, doc.id)
            if index < 0:
                logger.debug("update of absent %s id %r ignored", self.collection, doc.id)
                return False
            docs[index] = self._stamp_updated(doc).to_dict()
            self._commit(docs)
        self._publish()
        return True

    def modify(self, id: str, change: Callable[[D], D]) -> Optional[D]:
        """
        Apply ``change`` to the currently persisted version of a document.

        Unlike ``update(get_by_id(id).with_x())``, the change is applied to
        the stored value, not to the (possibly stale) cached one.

        Returns:
            The stored result, or None if the id is absent
        """
        with self._lock:
            docs = self._read_documents(strict=True)
            index = self._index_of(docs, id)
            if index < 0:
                return None
            current = self.model.from_dict(docs[index])
            updated = change(current)
            self._check_model(updated)
            updated = self._stamp_updated(updated)
            if updated.id != id:
                raise ValueError(f"document id is immutable ({id!r} -> {updated.id!r})")
            docs[index] = updated.to_dict()
            self._commit(docs)
        self._publish()
        return updated

    def delete(self, id: str) -> bool:
        """
        Remove a document by id.

        Returns:
            True if the document existed and was removed

        Raises:
            IOFailure: If the write fails
        """
        with self._lock:
            docs = self._read_documents(strict=True)
            index = self._index_of(docs, id)
            if index < 0:
                return False
            del docs[index]
            self._commit(docs)
        self._publish()
        return True

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def list(self) -> list[D]:
        """All documents, in stored order."""
        cache = self._cache
        if cache is None:
            with self._lock:
                if self._cache is None:
                    self._cache = self._decode(self._read_documents(strict=False))
                cache = self._cache
        return list(cache)

    def get_by_id(self, id: str) -> Optional[D]:
        for doc in self.list():
            if doc.id == id:
                return doc
        return None

    def __iter__(self) -> Iterator[D]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self.list())

    def reload(self) -> None:
        """Discard the cache and re-read from the store. No migration is applied."""
        with self._lock:
            self._cache = None
        self.list()

    def export_documents(self) -> list[dict]:
        """
        The persisted documents exactly as stored, for backup.

        Includes documents this version cannot decode, so nothing is lost on
        export.

        Raises:
            IOFailure: If the collection cannot be read
        """
        with self._lock:
            return self._read_documents(strict=True)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _on_change(self, event: ChangeEvent) -> None:
        if event.collection == self.collection and event.kind is ChangeKind.RESTORED:
            with self._lock:
                self._cache = None

    def close(self) -> None:
        self._unsubscribe()


# ---------------------------------------------------------------------------
# Concrete repositories
# ---------------------------------------------------------------------------

class GoalRepository(Repository[Goal]):
    collection = GOALS
    model = Goal

    def active(self) -> list[Goal]:
        return [g for g in self.list() if g.is_active]

    def by_category(self, category: GoalCategory) -> list[Goal]:
        return [g for g in self.list() if g.category is category]


class MilestoneRepository(Repository[Milestone]):
    collection = MILESTONES
    model = Milestone

    def for_goal(self, goal_id: str) -> list[Milestone]:
        return sorted((m for m in self.list() if m.goal_id == goal_id),
                      key=lambda m: m.order)


class HabitRepository(Repository[Habit]):
    collection = HABITS
    model = Habit

    def active(self) -> list[Habit]:
        return [h for h in self.list() if h.status is Status.ACTIVE]

    def linked_to_goal(self, goal_id: str) -> list[Habit]:
        return [h for h in self.list() if h.linked_goal_id == goal_id]

    def record_completion(self, habit_id: str, when: Optional[str] = None) -> Optional[Habit]:
        """Mark a habit done (once per day) and update its streaks."""
        when = when or utc_now()
        return self.modify(habit_id, lambda h: h.with_completion(when))


class JournalRepository(Repository[JournalEntry]):
    collection = JOURNAL_ENTRIES
    model = JournalEntry

    def recent(self, limit: int = 10) -> list[JournalEntry]:
        """Newest first."""
        entries = sorted(self.list(), key=lambda e: _ts_key(e.created_at), reverse=True)
        return entries[:limit]

    def for_goal(self, goal_id: str) -> list[JournalEntry]:
        return [e for e in self.list() if goal_id in e.goal_ids]


class PulseEntryRepository(Repository[PulseEntry]):
    collection = PULSE_ENTRIES
    model = PulseEntry

    def recent(self, limit: int = 10) -> list[PulseEntry]:
        entries = sorted(self.list(), key=lambda e: _ts_key(e.timestamp), reverse=True)
        return entries[:limit]


class PulseTypeRepository(Repository[PulseType]):
    collection = PULSE_TYPES
    model = PulseType

    def ordered(self) -> list[PulseType]:
        """Active types in display order."""
        return sorted((t for t in self.list() if t.is_active), key=lambda t: t.order)


class WinRepository(Repository[Win]):
    collection = WINS
    model = Win

    def for_goal(self, goal_id: str) -> list[Win]:
        return [w for w in self.list() if w.linked_goal_id == goal_id]


class AssessmentRepository(Repository[ClinicalAssessment]):
    collection = ASSESSMENTS
    model = ClinicalAssessment

    def history(self, type: AssessmentType) -> list[ClinicalAssessment]:
        """Assessments of one type, oldest first."""
        return sorted((a for a in self.list() if a.type is type),
                      key=lambda a: _ts_key(a.completed_at))

    def latest(self, type: AssessmentType) -> Optional[ClinicalAssessment]:
        history = self.history(type)
        return history[-1] if history else None


REPOSITORY_TYPES: tuple[type[Repository], ...] = (
    GoalRepository,
    MilestoneRepository,
    HabitRepository,
    JournalRepository,
    PulseEntryRepository,
    PulseTypeRepository,
    WinRepository,
    AssessmentRepository,
)


class RepositoryRegistry:
    """Collection name → repository, in registration order."""

    def __init__(self):
        self._repos: dict[str, Repository] = {}

    def register(self, repo: Repository) -> None:
        if repo.collection in self._repos:
            raise ValueError(f"Collection {repo.collection!r} already has a repository")
        self._repos[repo.collection] = repo

    def __getitem__(self, collection: str) -> Repository:
        return self._repos[collection]

    def __contains__(self, collection: str) -> bool:
        return collection in self._repos

    def __iter__(self) -> Iterator[Repository]:
        return iter(self._repos.values())

    def names(self) -> list[str]:
        return list(self._repos)

    def close(self) -> None:
        for repo in self._repos.values():
            repo.close()


def create_repositories(
    store: DocumentStoreProtocol,
    bus: PersistenceChangeBus,
) -> RepositoryRegistry:
    """One repository per known collection, all sharing a store and bus."""
    registry = RepositoryRegistry()
    for repo_type in REPOSITORY_TYPES:
        registry.register(repo_type(store, bus))
    return registry
