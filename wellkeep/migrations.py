"""
Schema migrations for stored documents.

Migrations form a contiguous chain v1→v2→…→CURRENT_SCHEMA_VERSION. Each
step rewrites individual documents of the collections it declares, must be
idempotent (running it on its own output changes nothing) and may only
assume the shape produced by the step before it.

The engine runs in two places:
- at boot, against the DocumentStore, before any repository loads;
- during import, in memory, against the collections of a decoded backup.

A document the step cannot understand is logged and left exactly as it
was; the rest of the collection is still migrated.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import CorruptionError, MigrationError, VersionMismatchError
from .protocol import DocumentStoreProtocol
from .schema import (
    ASSESSMENTS,
    CURRENT_SCHEMA_VERSION,
    GOALS,
    HABITS,
    JOURNAL_ENTRIES,
    PULSE_ENTRIES,
    WINS,
    describe,
)
from .serialization import decode_collection, encode_collection

logger = logging.getLogger(__name__)

# Reserved store key holding the schema version marker
SCHEMA_VERSION_KEY = "_meta/schema_version"

# Absent marker means the oldest supported layout
BASE_SCHEMA_VERSION = 1


class Migration:
    """One step of the chain. Subclasses implement ``migrate_document``."""

    from_version: int = 0
    collections: tuple[str, ...] = ()
    description: str = ""

    @property
    def to_version(self) -> int:
        return self.from_version + 1

    def migrate_document(self, collection: str, doc: dict) -> dict:
        """
        Transform one document.

        Receives a private copy; may mutate and return it.

        Raises:
            MigrationError: If the document is malformed for this step
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} v{self.from_version}->v{self.to_version}>"


def _require_object(collection: str, doc: Any) -> dict:
    if not isinstance(doc, dict):
        raise MigrationError(collection, None, f"expected an object, got {type(doc).__name__}")
    return doc


# ---------------------------------------------------------------------------
# v1 → v2
# ---------------------------------------------------------------------------

def _strip_enum_prefix(value: Any) -> Any:
    """'GoalCategory.personal' → 'personal'; anything else unchanged."""
    if isinstance(value, str) and "." in value:
        prefix, rest = value.split(".", 1)
        if prefix[:1].isupper() and prefix.isalnum() and rest:
            return rest
    return value


class EnumNormalization(Migration):
    """
    Store enum values by bare name and make ``status`` authoritative.

    Early versions wrote enums as 'Type.value' strings and tracked goal and
    habit lifecycle with a boolean ``isActive``.
    """

    from_version = 1
    collections = (GOALS, HABITS, JOURNAL_ENTRIES, WINS, ASSESSMENTS)
    description = "strip enum type prefixes; derive status from isActive"

    ENUM_FIELDS = {
        GOALS: ("category", "status"),
        HABITS: ("frequency", "status", "maturity"),
        JOURNAL_ENTRIES: ("type",),
        WINS: ("source", "category"),
        ASSESSMENTS: ("type", "severity"),
    }

    def migrate_document(self, collection: str, doc: dict) -> dict:
        doc = _require_object(collection, doc)
        for name in self.ENUM_FIELDS[collection]:
            if name in doc:
                doc[name] = _strip_enum_prefix(doc[name])

        if collection in (GOALS, HABITS) and doc.get("status") is None:
            is_active = doc.get("isActive", True)
            if not isinstance(is_active, bool):
                raise MigrationError(collection, doc.get("id"),
                                     f"isActive is not a boolean: {is_active!r}")
            doc["status"] = "active" if is_active else "backlog"
        return doc


# ---------------------------------------------------------------------------
# v2 → v3
# ---------------------------------------------------------------------------

# Legacy MoodRating enum, in declaration order (notSet is index 0)
_MOOD_RATINGS = ("notSet", "veryBad", "bad", "neutral", "good", "excellent")


def _mood_score(collection: str, doc: dict) -> Optional[int]:
    mood = doc.get("mood")
    if mood is None:
        return None
    if isinstance(mood, bool):
        raise MigrationError(collection, doc.get("id"), f"unrecognized mood {mood!r}")
    if isinstance(mood, int):
        index = mood
    else:
        name = _strip_enum_prefix(mood)
        if name not in _MOOD_RATINGS:
            raise MigrationError(collection, doc.get("id"), f"unrecognized mood {mood!r}")
        index = _MOOD_RATINGS.index(name)
    if not 0 <= index < len(_MOOD_RATINGS):
        raise MigrationError(collection, doc.get("id"), f"mood out of range: {mood!r}")
    return index or None


class DefaultsAndMetrics(Migration):
    """
    Fill fields introduced in v3 and fold legacy pulse fields into metrics.

    Pulse entries used to carry ``mood`` (MoodRating) and ``energyLevel``
    (1-5) directly; v3 keeps every metric in ``customMetrics``.
    """

    from_version = 2
    collections = (GOALS, HABITS, JOURNAL_ENTRIES, PULSE_ENTRIES)
    description = "default new fields; move mood/energyLevel into customMetrics"

    def migrate_document(self, collection: str, doc: dict) -> dict:
        doc = _require_object(collection, doc)
        if collection == GOALS:
            doc.setdefault("sortOrder", 0)
        elif collection == HABITS:
            doc.setdefault("maturity", "forming")
            doc.setdefault("daysToFormation", 66)
            if doc.get("updatedAt") is None and doc.get("createdAt") is not None:
                doc["updatedAt"] = doc["createdAt"]
        elif collection == JOURNAL_ENTRIES:
            if doc.get("goalIds") is None:
                doc["goalIds"] = []
        elif collection == PULSE_ENTRIES:
            self._fold_pulse_metrics(collection, doc)
        return doc

    def _fold_pulse_metrics(self, collection: str, doc: dict) -> None:
        metrics = doc.get("customMetrics")
        if metrics is None:
            metrics = {}
        if not isinstance(metrics, dict):
            raise MigrationError(collection, doc.get("id"), "customMetrics is not an object")
        metrics = dict(metrics)

        mood = _mood_score(collection, doc)
        if mood is not None:
            metrics.setdefault("Mood", mood)

        energy = doc.get("energyLevel")
        if energy is not None:
            if isinstance(energy, bool) or not isinstance(energy, int):
                raise MigrationError(collection, doc.get("id"),
                                     f"energyLevel is not an integer: {energy!r}")
            if energy > 0:
                metrics.setdefault("Energy", energy)

        doc.pop("mood", None)
        doc.pop("energyLevel", None)
        doc["customMetrics"] = metrics


MIGRATIONS: tuple[Migration, ...] = (
    EnumNormalization(),
    DefaultsAndMetrics(),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class MigrationReport:
    """Outcome of one engine run."""
    from_version: int
    to_version: int
    migrated: int = 0
    skipped: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)

    @property
    def ran(self) -> bool:
        return self.from_version != self.to_version


class MigrationEngine:
    """Applies the migration chain to a store or to in-memory collections."""

    def __init__(
        self,
        migrations: tuple[Migration, ...] = MIGRATIONS,
        current_version: int = CURRENT_SCHEMA_VERSION,
    ):
        expected = list(range(BASE_SCHEMA_VERSION, current_version))
        found = [m.from_version for m in migrations]
        if found != expected:
            raise ValueError(
                f"Migration chain must cover v{BASE_SCHEMA_VERSION}..v{current_version} "
                f"contiguously; got from-versions {found}"
            )
        self._migrations = tuple(migrations)
        self.current_version = current_version

    def pending(self, from_version: int) -> tuple[Migration, ...]:
        """Migrations still to apply for data at ``from_version``."""
        return tuple(m for m in self._migrations if m.from_version >= from_version)

    # -------------------------------------------------------------------------
    # Store
    # -------------------------------------------------------------------------

    def stored_version(self, store: DocumentStoreProtocol) -> int:
        """
        Read the persisted schema version marker.

        A missing or unreadable marker counts as the oldest version; rerunning
        idempotent migrations over current data is harmless.
        """
        try:
            raw = store.get(SCHEMA_VERSION_KEY)
        except CorruptionError as e:
            logger.warning("Schema version marker unreadable (%s); assuming v%d",
                           e.reason, BASE_SCHEMA_VERSION)
            return BASE_SCHEMA_VERSION
        if raw is None:
            return BASE_SCHEMA_VERSION
        try:
            return int(raw.decode("ascii"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("Schema version marker is not an integer: %r; assuming v%d",
                           raw[:32], BASE_SCHEMA_VERSION)
            return BASE_SCHEMA_VERSION

    def migrate_store(self, store: DocumentStoreProtocol) -> MigrationReport:
        """
        Bring every stored collection to the current schema.

        Writes the version marker only after the whole chain has run.

        Raises:
            VersionMismatchError: If the store was written by a newer schema
            IOFailure: If a migrated collection or the marker cannot be written
        """
        start = self.stored_version(store)
        if start > self.current_version:
            raise VersionMismatchError(start, self.current_version)

        report = MigrationReport(from_version=start, to_version=self.current_version)
        if start == self.current_version:
            return report

        logger.info("Migrating store from v%d to v%d", start, self.current_version)
        steps = self.pending(start)
        for collection in _collections_of(steps):
            try:
                raw = store.get(collection)
                if raw is None:
                    continue
                docs = decode_collection(raw, collection)
            except CorruptionError as e:
                # Left for the repository to quarantine on load
                logger.warning("Skipping migration of %s: %s", collection, e.reason)
                report.unreadable.append(collection)
                continue

            migrated, changed = self._migrate_documents(steps, collection, docs, report)
            if changed:
                store.put(collection, encode_collection(migrated))

        store.put(SCHEMA_VERSION_KEY, str(self.current_version))
        logger.info(
            "Store migrated to v%d: %d documents rewritten, %d skipped",
            self.current_version, report.migrated, len(report.skipped),
        )
        return report

    # -------------------------------------------------------------------------
    # In memory
    # -------------------------------------------------------------------------

    def migrate_collections(
        self,
        collections: dict[str, Any],
        from_version: int,
    ) -> tuple[dict[str, Any], MigrationReport]:
        """
        Migrate decoded backup collections without touching any store.

        The input is not modified. Collections that are not lists are passed
        through for the validator to reject.

        Raises:
            VersionMismatchError: If ``from_version`` is newer than current
        """
        if from_version > self.current_version:
            raise VersionMismatchError(from_version, self.current_version)

        report = MigrationReport(from_version=from_version, to_version=self.current_version)
        result = copy.deepcopy(collections)
        steps = self.pending(max(from_version, BASE_SCHEMA_VERSION))
        for collection in _collections_of(steps):
            docs = result.get(collection)
            if isinstance(docs, list):
                result[collection], _ = self._migrate_documents(steps, collection, docs, report)
        return result, report

    # -------------------------------------------------------------------------

    def _migrate_documents(
        self,
        steps: tuple[Migration, ...],
        collection: str,
        docs: list,
        report: MigrationReport,
    ) -> tuple[list, bool]:
        """Run every applicable step over each document; a failure keeps the original."""
        steps = tuple(m for m in steps if collection in m.collections)
        out = []
        changed = False
        for index, doc in enumerate(docs):
            new = copy.deepcopy(doc)
            try:
                for migration in steps:
                    new = migration.migrate_document(collection, new)
            except Exception as e:
                err = e if isinstance(e, MigrationError) else MigrationError(
                    collection, doc.get("id") if isinstance(doc, dict) else None, str(e))
                where = describe(collection, index, doc)
                logger.warning("%r skipped %s: %s", migration, where, err.reason)
                report.skipped.append(f"{where}: {err.reason}")
                out.append(doc)
                continue
            if new != doc:
                changed = True
                report.migrated += 1
            out.append(new)
        return out, changed


def _collections_of(steps: tuple[Migration, ...]) -> list[str]:
    """Collections touched by any of the steps, first-seen order."""
    return list(dict.fromkeys(name for m in steps for name in m.collections))
