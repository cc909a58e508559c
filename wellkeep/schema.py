"""
Current document shapes and the structural validator.

Validation is deliberately shallow: required fields present, ids valid and
unique, enum values recognized, timestamps parseable. It runs over plain
dicts (the stored JSON shape, camelCase keys) so it can check documents
that never become typed objects, such as the contents of a backup.
"""

from dataclasses import dataclass, field
from typing import Any

from .types import is_timestamp, validate_id

# Bump together with a new migration in wellkeep.migrations
CURRENT_SCHEMA_VERSION = 3

GOAL_CATEGORIES = frozenset({
    "health", "fitness", "career", "learning",
    "relationships", "finance", "personal", "other",
})
LIFECYCLE_STATUSES = frozenset({"active", "backlog", "completed", "abandoned"})
HABIT_FREQUENCIES = frozenset({"daily", "threeTimes", "fiveTimes", "custom"})
HABIT_MATURITIES = frozenset({"forming", "established", "ingrained"})
JOURNAL_TYPES = frozenset({"quickNote", "guidedJournal", "structuredJournal"})
WIN_SOURCES = frozenset({
    "reflection", "journal", "manual",
    "goalComplete", "milestoneComplete", "streakMilestone",
})
WIN_CATEGORIES = GOAL_CATEGORIES | {"habit"}
ASSESSMENT_TYPES = frozenset({"phq9", "gad7", "pss10"})
SEVERITY_LEVELS = frozenset({
    "none", "minimal", "mild", "moderate", "moderatelySevere", "severe",
})


@dataclass(frozen=True)
class CollectionSchema:
    """Structural rules for the documents of one collection."""
    name: str
    required: tuple[str, ...]
    enums: dict[str, frozenset] = field(default_factory=dict)
    timestamps: tuple[str, ...] = ()


GOALS = "goals"
MILESTONES = "milestones"
HABITS = "habits"
JOURNAL_ENTRIES = "journal_entries"
PULSE_ENTRIES = "pulse_entries"
PULSE_TYPES = "pulse_types"
WINS = "wins"
ASSESSMENTS = "assessments"

SCHEMAS: dict[str, CollectionSchema] = {
    s.name: s for s in (
        CollectionSchema(
            GOALS,
            required=("id", "title", "category", "status", "createdAt"),
            enums={"category": GOAL_CATEGORIES, "status": LIFECYCLE_STATUSES},
            timestamps=("createdAt", "targetDate"),
        ),
        CollectionSchema(
            MILESTONES,
            required=("id", "goalId", "title", "createdAt"),
            timestamps=("createdAt", "updatedAt", "targetDate", "completedDate"),
        ),
        CollectionSchema(
            HABITS,
            required=("id", "title", "frequency", "status", "createdAt"),
            enums={
                "frequency": HABIT_FREQUENCIES,
                "status": LIFECYCLE_STATUSES,
                "maturity": HABIT_MATURITIES,
            },
            timestamps=("createdAt", "updatedAt", "graduatedAt"),
        ),
        CollectionSchema(
            JOURNAL_ENTRIES,
            required=("id", "type", "createdAt"),
            enums={"type": JOURNAL_TYPES},
            timestamps=("createdAt",),
        ),
        CollectionSchema(
            PULSE_ENTRIES,
            required=("id", "timestamp", "customMetrics"),
            timestamps=("timestamp",),
        ),
        CollectionSchema(
            PULSE_TYPES,
            required=("id", "name"),
            timestamps=("createdAt", "updatedAt"),
        ),
        CollectionSchema(
            WINS,
            required=("id", "description", "source", "createdAt"),
            enums={"source": WIN_SOURCES, "category": WIN_CATEGORIES},
            timestamps=("createdAt",),
        ),
        CollectionSchema(
            ASSESSMENTS,
            required=("id", "type", "totalScore", "severity", "completedAt"),
            enums={"type": ASSESSMENT_TYPES, "severity": SEVERITY_LEVELS},
            timestamps=("completedAt",),
        ),
    )
}

COLLECTION_NAMES: tuple[str, ...] = tuple(SCHEMAS)


def describe(collection: str, index: int, doc: Any) -> str:
    """Short human-readable locator for a document inside a collection."""
    doc_id = doc.get("id") if isinstance(doc, dict) else None
    if doc_id is not None:
        return f"{collection}[{index}] id={doc_id!r}"
    return f"{collection}[{index}]"


def validate_document(collection: str, doc: Any, index: int = 0) -> list[str]:
    """
    Check one document against its collection's structural rules.

    Args:
        collection: Collection name (must be in SCHEMAS)
        doc: The document as stored (a dict)
        index: Position in the collection, used in messages

    Returns:
        List of problem descriptions; empty if the document is valid
    """
    where = describe(collection, index, doc)
    if not isinstance(doc, dict):
        return [f"{where}: expected an object, got {type(doc).__name__}"]

    schema = SCHEMAS[collection]
    problems = []

    for name in schema.required:
        if doc.get(name) is None:
            problems.append(f"{where}: missing required field '{name}'")

    if "id" in doc and doc["id"] is not None:
        try:
            validate_id(doc["id"])
        except ValueError as e:
            problems.append(f"{where}: {e}")

    for name, allowed in schema.enums.items():
        value = doc.get(name)
        if value is not None and (not isinstance(value, str) or value not in allowed):
            problems.append(f"{where}: unrecognized {name} {value!r}")

    for name in schema.timestamps:
        value = doc.get(name)
        if value is not None and not is_timestamp(value):
            problems.append(f"{where}: {name} is not an ISO 8601 timestamp: {value!r}")

    return problems


def validate_collections(collections: dict[str, Any]) -> list[str]:
    """
    Validate every document of every collection in a decoded backup.

    Also rejects unknown collection names, non-list collections and
    duplicate ids within one collection.

    Returns:
        All problems found, in collection then document order
    """
    problems = []
    for collection, docs in collections.items():
        if collection not in SCHEMAS:
            problems.append(f"{collection}: unknown collection")
            continue
        if not isinstance(docs, list):
            problems.append(f"{collection}: expected a list, got {type(docs).__name__}")
            continue
        seen: set = set()
        for index, doc in enumerate(docs):
            problems.extend(validate_document(collection, doc, index))
            doc_id = doc.get("id") if isinstance(doc, dict) else None
            if isinstance(doc_id, str):
                if doc_id in seen:
                    problems.append(f"{describe(collection, index, doc)}: duplicate id")
                seen.add(doc_id)
    return problems
