"""
Domain entity types.

Every entity is a frozen dataclass: changes are made by building a new value
(``dataclasses.replace`` or a ``with_*`` helper) and handing it to the
owning repository's ``update``. Relationships between entities are plain id
strings (``goal_id``, ``linked_habit_id``, ...), never nested objects.

Stored JSON uses camelCase keys; Python attributes are snake_case. Decoding
is tolerant: missing fields take their defaults, and keys this version does
not know about are carried in ``extra`` and written back unchanged.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date, timedelta
from enum import Enum
from typing import Any, ClassVar, Optional, TypeVar

from .types import parse_utc_timestamp


class GoalCategory(str, Enum):
    HEALTH = "health"
    FITNESS = "fitness"
    CAREER = "career"
    LEARNING = "learning"
    RELATIONSHIPS = "relationships"
    FINANCE = "finance"
    PERSONAL = "personal"
    OTHER = "other"


class Status(str, Enum):
    """Lifecycle shared by goals and habits."""
    ACTIVE = "active"
    BACKLOG = "backlog"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class HabitFrequency(str, Enum):
    DAILY = "daily"
    THREE_TIMES = "threeTimes"
    FIVE_TIMES = "fiveTimes"
    CUSTOM = "custom"


class HabitMaturity(str, Enum):
    FORMING = "forming"          # 0-21 days
    ESTABLISHED = "established"  # 22-65 days
    INGRAINED = "ingrained"      # 66+ days


class JournalEntryType(str, Enum):
    QUICK_NOTE = "quickNote"
    GUIDED_JOURNAL = "guidedJournal"
    STRUCTURED_JOURNAL = "structuredJournal"


class WinSource(str, Enum):
    REFLECTION = "reflection"
    JOURNAL = "journal"
    MANUAL = "manual"
    GOAL_COMPLETE = "goalComplete"
    MILESTONE_COMPLETE = "milestoneComplete"
    STREAK_MILESTONE = "streakMilestone"


class WinCategory(str, Enum):
    HEALTH = "health"
    FITNESS = "fitness"
    CAREER = "career"
    LEARNING = "learning"
    RELATIONSHIPS = "relationships"
    FINANCE = "finance"
    PERSONAL = "personal"
    HABIT = "habit"
    OTHER = "other"


class AssessmentType(str, Enum):
    PHQ9 = "phq9"
    GAD7 = "gad7"
    PSS10 = "pss10"


class SeverityLevel(str, Enum):
    NONE = "none"
    MINIMAL = "minimal"
    MILD = "mild"
    MODERATE = "moderate"
    MODERATELY_SEVERE = "moderatelySevere"
    SEVERE = "severe"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _enum(cls: type[Enum]) -> dict:
    return {"enum": cls}


D = TypeVar("D", bound="Document")


@dataclass(frozen=True)
class Document:
    """Base for all entities: a stable string id plus unknown-key passthrough."""

    # Name of the attribute stamped with the creation time on add()
    CREATED_FIELD: ClassVar[str] = "created_at"

    id: str = ""
    extra: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls: type[D], data: dict) -> D:
        """
        Decode a stored document.

        Raises:
            ValueError: If the data is not an object or an enum value is unknown
        """
        if not isinstance(data, dict):
            raise ValueError(f"{cls.__name__} expects an object, got {type(data).__name__}")
        by_key = {_camel(f.name): f for f in fields(cls) if f.name != "extra"}
        known: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            f = by_key.get(key)
            if f is None:
                extra[key] = value
                continue
            if value is None:
                # Keep the field default; older documents wrote explicit nulls
                continue
            enum_cls = f.metadata.get("enum")
            if enum_cls is not None:
                value = enum_cls(value)
            elif isinstance(value, list):
                value = tuple(value)
            known[f.name] = value
        return cls(**known, extra=extra)

    def to_dict(self) -> dict:
        """Encode to the stored JSON shape."""
        out = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            out[_camel(f.name)] = value
        return out

    @property
    def created(self) -> str:
        return getattr(self, self.CREATED_FIELD)


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Goal(Document):
    title: str = ""
    description: str = ""
    category: GoalCategory = field(default=GoalCategory.PERSONAL, metadata=_enum(GoalCategory))
    status: Status = field(default=Status.ACTIVE, metadata=_enum(Status))
    created_at: str = ""
    target_date: Optional[str] = None
    current_progress: int = 0
    sort_order: int = 0
    linked_value_ids: Optional[tuple[str, ...]] = None

    @property
    def is_active(self) -> bool:
        return self.status is Status.ACTIVE


@dataclass(frozen=True)
class Milestone(Document):
    goal_id: str = ""
    title: str = ""
    description: str = ""
    target_date: Optional[str] = None
    completed_date: Optional[str] = None
    order: int = 0
    is_completed: bool = False
    created_at: str = ""
    updated_at: str = ""

    def completed(self, when: str) -> "Milestone":
        return replace(self, is_completed=True, completed_date=when)


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Habit(Document):
    title: str = ""
    description: str = ""
    linked_goal_id: Optional[str] = None
    frequency: HabitFrequency = field(default=HabitFrequency.DAILY, metadata=_enum(HabitFrequency))
    target_count: int = 7
    completion_dates: tuple[str, ...] = ()
    current_streak: int = 0
    longest_streak: int = 0
    status: Status = field(default=Status.ACTIVE, metadata=_enum(Status))
    created_at: str = ""
    updated_at: str = ""
    is_system_created: bool = False
    system_type: Optional[str] = None
    sort_order: int = 0
    maturity: HabitMaturity = field(default=HabitMaturity.FORMING, metadata=_enum(HabitMaturity))
    days_to_formation: int = 66
    graduated_at: Optional[str] = None
    is_focused: bool = False

    def with_completion(self, when: str) -> "Habit":
        """
        Copy with one more completion recorded.

        Completions on the same calendar day collapse into one. Streaks count
        consecutive days ending at the most recent completion.
        """
        day = parse_utc_timestamp(when).date()
        if any(parse_utc_timestamp(d).date() == day for d in self.completion_dates):
            return self
        dates = tuple(sorted(self.completion_dates + (when,)))
        streak = _streak_ending_at_latest({parse_utc_timestamp(d).date() for d in dates})
        return replace(
            self,
            completion_dates=dates,
            current_streak=streak,
            longest_streak=max(self.longest_streak, streak),
        )


def _streak_ending_at_latest(days: set[date]) -> int:
    if not days:
        return 0
    current = max(days)
    streak = 0
    while current in days:
        streak += 1
        current -= timedelta(days=1)
    return streak


# ---------------------------------------------------------------------------
# Journal and pulse
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class JournalEntry(Document):
    created_at: str = ""
    type: JournalEntryType = field(default=JournalEntryType.QUICK_NOTE, metadata=_enum(JournalEntryType))
    reflection_type: Optional[str] = None
    content: Optional[str] = None
    qa_pairs: Optional[tuple[dict, ...]] = None
    goal_ids: tuple[str, ...] = ()
    ai_insights: Optional[dict] = None
    structured_session_id: Optional[str] = None
    structured_data: Optional[dict] = None


@dataclass(frozen=True)
class PulseEntry(Document):
    CREATED_FIELD: ClassVar[str] = "timestamp"

    timestamp: str = ""
    custom_metrics: dict = field(default_factory=dict)
    journal_entry_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PulseType(Document):
    name: str = ""
    icon_name: str = ""
    color_hex: str = ""
    is_active: bool = True
    order: int = 0
    created_at: str = ""
    updated_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Wins and assessments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Win(Document):
    description: str = ""
    created_at: str = ""
    source: WinSource = field(default=WinSource.MANUAL, metadata=_enum(WinSource))
    category: Optional[WinCategory] = field(default=None, metadata=_enum(WinCategory))
    linked_goal_id: Optional[str] = None
    linked_habit_id: Optional[str] = None
    linked_milestone_id: Optional[str] = None
    source_session_id: Optional[str] = None


@dataclass(frozen=True)
class ClinicalAssessment(Document):
    CREATED_FIELD: ClassVar[str] = "completed_at"

    type: AssessmentType = field(default=AssessmentType.PHQ9, metadata=_enum(AssessmentType))
    completed_at: str = ""
    # Question number (as a string key) → item score
    responses: dict = field(default_factory=dict)
    total_score: int = 0
    severity: SeverityLevel = field(default=SeverityLevel.NONE, metadata=_enum(SeverityLevel))
    interpretation: str = ""
    triggered_crisis_protocol: bool = False
