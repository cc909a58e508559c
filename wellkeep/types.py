"""
Shared value helpers: timestamps and document ids.
"""

import re
import uuid
from datetime import datetime, timezone


def utc_now() -> str:
    """Current UTC timestamp in ISO 8601 with microseconds and offset.

    All timestamps written by wellkeep go through here.
    """
    return datetime.now(timezone.utc).isoformat()


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Handles timestamps with and without offset, including the naive local
    form written by older app versions and a trailing 'Z'.
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_timestamp(value) -> bool:
    """True if value is a string that parses as an ISO 8601 timestamp."""
    if not isinstance(value, str) or not value:
        return False
    try:
        parse_utc_timestamp(value)
    except ValueError:
        return False
    return True


def new_id() -> str:
    """Fresh document id (uuid4)."""
    return str(uuid.uuid4())


MAX_ID_LENGTH = 256

# Control characters only; ids from older exports use arbitrary printable text
# (e.g. millisecond timestamps, "test-goal-1").
_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f]')


def validate_id(id: str) -> None:
    """Validate a document id: non-empty string, bounded length, printable."""
    if not isinstance(id, str) or not id or len(id) > MAX_ID_LENGTH:
        raise ValueError(f"ID must be a string of 1-{MAX_ID_LENGTH} characters: {id!r}")
    if _ID_BLOCKED_RE.search(id):
        raise ValueError(f"ID contains control characters: {id!r}")
