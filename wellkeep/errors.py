"""
Error types and error logging for wellkeep.

Every failure raised by the persistence layer is a ``WellkeepError``.
Full stack traces go to a log file; callers show clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class WellkeepError(Exception):
    """Base exception for all wellkeep errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class IOFailure(WellkeepError):
    """A storage read or write failed. Transient; the caller may retry."""

    def __init__(self, message: str, key: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, details={"key": key, "cause": repr(cause) if cause else None})
        self.key = key
        self.cause = cause


class CorruptionError(WellkeepError):
    """
    A stored value cannot be read back as written.

    Scoped to a single key: other keys in the same store stay readable.
    """

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupted value under {key!r}: {reason}",
                         details={"key": key, "reason": reason})
        self.key = key
        self.reason = reason


class ValidationError(WellkeepError):
    """
    A backup envelope failed structural validation.

    Attributes:
        problems: One description per offending document or field
    """

    def __init__(self, message: str, problems: Optional[list[str]] = None):
        problems = list(problems or [])
        super().__init__(message, details={"problems": problems})
        self.problems = problems

    def __str__(self) -> str:
        if not self.problems:
            return self.message
        shown = "\n  ".join(self.problems[:20])
        more = len(self.problems) - 20
        tail = f"\n  ... and {more} more" if more > 0 else ""
        return f"{self.message}\n  {shown}{tail}"


class VersionMismatchError(ValidationError):
    """A backup was written by a newer schema than this app understands."""

    def __init__(self, found: int, supported: int):
        super().__init__(
            f"Backup schema version {found} is newer than supported ({supported}); "
            f"update the app before importing this backup",
            problems=[f"schemaVersion {found} > {supported}"],
        )
        self.found = found
        self.supported = supported


class MigrationError(WellkeepError):
    """A single document could not be migrated. Logged and skipped."""

    def __init__(self, collection: str, doc_id: Optional[str], reason: str):
        super().__init__(
            f"Cannot migrate {collection}/{doc_id or '?'}: {reason}",
            details={"collection": collection, "id": doc_id, "reason": reason},
        )
        self.collection = collection
        self.doc_id = doc_id
        self.reason = reason


class DuplicateDocumentError(WellkeepError):
    """``add`` was called with an id that already exists in the collection."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection} already contains id {doc_id!r}",
                         details={"collection": collection, "id": doc_id})
        self.collection = collection
        self.doc_id = doc_id


# ---------------------------------------------------------------------------
# Error log
# ---------------------------------------------------------------------------

def _error_log_path() -> Path:
    """Resolve error log path, respecting WELLKEEP_STORE_PATH."""
    store = os.environ.get("WELLKEEP_STORE_PATH")
    if store:
        return Path(store) / "wellkeep-errors.log"
    return Path.home() / ".wellkeep" / "wellkeep-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., "import backup")

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # best effort; the error log itself may be unwritable
    return log_path
