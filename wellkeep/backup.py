"""
Backup envelope codec.

An envelope is one JSON object:

    {
      "schemaVersion": 3,
      "exportedAt": "2025-11-16T07:33:58.066679+00:00",
      "collections": {"goals": [...], "habits": [...], ...}
    }

optionally wrapped as ``backup.json`` inside a ZIP archive. Files written
before envelopes were versioned (``{"version": "1.0.0", "data": {...}}``)
are recognised and rewritten to a version-1 envelope on decode.

Decoding only checks top-level shape. ``validate`` gates the schema
version, migrates older envelopes in memory and checks every document.
"""

import copy
import io
import json
import logging
import os
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from .errors import IOFailure, ValidationError, VersionMismatchError
from .migrations import BASE_SCHEMA_VERSION, MigrationEngine
from .repository import RepositoryRegistry
from .schema import (
    GOALS,
    HABITS,
    JOURNAL_ENTRIES,
    MILESTONES,
    PULSE_ENTRIES,
    PULSE_TYPES,
    WINS,
    ASSESSMENTS,
    validate_collections,
)
from .types import utc_now

logger = logging.getLogger(__name__)

# Name of the JSON member inside a compressed backup
ARCHIVE_MEMBER = "backup.json"

_ZIP_SIGNATURE = b"PK"

# Legacy ``data`` keys → collection names
LEGACY_COLLECTION_KEYS = {
    "goals": GOALS,
    "milestones": MILESTONES,
    "habits": HABITS,
    "journalEntries": JOURNAL_ENTRIES,
    "pulseEntries": PULSE_ENTRIES,
    "moodEntries": PULSE_ENTRIES,
    "pulseTypes": PULSE_TYPES,
    "wins": WINS,
    "assessments": ASSESSMENTS,
}


@dataclass
class BackupEnvelope:
    """A complete snapshot of every exported collection."""
    schema_version: int
    exported_at: str
    collections: dict[str, list] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "schemaVersion": self.schema_version,
            "exportedAt": self.exported_at,
            "collections": self.collections,
        }

    def document_counts(self) -> dict[str, int]:
        return {name: len(docs) for name, docs in self.collections.items()}


# ---------------------------------------------------------------------------
# Legacy format
# ---------------------------------------------------------------------------

def is_legacy_format(data: Any) -> bool:
    """True for exports written before ``schemaVersion`` existed."""
    return (
        isinstance(data, dict)
        and "schemaVersion" not in data
        and isinstance(data.get("data"), dict)
    )


def _legacy_list(key: str, value: Any, problems: list[str]) -> Optional[list]:
    # Some legacy writers stored each collection as a JSON-encoded string
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            problems.append(f"data.{key}: not valid JSON ({e})")
            return None
    if not isinstance(value, list):
        problems.append(f"data.{key}: expected a list, got {type(value).__name__}")
        return None
    return value


def upgrade_legacy(data: dict) -> dict:
    """
    Rewrite a legacy export as a version-1 envelope dict.

    Keys of ``data`` that are not domain collections (settings,
    conversations, check-in state) belong to other subsystems and are
    dropped. Milestones embedded in goals as ``milestonesDetailed`` are
    moved to the milestones collection.

    Raises:
        ValidationError: If a legacy collection is not a list
    """
    problems: list[str] = []
    collections: dict[str, list] = {}

    for key, value in copy.deepcopy(data["data"]).items():
        name = LEGACY_COLLECTION_KEYS.get(key)
        if name is None:
            logger.info("Legacy backup: dropping non-collection key %r", key)
            continue
        docs = _legacy_list(key, value, problems)
        if docs is not None:
            collections.setdefault(name, []).extend(docs)

    milestones = collections.get(MILESTONES, [])
    for goal in collections.get(GOALS, []):
        if not isinstance(goal, dict):
            continue
        embedded = goal.pop("milestonesDetailed", None)
        for milestone in embedded or []:
            if isinstance(milestone, dict):
                milestone.setdefault("goalId", goal.get("id"))
                milestone.setdefault("createdAt", goal.get("createdAt"))
            milestones.append(milestone)
    if milestones:
        collections[MILESTONES] = milestones

    if problems:
        raise ValidationError("Legacy backup is malformed", problems)

    return {
        "schemaVersion": BASE_SCHEMA_VERSION,
        "exportedAt": data.get("exportedAt") or utc_now(),
        "collections": collections,
    }


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

class BackupCodec:
    """Export, encode, decode and validate backup envelopes."""

    def __init__(
        self,
        repositories: RepositoryRegistry,
        engine: Optional[MigrationEngine] = None,
    ):
        self._repositories = repositories
        self._engine = engine or MigrationEngine()

    @property
    def schema_version(self) -> int:
        return self._engine.current_version

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def export(self) -> BackupEnvelope:
        """
        Snapshot every registered collection as currently persisted.

        Raises:
            IOFailure: If any collection cannot be read
        """
        collections = {
            repo.collection: repo.export_documents()
            for repo in self._repositories
        }
        return BackupEnvelope(
            schema_version=self.schema_version,
            exported_at=utc_now(),
            collections=collections,
        )

    def encode(self, envelope: BackupEnvelope, compress: bool = False) -> bytes:
        """Serialize as pretty-printed UTF-8 JSON, optionally zipped."""
        raw = json.dumps(envelope.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")
        if not compress:
            return raw
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(ARCHIVE_MEMBER, raw)
        return buf.getvalue()

    def write_file(
        self,
        envelope: BackupEnvelope,
        path: Union[str, Path],
        compress: bool = False,
    ) -> Path:
        """
        Encode and write a backup file.

        The file appears complete or not at all.

        Raises:
            IOFailure: If the file cannot be written
        """
        path = Path(path)
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(self.encode(envelope, compress=compress))
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise IOFailure(f"Failed to write backup {path}: {e}", key=str(path), cause=e) from e
        logger.info("Backup written to %s", path)
        return path

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def read_file(self, path: Union[str, Path]) -> BackupEnvelope:
        """
        Read and decode a backup file.

        Raises:
            IOFailure: If the file cannot be read
            ValidationError: If the content is not a backup envelope
        """
        path = Path(path)
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise IOFailure(f"Failed to read backup {path}: {e}", key=str(path), cause=e) from e
        return self.decode(raw)

    def decode(self, raw: bytes) -> BackupEnvelope:
        """
        Parse envelope bytes (plain or zipped JSON).

        Only the top-level structure is checked here.

        Raises:
            ValidationError: If the bytes are not a well-formed envelope
        """
        if raw[:2] == _ZIP_SIGNATURE:
            raw = self._unzip(raw)

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError("Backup is not valid JSON", [str(e)]) from e
        return self.from_dict(data)

    def from_dict(self, data: Any) -> BackupEnvelope:
        """
        Build an envelope from already-parsed JSON.

        Raises:
            ValidationError: If the top-level structure is malformed
        """
        if is_legacy_format(data):
            logger.info("Legacy backup format detected (version %r)", data.get("version"))
            data = upgrade_legacy(data)

        if not isinstance(data, dict):
            raise ValidationError(
                "Backup is not an envelope",
                [f"expected an object, got {type(data).__name__}"],
            )

        problems = []
        version = data.get("schemaVersion")
        if isinstance(version, bool) or not isinstance(version, int) or version < BASE_SCHEMA_VERSION:
            problems.append(f"schemaVersion must be an integer >= {BASE_SCHEMA_VERSION}, got {version!r}")
        exported_at = data.get("exportedAt")
        if not isinstance(exported_at, str):
            problems.append(f"exportedAt must be a string, got {exported_at!r}")
        collections = data.get("collections")
        if not isinstance(collections, dict):
            problems.append(f"collections must be an object, got {type(collections).__name__}")
        if problems:
            raise ValidationError("Backup envelope is malformed", problems)

        return BackupEnvelope(
            schema_version=version,
            exported_at=exported_at,
            collections=collections,
        )

    def _unzip(self, raw: bytes) -> bytes:
        try:
            with zipfile.ZipFile(io.BytesIO(raw)) as zf:
                names = zf.namelist()
                member = ARCHIVE_MEMBER if ARCHIVE_MEMBER in names else next(
                    (n for n in names if n.endswith(".json")), None)
                if member is None:
                    raise ValidationError(
                        "Backup archive has no JSON member",
                        [f"expected {ARCHIVE_MEMBER!r}, found {names}"],
                    )
                return zf.read(member)
        except zipfile.BadZipFile as e:
            raise ValidationError("Backup archive is not a valid ZIP file", [str(e)]) from e

    def validate(self, envelope: BackupEnvelope) -> BackupEnvelope:
        """
        Bring an envelope to the current schema and check every document.

        Returns:
            A new envelope at the current schema version; the input is
            not modified

        Raises:
            VersionMismatchError: If the envelope is newer than this app
            ValidationError: Listing every offending document
        """
        if envelope.schema_version > self.schema_version:
            raise VersionMismatchError(envelope.schema_version, self.schema_version)

        collections, report = self._engine.migrate_collections(
            envelope.collections, envelope.schema_version)
        if report.ran:
            logger.info(
                "Backup migrated in memory from v%d to v%d (%d documents rewritten)",
                report.from_version, report.to_version, report.migrated,
            )

        problems = validate_collections(collections)
        if problems:
            raise ValidationError(
                f"Backup failed validation ({len(problems)} problems)", problems)

        return BackupEnvelope(
            schema_version=self.schema_version,
            exported_at=envelope.exported_at,
            collections=collections,
        )
