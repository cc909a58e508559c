"""
Restore coordinator.

A restore replaces every collection named in a backup envelope, all or
nothing:

1. validate (and migrate in memory) the envelope;
2. write each collection to a staging key ``_staging/<token>/<collection>``;
3. promote all staged keys onto the live keys in one store transaction;
4. publish RESTORED for each replaced collection.

Nothing live is touched until step 3, so any failure before it leaves the
store exactly as it was. Collections absent from the envelope are not
modified.
"""

import logging
import uuid
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from .backup import BackupCodec, BackupEnvelope
from .bus import ChangeKind, PersistenceChangeBus
from .errors import IOFailure
from .protocol import DocumentStoreProtocol
from .repository import RepositoryRegistry
from .serialization import encode_collection

logger = logging.getLogger(__name__)

STAGING_PREFIX = "_staging/"


@dataclass
class RestoreResult:
    """What a committed restore replaced."""
    collections: list[str] = field(default_factory=list)
    document_counts: dict[str, int] = field(default_factory=dict)
    migrated_from: int = 0
    exported_at: str = ""

    @property
    def total_documents(self) -> int:
        return sum(self.document_counts.values())


def sweep_staging(store: DocumentStoreProtocol) -> int:
    """
    Delete staged keys left behind by an interrupted restore.

    Run at boot, before any repository loads.

    Returns:
        Number of keys removed
    """
    removed = 0
    for key in store.keys(STAGING_PREFIX):
        if store.delete(key):
            removed += 1
    if removed:
        logger.info("Removed %d staged keys from an interrupted restore", removed)
    return removed


class RestoreCoordinator:
    """Validates backup envelopes and commits them atomically."""

    def __init__(
        self,
        store: DocumentStoreProtocol,
        bus: PersistenceChangeBus,
        codec: BackupCodec,
        repositories: RepositoryRegistry,
    ):
        self._store = store
        self._bus = bus
        self._codec = codec
        self._repositories = repositories

    def restore(self, envelope: BackupEnvelope) -> RestoreResult:
        """
        Replace the envelope's collections with its contents.

        Raises:
            VersionMismatchError: If the envelope is newer than this app
            ValidationError: If any document fails validation
            IOFailure: If staging or commit fails; no live data changed
        """
        migrated_from = envelope.schema_version
        valid = self._codec.validate(envelope)
        names = list(valid.collections)

        token = uuid.uuid4().hex
        staged: dict[str, str] = {}
        try:
            for name in names:
                key = f"{STAGING_PREFIX}{token}/{name}"
                self._store.put(key, encode_collection(valid.collections[name]))
                staged[key] = name
            self._commit(staged)
        except IOFailure:
            logger.error("Restore aborted; discarding %d staged collections", len(staged))
            self._discard(staged)
            raise

        logger.info(
            "Restored %d collections (%d documents) from backup exported %s",
            len(names), sum(len(d) for d in valid.collections.values()), valid.exported_at,
        )
        for name in names:
            self._bus.publish(name, ChangeKind.RESTORED)

        return RestoreResult(
            collections=names,
            document_counts=valid.document_counts(),
            migrated_from=migrated_from,
            exported_at=valid.exported_at,
        )

    def _commit(self, staged: dict[str, str]) -> None:
        # Hold each affected repository's write lock across the swap so an
        # in-flight read-modify-write completes before it or starts after it
        with ExitStack() as stack:
            for name in sorted(staged.values()):
                if name in self._repositories:
                    stack.enter_context(self._repositories[name].write_lock)
            self._store.promote(staged)

    def _discard(self, staged: dict[str, str]) -> None:
        for key in staged:
            try:
                self._store.delete(key)
            except IOFailure as e:
                # Swept at next boot
                logger.warning("Could not remove staged key %s: %s", key, e.message)

    def import_bytes(self, raw: bytes) -> RestoreResult:
        """Decode envelope bytes (plain or zipped) and restore them."""
        return self.restore(self._codec.decode(raw))

    def import_file(self, path: Union[str, Path]) -> RestoreResult:
        return self.restore(self._codec.read_file(path))
