"""
Application facade.

``Wellkeep`` opens a store and wires the persistence components in boot
order:

    config → document store → sweep interrupted restores → migrate →
    repositories → codec → restore coordinator → auto-backup

No repository reads the store before migration has finished.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional, Union

from .autobackup import AutoBackupScheduler
from .backup import BackupCodec, BackupEnvelope
from .bus import PersistenceChangeBus
from .config import StoreConfig, load_or_create_config
from .document_store import DocumentStore
from .errors import WellkeepError, log_exception
from .logging_config import configure_ops_log, enable_debug_mode
from .migrations import MigrationEngine, MigrationReport
from .protocol import DocumentStoreProtocol
from .repository import (
    AssessmentRepository,
    GoalRepository,
    HabitRepository,
    JournalRepository,
    MilestoneRepository,
    PulseEntryRepository,
    PulseTypeRepository,
    RepositoryRegistry,
    WinRepository,
    create_repositories,
)
from .restore import RestoreCoordinator, RestoreResult, sweep_staging
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

logger = logging.getLogger(__name__)


class Wellkeep:
    """
    Persistent store for wellness data with backup and restore.

    Example:
        wk = Wellkeep("~/.wellkeep")
        goal = wk.goals.add(Goal(title="Run a 10k", category=GoalCategory.FITNESS))
        wk.export_file("backup.json")
        wk.import_file("backup.json")
    """

    def __init__(
        self,
        store_path: Optional[Union[str, Path]] = None,
        *,
        config: Optional[StoreConfig] = None,
        doc_store: Optional[DocumentStoreProtocol] = None,
        timer_factory=threading.Timer,
        verbose: Optional[bool] = None,
    ) -> None:
        """
        Open (or create) a store and bring it to the current schema.

        Args:
            store_path: Store directory. Uses WELLKEEP_STORE_PATH or
                ~/.wellkeep if not specified.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            doc_store: Injected document store (skips the SQLite default).
            timer_factory: Timer used to debounce auto-backups.
            verbose: Debug logging to stderr. Defaults to WELLKEEP_VERBOSE.

        Raises:
            VersionMismatchError: If the store was written by a newer version
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
        else:
            path = Path(store_path).expanduser().resolve() if store_path is not None else None
            self._config = load_or_create_config(path)
        self._store_path = self._config.path

        # --- Console logging ---
        if verbose is None:
            verbose = bool(os.environ.get("WELLKEEP_VERBOSE"))
        if verbose:
            enable_debug_mode()

        # --- Persistent operations log ---
        self._ops_log_handler = configure_ops_log(self._store_path)

        # --- Storage ---
        self._document_store = doc_store or DocumentStore(self._config.database_path)
        self._bus = PersistenceChangeBus()

        try:
            sweep_staging(self._document_store)
            self._engine = MigrationEngine()
            self.migration_report: MigrationReport = self._engine.migrate_store(self._document_store)
        except WellkeepError as e:
            log_exception(e, "open store")
            self._document_store.close()
            self._remove_ops_log()
            raise

        # --- Repositories and backup ---
        self._repositories = create_repositories(self._document_store, self._bus)
        self._codec = BackupCodec(self._repositories, self._engine)
        self._restorer = RestoreCoordinator(
            self._document_store, self._bus, self._codec, self._repositories)

        backup = self._config.backup
        self._auto_backup = AutoBackupScheduler(
            self._codec,
            self._bus,
            self._config.backup_directory,
            debounce_seconds=backup.debounce_seconds,
            max_backups=backup.max_auto_backups,
            compress=backup.compress,
            enabled=backup.auto_backup,
            timer_factory=timer_factory,
        )
        if backup.auto_backup:
            self._auto_backup.start()

        logger.info("Opened store %s (schema v%d)", self._store_path, self._engine.current_version)

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def bus(self) -> PersistenceChangeBus:
        return self._bus

    @property
    def repositories(self) -> RepositoryRegistry:
        return self._repositories

    @property
    def codec(self) -> BackupCodec:
        return self._codec

    @property
    def auto_backup(self) -> AutoBackupScheduler:
        return self._auto_backup

    @property
    def goals(self) -> GoalRepository:
        return self._repositories[GOALS]

    @property
    def milestones(self) -> MilestoneRepository:
        return self._repositories[MILESTONES]

    @property
    def habits(self) -> HabitRepository:
        return self._repositories[HABITS]

    @property
    def journal(self) -> JournalRepository:
        return self._repositories[JOURNAL_ENTRIES]

    @property
    def pulse_entries(self) -> PulseEntryRepository:
        return self._repositories[PULSE_ENTRIES]

    @property
    def pulse_types(self) -> PulseTypeRepository:
        return self._repositories[PULSE_TYPES]

    @property
    def wins(self) -> WinRepository:
        return self._repositories[WINS]

    @property
    def assessments(self) -> AssessmentRepository:
        return self._repositories[ASSESSMENTS]

    # -------------------------------------------------------------------------
    # Export / Import
    # -------------------------------------------------------------------------

    def export_envelope(self) -> BackupEnvelope:
        return self._codec.export()

    def export_data(self) -> dict:
        """
        Export every collection as a single envelope dict.

        Returns:
            Dict with ``schemaVersion``, ``exportedAt`` and ``collections``
        """
        return self._codec.export().to_dict()

    def export_bytes(self, compress: bool = False) -> bytes:
        return self._codec.encode(self._codec.export(), compress=compress)

    def export_file(self, path: Union[str, Path], compress: Optional[bool] = None) -> Path:
        """
        Write a backup file.

        Args:
            path: Destination file
            compress: Write a ZIP archive. Defaults to the configured setting.

        Raises:
            IOFailure: If the store cannot be read or the file cannot be written
        """
        if compress is None:
            compress = self._config.backup.compress
        try:
            return self._codec.write_file(self._codec.export(), path, compress=compress)
        except WellkeepError as e:
            log_exception(e, f"export {path}")
            raise

    def import_data(self, data: Union[dict, bytes, Any]) -> RestoreResult:
        """
        Restore from an envelope dict or encoded backup bytes.

        Every collection in the backup replaces the stored one; collections
        the backup does not mention are left alone.

        Raises:
            ValidationError: If the backup is malformed, too new or has
                invalid documents (nothing is changed)
            IOFailure: If the commit fails (nothing is changed)
        """
        try:
            if isinstance(data, (bytes, bytearray)):
                return self._restorer.import_bytes(bytes(data))
            return self._restorer.restore(self._codec.from_dict(data))
        except WellkeepError as e:
            log_exception(e, "import backup")
            raise

    def import_file(self, path: Union[str, Path]) -> RestoreResult:
        try:
            return self._restorer.import_file(path)
        except WellkeepError as e:
            log_exception(e, f"import {path}")
            raise

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _remove_ops_log(self) -> None:
        handler = getattr(self, "_ops_log_handler", None)
        if handler is not None:
            logging.getLogger("wellkeep").removeHandler(handler)
            handler.close()
            self._ops_log_handler = None

    def close(self) -> None:
        """Write any pending auto-backup, then release the store."""
        try:
            self._auto_backup.flush()
        except WellkeepError as e:
            logger.error("Final auto-backup failed: %s", e.message)
            log_exception(e, "auto-backup on close")
        self._auto_backup.stop()
        self._repositories.close()
        self._document_store.close()
        self._remove_ops_log()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
