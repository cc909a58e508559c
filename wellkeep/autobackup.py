"""
Debounced automatic backups.

The scheduler listens on the change bus. Every change restarts a quiet-period
timer; when the timer fires, one backup file is written to the auto-backup
directory and the oldest files beyond ``max_backups`` are removed. A burst of
edits therefore produces a single backup.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .backup import BackupCodec
from .bus import ChangeEvent, PersistenceChangeBus
from .errors import log_exception

logger = logging.getLogger(__name__)

FILENAME_PREFIX = "auto_backup_"

TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]


class AutoBackupScheduler:
    """Writes a backup a fixed delay after the last persisted change."""

    def __init__(
        self,
        codec: BackupCodec,
        bus: PersistenceChangeBus,
        directory: Path,
        *,
        debounce_seconds: float = 30.0,
        max_backups: int = 7,
        compress: bool = False,
        enabled: bool = True,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self._codec = codec
        self._bus = bus
        self.directory = Path(directory)
        self.debounce_seconds = debounce_seconds
        self.max_backups = max_backups
        self.compress = compress
        self.enabled = enabled
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.last_backup_path: Optional[Path] = None
        self.last_backup_time: Optional[str] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Begin listening for changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self._bus.subscribe(self._on_change)

    def stop(self) -> None:
        """Stop listening and drop any pending backup."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.cancel_pending()

    def _on_change(self, event: ChangeEvent) -> None:
        self.schedule()

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def schedule(self) -> bool:
        """
        (Re)start the quiet-period timer.

        Returns:
            False if auto-backup is disabled
        """
        if not self.enabled:
            logger.debug("Auto-backup skipped (disabled)")
            return False
        with self._lock:
            had_timer = self._timer is not None
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self.debounce_seconds, lambda: self._fire(timer))
            timer.daemon = True
            self._timer = timer
            timer.start()
        logger.debug("Auto-backup scheduled in %.0fs (restarted=%s)", self.debounce_seconds, had_timer)
        return True

    def cancel_pending(self) -> bool:
        """Cancel a scheduled backup. Returns True if one was pending."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is None:
            return False
        timer.cancel()
        return True

    @property
    def is_scheduled(self) -> bool:
        return self._timer is not None

    @property
    def is_backing_up(self) -> bool:
        return self._run_lock.locked()

    def _fire(self, timer) -> None:
        with self._lock:
            if self._timer is not timer:
                # Superseded by a later schedule(); that timer owns the backup
                return
            self._timer = None
        try:
            self.run_backup()
        except Exception as e:
            # Timer thread: nobody to raise to
            logger.error("Auto-backup failed: %s", e)
            log_exception(e, "auto-backup")

    def flush(self) -> Optional[Path]:
        """Write a pending backup now instead of waiting. No-op if none is pending."""
        if not self.cancel_pending():
            return None
        return self.run_backup()

    # -------------------------------------------------------------------------
    # Backup files
    # -------------------------------------------------------------------------

    def run_backup(self) -> Optional[Path]:
        """
        Export and write one backup file, then rotate old ones.

        Returns:
            Path of the new file, or None if a backup was already running

        Raises:
            IOFailure: If the export or the file write fails
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Auto-backup already in progress, skipping")
            return None
        try:
            envelope = self._codec.export()
            now = datetime.now(timezone.utc)
            suffix = ".zip" if self.compress else ".json"
            path = self.directory / f"{FILENAME_PREFIX}{now.strftime('%Y%m%dT%H%M%S%fZ')}{suffix}"
            self._codec.write_file(envelope, path, compress=self.compress)
            self.last_backup_path = path
            self.last_backup_time = now.isoformat()
            logger.info("Auto-backup completed: %s (%s)", path.name, envelope.document_counts())
            self.rotate()
            return path
        finally:
            self._run_lock.release()

    def backups(self) -> list[Path]:
        """Auto-backup files, newest first."""
        if not self.directory.is_dir():
            return []
        files = [
            p for p in self.directory.glob(f"{FILENAME_PREFIX}*")
            if p.is_file() and p.suffix in (".json", ".zip")
        ]
        # Names embed a sortable UTC timestamp
        return sorted(files, key=lambda p: p.name, reverse=True)

    def rotate(self) -> int:
        """
        Delete backups beyond ``max_backups``, oldest first.

        Returns:
            Number of files removed
        """
        removed = 0
        for path in self.backups()[self.max_backups:]:
            try:
                path.unlink()
                removed += 1
                logger.info("Deleted old auto-backup: %s", path.name)
            except OSError as e:
                logger.warning("Could not remove old auto-backup %s: %s", path.name, e)
        return removed

    def diagnostics(self) -> dict:
        """State summary for troubleshooting missing backups."""
        return {
            "enabled": self.enabled,
            "listening": self._unsubscribe is not None,
            "is_scheduled": self.is_scheduled,
            "is_backing_up": self.is_backing_up,
            "debounce_seconds": self.debounce_seconds,
            "directory": str(self.directory),
            "backup_count": len(self.backups()),
            "last_backup_time": self.last_backup_time,
            "last_backup_path": str(self.last_backup_path) if self.last_backup_path else None,
        }
