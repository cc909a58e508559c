"""
Logging configuration for wellkeep.

Library modules only create loggers; handlers are attached here by the host
or by the facade.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "wellkeep-ops.log"


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("wellkeep").setLevel(logging.DEBUG)


def configure_ops_log(store_path):
    """Configure a persistent operations log for a wellkeep store.

    Writes to {store_path}/wellkeep-ops.log using a rotating file handler
    (1MB max, 3 backups). Migrations, restores and auto-backups are
    recorded here even when the host shows nothing.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / OPS_LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    wellkeep_logger = logging.getLogger("wellkeep")
    wellkeep_logger.addHandler(handler)
    # Ensure INFO reaches the ops log even in quiet mode
    if wellkeep_logger.level == logging.NOTSET or wellkeep_logger.level > logging.INFO:
        wellkeep_logger.setLevel(logging.INFO)

    return handler
