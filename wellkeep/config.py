"""
Configuration management for wellkeep stores.

The configuration is stored as a TOML file in the store directory.
It records the config version and how automatic backups behave.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w


CONFIG_FILENAME = "wellkeep.toml"
CONFIG_VERSION = 1

DEFAULT_STORE_DIRNAME = ".wellkeep"
DATABASE_FILENAME = "wellkeep.db"


@dataclass
class BackupConfig:
    """Automatic backup settings."""
    auto_backup: bool = True
    # Quiet period after the last change before a backup is written
    debounce_seconds: float = 30.0
    max_auto_backups: int = 7
    # Relative paths resolve against the store directory
    directory: str = "auto_backups"
    compress: bool = False

    def resolve_directory(self, store_path: Path) -> Path:
        path = Path(self.directory).expanduser()
        return path if path.is_absolute() else store_path / path


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backup: BackupConfig = field(default_factory=BackupConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        return self.path / DATABASE_FILENAME

    @property
    def backup_directory(self) -> Path:
        return self.backup.resolve_directory(self.path)

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory from WELLKEEP_STORE_PATH, else ~/.wellkeep."""
    env = os.environ.get("WELLKEEP_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / DEFAULT_STORE_DIRNAME


def _parse_backup(section: dict) -> BackupConfig:
    defaults = BackupConfig()
    backup = BackupConfig(
        auto_backup=bool(section.get("auto_backup", defaults.auto_backup)),
        debounce_seconds=float(section.get("debounce_seconds", defaults.debounce_seconds)),
        max_auto_backups=int(section.get("max_auto_backups", defaults.max_auto_backups)),
        directory=str(section.get("directory", defaults.directory)),
        compress=bool(section.get("compress", defaults.compress)),
    )
    if backup.debounce_seconds < 0:
        raise ValueError(f"backup.debounce_seconds must be >= 0, got {backup.debounce_seconds}")
    if backup.max_auto_backups < 1:
        raise ValueError(f"backup.max_auto_backups must be >= 1, got {backup.max_auto_backups}")
    return backup


def create_default_config(store_path: Path) -> StoreConfig:
    return StoreConfig(path=store_path)


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        backup=_parse_backup(data.get("backup", {})),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "backup": {
            "auto_backup": config.backup.auto_backup,
            "debounce_seconds": config.backup.debounce_seconds,
            "max_auto_backups": config.backup.max_auto_backups,
            "directory": config.backup.directory,
            "compress": config.backup.compress,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Optional[Path] = None) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    store_path = Path(store_path) if store_path is not None else get_default_store_path()
    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)
    config = create_default_config(store_path)
    save_config(config)
    return config
