"""Configuration settings for the catalog engine."""

import json
import os
import shutil
from pathlib import Path
from typing import Any, List, Optional

from common.constants import (
    DEFAULT_KDF_ROUNDS,
    DEFAULT_MAX_FILE_SIZE_BYTES,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_SNAPSHOT_PATH,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    RECORD_CAPACITY_BYTES,
)
from common.logging_config import get_logger

logger = get_logger(__name__)


def _allowed_mime_types_from_env() -> Optional[List[str]]:
    raw = os.environ.get("LEDGERDRIVE_ALLOWED_MIME_TYPES", "")
    types = [item.strip() for item in raw.split(',') if item.strip()]
    return types or None


MAX_FILE_SIZE = int(os.environ.get("LEDGERDRIVE_MAX_FILE_SIZE", str(DEFAULT_MAX_FILE_SIZE_BYTES)))

DEFAULT_RETENTION = int(os.environ.get("LEDGERDRIVE_DEFAULT_RETENTION_DAYS", str(DEFAULT_RETENTION_DAYS)))

RECORD_CAPACITY = int(os.environ.get("LEDGERDRIVE_RECORD_CAPACITY", str(RECORD_CAPACITY_BYTES)))

KDF_ROUNDS = int(os.environ.get("LEDGERDRIVE_KDF_ROUNDS", str(DEFAULT_KDF_ROUNDS)))

SNAPSHOT_PATH = os.environ.get("LEDGERDRIVE_SNAPSHOT_PATH", DEFAULT_SNAPSHOT_PATH)

SWEEP_INTERVAL_SECONDS = int(
    os.environ.get("LEDGERDRIVE_SWEEP_INTERVAL_SECONDS", str(DEFAULT_SWEEP_INTERVAL_SECONDS))
)


class Config:
    """Catalog settings, optionally backed by a JSON file."""

    DEFAULT_CONFIG = {
        "max_file_size": MAX_FILE_SIZE,
        "default_retention_days": DEFAULT_RETENTION,
        "record_capacity": RECORD_CAPACITY,
        "kdf_rounds": KDF_ROUNDS,
        "allowed_mime_types": _allowed_mime_types_from_env(),
        "snapshot_path": SNAPSHOT_PATH,
        "sweep_interval_seconds": SWEEP_INTERVAL_SECONDS,
    }

    def __init__(self, config_path: Optional[Path] = None, **overrides: Any):
        """
        Initialize configuration.

        Args:
            config_path: Optional path to a JSON settings file. Without one the
                configuration lives only in memory.
            **overrides: Settings that take precedence over file and defaults
        """
        self.config_path = Path(config_path) if config_path is not None else None
        self.data = self._load()
        unknown = set(overrides) - set(self.DEFAULT_CONFIG)
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        self.data.update(overrides)

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        config = self.DEFAULT_CONFIG.copy()
        if self.config_path is None:
            return config

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if not self.config_path.exists():
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except OSError as e:
                logger.warning(f"Could not write default config to {self.config_path}: {e}")
            return config

        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
            config.update(data)
            return config
        except (json.JSONDecodeError, OSError) as e:
            backup_path = self.config_path.with_suffix('.json.bak')
            logger.warning(f"Config file {self.config_path} unreadable ({e}); backing up to {backup_path}")
            try:
                shutil.copy(self.config_path, backup_path)
            except OSError as copy_error:
                logger.warning(f"Could not back up config file: {copy_error}")
            return self.DEFAULT_CONFIG.copy()

    def save(self) -> None:
        """Save current configuration to file."""
        if self.config_path is None:
            return
        with open(self.config_path, 'w') as f:
            json.dump(self.data, f, indent=2)

    def get_max_file_size(self) -> int:
        """Maximum accepted logical payload size in bytes."""
        return int(self.data.get('max_file_size', MAX_FILE_SIZE))

    def get_default_retention_days(self) -> int:
        return int(self.data.get('default_retention_days', DEFAULT_RETENTION))

    def get_record_capacity(self) -> int:
        """Largest payload a single ledger record carries."""
        return int(self.data.get('record_capacity', RECORD_CAPACITY))

    def get_kdf_rounds(self) -> int:
        return int(self.data.get('kdf_rounds', KDF_ROUNDS))

    def get_allowed_mime_types(self) -> Optional[List[str]]:
        """
        Get the mime type allow-list.

        Returns:
            List of accepted mime types, or None when every type is allowed
        """
        allowed = self.data.get('allowed_mime_types')
        return list(allowed) if allowed else None

    def get_snapshot_path(self) -> Path:
        return Path(self.data.get('snapshot_path', SNAPSHOT_PATH))

    def get_sweep_interval(self) -> int:
        """Seconds between automation rule sweeps."""
        return int(self.data.get('sweep_interval_seconds', SWEEP_INTERVAL_SECONDS))
