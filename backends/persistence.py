"""
Snapshot persistence backends.

Interface expected by the catalog:
    load_snapshot() -> Optional[dict]   # None when missing or unreadable
    save_snapshot(state: dict) -> None

A snapshot is the JSON-ready catalog document. Loading never raises for a
missing or corrupted snapshot; the catalog starts empty instead.
"""

import copy
import json
import shutil
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional, Union

from common.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryPersistence:
    """Keeps the latest snapshot in memory."""

    def __init__(self, initial: Optional[dict] = None):
        self._state = copy.deepcopy(initial) if initial is not None else None
        self.save_calls = 0

    def load_snapshot(self) -> Optional[dict]:
        return copy.deepcopy(self._state) if self._state is not None else None

    def save_snapshot(self, state: dict) -> None:
        self.save_calls += 1
        self._state = copy.deepcopy(state)


class JsonFilePersistence:
    """
    Stores the snapshot as a JSON file. Writes go to a temporary file that
    replaces the previous snapshot.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @classmethod
    def from_config(cls, config) -> "JsonFilePersistence":
        """Create a backend writing to the config's snapshot path."""
        return cls(config.get_snapshot_path())

    def load_snapshot(self) -> Optional[dict]:
        """
        Load the snapshot from disk.

        Returns:
            The snapshot document, or None if the file is missing or corrupted
        """
        if not self.path.exists():
            logger.warning(f"Snapshot file not found at {self.path}")
            return None

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            backup_path = self.path.with_suffix(self.path.suffix + '.bak')
            logger.error(f"Failed to parse snapshot file {self.path}: {e}; backing up to {backup_path}")
            try:
                shutil.copy(self.path, backup_path)
            except OSError as copy_error:
                logger.warning(f"Could not back up corrupted snapshot: {copy_error}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Snapshot file {self.path} does not contain a JSON object")
            return None
        return data

    def save_snapshot(self, state: dict) -> None:
        """
        Persist the snapshot to disk.

        Raises:
            OSError: If the write fails
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(state, f, indent=2)
        tmp_path.replace(self.path)
        logger.debug(f"Saved snapshot with {len(state.get('files', []))} files to {self.path}")


class SqlitePersistence:
    """
    Stores the snapshot document in a single-row SQLite table.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.init_database()

    @contextmanager
    def get_db_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def init_database(self) -> None:
        """
        Create the snapshot table if it doesn't exist.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS catalog_snapshot (
                    snapshot_id INTEGER PRIMARY KEY CHECK (snapshot_id = 1),
                    document TEXT NOT NULL,
                    saved_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def load_snapshot(self) -> Optional[dict]:
        try:
            with self.get_db_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT document FROM catalog_snapshot WHERE snapshot_id = 1")
                row = cursor.fetchone()
        except sqlite3.DatabaseError as e:
            logger.error(f"Failed to read snapshot from {self.db_path}: {e}")
            return None

        if row is None:
            return None

        try:
            data = json.loads(row["document"])
        except json.JSONDecodeError as e:
            logger.error(f"Stored snapshot in {self.db_path} is corrupted: {e}")
            return None
        return data if isinstance(data, dict) else None

    def save_snapshot(self, state: dict) -> None:
        with self.get_db_connection() as conn:
            try:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO catalog_snapshot (snapshot_id, document, saved_at)
                    VALUES (1, ?, ?)
                    ON CONFLICT(snapshot_id) DO UPDATE SET
                        document = excluded.document,
                        saved_at = excluded.saved_at
                    """,
                    (json.dumps(state), datetime.now(timezone.utc).isoformat())
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
