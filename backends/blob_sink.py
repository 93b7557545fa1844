"""
Blob sinks: opaque byte storage addressed by location reference.

Interface expected by the catalog:
    async put(data: bytes) -> str        # returns a location reference
    async get(location_ref: str) -> bytes
"""

import asyncio
import uuid
from pathlib import Path
from typing import Dict, Union

from common.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryBlobSink:
    """Dictionary-backed blob sink, for tests and single-process hosts."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self.put_calls = 0
        self.get_calls = 0

    async def put(self, data: bytes) -> str:
        self.put_calls += 1
        location_ref = f"mem://{uuid.uuid4()}"
        self._blobs[location_ref] = bytes(data)
        return location_ref

    async def get(self, location_ref: str) -> bytes:
        self.get_calls += 1
        try:
            return self._blobs[location_ref]
        except KeyError:
            raise KeyError(f"Unknown location reference: {location_ref}") from None

    def __len__(self) -> int:
        return len(self._blobs)


class FileBlobSink:
    """
    Stores each blob as a ``<uuid>.blob`` file under a root directory.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _blob_path(self, location_ref: str) -> Path:
        name = Path(location_ref).name
        if name != location_ref or not name.endswith('.blob'):
            raise ValueError(f"Invalid location reference: {location_ref}")
        return self.root / name

    def _write(self, location_ref: str, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._blob_path(location_ref)
        tmp_path = path.with_suffix('.tmp')
        tmp_path.write_bytes(data)
        tmp_path.replace(path)

    async def put(self, data: bytes) -> str:
        location_ref = f"{uuid.uuid4()}.blob"
        await asyncio.to_thread(self._write, location_ref, data)
        logger.debug(f"Wrote blob {location_ref} ({len(data)} bytes)")
        return location_ref

    async def get(self, location_ref: str) -> bytes:
        """
        Read a blob back.

        Raises:
            FileNotFoundError: If no blob exists for the reference
        """
        path = self._blob_path(location_ref)
        return await asyncio.to_thread(path.read_bytes)

    def delete(self, location_ref: str) -> bool:
        """
        Remove a blob from disk.

        Returns:
            True if the blob was deleted, False if it didn't exist
        """
        path = self._blob_path(location_ref)
        if path.exists():
            path.unlink()
            return True
        return False
