"""Per-file, append-only content version history."""

import asyncio
from typing import Callable, Dict, List, Optional

from common.logging_config import get_logger
from common.protocol import VERSION_PROTOCOL, metadata_record
from drive.domain import ChunkManifest, EncryptionInfo, Version
from drive.exceptions import CollaboratorError, NotFoundError
from drive.utils import generate_uuid, utcnow

logger = get_logger(__name__)


def _noop() -> None:
    return None


class VersionLedger:
    """
    Ordered version list per file with a single current-version pointer.

    Version numbers start at 1 and follow append order; history is never
    rewritten. Appends for one file are serialized by a per-file lock so two
    concurrent calls can never observe the same previous count.
    """

    def __init__(self, ledger=None, on_change: Optional[Callable[[], None]] = None):
        self.ledger = ledger
        self._on_change = on_change or _noop
        self._versions: Dict[str, List[Version]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, file_id: str) -> asyncio.Lock:
        return self._locks.setdefault(file_id, asyncio.Lock())

    async def create_version(
        self,
        file_id: str,
        new_hash: str,
        size: int,
        changed_by: str,
        description: Optional[str] = None,
        *,
        location_ref: Optional[str] = None,
        content_ref: Optional[str] = None,
        encryption: Optional[EncryptionInfo] = None,
        manifest: Optional[ChunkManifest] = None,
        persist: bool = True,
    ) -> Version:
        """
        Append a new current version for a file.

        Args:
            file_id: File the version belongs to
            new_hash: Content hash of the version's plaintext
            size: Logical size in bytes
            changed_by: Identity making the change
            description: Optional change description
            location_ref: Blob-sink reference of the stored content, if any
            content_ref: Ledger reference of the content's root record, if any
            encryption: Encryption metadata of the stored content, if any
            manifest: Chunk manifest of the stored content, if any
            persist: Write the snapshot after appending

        Returns:
            The new version

        Raises:
            CollaboratorError: If the ledger rejects the version record; no
                version is appended in that case
        """
        async with self._lock_for(file_id):
            versions = self._versions.setdefault(file_id, [])
            number = len(versions) + 1
            uploaded_at = utcnow()

            ledger_ref = None
            if self.ledger is not None:
                record = metadata_record(VERSION_PROTOCOL, file_id, {
                    'version': number,
                    'hash': new_hash,
                    'size': size,
                    'changedBy': changed_by,
                    'description': description,
                    'uploadedAt': uploaded_at.isoformat(),
                })
                try:
                    ledger_ref = await self.ledger.commit_record(record)
                except Exception as e:
                    logger.error(f"Failed to record version {number} of file {file_id}: {e}", exc_info=True)
                    raise CollaboratorError("ledger.commit_record", e) from e

            for existing in versions:
                existing.is_current_version = False

            version = Version(
                id=generate_uuid(),
                version=number,
                hash=new_hash,
                size=size,
                uploaded_at=uploaded_at,
                changed_by=changed_by,
                is_current_version=True,
                change_description=description,
                ledger_ref=ledger_ref,
                location_ref=location_ref,
                content_ref=content_ref,
                encryption=encryption,
                manifest=manifest,
            )
            versions.append(version)

        logger.info(f"Created version {number} of file {file_id} [changed_by={changed_by}]")
        if persist:
            self._on_change()
        return version

    def list_versions(self, file_id: str) -> List[Version]:
        return list(self._versions.get(file_id, []))

    def current_version(self, file_id: str) -> Optional[Version]:
        for version in self._versions.get(file_id, []):
            if version.is_current_version:
                return version
        return None

    def get_version(self, file_id: str, version_id: str) -> Version:
        """
        Look up one version of a file.

        Raises:
            NotFoundError: If the file has no version with that id
        """
        for version in self._versions.get(file_id, []):
            if version.id == version_id:
                return version
        raise NotFoundError("Version not found")

    async def restore(self, file_id: str, version_id: str, restored_by: str, persist: bool = True) -> Version:
        """
        Make an earlier version's content current again by appending a copy of it.

        Returns:
            The newly appended version

        Raises:
            NotFoundError: If the version does not exist
        """
        target = self.get_version(file_id, version_id)
        logger.info(f"Restoring file {file_id} to version {target.version} [restored_by={restored_by}]")
        return await self.create_version(
            file_id,
            target.hash,
            target.size,
            restored_by,
            f"Restored from version {target.version}",
            location_ref=target.location_ref,
            content_ref=target.content_ref,
            encryption=target.encryption,
            manifest=target.manifest,
            persist=persist,
        )

    def rollback_version(self, file_id: str, version_id: str) -> None:
        """
        Undo the most recent append of a file when it could not be persisted.
        Only the latest version can be rolled back.
        """
        versions = self._versions.get(file_id, [])
        if not versions or versions[-1].id != version_id:
            raise NotFoundError("Only the latest version can be rolled back")
        versions.pop()
        if versions:
            versions[-1].is_current_version = True
        else:
            del self._versions[file_id]

    def remove_file(self, file_id: str) -> int:
        """
        Drop the whole history of a file (cascade delete). Does not persist.

        Returns:
            Number of versions removed
        """
        self._locks.pop(file_id, None)
        return len(self._versions.pop(file_id, []))

    def export_table(self) -> Dict[str, List[Version]]:
        return {file_id: list(versions) for file_id, versions in self._versions.items()}

    def load_table(self, table: Dict[str, List[Version]], replace: bool = False) -> None:
        """
        Load version lists keyed by file id. Lists for the same file id
        overwrite the existing history.
        """
        if replace:
            self._versions.clear()
        for file_id, versions in table.items():
            self._versions[file_id] = list(versions)
