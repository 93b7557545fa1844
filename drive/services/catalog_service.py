"""Storage catalog: upload, download and lifecycle of stored files."""

from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional
import copy
import json

from pydantic import ValidationError as SchemaValidationError

from common.constants import ENCRYPTION_ALGORITHM, KEY_DERIVATION, SNAPSHOT_VERSION
from common.logging_config import correlation_scope, get_logger
from common.protocol import RENEWAL_PROTOCOL, metadata_record
from drive.codec import ChunkCodec
from drive.config import Config
from drive.crypto import compute_hash, decrypt, encrypt, key_material, verify_hash
from drive.domain import (
    AccessRecord,
    AutomationRule,
    CatalogEntry,
    ChunkManifest,
    EncryptionInfo,
    UploadProgress,
    Version,
)
from drive.exceptions import (
    CollaboratorError,
    DecryptionError,
    DriveError,
    NotFoundError,
    NotSetupError,
    ReassemblyError,
    UnsupportedVersionError,
    ValidationError,
)
from drive.schemas import (
    AccessRecordSchema,
    CatalogEntrySchema,
    CatalogSnapshot,
    RuleSchema,
    VersionSchema,
)
from drive.services.access_service import AccessControl
from drive.services.condition_service import ConditionEngine
from drive.services.version_service import VersionLedger
from drive.utils import generate_uuid, normalize_tags, utcnow

logger = get_logger(__name__)

ProgressCallback = Callable[[UploadProgress], None]


class StorageCatalog:
    """
    Index of stored files and the facade over their auxiliary state.

    Content goes to the ledger (one record, or chunk records plus a manifest)
    and the root record is handed to the blob sink. The catalog owns the
    version history, automation rules and access records of its files and
    writes the full snapshot after every mutating operation.
    """

    def __init__(
        self,
        blob_sink,
        ledger,
        persistence,
        config: Optional[Config] = None,
        verifiers: Optional[Dict[str, Any]] = None,
        codec: Optional[ChunkCodec] = None,
    ):
        self.blob_sink = blob_sink
        self.ledger = ledger
        self.persistence = persistence
        self.config = config or Config()
        self.codec = codec or ChunkCodec(self.config.get_record_capacity())

        self._entries: Dict[str, CatalogEntry] = {}
        self.versions = VersionLedger(ledger, on_change=self._save)
        self.conditions = ConditionEngine(verifiers, ledger, on_change=self._save)
        self.access = AccessControl(ledger, on_change=self._save)

        self.conditions.register_action("auto-renewal", self._auto_renew)
        self.conditions.register_action("access-control", self._grant_access)

        self._load()

    # Collaborator plumbing

    async def _call(self, operation: str, fn, *args, committed_chunks: Optional[int] = None):
        try:
            return await fn(*args)
        except DriveError:
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            raise CollaboratorError(operation, e, committed_chunks) from e

    async def _fetch_record(self, ledger_ref: str) -> bytes:
        return await self._call("ledger.fetch_record", self.ledger.fetch_record, ledger_ref)

    @staticmethod
    def _report(
        on_progress: Optional[ProgressCallback],
        phase: str,
        progress: int,
        message: str,
        ledger_ref: Optional[str] = None,
    ) -> None:
        if on_progress is None:
            return
        try:
            on_progress(UploadProgress(phase=phase, progress=progress, message=message, ledger_ref=ledger_ref))
        except Exception as e:
            logger.warning(f"Progress callback raised during {phase}: {e}")

    # Snapshot

    def _snapshot(self, exported=None) -> CatalogSnapshot:
        return CatalogSnapshot(
            version=SNAPSHOT_VERSION,
            exported=exported,
            files=[CatalogEntrySchema.from_domain(entry) for entry in self._entries.values()],
            versions={
                file_id: [VersionSchema.from_domain(version) for version in versions]
                for file_id, versions in self.versions.export_table().items()
            },
            rules=[RuleSchema.from_domain(rule) for rule in self.conditions.export_table()],
            access=[AccessRecordSchema.from_domain(record) for record in self.access.export_table()],
        )

    def _save(self) -> None:
        state = self._snapshot().model_dump(mode="json")
        try:
            self.persistence.save_snapshot(state)
        except Exception as e:
            logger.error(f"Failed to save catalog snapshot: {e}", exc_info=True)
            raise CollaboratorError("persistence.save_snapshot", e) from e

    @staticmethod
    def _parse_snapshot(document: Any) -> CatalogSnapshot:
        if not isinstance(document, dict):
            raise ValidationError("Catalog document must be a JSON object")
        if document.get('version') != SNAPSHOT_VERSION:
            raise UnsupportedVersionError(f"Unsupported catalog version: {document.get('version')!r}")
        try:
            return CatalogSnapshot.model_validate(document)
        except SchemaValidationError as e:
            first = e.errors()[0]['msg']
            raise ValidationError(f"Malformed catalog document: {e.error_count()} error(s), first: {first}") from e

    def _load(self) -> None:
        try:
            state = self.persistence.load_snapshot()
        except Exception as e:
            logger.error(f"Failed to load catalog snapshot: {e}", exc_info=True)
            raise CollaboratorError("persistence.load_snapshot", e) from e

        if state is None:
            logger.info("No catalog snapshot found, starting empty")
            return

        try:
            snapshot = self._parse_snapshot(state)
        except (ValidationError, UnsupportedVersionError) as e:
            logger.error(f"Ignoring unreadable catalog snapshot: {e}")
            return

        self._apply(snapshot, replace=True)
        logger.info(f"Loaded catalog snapshot with {len(self._entries)} files")

    def _apply(self, snapshot: CatalogSnapshot, replace: bool = False) -> None:
        if replace:
            self._entries.clear()
        for schema in snapshot.files:
            entry = schema.to_domain()
            self._entries[entry.id] = entry
        self.versions.load_table(
            {file_id: [v.to_domain() for v in versions] for file_id, versions in snapshot.versions.items()},
            replace=replace,
        )
        self.conditions.load_table([rule.to_domain() for rule in snapshot.rules], replace=replace)
        self.access.load_table([record.to_domain() for record in snapshot.access], replace=replace)

    @contextmanager
    def _transaction(self):
        """
        Restore every table if the block raises. The block must not await.
        """
        saved = copy.deepcopy((
            self._entries,
            self.versions.export_table(),
            self.conditions.export_table(),
            self.access.export_table(),
        ))
        try:
            yield
        except Exception:
            entries, versions, rules, records = saved
            self._entries = entries
            self.versions.load_table(versions, replace=True)
            self.conditions.load_table(rules, replace=True)
            self.access.load_table(records, replace=True)
            raise

    # Upload and download

    def _validate_payload(self, payload) -> bytes:
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise ValidationError("Payload must be bytes")
        payload = bytes(payload)
        max_size = self.config.get_max_file_size()
        if len(payload) > max_size:
            logger.warning(f"Rejected payload of {len(payload)} bytes (max {max_size})")
            raise ValidationError(f"File too large: {len(payload)} bytes exceeds the {max_size} byte limit")
        return payload

    def _validate_upload(
        self,
        payload,
        name: str,
        mime_type: str,
        retention_days: Optional[int],
        encrypt_payload: bool,
        passphrase: Optional[str],
    ):
        payload = self._validate_payload(payload)
        if not name:
            raise ValidationError("File name is required")

        allowed = self.config.get_allowed_mime_types()
        if allowed is not None and mime_type not in allowed:
            logger.warning(f"Rejected upload of {name} with MIME type {mime_type}")
            raise ValidationError(f"MIME type not allowed: {mime_type}")

        if retention_days is None:
            retention_days = self.config.get_default_retention_days()
        if isinstance(retention_days, bool) or not isinstance(retention_days, int) or retention_days <= 0:
            raise ValidationError(f"Retention must be a positive number of days, got {retention_days!r}")

        if encrypt_payload and not passphrase:
            raise ValidationError("A passphrase is required to encrypt a file")

        return payload, retention_days

    def _encrypt(self, payload: bytes, passphrase: str):
        rounds = self.config.get_kdf_rounds()
        ciphertext, _ = encrypt(payload, passphrase, rounds)
        material = key_material(ciphertext)
        info = EncryptionInfo(
            algorithm=ENCRYPTION_ALGORITHM,
            key_derivation=KEY_DERIVATION,
            salt=material['salt'],
            nonce=material['nonce'],
            rounds=rounds,
        )
        return ciphertext, info

    async def _store(
        self,
        stored: bytes,
        mime_type: str,
        name: str,
        on_progress: Optional[ProgressCallback] = None,
    ):
        """
        Commit a payload to the ledger and hand its root record to the blob sink.

        Returns:
            Tuple of (location_ref, root ledger_ref, manifest or None)
        """
        unit = self.codec.encode(stored, mime_type, name)
        manifest = None
        committed = 0

        if unit.is_chunked:
            chunk_refs: List[str] = []
            total = len(unit.chunks)
            for chunk in unit.chunks:
                chunk_ref = await self._call(
                    "ledger.commit_record",
                    self.ledger.commit_record,
                    chunk.to_json(),
                    committed_chunks=committed,
                )
                chunk_refs.append(chunk_ref)
                committed += 1
                self._report(
                    on_progress, "uploading", 30 + (50 * committed) // total,
                    f"Uploaded chunk {committed}/{total}",
                )
            root = self.codec.seal_manifest(unit.manifest, chunk_refs)
            manifest = ChunkManifest(chunk_refs=chunk_refs, size=root.size, hash=root.hash)
        else:
            root = unit.single

        root_bytes = root.to_json()
        ledger_ref = await self._call(
            "ledger.commit_record", self.ledger.commit_record, root_bytes,
            committed_chunks=committed if unit.is_chunked else None,
        )
        location_ref = await self._call(
            "blob_sink.put", self.blob_sink.put, root_bytes,
            committed_chunks=committed if unit.is_chunked else None,
        )
        logger.debug(f"Stored {name} in {unit.record_count} ledger record(s), root {ledger_ref}")
        return location_ref, ledger_ref, manifest

    async def upload(
        self,
        payload: bytes,
        name: str,
        mime_type: str,
        retention_days: Optional[int] = None,
        encrypt: bool = False,
        passphrase: Optional[str] = None,
        folder: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        uploaded_by: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CatalogEntry:
        """
        Store a payload and index it.

        Args:
            payload: File content
            name: File name
            mime_type: MIME type of the content
            retention_days: Retention period; defaults to the configured value
            encrypt: Encrypt the content under ``passphrase`` before storing
            passphrase: Passphrase for encryption
            folder: Optional folder label
            tags: Optional tags
            uploaded_by: Identity recorded on the initial version
            on_progress: Optional callback receiving UploadProgress updates

        Returns:
            The new catalog entry

        Raises:
            ValidationError: Size, MIME type, retention or passphrase rejected;
                raised before any hashing or collaborator call
            CollaboratorError: If the ledger, blob sink or persistence fails;
                nothing is indexed in that case
        """
        payload, retention_days = self._validate_upload(
            payload, name, mime_type, retention_days, encrypt, passphrase
        )

        file_id = generate_uuid()
        with correlation_scope(file_id):
            try:
                content_hash = compute_hash(payload)
                stored, encryption = payload, None
                if encrypt:
                    self._report(on_progress, "encrypting", 10, "Encrypting file")
                    stored, encryption = self._encrypt(payload, passphrase)

                self._report(on_progress, "uploading", 30, "Uploading to ledger")
                location_ref, ledger_ref, manifest = await self._store(stored, mime_type, name, on_progress)

                self._report(on_progress, "confirming", 90, "Confirming storage", ledger_ref)
                uploaded_at = utcnow()
                entry = CatalogEntry(
                    id=file_id,
                    name=name,
                    mime_type=mime_type,
                    size=len(payload),
                    content_hash=content_hash,
                    uploaded_at=uploaded_at,
                    expires_at=uploaded_at + timedelta(days=retention_days),
                    retention_days=retention_days,
                    location_ref=location_ref,
                    ledger_ref=ledger_ref,
                    encryption=encryption,
                    folder=folder or None,
                    tags=normalize_tags(tags),
                    manifest=manifest,
                )

                version = await self.versions.create_version(
                    entry.id,
                    content_hash,
                    entry.size,
                    uploaded_by or "system",
                    "Initial upload",
                    location_ref=location_ref,
                    content_ref=ledger_ref,
                    encryption=encryption,
                    manifest=manifest,
                    persist=False,
                )

                self._entries[entry.id] = entry
                try:
                    self._save()
                except CollaboratorError:
                    del self._entries[entry.id]
                    self.versions.rollback_version(entry.id, version.id)
                    raise
            except Exception as e:
                self._report(on_progress, "error", 0, str(e))
                raise

            self._report(on_progress, "complete", 100, "Upload complete", ledger_ref)
            logger.info(
                f"Uploaded {name} as {entry.id} ({entry.size} bytes, "
                f"{'encrypted' if encrypt else 'plain'}, {len(manifest.chunk_refs) if manifest else 1} record(s))"
            )
            return entry

    async def download(self, file_id: str, passphrase: Optional[str] = None) -> bytes:
        """
        Fetch, reassemble and (if needed) decrypt a stored file.

        Raises:
            NotFoundError: Unknown file id
            DecryptionError: Missing or wrong passphrase for an encrypted file
            ReassemblyError: Stored content fails its integrity checks
            CollaboratorError: If the blob sink or ledger fails
        """
        with correlation_scope(file_id):
            entry = self.get(file_id)
            if entry.is_encrypted and not passphrase:
                raise DecryptionError("A passphrase is required to decrypt this file")

            root = await self._call("blob_sink.get", self.blob_sink.get, entry.location_ref)
            stored = await self.codec.decode(root, self._fetch_record)

            if entry.is_encrypted:
                payload = decrypt(
                    stored,
                    passphrase,
                    nonce=bytes.fromhex(entry.encryption.nonce),
                    rounds=entry.encryption.rounds,
                )
            else:
                payload = stored

            if not verify_hash(payload, entry.content_hash):
                logger.error(f"Content hash mismatch for file {file_id}")
                raise ReassemblyError("Downloaded content does not match the recorded content hash")

            logger.info(f"Downloaded {entry.name} ({len(payload)} bytes)")
            return payload

    # Lookups

    def get(self, file_id: str) -> CatalogEntry:
        entry = self._entries.get(file_id)
        if entry is None:
            raise NotFoundError(f"File {file_id} not found")
        return entry

    def list_all(self) -> List[CatalogEntry]:
        return list(self._entries.values())

    def find_by_hash(self, content_hash: str) -> List[CatalogEntry]:
        return [entry for entry in self._entries.values() if entry.content_hash == content_hash]

    def list_folders(self) -> List[str]:
        return sorted({entry.folder for entry in self._entries.values() if entry.folder})

    def list_by_folder(self, folder: Optional[str] = None) -> List[CatalogEntry]:
        """Entries in ``folder`` (all entries when None), newest first."""
        entries = [
            entry for entry in self._entries.values()
            if folder is None or entry.folder == folder
        ]
        return sorted(entries, key=lambda entry: entry.uploaded_at, reverse=True)

    def search(self, query: str) -> List[CatalogEntry]:
        """Case-insensitive substring match over name and tags."""
        needle = query.lower()
        return [
            entry for entry in self._entries.values()
            if needle in entry.name.lower() or any(needle in tag.lower() for tag in entry.tags)
        ]

    def expiring_within(self, days: int = 7) -> List[CatalogEntry]:
        """
        Entries expiring within ``days`` from now, soonest first. Entries that
        have already expired are included.
        """
        threshold = utcnow() + timedelta(days=days)
        expiring = [entry for entry in self._entries.values() if entry.expires_at <= threshold]
        return sorted(expiring, key=lambda entry: entry.expires_at)

    # Lifecycle

    async def renew(self, file_id: str, additional_days: int) -> CatalogEntry:
        """
        Extend a file's retention. The renewal is recorded on the ledger
        before the entry changes.

        Raises:
            NotFoundError: Unknown file id
            ValidationError: ``additional_days`` is not positive
            CollaboratorError: If the ledger or persistence fails
        """
        entry = self.get(file_id)
        if isinstance(additional_days, bool) or not isinstance(additional_days, int) or additional_days <= 0:
            raise ValidationError(f"Renewal must add a positive number of days, got {additional_days!r}")

        record = metadata_record(RENEWAL_PROTOCOL, file_id, {
            'hash': entry.content_hash,
            'additionalDays': additional_days,
        })
        await self._call("ledger.commit_record", self.ledger.commit_record, record)

        entry = self.get(file_id)
        with self._transaction():
            entry.expires_at = entry.expires_at + timedelta(days=additional_days)
            entry.retention_days += additional_days
            self._save()

        logger.info(f"Renewed {file_id} by {additional_days} days, now expires {entry.expires_at.isoformat()}")
        return entry

    def delete(self, file_id: str) -> None:
        """
        Remove a file together with its versions, rules and access record.

        Raises:
            NotFoundError: Unknown file id
        """
        self.get(file_id)
        with self._transaction():
            entry = self._entries.pop(file_id)
            removed_versions = self.versions.remove_file(file_id)
            removed_rules = self.conditions.remove_file(file_id)
            self.access.remove_file(file_id)
            self._save()

        logger.info(
            f"Deleted {entry.name} ({file_id}) with {removed_versions} versions and {removed_rules} rules"
        )

    def export_catalog(self) -> str:
        return self._snapshot(exported=utcnow()).model_dump_json(indent=2)

    def import_catalog(self, document: str) -> None:
        """
        Merge an exported catalog into this one. Entries, rules and access
        records with an existing id overwrite the current ones; a file's
        version list is replaced by the imported list.

        Raises:
            UnsupportedVersionError: The document declares another version
            ValidationError: The document is not a well-formed catalog or its
                version, collaborator or file references are inconsistent
        """
        try:
            parsed = json.loads(document)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Catalog is not valid JSON: {e}") from e

        snapshot = self._parse_snapshot(parsed)
        with self._transaction():
            self._apply(snapshot, replace=False)
            self._save()

        logger.info(
            f"Imported {len(snapshot.files)} files, {len(snapshot.rules)} rules "
            f"and {len(snapshot.access)} access records"
        )

    # Versions, rules and collaboration

    def _repoint(self, file_id: str, version: Version) -> None:
        entry = self._entries.get(file_id)
        if entry is None:
            self.versions.rollback_version(file_id, version.id)
            raise NotFoundError(f"File {file_id} not found")

        previous = copy.copy(entry)
        entry.content_hash = version.hash
        entry.size = version.size
        entry.location_ref = version.location_ref
        entry.ledger_ref = version.content_ref
        entry.encryption = version.encryption
        entry.manifest = version.manifest
        try:
            self._save()
        except CollaboratorError:
            vars(entry).update(vars(previous))
            self.versions.rollback_version(file_id, version.id)
            raise

    async def upload_version(
        self,
        file_id: str,
        payload: bytes,
        changed_by: str,
        description: Optional[str] = None,
        passphrase: Optional[str] = None,
    ) -> Version:
        """
        Store new content for an existing file and make it the current version.
        The content is encrypted when a passphrase is given.

        Raises:
            NotFoundError: Unknown file id
            ValidationError: Payload rejected
        """
        entry = self.get(file_id)
        payload = self._validate_payload(payload)

        content_hash = compute_hash(payload)
        stored, encryption = payload, None
        if passphrase:
            stored, encryption = self._encrypt(payload, passphrase)

        location_ref, ledger_ref, manifest = await self._store(stored, entry.mime_type, entry.name)
        version = await self.versions.create_version(
            file_id,
            content_hash,
            len(payload),
            changed_by,
            description,
            location_ref=location_ref,
            content_ref=ledger_ref,
            encryption=encryption,
            manifest=manifest,
            persist=False,
        )
        self._repoint(file_id, version)
        return version

    async def restore_version(self, file_id: str, version_id: str, restored_by: str) -> Version:
        """
        Restore an earlier version and point the file at its content.

        Raises:
            NotFoundError: Unknown file or version
            ValidationError: The version's content location is unknown
        """
        self.get(file_id)
        target = self.versions.get_version(file_id, version_id)
        if target.location_ref is None:
            raise ValidationError(f"Content of version {target.version} is not available")

        version = await self.versions.restore(file_id, version_id, restored_by, persist=False)
        self._repoint(file_id, version)
        return version

    async def create_rule(
        self,
        file_id: str,
        kind: str,
        conditions,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> AutomationRule:
        self.get(file_id)
        return await self.conditions.create_rule(file_id, kind, conditions, parameters)

    def setup_collaboration(self, file_id: str, owner: str) -> AccessRecord:
        self.get(file_id)
        return self.access.initialize(file_id, owner)

    async def sweep_once(self):
        return await self.conditions.sweep_once()

    # Default rule actions

    async def _auto_renew(self, rule: AutomationRule) -> None:
        days = rule.parameters.get('renewalDays', self.config.get_default_retention_days())
        try:
            days = int(days)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid renewalDays on rule {rule.id}: {days!r}") from e
        await self.renew(rule.file_id, days)

    async def _grant_access(self, rule: AutomationRule) -> None:
        record = self.access.get_access(rule.file_id)
        if record is None:
            raise NotSetupError("File not set up for collaboration")
        await self.access.add_or_update_collaborator(
            rule.file_id,
            rule.parameters.get('address'),
            rule.parameters.get('permissions', ["read"]),
            record.owner,
        )
