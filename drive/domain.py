"""Domain types for the storage catalog and its auxiliary indices."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class EncryptionInfo:
    """
    How a stored payload was encrypted. The salt and nonce are hex strings;
    the passphrase itself is never stored.
    """
    algorithm: str
    key_derivation: str
    salt: str
    nonce: str
    rounds: int


@dataclass
class ChunkManifest:
    """
    Ordered chunk references of a multi-chunk payload. ``size`` and ``hash``
    describe the reassembled, possibly encrypted, stored payload.
    """
    chunk_refs: List[str]
    size: int
    hash: str


@dataclass
class CatalogEntry:
    id: str
    name: str
    mime_type: str
    size: int
    content_hash: str
    uploaded_at: datetime
    expires_at: datetime
    retention_days: int
    location_ref: str
    ledger_ref: str
    encryption: Optional[EncryptionInfo] = None
    folder: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    manifest: Optional[ChunkManifest] = None

    @property
    def is_encrypted(self) -> bool:
        return self.encryption is not None


@dataclass
class Version:
    id: str
    version: int
    hash: str
    size: int
    uploaded_at: datetime
    changed_by: str
    is_current_version: bool
    change_description: Optional[str] = None
    ledger_ref: Optional[str] = None
    # where this version's content lives, so a restore can repoint the entry
    location_ref: Optional[str] = None
    content_ref: Optional[str] = None
    encryption: Optional[EncryptionInfo] = None
    manifest: Optional[ChunkManifest] = None


@dataclass
class Condition:
    kind: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    is_met: bool = False
    last_checked: Optional[datetime] = None


@dataclass
class AutomationRule:
    id: str
    file_id: str
    kind: str
    conditions: List[Condition]
    created_at: datetime
    updated_at: datetime
    parameters: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    ledger_ref: Optional[str] = None
    fire_count: int = 0
    last_fired_at: Optional[datetime] = None


@dataclass
class Collaborator:
    address: str
    permissions: List[str]
    added_at: datetime
    added_by: str


@dataclass
class AccessRequest:
    requester: str
    requested_permissions: List[str]
    requested_at: datetime
    status: str = "pending"
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None


@dataclass
class AccessRecord:
    file_id: str
    owner: str
    collaborators: List[Collaborator] = field(default_factory=list)
    access_requests: List[AccessRequest] = field(default_factory=list)

    def find_collaborator(self, address: str) -> Optional[Collaborator]:
        for collaborator in self.collaborators:
            if collaborator.address == address:
                return collaborator
        return None


@dataclass(frozen=True)
class UploadProgress:
    """Progress notification emitted while an upload runs."""
    phase: str  # encrypting | uploading | confirming | complete | error
    progress: int
    message: str
    ledger_ref: Optional[str] = None


@dataclass
class SweepResult:
    """Outcome of one pass over the active automation rules."""
    evaluated: List[str] = field(default_factory=list)
    fired: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
