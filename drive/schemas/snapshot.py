"""Pydantic schemas for the catalog snapshot document and its side-tables."""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator

from drive.domain import (
    AccessRecord,
    AccessRequest,
    AutomationRule,
    CatalogEntry,
    ChunkManifest,
    Collaborator,
    Condition,
    EncryptionInfo,
    Version,
)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]

Permission = Literal["read", "write", "delete", "share"]
RuleKind = Literal["auto-renewal", "access-control", "collaborative-ownership", "conditional-access"]
ConditionKind = Literal["time-based", "payment-based", "signature-based", "usage-based"]
RequestStatus = Literal["pending", "approved", "rejected"]


class EncryptionSchema(BaseModel):
    algorithm: str
    key_derivation: str
    salt: str
    nonce: str
    rounds: int

    def to_domain(self) -> EncryptionInfo:
        return EncryptionInfo(**self.model_dump())


class ManifestSchema(BaseModel):
    chunk_refs: List[str]
    size: int
    hash: str

    def to_domain(self) -> ChunkManifest:
        return ChunkManifest(chunk_refs=list(self.chunk_refs), size=self.size, hash=self.hash)


class CatalogEntrySchema(BaseModel):
    """One stored file."""
    id: str
    name: str
    mime_type: str
    size: int = Field(ge=0)
    content_hash: str
    uploaded_at: UtcDatetime
    expires_at: UtcDatetime
    retention_days: int
    location_ref: str
    ledger_ref: str
    encryption: Optional[EncryptionSchema] = None
    folder: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    manifest: Optional[ManifestSchema] = None

    @classmethod
    def from_domain(cls, entry: CatalogEntry) -> "CatalogEntrySchema":
        return cls.model_validate(asdict(entry))

    def to_domain(self) -> CatalogEntry:
        return CatalogEntry(
            id=self.id,
            name=self.name,
            mime_type=self.mime_type,
            size=self.size,
            content_hash=self.content_hash,
            uploaded_at=self.uploaded_at,
            expires_at=self.expires_at,
            retention_days=self.retention_days,
            location_ref=self.location_ref,
            ledger_ref=self.ledger_ref,
            encryption=self.encryption.to_domain() if self.encryption else None,
            folder=self.folder,
            tags=list(self.tags),
            manifest=self.manifest.to_domain() if self.manifest else None,
        )


class VersionSchema(BaseModel):
    id: str
    version: int = Field(ge=1)
    hash: str
    size: int
    uploaded_at: UtcDatetime
    changed_by: str
    is_current_version: bool
    change_description: Optional[str] = None
    ledger_ref: Optional[str] = None
    location_ref: Optional[str] = None
    content_ref: Optional[str] = None
    encryption: Optional[EncryptionSchema] = None
    manifest: Optional[ManifestSchema] = None

    @classmethod
    def from_domain(cls, version: Version) -> "VersionSchema":
        return cls.model_validate(asdict(version))

    def to_domain(self) -> Version:
        data = self.model_dump(exclude={"encryption", "manifest"})
        return Version(
            **data,
            encryption=self.encryption.to_domain() if self.encryption else None,
            manifest=self.manifest.to_domain() if self.manifest else None,
        )


class ConditionSchema(BaseModel):
    kind: ConditionKind
    parameters: Dict[str, Any] = Field(default_factory=dict)
    is_met: bool = False
    last_checked: Optional[UtcDatetime] = None

    def to_domain(self) -> Condition:
        return Condition(
            kind=self.kind,
            parameters=dict(self.parameters),
            is_met=self.is_met,
            last_checked=self.last_checked,
        )


class RuleSchema(BaseModel):
    """An automation rule and its conditions."""
    id: str
    file_id: str
    kind: RuleKind
    conditions: List[ConditionSchema] = Field(default_factory=list)
    created_at: UtcDatetime
    updated_at: UtcDatetime
    parameters: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    ledger_ref: Optional[str] = None
    fire_count: int = 0
    last_fired_at: Optional[UtcDatetime] = None

    @classmethod
    def from_domain(cls, rule: AutomationRule) -> "RuleSchema":
        return cls.model_validate(asdict(rule))

    def to_domain(self) -> AutomationRule:
        data = self.model_dump(exclude={"conditions"})
        return AutomationRule(**data, conditions=[c.to_domain() for c in self.conditions])


class CollaboratorSchema(BaseModel):
    address: str
    permissions: List[Permission]
    added_at: UtcDatetime
    added_by: str


class AccessRequestSchema(BaseModel):
    requester: str
    requested_permissions: List[Permission]
    requested_at: UtcDatetime
    status: RequestStatus = "pending"
    approved_by: Optional[str] = None
    approved_at: Optional[UtcDatetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[UtcDatetime] = None


class AccessRecordSchema(BaseModel):
    """Owner, collaborators and access requests of one file."""
    file_id: str
    owner: str
    collaborators: List[CollaboratorSchema] = Field(default_factory=list)
    access_requests: List[AccessRequestSchema] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_collaborators(self):
        addresses = [c.address for c in self.collaborators]
        if len(addresses) != len(set(addresses)):
            raise ValueError(f"duplicate collaborator on file {self.file_id}")
        if self.owner in addresses:
            raise ValueError(f"owner of file {self.file_id} is listed as a collaborator")
        return self

    @classmethod
    def from_domain(cls, record: AccessRecord) -> "AccessRecordSchema":
        return cls.model_validate(asdict(record))

    def to_domain(self) -> AccessRecord:
        return AccessRecord(
            file_id=self.file_id,
            owner=self.owner,
            collaborators=[Collaborator(**c.model_dump()) for c in self.collaborators],
            access_requests=[AccessRequest(**r.model_dump()) for r in self.access_requests],
        )


class CatalogSnapshot(BaseModel):
    """
    Versioned catalog document: the file table plus the version, rule and
    access side-tables.
    """
    version: str
    exported: Optional[UtcDatetime] = None
    files: List[CatalogEntrySchema] = Field(default_factory=list)
    versions: Dict[str, List[VersionSchema]] = Field(default_factory=dict)
    rules: List[RuleSchema] = Field(default_factory=list)
    access: List[AccessRecordSchema] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_versions(self):
        for file_id, versions in self.versions.items():
            numbers = [v.version for v in versions]
            if numbers != list(range(1, len(numbers) + 1)):
                raise ValueError(f"versions of file {file_id} must be numbered 1..N in order, got {numbers}")
            current = sum(1 for v in versions if v.is_current_version)
            if current != 1:
                raise ValueError(f"file {file_id} must have exactly one current version, found {current}")
        return self

    @model_validator(mode='after')
    def validate_references(self):
        file_ids = {f.id for f in self.files}
        if len(file_ids) != len(self.files):
            raise ValueError("duplicate file id")

        orphans = set(self.versions) - file_ids
        orphans |= {r.file_id for r in self.rules} - file_ids
        orphans |= {a.file_id for a in self.access} - file_ids
        if orphans:
            raise ValueError(f"records reference unknown files: {', '.join(sorted(orphans))}")

        access_ids = [a.file_id for a in self.access]
        if len(access_ids) != len(set(access_ids)):
            raise ValueError("more than one access record for a file")
        return self
