"""Ledger record wire formats (JSON documents with base64 payloads)."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import base64
import binascii
import json


B_PROTOCOL = "B"
CHUNK_PROTOCOL = "BCAT_CHUNK"
MANIFEST_PROTOCOL = "BCAT"
VERSION_PROTOCOL = "VERSION"
RULE_PROTOCOL = "RULE"
COLLABORATOR_PROTOCOL = "COLLABORATOR"
RENEWAL_PROTOCOL = "RENEWAL"


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def _b64decode(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def _dump(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True).encode('utf-8')


@dataclass
class SingleRecord:
    """A payload small enough to fit in one ledger record."""
    data: bytes
    media_type: str
    filename: str

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return _dump({
            'protocol': B_PROTOCOL,
            'data': _b64encode(self.data),
            'mediaType': self.media_type,
            'encoding': 'base64',
            'filename': self.filename,
        })

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'SingleRecord':
        return cls(
            data=_b64decode(obj['data']),
            media_type=obj['mediaType'],
            filename=obj['filename'],
        )


@dataclass
class ChunkRecord:
    """One fragment of a multi-chunk payload."""
    index: int
    data: bytes
    checksum: str

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return _dump({
            'protocol': CHUNK_PROTOCOL,
            'index': self.index,
            'data': _b64encode(self.data),
            'checksum': self.checksum,
        })

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'ChunkRecord':
        return cls(
            index=int(obj['index']),
            data=_b64decode(obj['data']),
            checksum=obj['checksum'],
        )


@dataclass
class ManifestRecord:
    """Ordered list of chunk references plus reassembly checks."""
    size: int
    hash: str
    media_type: str
    filename: str
    chunk_count: int
    chunks: List[str] = field(default_factory=list)

    @property
    def is_sealed(self) -> bool:
        return len(self.chunks) == self.chunk_count

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return _dump({
            'protocol': MANIFEST_PROTOCOL,
            'info': 'BCAT',
            'chunks': list(self.chunks),
            'chunkCount': self.chunk_count,
            'size': self.size,
            'hash': self.hash,
            'mediaType': self.media_type,
            'filename': self.filename,
        })

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'ManifestRecord':
        chunks = [str(ref) for ref in obj['chunks']]
        return cls(
            size=int(obj['size']),
            hash=obj['hash'],
            media_type=obj['mediaType'],
            filename=obj['filename'],
            chunk_count=int(obj.get('chunkCount', len(chunks))),
            chunks=chunks,
        )


@dataclass
class MetadataRecord:
    """
    Ledger record describing a catalog-side event (version, rule,
    collaborator grant, renewal). Carries no file payload.
    """
    protocol: str
    file_id: str
    body: Dict[str, Any]

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return _dump({
            'protocol': self.protocol,
            'fileId': self.file_id,
            'body': self.body,
        })

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'MetadataRecord':
        return cls(protocol=obj['protocol'], file_id=obj['fileId'], body=dict(obj.get('body') or {}))


Record = Union[SingleRecord, ChunkRecord, ManifestRecord, MetadataRecord]

_PAYLOAD_RECORDS = {
    B_PROTOCOL: SingleRecord,
    CHUNK_PROTOCOL: ChunkRecord,
    MANIFEST_PROTOCOL: ManifestRecord,
}

_METADATA_PROTOCOLS = (VERSION_PROTOCOL, RULE_PROTOCOL, COLLABORATOR_PROTOCOL, RENEWAL_PROTOCOL)


def parse_record(data: bytes) -> Record:
    """
    Decode record bytes into the matching record type.

    Args:
        data: Raw record bytes as committed to the ledger

    Returns:
        The decoded record

    Raises:
        ValueError: If the bytes are not a well-formed record
    """
    try:
        obj = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValueError(f"Record is not valid JSON: {e}") from e

    if not isinstance(obj, dict):
        raise ValueError("Record must be a JSON object")

    protocol = obj.get('protocol')
    try:
        if protocol in _PAYLOAD_RECORDS:
            return _PAYLOAD_RECORDS[protocol].from_dict(obj)
        if protocol in _METADATA_PROTOCOLS:
            return MetadataRecord.from_dict(obj)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed {protocol} record: {e}") from e

    raise ValueError(f"Unknown record protocol: {protocol!r}")


def metadata_record(protocol: str, file_id: str, body: Optional[Dict[str, Any]] = None) -> bytes:
    """Build the bytes of a metadata record ready for ledger commit."""
    return MetadataRecord(protocol=protocol, file_id=file_id, body=body or {}).to_json()
