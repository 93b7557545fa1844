"""Maps payloads of any size onto fixed-capacity ledger records and back."""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

from common.constants import RECORD_CAPACITY_BYTES
from common.logging_config import get_logger
from common.protocol import ChunkRecord, ManifestRecord, SingleRecord, parse_record
from drive.crypto import IncrementalHasher, compute_hash, verify_hash
from drive.exceptions import ReassemblyError

logger = get_logger(__name__)

FetchRecord = Callable[[str], Awaitable[bytes]]


@dataclass
class EncodedUnit:
    """
    Result of encoding one payload: either a single record, or ordered chunk
    records plus a manifest whose chunk references are filled in once the
    chunks have been committed.
    """
    single: Optional[SingleRecord] = None
    chunks: List[ChunkRecord] = field(default_factory=list)
    manifest: Optional[ManifestRecord] = None

    @property
    def is_chunked(self) -> bool:
        return self.manifest is not None

    @property
    def record_count(self) -> int:
        if self.is_chunked:
            return len(self.chunks) + 1
        return 1


class ChunkCodec:
    """
    Stateless encoder/decoder for the two record layouts.

    Payloads up to ``capacity`` bytes (inclusive) travel as one record;
    larger payloads are split into consecutive chunks of at most ``capacity``
    bytes followed by a manifest.
    """

    def __init__(self, capacity: int = RECORD_CAPACITY_BYTES):
        if capacity <= 0:
            raise ValueError("Record capacity must be positive")
        self.capacity = capacity

    def encode(self, payload: bytes, mime_type: str, filename: str) -> EncodedUnit:
        if len(payload) <= self.capacity:
            return EncodedUnit(single=SingleRecord(data=payload, media_type=mime_type, filename=filename))

        chunks = list(self._split_into_chunks(payload))
        manifest = ManifestRecord(
            size=len(payload),
            hash=compute_hash(payload),
            media_type=mime_type,
            filename=filename,
            chunk_count=len(chunks),
        )
        logger.debug(f"Encoded {len(payload)} bytes of {filename} into {len(chunks)} chunks")
        return EncodedUnit(chunks=chunks, manifest=manifest)

    def _split_into_chunks(self, payload: bytes):
        for chunk_index, offset in enumerate(range(0, len(payload), self.capacity)):
            chunk_data = payload[offset:offset + self.capacity]
            yield ChunkRecord(index=chunk_index, data=chunk_data, checksum=compute_hash(chunk_data))

    @staticmethod
    def seal_manifest(manifest: ManifestRecord, chunk_refs: Sequence[str]) -> ManifestRecord:
        """
        Fill in the manifest's chunk references, in commit order.

        Raises:
            ReassemblyError: If the reference count does not match the chunk count
        """
        if len(chunk_refs) != manifest.chunk_count:
            raise ReassemblyError(
                f"Manifest expects {manifest.chunk_count} chunk references, got {len(chunk_refs)}"
            )
        return ManifestRecord(
            size=manifest.size,
            hash=manifest.hash,
            media_type=manifest.media_type,
            filename=manifest.filename,
            chunk_count=manifest.chunk_count,
            chunks=list(chunk_refs),
        )

    @staticmethod
    def reassemble(manifest: ManifestRecord, chunk_records: Sequence[ChunkRecord]) -> bytes:
        """
        Concatenate chunk records in manifest order and verify the result.

        Args:
            manifest: Sealed manifest
            chunk_records: Chunk records, one per manifest reference, in manifest order

        Returns:
            The reassembled payload

        Raises:
            ReassemblyError: On a missing, misplaced or corrupted chunk, or a
                size/hash mismatch against the manifest
        """
        if len(chunk_records) != manifest.chunk_count:
            raise ReassemblyError(
                f"Expected {manifest.chunk_count} chunks, got {len(chunk_records)}"
            )

        hasher = IncrementalHasher()
        pieces = []
        for position, record in enumerate(chunk_records):
            if record.index != position:
                raise ReassemblyError(f"Chunk at position {position} carries index {record.index}")
            if not verify_hash(record.data, record.checksum):
                raise ReassemblyError(f"Checksum mismatch for chunk {position}")
            hasher.update(record.data)
            pieces.append(record.data)

        payload = b''.join(pieces)
        if len(payload) != manifest.size:
            raise ReassemblyError(f"Reassembled {len(payload)} bytes, manifest declares {manifest.size}")
        if hasher.finalize() != manifest.hash:
            raise ReassemblyError("Reassembled payload does not match manifest hash")
        return payload

    async def decode(self, record_bytes: bytes, fetch_record: FetchRecord) -> bytes:
        """
        Decode a root record (single record or manifest) back into its payload.

        Args:
            record_bytes: Bytes of the root record
            fetch_record: Awaitable lookup returning the bytes of a chunk record by reference

        Returns:
            The original payload

        Raises:
            ReassemblyError: If any record is malformed or verification fails
        """
        root = self._parse(record_bytes, "root record")

        if isinstance(root, SingleRecord):
            return root.data

        if not isinstance(root, ManifestRecord):
            raise ReassemblyError(f"Unexpected root record type: {type(root).__name__}")
        if not root.is_sealed:
            raise ReassemblyError("Manifest has no chunk references")

        chunk_records = []
        for position, ref in enumerate(root.chunks):
            record = self._parse(await fetch_record(ref), f"chunk {position}")
            if not isinstance(record, ChunkRecord):
                raise ReassemblyError(f"Reference {ref} at position {position} is not a chunk record")
            chunk_records.append(record)

        return self.reassemble(root, chunk_records)

    @staticmethod
    def _parse(record_bytes: bytes, label: str):
        try:
            return parse_record(record_bytes)
        except ValueError as e:
            raise ReassemblyError(f"Cannot decode {label}: {e}") from e
