"""
Ledger clients: append-only record commitment.

Interface expected by the catalog:
    async commit_record(record: bytes) -> str   # opaque confirmation id
    async fetch_record(ledger_ref: str) -> bytes
"""

import os
from typing import Dict, List, Optional

from common.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryLedgerClient:
    """
    Append-only in-memory ledger. References are random 64-character hex
    strings, shaped like transaction ids.

    With ``fail_after`` set, every commit after that many successful ones
    raises ``ConnectionError``.
    """

    def __init__(self, fail_after: Optional[int] = None):
        self._records: Dict[str, bytes] = {}
        self._order: List[str] = []
        self.fail_after = fail_after

    async def commit_record(self, record: bytes) -> str:
        if self.fail_after is not None and len(self._order) >= self.fail_after:
            raise ConnectionError("ledger unavailable")
        ledger_ref = os.urandom(32).hex()
        self._records[ledger_ref] = bytes(record)
        self._order.append(ledger_ref)
        logger.debug(f"Committed record {ledger_ref} ({len(record)} bytes)")
        return ledger_ref

    async def fetch_record(self, ledger_ref: str) -> bytes:
        try:
            return self._records[ledger_ref]
        except KeyError:
            raise KeyError(f"Unknown ledger reference: {ledger_ref}") from None

    @property
    def commit_count(self) -> int:
        return len(self._order)

    def committed(self) -> List[bytes]:
        """All committed records in commit order."""
        return [self._records[ref] for ref in self._order]

    def refs(self) -> List[str]:
        return list(self._order)

    def tamper(self, ledger_ref: str, record: bytes) -> None:
        """Overwrite a committed record in place (fault injection)."""
        if ledger_ref not in self._records:
            raise KeyError(f"Unknown ledger reference: {ledger_ref}")
        self._records[ledger_ref] = bytes(record)
