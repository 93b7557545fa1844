"""Shared pytest fixtures for all tests."""

import json

import pytest

from backends import InMemoryBlobSink, InMemoryLedgerClient, InMemoryPersistence
from common.protocol import parse_record
from drive.config import Config
from drive.services import StorageCatalog

RECORD_CAPACITY = 64
MAX_FILE_SIZE = 4096


@pytest.fixture
def config():
    """
    Create an in-memory config with a small record capacity and a cheap KDF.

    Returns:
        Config instance
    """
    return Config(
        max_file_size=MAX_FILE_SIZE,
        record_capacity=RECORD_CAPACITY,
        kdf_rounds=1,
        default_retention_days=30,
        allowed_mime_types=None,
    )


@pytest.fixture
def blob_sink():
    return InMemoryBlobSink()


@pytest.fixture
def ledger():
    return InMemoryLedgerClient()


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def catalog(blob_sink, ledger, persistence, config):
    """
    Create a catalog wired to in-memory collaborators.

    Args:
        blob_sink: In-memory blob sink fixture
        ledger: In-memory ledger fixture
        persistence: In-memory persistence fixture
        config: Test config fixture

    Returns:
        StorageCatalog instance
    """
    return StorageCatalog(blob_sink, ledger, persistence, config=config)


@pytest.fixture
def records_by_protocol():
    """
    Return a helper that groups a ledger's committed records by protocol.

    Returns:
        Callable taking an InMemoryLedgerClient
    """
    def group(ledger):
        grouped = {}
        for raw in ledger.committed():
            protocol = json.loads(raw)['protocol']
            grouped.setdefault(protocol, []).append(parse_record(raw))
        return grouped

    return group
