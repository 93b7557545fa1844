"""Reference implementations of the catalog's external collaborators."""

from backends.blob_sink import FileBlobSink, InMemoryBlobSink
from backends.ledger_client import InMemoryLedgerClient
from backends.persistence import InMemoryPersistence, JsonFilePersistence, SqlitePersistence
from backends.verifiers import CallbackVerifier, StaticVerifier

__all__ = [
    "InMemoryBlobSink",
    "FileBlobSink",
    "InMemoryLedgerClient",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "SqlitePersistence",
    "StaticVerifier",
    "CallbackVerifier",
]
