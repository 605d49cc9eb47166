"""
Storage Services Package

Provides the abstract ledger document interface and its backends:
Google Sheets for the shared ledger, in-memory for local-only mode.
"""

from finledger.services.storage.interface import (
    DocumentStoreInterface,
    RemoteUnavailableError,
    StorageError,
    StoreBusyError,
    StoreNotConfiguredError,
    WriteOutcome,
)
from finledger.services.storage.google_sheets import (
    CHUNK_SIZE,
    DATA_COLUMNS,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    decode_document,
    encode_document,
    translate_error,
)
from finledger.services.storage.memory import InMemoryDocumentStore

__all__ = [
    # Interface
    "DocumentStoreInterface",
    "WriteOutcome",
    # Exceptions
    "RemoteUnavailableError",
    "StorageError",
    "StoreBusyError",
    "StoreNotConfiguredError",
    # Backends
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
    "decode_document",
    "encode_document",
    "translate_error",
    # Sheet layout
    "CHUNK_SIZE",
    "DATA_COLUMNS",
]
