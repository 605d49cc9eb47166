"""Services package."""

from finledger.services.storage import (
    DocumentStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    RemoteUnavailableError,
    StorageError,
    StoreBusyError,
    StoreNotConfiguredError,
    WriteOutcome,
)
from finledger.services.ledger_store import (
    UNIVERSAL_PIN,
    ConnectionStatus,
    LedgerStore,
)

__all__ = [
    # Ledger
    "ConnectionStatus",
    "LedgerStore",
    "UNIVERSAL_PIN",
    # Storage services
    "DocumentStoreInterface",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
    "RemoteUnavailableError",
    "StorageError",
    "StoreBusyError",
    "StoreNotConfiguredError",
    "WriteOutcome",
]
