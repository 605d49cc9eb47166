"""
Abstract Document Store Interface

DESIGN DECISION: The whole ledger is ONE document with a handful of
top-level fields (transactions, borrowings, settings, budgets, templates).
Backends only need three operations:
1. read the document
2. merge a partial update (top-level fields replaced wholesale)
3. subscribe to changes

This keeps the backend swappable: Google Sheets for the shared household
ledger, an in-memory document for local-only mode and tests.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RemoteUnavailableError(StorageError):
    """The backend could not be reached (network, quota, outage)."""
    pass


class StoreNotConfiguredError(StorageError):
    """Credentials or document location are missing or wrong."""
    pass


class StoreBusyError(StorageError):
    """Another write is still in flight."""
    pass


class WriteOutcome(str, Enum):
    """How a merge was acknowledged."""
    COMMITTED = "committed"  # Stored remotely
    QUEUED = "queued"        # Remote unreachable; kept locally for the next sync


DocumentCallback = Callable[[Optional[dict[str, Any]]], None]
ErrorCallback = Callable[[StorageError], None]
Unsubscribe = Callable[[], None]


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the shared ledger document.

    Any backend (Google Sheets, in-memory, ...) must implement these methods.
    """

    @property
    def is_remote(self) -> bool:
        """True when other devices share this document."""
        return False

    @abstractmethod
    async def read(self) -> Optional[dict[str, Any]]:
        """
        Fetch the current document.

        Returns:
            The document, or None if it has never been written

        Raises:
            RemoteUnavailableError: backend unreachable
            StorageError: any other failure
        """
        pass

    @abstractmethod
    async def merge(self, partial: dict[str, Any]) -> WriteOutcome:
        """
        Merge top-level fields into the document.

        Each key in partial replaces that field completely. Other fields
        are left untouched.

        Raises:
            StorageError: the write was rejected and nothing was kept
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        on_data: DocumentCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """
        Deliver the document now and again whenever it changes.

        on_data receives None when the document does not exist yet.
        Returns a function that stops the subscription.
        """
        pass
