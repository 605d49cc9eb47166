"""
In-Memory Document Store

Local-only backend: used when Google Sheets is not configured and as the
store behind the test suite. Values are deep-copied through JSON on the
way in and out, so callers can never alias stored state.
"""

import json
from typing import Any, Optional

from finledger.services.storage.interface import (
    DocumentCallback,
    DocumentStoreInterface,
    ErrorCallback,
    Unsubscribe,
    WriteOutcome,
)


def _copy(document: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    return None if document is None else json.loads(json.dumps(document))


class InMemoryDocumentStore(DocumentStoreInterface):
    """Single-process document. Subscribers are notified synchronously."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._document = _copy(initial)
        self._subscribers: list[DocumentCallback] = []

    async def read(self) -> Optional[dict[str, Any]]:
        return _copy(self._document)

    async def merge(self, partial: dict[str, Any]) -> WriteOutcome:
        document = self._document or {}
        document.update(_copy(partial))
        self._document = document
        for callback in list(self._subscribers):
            callback(_copy(self._document))
        return WriteOutcome.COMMITTED

    def subscribe(
        self,
        on_data: DocumentCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        self._subscribers.append(on_data)
        on_data(_copy(self._document))

        def unsubscribe() -> None:
            if on_data in self._subscribers:
                self._subscribers.remove(on_data)

        return unsubscribe
