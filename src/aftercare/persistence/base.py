"""Persistence contract shared by the local and remote backends.

One protocol per record kind. The recovery store depends only on these
protocols, so either backend can be plugged in at startup.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Protocol

from aftercare.models import (
    Note,
    NoteChanges,
    NoteDraft,
    PendingSymptomEntry,
    RecordKind,
    SymptomEntry,
)


class PersistenceError(Exception):
    """Base class for backend failures."""


class FetchFailed(PersistenceError):
    """A backend call for *record_kind* failed during *operation*.

    Attributes:
        operation: One of ``load``, ``append``, ``replace``, ``update``, ``remove``.
        record_kind: The collection involved.
        status_code: HTTP status when the failure came from a response.
    """

    def __init__(
        self,
        operation: str,
        record_kind: RecordKind,
        message: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.operation = operation
        self.record_kind = record_kind
        self.status_code = status_code
        self.message = message or f"Failed to {operation} {record_kind.value}"
        super().__init__(self.message)


class RecordNotFound(PersistenceError):
    """Raised when updating or removing a record id the backend does not hold."""

    def __init__(self, record_kind: RecordKind, record_id: str) -> None:
        self.record_kind = record_kind
        self.record_id = record_id
        super().__init__(f"{record_kind.value} record not found: {record_id}")


class CheckedItemsBackend(Protocol):
    """Protocol for the checked-item id set."""

    async def load(self) -> set[str]: ...

    async def replace_all(self, item_ids: Iterable[str]) -> None:
        """Persist *item_ids* as the complete set, replacing what was stored."""
        ...


class SymptomBackend(Protocol):
    """Protocol for the append-only symptom log."""

    async def load(self) -> list[SymptomEntry]: ...

    async def append(self, entry: PendingSymptomEntry) -> SymptomEntry:
        """Store *entry* and return it with its backend-assigned id."""
        ...


class NotesBackend(Protocol):
    """Protocol for free-form notes."""

    async def load(self) -> list[Note]: ...

    async def append(self, draft: NoteDraft) -> Note: ...

    async def update(self, note_id: str, changes: NoteChanges) -> Note: ...

    async def remove(self, note_id: str) -> Note | None:
        """Delete the note. Returns the removed note when the backend reports it."""
        ...


@dataclass
class PersistenceAdapter:
    """One backend implementation per record kind."""

    name: str
    checked_items: CheckedItemsBackend
    symptoms: SymptomBackend
    notes: NotesBackend
    _closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list, repr=False)

    async def aclose(self) -> None:
        for closer in self._closers:
            await closer()
        self._closers.clear()
