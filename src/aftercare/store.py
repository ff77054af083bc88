"""Recovery state store — the in-memory source of truth for a session.

Holds checked item ids, symptom entries and notes, and is the only component
that writes through the persistence adapter.

Write discipline differs per collection:

- Checked items are optimistic: the set changes before the write is issued
  and a failed write is only logged. Overlapping toggles each send the whole
  set, so the last write to complete wins.
- Symptom entries and notes are confirm-then-apply: memory changes only after
  the backend returns the stored record. A failed write raises WriteFailure
  and leaves the collection as it was.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from aftercare.models import (
    Note,
    NoteChanges,
    NoteDraft,
    PendingSymptomEntry,
    RecordKind,
    SymptomDraft,
    SymptomEntry,
)
from aftercare.persistence.base import PersistenceAdapter, PersistenceError
from aftercare.persistence.local import utc_now

logger = logging.getLogger(__name__)


class LoadFailure(Exception):
    """Hydrating one collection failed; the collection was left empty."""

    def __init__(self, record_kind: RecordKind, cause: BaseException) -> None:
        self.record_kind = record_kind
        self.cause = cause
        super().__init__(f"Failed to load {record_kind.value}: {cause}")


class WriteFailure(Exception):
    """A symptom or note write was not confirmed; memory was not changed."""

    def __init__(self, record_kind: RecordKind, operation: str, cause: BaseException) -> None:
        self.record_kind = record_kind
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation} {record_kind.value}: {cause}")


def _sort_notes(notes: list[Note]) -> list[Note]:
    return sorted(notes, key=lambda n: n.updated_at, reverse=True)


class RecoveryStore:
    """Session-lifetime holder of the three recovery collections.

    Parameters
    ----------
    adapter:
        Backend implementation for each record kind.
    clock:
        Returns the current time; used to date new symptom entries.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._adapter = adapter
        self._clock = clock
        self._checked: set[str] = set()
        self._symptoms: list[SymptomEntry] = []
        self._notes: list[Note] = []
        self._in_flight: dict[RecordKind, int] = {kind: 0 for kind in RecordKind}
        self.load_errors: dict[RecordKind, LoadFailure] = {}

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def backend_name(self) -> str:
        return self._adapter.name

    @property
    def checked_items(self) -> frozenset[str]:
        return frozenset(self._checked)

    @property
    def symptoms(self) -> list[SymptomEntry]:
        """Symptom entries, newest first."""
        return list(self._symptoms)

    @property
    def notes(self) -> list[Note]:
        """Notes ordered by ``updated_at``, most recent first."""
        return list(self._notes)

    def get_note(self, note_id: str) -> Note | None:
        return next((n for n in self._notes if n.id == note_id), None)

    def is_checked(self, item_id: str) -> bool:
        return item_id in self._checked

    # ------------------------------------------------------------------
    # In-flight tracking
    # ------------------------------------------------------------------

    @contextmanager
    def _track(self, kind: RecordKind) -> Iterator[None]:
        self._in_flight[kind] += 1
        try:
            yield
        finally:
            self._in_flight[kind] -= 1

    def is_loading(self, kind: RecordKind) -> bool:
        return self._in_flight[kind] > 0

    @property
    def loading(self) -> dict[RecordKind, bool]:
        return {kind: count > 0 for kind, count in self._in_flight.items()}

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    async def hydrate(self) -> None:
        """Load all three collections concurrently.

        Each load is independent: a failure is logged and recorded in
        ``load_errors`` and leaves only that collection empty.
        """
        self.load_errors.clear()
        await asyncio.gather(
            self._hydrate_checked(),
            self._hydrate_symptoms(),
            self._hydrate_notes(),
        )

    def _record_load_failure(self, kind: RecordKind, exc: PersistenceError) -> None:
        failure = LoadFailure(kind, exc)
        self.load_errors[kind] = failure
        logger.warning("%s", failure)

    async def _hydrate_checked(self) -> None:
        kind = RecordKind.CHECKED_ITEMS
        with self._track(kind):
            try:
                self._checked = set(await self._adapter.checked_items.load())
            except PersistenceError as exc:
                self._checked = set()
                self._record_load_failure(kind, exc)

    async def _hydrate_symptoms(self) -> None:
        kind = RecordKind.SYMPTOMS
        with self._track(kind):
            try:
                self._symptoms = list(await self._adapter.symptoms.load())
            except PersistenceError as exc:
                self._symptoms = []
                self._record_load_failure(kind, exc)

    async def _hydrate_notes(self) -> None:
        kind = RecordKind.NOTES
        with self._track(kind):
            try:
                self._notes = _sort_notes(list(await self._adapter.notes.load()))
            except PersistenceError as exc:
                self._notes = []
                self._record_load_failure(kind, exc)

    # ------------------------------------------------------------------
    # Checked items
    # ------------------------------------------------------------------

    async def toggle_checked(self, item_id: str, checked: bool) -> None:
        """Mark *item_id* checked or unchecked, then persist the whole set.

        The in-memory set is updated before the first await. A failed write
        is logged and not retried.
        """
        if checked:
            self._checked.add(item_id)
        else:
            self._checked.discard(item_id)
        snapshot = frozenset(self._checked)

        with self._track(RecordKind.CHECKED_ITEMS):
            try:
                await self._adapter.checked_items.replace_all(snapshot)
            except PersistenceError as exc:
                logger.warning("Could not save checked items (%d ids): %s", len(snapshot), exc)

    # ------------------------------------------------------------------
    # Symptoms
    # ------------------------------------------------------------------

    async def log_symptom(self, draft: SymptomDraft) -> SymptomEntry:
        """Store a new symptom entry and prepend the confirmed record."""
        pending = PendingSymptomEntry.from_draft(draft, self._clock())
        with self._track(RecordKind.SYMPTOMS):
            try:
                stored = await self._adapter.symptoms.append(pending)
            except PersistenceError as exc:
                raise WriteFailure(RecordKind.SYMPTOMS, "append", exc) from exc

        self._symptoms.insert(0, stored)
        if stored.needs_attention:
            logger.info(
                "Symptom entry %s needs attention (severity %d)", stored.id, stored.severity
            )
        return stored

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def add_note(self, draft: NoteDraft) -> Note:
        with self._track(RecordKind.NOTES):
            try:
                stored = await self._adapter.notes.append(draft)
            except PersistenceError as exc:
                raise WriteFailure(RecordKind.NOTES, "append", exc) from exc

        self._notes = _sort_notes([stored, *(n for n in self._notes if n.id != stored.id)])
        return stored

    async def update_note(self, note_id: str, changes: NoteChanges) -> Note:
        """Apply a partial update once the backend confirms it.

        Only the supplied fields are merged into the in-memory note;
        ``updated_at`` comes from the backend's record.
        """
        fields = changes.fields()
        if not fields:
            raise ValueError("No note fields to update")

        with self._track(RecordKind.NOTES):
            try:
                stored = await self._adapter.notes.update(note_id, changes)
            except PersistenceError as exc:
                raise WriteFailure(RecordKind.NOTES, "update", exc) from exc

        existing = self.get_note(note_id)
        if existing is None:
            merged = stored
        else:
            merged = existing.model_copy(update={**fields, "updated_at": stored.updated_at})

        self._notes = _sort_notes([merged, *(n for n in self._notes if n.id != note_id)])
        return merged

    async def delete_note(self, note_id: str) -> None:
        with self._track(RecordKind.NOTES):
            try:
                await self._adapter.notes.remove(note_id)
            except PersistenceError as exc:
                raise WriteFailure(RecordKind.NOTES, "remove", exc) from exc

        self._notes = [n for n in self._notes if n.id != note_id]

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Forget all in-memory state (used on logout)."""
        self._checked = set()
        self._symptoms = []
        self._notes = []
        self.load_errors.clear()
