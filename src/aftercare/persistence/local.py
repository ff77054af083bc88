"""Local persistence backend on top of the profile key/value store.

Each record kind lives under its own key as a JSON array:

- ``checkedItems``: list of item ids
- ``symptoms``: symptom entries, newest first, dates as ISO-8601 strings
- ``notes``: notes, newest first, timestamps as ISO-8601 strings

Reads never raise: an absent or unparseable key is an empty collection.
Every mutation rewrites the whole array under the same key.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from aftercare.models import (
    Note,
    NoteChanges,
    NoteDraft,
    PendingSymptomEntry,
    RecordKind,
    SymptomEntry,
)
from aftercare.persistence.base import PersistenceAdapter, PersistenceError, RecordNotFound
from aftercare.storage import KeyValueStore, StorageError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_M = TypeVar("_M", bound=BaseModel)

# Smallest step used to keep updatedAt strictly increasing when the clock
# has not advanced between two writes.
_TIMESTAMP_STEP = timedelta(milliseconds=1)


def utc_now() -> datetime:
    return datetime.now(UTC)


def next_local_id(existing_ids: Iterable[str], now: datetime) -> str:
    """Return a timestamp-based id that is unique among *existing_ids*.

    The id is the epoch time in milliseconds, bumped past the largest numeric
    id already present when two records are created within the same tick.
    """
    candidate = int(now.timestamp() * 1000)
    numeric = [int(i) for i in existing_ids if i.isascii() and i.isdigit()]
    if numeric:
        candidate = max(candidate, max(numeric) + 1)
    return str(candidate)


class _LocalCollection:
    """Shared JSON array handling for one key of the key/value store."""

    kind: RecordKind

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def _read_raw(self) -> list[Any]:
        raw = self._store.get_item(self.kind.value)
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Stored %s is not valid JSON, ignoring it: %s", self.kind.value, exc)
            return []
        if not isinstance(data, list):
            logger.warning("Stored %s is not a JSON array, ignoring it", self.kind.value)
            return []
        return data

    def _read_models(self, model: type[_M]) -> list[_M]:
        records: list[_M] = []
        for index, entry in enumerate(self._read_raw()):
            try:
                records.append(model.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid %s record at index %d: %s", self.kind.value, index, exc
                )
        return records

    def _write_raw(self, data: list[Any]) -> None:
        try:
            self._store.set_item(self.kind.value, json.dumps(data, ensure_ascii=False))
        except StorageError as exc:
            raise PersistenceError(f"Failed to save {self.kind.value}: {exc}") from exc


class LocalCheckedItems(_LocalCollection):
    kind = RecordKind.CHECKED_ITEMS

    async def load(self) -> set[str]:
        return {item for item in self._read_raw() if isinstance(item, str)}

    async def replace_all(self, item_ids: Iterable[str]) -> None:
        self._write_raw(sorted(set(item_ids)))


class LocalSymptoms(_LocalCollection):
    kind = RecordKind.SYMPTOMS

    async def load(self) -> list[SymptomEntry]:
        return self._read_models(SymptomEntry)

    async def append(self, entry: PendingSymptomEntry) -> SymptomEntry:
        entries = self._read_models(SymptomEntry)
        entry_id = next_local_id((e.id for e in entries), self._clock())
        stored = SymptomEntry(id=entry_id, **entry.model_dump())
        self._write_raw([e.to_wire() for e in [stored, *entries]])
        return stored


class LocalNotes(_LocalCollection):
    kind = RecordKind.NOTES

    async def load(self) -> list[Note]:
        return self._read_models(Note)

    async def append(self, draft: NoteDraft) -> Note:
        notes = self._read_models(Note)
        now = self._clock()
        note = Note(
            id=next_local_id((n.id for n in notes), now),
            title=draft.title,
            content=draft.content,
            category=draft.category,
            created_at=now,
            updated_at=now,
        )
        self._write_raw([n.to_wire() for n in [note, *notes]])
        return note

    async def update(self, note_id: str, changes: NoteChanges) -> Note:
        notes = self._read_models(Note)
        for index, existing in enumerate(notes):
            if existing.id == note_id:
                break
        else:
            raise RecordNotFound(self.kind, note_id)

        updated_at = max(self._clock(), existing.updated_at + _TIMESTAMP_STEP)
        updated = existing.model_copy(update={**changes.fields(), "updated_at": updated_at})
        notes[index] = updated
        self._write_raw([n.to_wire() for n in notes])
        return updated

    async def remove(self, note_id: str) -> Note | None:
        notes = self._read_models(Note)
        remaining = [n for n in notes if n.id != note_id]
        if len(remaining) == len(notes):
            raise RecordNotFound(self.kind, note_id)
        removed = next(n for n in notes if n.id == note_id)
        self._write_raw([n.to_wire() for n in remaining])
        return removed


def local_adapter(store: KeyValueStore, clock: Clock = utc_now) -> PersistenceAdapter:
    """Build a PersistenceAdapter whose three collections live in *store*."""
    return PersistenceAdapter(
        name="local",
        checked_items=LocalCheckedItems(store, clock),
        symptoms=LocalSymptoms(store, clock),
        notes=LocalNotes(store, clock),
    )
