"""Shared fixtures for the aftercare test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from aftercare.catalog import Brochure, load_catalog
from aftercare.models import Note, NoteChanges, NoteDraft, PendingSymptomEntry, SymptomEntry
from aftercare.persistence import PersistenceAdapter, PersistenceError, local_adapter
from aftercare.storage import KeyValueStore

START = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock that advances by *step* on every call."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class FailingCheckedItems:
    async def load(self) -> set[str]:
        raise PersistenceError("checked items unavailable")

    async def replace_all(self, item_ids: Iterable[str]) -> None:
        raise PersistenceError("checked items unavailable")


class FailingSymptoms:
    async def load(self) -> list[SymptomEntry]:
        raise PersistenceError("symptoms unavailable")

    async def append(self, entry: PendingSymptomEntry) -> SymptomEntry:
        raise PersistenceError("symptoms unavailable")


class FailingNotes:
    async def load(self) -> list[Note]:
        raise PersistenceError("notes unavailable")

    async def append(self, draft: NoteDraft) -> Note:
        raise PersistenceError("notes unavailable")

    async def update(self, note_id: str, changes: NoteChanges) -> Note:
        raise PersistenceError("notes unavailable")

    async def remove(self, note_id: str) -> Note | None:
        raise PersistenceError("notes unavailable")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv(tmp_path) -> KeyValueStore:
    return KeyValueStore(tmp_path / "storage.json")


@pytest.fixture
def adapter(kv, clock) -> PersistenceAdapter:
    return local_adapter(kv, clock)


@pytest.fixture
def failing_adapter() -> PersistenceAdapter:
    return PersistenceAdapter(
        name="failing",
        checked_items=FailingCheckedItems(),
        symptoms=FailingSymptoms(),
        notes=FailingNotes(),
    )


@pytest.fixture
def laparoscopic() -> Brochure:
    brochure = load_catalog().get("laparoscopic-surgery")
    assert brochure is not None
    return brochure


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for an AsyncClient whose requests are answered by *handler*."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url="https://api.example.test/v1",
            transport=httpx.MockTransport(handler),
        )

    return _make
