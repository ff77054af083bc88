"""Tests for aftercare.store — hydration, optimistic toggles, confirm-then-apply writes."""

from __future__ import annotations

import asyncio
import json
import random
from collections.abc import Iterable
from datetime import UTC, datetime

import httpx
import pytest
from pydantic import ValidationError

from aftercare.models import NoteCategory, NoteChanges, NoteDraft, RecordKind, SymptomDraft
from aftercare.persistence import PersistenceAdapter, local_adapter, remote_adapter
from aftercare.persistence.local import LocalNotes
from aftercare.store import LoadFailure, RecoveryStore, WriteFailure

pytestmark = pytest.mark.unit

START_TICK = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def store(adapter, clock) -> RecoveryStore:
    return RecoveryStore(adapter, clock=clock)


# ---------------------------------------------------------------------------
# Hydration
# ---------------------------------------------------------------------------


class TestHydrate:
    async def test_empty_storage_hydrates_empty_collections(self, store):
        await store.hydrate()
        assert store.checked_items == frozenset()
        assert store.symptoms == []
        assert store.notes == []
        assert store.load_errors == {}

    async def test_hydrate_reproduces_previous_writes(self, kv, clock):
        writer = RecoveryStore(local_adapter(kv, clock), clock=clock)
        await writer.hydrate()
        await writer.toggle_checked("prep-1", True)
        await writer.toggle_checked("prep-2", True)
        entry = await writer.log_symptom(SymptomDraft(symptoms=["fatigue"], severity=2))
        note = await writer.add_note(NoteDraft(title="Q1", content="ask doctor"))

        reader = RecoveryStore(local_adapter(kv, clock), clock=clock)
        await reader.hydrate()
        assert reader.checked_items == {"prep-1", "prep-2"}
        assert reader.symptoms == [entry]
        assert reader.notes == [note]

    async def test_one_failing_collection_does_not_block_others(self, kv, clock, failing_adapter):
        good = local_adapter(kv, clock)
        await good.notes.append(NoteDraft(title="kept", content="still here"))
        await good.checked_items.replace_all({"prep-1"})

        mixed = PersistenceAdapter(
            name="mixed",
            checked_items=good.checked_items,
            symptoms=failing_adapter.symptoms,
            notes=good.notes,
        )
        store = RecoveryStore(mixed, clock=clock)
        await store.hydrate()

        assert store.checked_items == {"prep-1"}
        assert [n.title for n in store.notes] == ["kept"]
        assert store.symptoms == []
        assert set(store.load_errors) == {RecordKind.SYMPTOMS}
        assert isinstance(store.load_errors[RecordKind.SYMPTOMS], LoadFailure)

    async def test_all_failing_loads_leave_everything_empty(self, failing_adapter):
        store = RecoveryStore(failing_adapter)
        await store.hydrate()
        assert store.checked_items == frozenset()
        assert store.symptoms == []
        assert store.notes == []
        assert set(store.load_errors) == set(RecordKind)
        assert not any(store.loading.values())

    async def test_hydrated_notes_are_sorted_by_updated_at(self, kv, clock):
        notes = LocalNotes(kv, clock)
        first = await notes.append(NoteDraft(title="first", content="a"))
        await notes.append(NoteDraft(title="second", content="b"))
        await notes.update(first.id, NoteChanges(content="a, revised"))

        store = RecoveryStore(local_adapter(kv, clock), clock=clock)
        await store.hydrate()
        assert [n.title for n in store.notes] == ["first", "second"]


# ---------------------------------------------------------------------------
# Checked items
# ---------------------------------------------------------------------------


class TestToggleChecked:
    async def test_replay_matches_final_set(self, store, adapter):
        await store.hydrate()
        rng = random.Random(7)
        ids = [f"item-{i}" for i in range(6)]
        expected: set[str] = set()
        for _ in range(40):
            item_id = rng.choice(ids)
            checked = rng.random() < 0.6
            await store.toggle_checked(item_id, checked)
            if checked:
                expected.add(item_id)
            else:
                expected.discard(item_id)

        assert store.checked_items == expected
        assert await adapter.checked_items.load() == expected

    async def test_change_is_visible_before_write_completes(self, clock):
        release = asyncio.Event()

        class SlowChecked:
            async def load(self) -> set[str]:
                return set()

            async def replace_all(self, item_ids: Iterable[str]) -> None:
                await release.wait()

        store = RecoveryStore(
            PersistenceAdapter(
                name="slow",
                checked_items=SlowChecked(),
                symptoms=None,  # type: ignore[arg-type]
                notes=None,  # type: ignore[arg-type]
            ),
            clock=clock,
        )
        task = asyncio.create_task(store.toggle_checked("prep-1", True))
        await asyncio.sleep(0)

        assert store.is_checked("prep-1")
        assert store.is_loading(RecordKind.CHECKED_ITEMS)

        release.set()
        await task
        assert not store.is_loading(RecordKind.CHECKED_ITEMS)

    async def test_failed_write_is_swallowed_and_memory_kept(self, failing_adapter, caplog):
        store = RecoveryStore(failing_adapter)
        await store.toggle_checked("prep-1", True)
        assert store.checked_items == {"prep-1"}
        assert "Could not save checked items" in caplog.text

    async def test_last_completed_write_wins(self):
        gates = [asyncio.Event(), asyncio.Event()]
        written: list[frozenset[str]] = []
        calls = 0

        class RacingChecked:
            async def load(self) -> set[str]:
                return set()

            async def replace_all(self, item_ids: Iterable[str]) -> None:
                nonlocal calls
                gate = gates[calls]
                calls += 1
                await gate.wait()
                written.append(frozenset(item_ids))

        store = RecoveryStore(
            PersistenceAdapter(
                name="racing",
                checked_items=RacingChecked(),
                symptoms=None,  # type: ignore[arg-type]
                notes=None,  # type: ignore[arg-type]
            )
        )
        first = asyncio.create_task(store.toggle_checked("a", True))
        await asyncio.sleep(0)
        second = asyncio.create_task(store.toggle_checked("b", True))
        await asyncio.sleep(0)

        # The second write lands first, then the stale first write overwrites it.
        gates[1].set()
        await second
        gates[0].set()
        await first

        assert store.checked_items == {"a", "b"}
        assert written == [frozenset({"a", "b"}), frozenset({"a"})]


# ---------------------------------------------------------------------------
# Symptoms
# ---------------------------------------------------------------------------


class TestLogSymptom:
    @pytest.mark.parametrize(
        ("tags", "severity", "expected"),
        [
            (["fever"], 3, True),
            (["fatigue"], 3, False),
            (["fatigue"], 7, True),
        ],
    )
    async def test_needs_attention(self, store, tags, severity, expected):
        entry = await store.log_symptom(SymptomDraft(symptoms=tags, severity=severity))
        assert entry.needs_attention is expected

    async def test_new_entries_are_prepended(self, store):
        first = await store.log_symptom(SymptomDraft(symptoms=["fatigue"], severity=2))
        second = await store.log_symptom(SymptomDraft(symptoms=["bloating"], severity=4))
        assert [e.id for e in store.symptoms] == [second.id, first.id]

    async def test_ids_are_unique_for_same_tick(self, kv):
        frozen = RecoveryStore(local_adapter(kv, lambda: START_TICK), clock=lambda: START_TICK)
        entries = [
            await frozen.log_symptom(SymptomDraft(symptoms=["fatigue"], severity=1))
            for _ in range(5)
        ]
        assert len({e.id for e in entries}) == 5

    async def test_failure_raises_and_leaves_list_unchanged(self, failing_adapter):
        store = RecoveryStore(failing_adapter)
        with pytest.raises(WriteFailure) as excinfo:
            await store.log_symptom(SymptomDraft(symptoms=["fever"], severity=9))
        assert excinfo.value.record_kind is RecordKind.SYMPTOMS
        assert store.symptoms == []

    def test_draft_requires_a_symptom(self):
        with pytest.raises(ValidationError):
            SymptomDraft(symptoms=[], severity=3)

    def test_draft_rejects_out_of_range_severity(self):
        with pytest.raises(ValidationError):
            SymptomDraft(symptoms=["fatigue"], severity=11)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class TestNotes:
    async def test_update_merges_only_supplied_fields(self, store):
        note = await store.add_note(
            NoteDraft(title="Q1", content="ask doctor", category=NoteCategory.QUESTION)
        )
        updated = await store.update_note(note.id, NoteChanges(content="asked and answered"))

        assert updated.content == "asked and answered"
        assert updated.title == "Q1"
        assert updated.category is NoteCategory.QUESTION
        assert updated.created_at == note.created_at
        assert updated.updated_at > updated.created_at
        assert store.get_note(note.id) == updated

    async def test_update_with_no_fields_is_rejected(self, store):
        note = await store.add_note(NoteDraft(title="t", content="c"))
        with pytest.raises(ValueError, match="No note fields"):
            await store.update_note(note.id, NoteChanges())

    async def test_delete_removes_note(self, store):
        keep = await store.add_note(NoteDraft(title="keep", content="x"))
        drop = await store.add_note(NoteDraft(title="drop", content="y"))
        await store.delete_note(drop.id)
        assert [n.id for n in store.notes] == [keep.id]

    async def test_delete_unknown_id_fails_and_keeps_list(self, store):
        note = await store.add_note(NoteDraft(title="keep", content="x"))
        with pytest.raises(WriteFailure) as excinfo:
            await store.delete_note("does-not-exist")
        assert excinfo.value.operation == "remove"
        assert store.notes == [note]

    async def test_notes_stay_sorted_by_updated_at(self, store):
        notes = [await store.add_note(NoteDraft(title=f"n{i}", content="c")) for i in range(4)]
        await store.update_note(notes[1].id, NoteChanges(title="n1 edited"))
        await store.add_note(NoteDraft(title="n4", content="c"))
        await store.update_note(notes[0].id, NoteChanges(category=NoteCategory.MEDICATION))

        stamps = [n.updated_at for n in store.notes]
        assert stamps == sorted(stamps, reverse=True)
        assert [n.title for n in store.notes][:3] == ["n0", "n4", "n1 edited"]

    async def test_failed_add_keeps_list_unchanged(self, failing_adapter):
        store = RecoveryStore(failing_adapter)
        with pytest.raises(WriteFailure):
            await store.add_note(NoteDraft(title="t", content="c"))
        assert store.notes == []


class TestReset:
    async def test_reset_clears_everything(self, store):
        await store.toggle_checked("prep-1", True)
        await store.log_symptom(SymptomDraft(symptoms=["fatigue"], severity=2))
        await store.add_note(NoteDraft(title="t", content="c"))
        store.reset()
        assert store.checked_items == frozenset()
        assert store.symptoms == []
        assert store.notes == []



class TestRemoteBackedStore:
    async def test_toggles_replay_identically_over_remote_backend(self, mock_client):
        server_state: dict[str, list[str]] = {"itemIds": []}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/checked-items"):
                if request.method == "PUT":
                    server_state["itemIds"] = json.loads(request.content)["itemIds"]
                    return httpx.Response(204)
                return httpx.Response(200, json=server_state)
            return httpx.Response(200, json=[])

        client = mock_client(handler)
        store = RecoveryStore(remote_adapter(client, lambda: "tok"))
        await store.hydrate()
        for item_id, checked in [("a", True), ("b", True), ("a", False), ("c", True)]:
            await store.toggle_checked(item_id, checked)

        assert store.checked_items == {"b", "c"}
        assert set(server_state["itemIds"]) == {"b", "c"}
        await client.aclose()

    async def test_remote_error_surfaces_as_write_failure(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(500, json={"message": "database down"})
            return httpx.Response(200, json=[])

        client = mock_client(handler)
        store = RecoveryStore(remote_adapter(client, lambda: None))
        await store.hydrate()
        with pytest.raises(WriteFailure, match="database down"):
            await store.add_note(NoteDraft(title="t", content="c"))
        assert store.notes == []
        await client.aclose()


class TestStoredTimestamps:
    """Records written without a UTC offset are read as UTC."""

    @pytest.fixture
    def mixed_notes(self, kv):
        kv.set_item(
            "notes",
            json.dumps(
                [
                    {
                        "id": "1",
                        "title": "aware",
                        "content": "a",
                        "category": "general",
                        "createdAt": "2026-03-01T09:00:00.000Z",
                        "updatedAt": "2026-03-01T09:00:00.000Z",
                    },
                    {
                        "id": "2",
                        "title": "naive",
                        "content": "b",
                        "category": "general",
                        "createdAt": "2026-03-01T10:00:00",
                        "updatedAt": "2026-03-01T10:00:00",
                    },
                ]
            ),
        )

    async def test_hydrate_mixes_naive_and_aware(self, store, mixed_notes):
        await store.hydrate()
        assert store.load_errors == {}
        assert [n.title for n in store.notes] == ["naive", "aware"]
        assert store.get_note("2").updated_at == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)

    async def test_update_note_without_offset(self, store, mixed_notes):
        await store.hydrate()
        updated = await store.update_note("2", NoteChanges(content="z"))
        assert updated.content == "z"
        assert updated.updated_at > datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert [n.id for n in store.notes][0] == "2"

    async def test_symptom_date_without_offset(self, store, kv):
        kv.set_item(
            "symptoms",
            json.dumps(
                [
                    {
                        "id": "1",
                        "date": "2026-03-01T10:00:00",
                        "symptoms": ["fatigue"],
                        "severity": 2,
                        "notes": "",
                        "needsAttention": False,
                    }
                ]
            ),
        )
        await store.hydrate()
        assert store.symptoms[0].date.tzinfo is not None
