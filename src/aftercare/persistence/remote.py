"""Remote persistence backend over the aftercare REST API.

Transport: ``httpx.AsyncClient`` rooted at the API base URL. A bearer token
is looked up for every request so a login or logout takes effect without
rebuilding the client; when no token exists the header is omitted and the
server decides.

Resources:

- ``/notes``: GET (list), POST (create), PUT ``/notes/{id}``, DELETE ``/notes/{id}``
- ``/trackers``: GET (list), POST (create); each tracker is
  ``{"id", "userId", "data"}`` with the symptom entry in ``data``
- ``/checked-items``: GET (list or ``{"itemIds": [...]}``), PUT ``{"itemIds": [...]}``
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

import httpx
from pydantic import ValidationError

from aftercare.config import DEFAULT_CHECKED_ITEMS_PATH
from aftercare.models import (
    Note,
    NoteChanges,
    NoteDraft,
    PendingSymptomEntry,
    RecordKind,
    SymptomEntry,
)
from aftercare.persistence.base import FetchFailed, PersistenceAdapter

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]

NOTES_PATH = "/notes"
TRACKERS_PATH = "/trackers"


def _error_message(response: httpx.Response) -> str | None:
    """Best-effort extraction of a server-supplied error message."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class _RemoteCollection:
    """Shared request handling for one REST resource."""

    kind: RecordKind

    def __init__(self, client: httpx.AsyncClient, token_provider: TokenProvider, path: str):
        self._client = client
        self._token_provider = token_provider
        self._path = path

    def _headers(self) -> dict[str, str]:
        token = self._token_provider()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self,
        method: str,
        operation: str,
        path: str | None = None,
        json: Any = None,
    ) -> httpx.Response:
        url = path or self._path
        try:
            response = await self._client.request(method, url, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise FetchFailed(operation, self.kind, f"{type(exc).__name__}: {exc}") from exc

        if response.is_success:
            return response

        logger.warning("%s %s returned HTTP %d", method, url, response.status_code)
        raise FetchFailed(
            operation,
            self.kind,
            _error_message(response),
            status_code=response.status_code,
        )

    def _json(self, response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise FetchFailed(operation, self.kind, "Response body is not valid JSON") from exc

    def _invalid(self, operation: str, exc: ValidationError) -> FetchFailed:
        return FetchFailed(operation, self.kind, f"Unexpected {self.kind.value} payload: {exc}")


class RemoteCheckedItems(_RemoteCollection):
    kind = RecordKind.CHECKED_ITEMS

    async def load(self) -> set[str]:
        body = self._json(await self._request("GET", "load"), "load")
        if isinstance(body, dict):
            body = body.get("itemIds", [])
        if not isinstance(body, list):
            raise FetchFailed("load", self.kind, "Expected a list of item ids")
        return {str(item) for item in body}

    async def replace_all(self, item_ids: Iterable[str]) -> None:
        await self._request("PUT", "replace", json={"itemIds": sorted(set(item_ids))})


def _tracker_to_entry(tracker: Any) -> SymptomEntry:
    """Unwrap a tracker record into a SymptomEntry.

    Servers that return the entry fields at the top level are accepted too.
    """
    if not isinstance(tracker, dict):
        raise ValueError("tracker record must be an object")
    data = tracker.get("data")
    payload = dict(data) if isinstance(data, dict) else dict(tracker)
    payload["id"] = str(tracker.get("id", payload.get("id", "")))
    return SymptomEntry.model_validate(payload)


class RemoteSymptoms(_RemoteCollection):
    kind = RecordKind.SYMPTOMS

    async def load(self) -> list[SymptomEntry]:
        body = self._json(await self._request("GET", "load"), "load")
        if not isinstance(body, list):
            raise FetchFailed("load", self.kind, "Expected a list of trackers")
        entries: list[SymptomEntry] = []
        for index, tracker in enumerate(body):
            try:
                entries.append(_tracker_to_entry(tracker))
            except (ValidationError, ValueError) as exc:
                logger.warning("Skipping invalid tracker at index %d: %s", index, exc)
        return entries

    async def append(self, entry: PendingSymptomEntry) -> SymptomEntry:
        response = await self._request("POST", "append", json=entry.to_wire())
        body = self._json(response, "append")
        try:
            return _tracker_to_entry(body)
        except (ValidationError, ValueError) as exc:
            raise FetchFailed("append", self.kind, f"Unexpected tracker payload: {exc}") from exc


class RemoteNotes(_RemoteCollection):
    kind = RecordKind.NOTES

    def _note(self, body: Any, operation: str) -> Note:
        try:
            return Note.model_validate(body)
        except ValidationError as exc:
            raise self._invalid(operation, exc) from exc

    async def load(self) -> list[Note]:
        body = self._json(await self._request("GET", "load"), "load")
        if not isinstance(body, list):
            raise FetchFailed("load", self.kind, "Expected a list of notes")
        notes: list[Note] = []
        for index, entry in enumerate(body):
            try:
                notes.append(Note.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping invalid note at index %d: %s", index, exc)
        return notes

    async def append(self, draft: NoteDraft) -> Note:
        response = await self._request("POST", "append", json=draft.to_wire())
        return self._note(self._json(response, "append"), "append")

    async def update(self, note_id: str, changes: NoteChanges) -> Note:
        response = await self._request(
            "PUT",
            "update",
            path=f"{self._path}/{note_id}",
            json=changes.to_wire(exclude_unset=True, exclude_none=True),
        )
        return self._note(self._json(response, "update"), "update")

    async def remove(self, note_id: str) -> Note | None:
        response = await self._request("DELETE", "remove", path=f"{self._path}/{note_id}")
        if not response.content:
            return None
        return self._note(self._json(response, "remove"), "remove")


def remote_adapter(
    client: httpx.AsyncClient,
    token_provider: TokenProvider,
    *,
    checked_items_path: str = DEFAULT_CHECKED_ITEMS_PATH,
    owns_client: bool = False,
) -> PersistenceAdapter:
    """Build a PersistenceAdapter that talks to the REST API through *client*.

    When *owns_client* is true, closing the adapter also closes the client.
    """
    adapter = PersistenceAdapter(
        name="remote",
        checked_items=RemoteCheckedItems(client, token_provider, checked_items_path),
        symptoms=RemoteSymptoms(client, token_provider, TRACKERS_PATH),
        notes=RemoteNotes(client, token_provider, NOTES_PATH),
    )
    if owns_client:
        adapter._closers.append(client.aclose)
    return adapter
