"""Pydantic models for recovery records and identity.

Field names are snake_case in Python and camelCase on the wire and in local
storage (``needsAttention``, ``createdAt``, ``updatedAt``, ``userId``).
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from aftercare.symptoms import MAX_SEVERITY, MIN_SEVERITY, needs_attention


class RecordKind(enum.StrEnum):
    """The three persisted record collections. Values double as local storage keys."""

    CHECKED_ITEMS = "checkedItems"
    SYMPTOMS = "symptoms"
    NOTES = "notes"


class NoteCategory(enum.StrEnum):
    QUESTION = "question"
    OBSERVATION = "observation"
    MEDICATION = "medication"
    APPOINTMENT = "appointment"
    GENERAL = "general"


def _assume_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


# Stored and server timestamps without an offset are read as UTC.
Timestamp = Annotated[datetime, AfterValidator(_assume_utc)]


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self, **kwargs: Any) -> dict[str, Any]:
        """Dump to a JSON-compatible dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True, **kwargs)


# ---------------------------------------------------------------------------
# Symptoms
# ---------------------------------------------------------------------------


class SymptomDraft(CamelModel):
    """A symptom report as entered by the user, before it is stored."""

    symptoms: list[str] = Field(min_length=1)
    severity: int = Field(ge=MIN_SEVERITY, le=MAX_SEVERITY)
    notes: str = ""
    date: Timestamp | None = None


class PendingSymptomEntry(CamelModel):
    """A symptom entry without an id, ready to hand to a backend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    date: Timestamp
    symptoms: list[str]
    severity: int = Field(ge=MIN_SEVERITY, le=MAX_SEVERITY)
    notes: str = ""
    needs_attention: bool

    @classmethod
    def from_draft(cls, draft: SymptomDraft, now: datetime) -> PendingSymptomEntry:
        """Build the entry, fixing ``needs_attention`` at creation time."""
        return cls(
            date=draft.date or now,
            symptoms=list(draft.symptoms),
            severity=draft.severity,
            notes=draft.notes,
            needs_attention=needs_attention(draft.symptoms, draft.severity),
        )


class SymptomEntry(PendingSymptomEntry):
    """A stored symptom entry. Immutable once created."""

    id: str


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class NoteDraft(CamelModel):
    title: str
    content: str
    category: NoteCategory = NoteCategory.GENERAL


class NoteChanges(CamelModel):
    """Partial note update. Only fields explicitly set are applied."""

    title: str | None = None
    content: str | None = None
    category: NoteCategory | None = None

    def fields(self) -> dict[str, Any]:
        """Return the explicitly supplied, non-null fields keyed by attribute name."""
        return {k: v for k, v in self.model_dump(exclude_unset=True).items() if v is not None}


class Note(CamelModel):
    id: str
    user_id: str | None = None
    title: str
    content: str
    category: NoteCategory = NoteCategory.GENERAL
    created_at: Timestamp
    updated_at: Timestamp


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class User(CamelModel):
    id: str
    email: str
    name: str


class AuthResponse(CamelModel):
    user: User
    token: str
