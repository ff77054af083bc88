"""Derived recovery statistics — pure functions over store snapshots."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from aftercare.catalog import Brochure
from aftercare.models import Note, SymptomEntry

ATTENTION_DISPLAY_LIMIT = 3


def total_checkable(brochure: Brochure | None) -> int:
    """Count checkable items across all sections of *brochure*."""
    if brochure is None:
        return 0
    return sum(1 for section in brochure.sections for item in section.items if item.checkable)


def completed_count(brochure: Brochure | None, checked: Iterable[str]) -> int:
    """Count checked ids that are checkable items of *brochure*.

    The checked set is shared across brochures, so ids belonging to other
    guides are ignored here.
    """
    if brochure is None:
        return 0
    checkable_ids = {item.id for item in brochure.checkable_items()}
    return len(checkable_ids.intersection(checked))


def progress_percentage(brochure: Brochure | None, checked: Iterable[str]) -> float:
    """Percentage of *brochure*'s checkable items that are checked, 0.0 when there are none."""
    total = total_checkable(brochure)
    if total == 0:
        return 0.0
    return completed_count(brochure, checked) / total * 100


def _local_date(value: datetime):
    # Naive datetimes are taken as local time.
    return value.astimezone().date()


def todays_symptom_count(entries: Iterable[SymptomEntry], now: datetime | None = None) -> int:
    """Count entries dated on the current calendar day in local time."""
    today = _local_date(now or datetime.now().astimezone())
    return sum(1 for entry in entries if _local_date(entry.date) == today)


def attention_symptoms(
    entries: Sequence[SymptomEntry],
    limit: int = ATTENTION_DISPLAY_LIMIT,
) -> list[SymptomEntry]:
    """Entries flagged for attention, keeping the given newest-first order, capped at *limit*."""
    return [entry for entry in entries if entry.needs_attention][:limit]


@dataclass(frozen=True)
class RecoverySummary:
    """Headline numbers for a dashboard view."""

    brochure_id: str | None
    completed: int
    total_checkable: int
    progress_percentage: float
    todays_symptoms: int
    attention: list[SymptomEntry]
    note_count: int


def summarize(
    brochure: Brochure | None,
    checked: Iterable[str],
    entries: Sequence[SymptomEntry],
    notes: Sequence[Note],
    now: datetime | None = None,
) -> RecoverySummary:
    checked = frozenset(checked)
    return RecoverySummary(
        brochure_id=brochure.id if brochure is not None else None,
        completed=completed_count(brochure, checked),
        total_checkable=total_checkable(brochure),
        progress_percentage=progress_percentage(brochure, checked),
        todays_symptoms=todays_symptom_count(entries, now),
        attention=attention_symptoms(entries),
        note_count=len(notes),
    )
