"""Symptom taxonomy — warning and normal recovery symptoms."""

from __future__ import annotations

from collections.abc import Iterable

# Warning symptoms always flag an entry for attention.
WARNING_SYMPTOMS: dict[str, str] = {
    "fever": "Fever over 101°F",
    "heavy-bleeding": "Heavy bleeding",
    "severe-pain": "Severe pain",
    "infection-signs": "Signs of infection",
    "breathing-issues": "Breathing difficulty",
    "leg-swelling": "Leg swelling/pain",
}

NORMAL_SYMPTOMS: dict[str, str] = {
    "mild-pain": "Mild incision pain",
    "fatigue": "Fatigue",
    "bloating": "Bloating",
    "light-bleeding": "Light spotting",
}

ATTENTION_SEVERITY = 7
MIN_SEVERITY = 1
MAX_SEVERITY = 10


def is_warning_symptom(tag: str) -> bool:
    return tag in WARNING_SYMPTOMS


def needs_attention(symptoms: Iterable[str], severity: int) -> bool:
    """Return True when any symptom is a warning symptom or severity is 7 or above."""
    return severity >= ATTENTION_SEVERITY or any(is_warning_symptom(s) for s in symptoms)


def symptom_label(tag: str) -> str:
    """Display label for *tag*; unknown tags are shown as-is."""
    return WARNING_SYMPTOMS.get(tag) or NORMAL_SYMPTOMS.get(tag) or tag
