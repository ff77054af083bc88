"""Persistence backends for checked items, symptom entries and notes."""

from aftercare.persistence.base import (
    CheckedItemsBackend,
    FetchFailed,
    NotesBackend,
    PersistenceAdapter,
    PersistenceError,
    RecordNotFound,
    SymptomBackend,
)
from aftercare.persistence.local import local_adapter
from aftercare.persistence.remote import remote_adapter

__all__ = [
    "CheckedItemsBackend",
    "FetchFailed",
    "NotesBackend",
    "PersistenceAdapter",
    "PersistenceError",
    "RecordNotFound",
    "SymptomBackend",
    "local_adapter",
    "remote_adapter",
]
