"""Local key/value storage for profile data."""

from aftercare.storage.kv import KeyValueStore, StorageError

__all__ = ["KeyValueStore", "StorageError"]
