"""
holder_store.py - Time-boxed cache of collected holder sets

Each key maps to one snapshot of HolderRecords. Snapshots are written whole
and expire after their TTL; an expired snapshot is evicted on the next read.
"""

from __future__ import annotations
from typing import Iterable, List, Optional

from .core import HolderRecord, DataIntegrityError, ValidationError
from .storage import FileStorage


class HolderStore:
    """Holder snapshots on top of the FileStorage TTL cache."""

    def __init__(self, storage: FileStorage):
        self.storage = storage

    def get(self, key: str) -> Optional[List[HolderRecord]]:
        """
        Return the cached snapshot for key, or None on miss or expiry.

        Raises:
            DataIntegrityError: If the stored snapshot cannot be decoded
        """
        value = self.storage.read_cache(key)
        if value is None:
            return None
        try:
            return [HolderRecord.from_dict(item) for item in value]
        except (KeyError, TypeError, ValueError, ArithmeticError, ValidationError) as e:
            raise DataIntegrityError(f"Malformed holder snapshot: {key}", {'key': key}) from e

    def put(self, key: str, holders: Iterable[HolderRecord], ttl_seconds: float) -> None:
        """Replace the snapshot for key."""
        self.storage.write_cache(key, [h.to_dict() for h in holders], ttl_seconds)

    def clear(self) -> int:
        return self.storage.clear_cache()
