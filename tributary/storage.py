"""
storage.py - Durable JSON document storage with a TTL cache

FileStorage keeps one JSON document per logical path below a base directory.
The cache is built on the same primitive: each entry is a CacheEntry document
under cache/<sanitized key>.json carrying its own expiry.

Writes go to a temporary file in the target directory and are moved into
place with os.replace(), so a reader sees either the old document or the new
one, never a partial write.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import json
import os
import re
import tempfile

from .core import DataIntegrityError, ResourceError, utcnow


CACHE_DIR = "cache"

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_key(key: str) -> str:
    """Replace every character outside [A-Za-z0-9_-] with an underscore."""
    return _UNSAFE_KEY_CHARS.sub("_", key)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """
    A cached value with its validity window.

    Created on cache miss or refresh; discarded lazily when read after
    expires_at, or by an explicit clear.
    """
    key: str
    value: Any
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'value': self.value,
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheEntry':
        return cls(
            key=data['key'],
            value=data['value'],
            created_at=datetime.fromisoformat(data['created_at']),
            expires_at=datetime.fromisoformat(data['expires_at']),
        )


class FileStorage:
    """
    JSON documents keyed by logical path, relative to base_dir.

    Logical paths may not escape base_dir.

    Example:
        storage = FileStorage("./data")
        storage.write_json("distribution_abc.json", run.to_dict())
        storage.write_cache("wallets_xyz", [...], ttl_seconds=3600)
        storage.read_cache("wallets_xyz")
    """

    def __init__(
        self,
        base_dir: str = "./data",
        create_dirs: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.base_dir = Path(base_dir)
        self.create_dirs = create_dirs
        self._clock = clock

    def full_path(self, path: str) -> Path:
        base = self.base_dir.resolve()
        full = (base / path).resolve()
        if full != base and base not in full.parents:
            raise ResourceError(f"Path escapes storage directory: {path}", {'path': path})
        return full

    # ========================================================================
    # DOCUMENTS
    # ========================================================================

    def write_json(self, path: str, data: Any) -> None:
        """
        Write data as a JSON document, replacing any previous version whole.

        Raises:
            ResourceError: If the directory or file cannot be written
        """
        full = self.full_path(path)
        try:
            if self.create_dirs:
                full.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=full.parent, prefix=f".{full.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp, full)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise ResourceError(
                f"Failed to write JSON file: {e}", {'path': path, 'error': str(e)}
            ) from e

    def read_json(self, path: str) -> Any:
        """
        Read a JSON document.

        Raises:
            ResourceError: If the document does not exist (details['error'] == 'ENOENT')
            DataIntegrityError: If the document cannot be read or parsed
        """
        full = self.full_path(path)
        try:
            with open(full, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise ResourceError(f"File not found: {path}", {'path': path, 'error': 'ENOENT'}) from None
        except (OSError, ValueError) as e:
            raise DataIntegrityError(
                f"Failed to read JSON file: {e}", {'path': path, 'error': str(e)}
            ) from e

    def exists(self, path: str) -> bool:
        return self.full_path(path).exists()

    def delete(self, path: str) -> None:
        """Delete a document; deleting a missing document is not an error."""
        try:
            self.full_path(path).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ResourceError(f"Failed to delete file: {e}", {'path': path, 'error': str(e)}) from e

    def list(self, directory: str = "") -> List[str]:
        """Names of visible files in a directory (sorted), [] if it does not exist."""
        full = self.full_path(directory)
        try:
            return sorted(
                p.name for p in full.iterdir()
                if p.is_file() and not p.name.startswith(".")
            )
        except FileNotFoundError:
            return []
        except OSError as e:
            raise ResourceError(
                f"Failed to list directory: {e}", {'directory': directory, 'error': str(e)}
            ) from e

    # ========================================================================
    # TTL CACHE
    # ========================================================================

    def _cache_path(self, key: str) -> str:
        return f"{CACHE_DIR}/{sanitize_key(key)}.json"

    def write_cache(self, key: str, value: Any, ttl_seconds: float) -> CacheEntry:
        """Store value under key until ttl_seconds from now."""
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        self.write_json(self._cache_path(key), entry.to_dict())
        return entry

    def read_cache_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Return the live entry for key, or None.

        An expired entry is deleted on read. A corrupt entry raises
        DataIntegrityError; the caller decides whether that is fatal.
        """
        path = self._cache_path(key)
        try:
            data = self.read_json(path)
        except ResourceError as e:
            if e.details.get('error') == 'ENOENT':
                return None
            raise
        try:
            entry = CacheEntry.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise DataIntegrityError(f"Malformed cache entry: {key}", {'key': key, 'error': str(e)}) from e
        if entry.is_expired(self._clock()):
            self.delete(path)
            return None
        return entry

    def read_cache(self, key: str) -> Optional[Any]:
        entry = self.read_cache_entry(key)
        return None if entry is None else entry.value

    def clear_cache(self) -> int:
        """Delete every cache entry. Returns the number removed."""
        names = self.list(CACHE_DIR)
        for name in names:
            self.delete(f"{CACHE_DIR}/{name}")
        return len(names)
