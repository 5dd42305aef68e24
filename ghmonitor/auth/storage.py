"""Raw record backends for the secure token store.

A record backend maps fixed string keys to opaque (already encrypted)
string values. It knows nothing about tokens or encryption.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading

from abc import ABC, abstractmethod
from pathlib import Path

from ..exceptions import StorageError


logger = logging.getLogger("ghmonitor.auth")


class RecordStore(ABC):
    """Abstract base class for keyed record storage.

    Implementations must make ``set`` and ``delete`` atomic: a reader
    sees either the old value or the new one, never a partial write.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Replace the value stored under ``key``."""

    @abstractmethod
    def delete(self, *keys: str) -> None:
        """Remove ``keys``; missing keys are ignored."""

    @abstractmethod
    def keys(self) -> list[str]:
        """List stored keys."""


class MemoryRecordStore(RecordStore):
    """In-memory record store for tests and ephemeral sessions."""

    def __init__(self) -> None:
        """Initialize the memory record store."""
        self._records: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        """Return a record from memory."""
        with self._lock:
            return self._records.get(key)

    def set(self, key: str, value: str) -> None:
        """Store a record in memory."""
        with self._lock:
            self._records[key] = value

    def delete(self, *keys: str) -> None:
        """Delete records from memory."""
        with self._lock:
            for key in keys:
                self._records.pop(key, None)

    def keys(self) -> list[str]:
        """List record keys in memory."""
        with self._lock:
            return list(self._records)


class FileRecordStore(RecordStore):
    """JSON file record store.

    All records live in one JSON object. Every write goes to a temp file
    in the same directory followed by ``os.replace``, so the file on disk
    is always a complete document.

    Parameters
    ----------
    path : Path
        Location of the JSON file.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the file record store."""
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            msg = f"Cannot read record store: {exc}"
            raise StorageError(msg, key=str(self.path)) from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Record store %s is corrupted; treating it as empty", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Record store %s has unexpected shape; treating it as empty", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, records: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
        except OSError as exc:
            msg = f"Cannot write record store: {exc}"
            raise StorageError(msg, key=str(self.path)) from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            msg = f"Cannot write record store: {exc}"
            raise StorageError(msg, key=str(self.path)) from exc

    def get(self, key: str) -> str | None:
        """Return a record from the file."""
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        """Atomically replace a record in the file."""
        with self._lock:
            records = self._load()
            records[key] = value
            self._write(records)

    def delete(self, *keys: str) -> None:
        """Atomically remove records from the file."""
        with self._lock:
            records = self._load()
            if not any(key in records for key in keys):
                return
            for key in keys:
                records.pop(key, None)
            self._write(records)

    def keys(self) -> list[str]:
        """List record keys in the file."""
        with self._lock:
            return list(self._load())
