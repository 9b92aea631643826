"""
Key-value store holding the encrypted delegated credential.

Values are plain JSON-compatible dicts; the TokenVault owns their shape.
Two backends share one interface:

- InMemoryCredentialStore: process-local, lost on restart (tests, dev).
- JsonFileCredentialStore: one JSON document on disk, written atomically.

compare_and_set lets concurrent refreshers detect that another request
already replaced the record they read.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class CredentialStore(Protocol):
    def get(self, key: str) -> Optional[Record]: ...

    def put(self, key: str, value: Record) -> None: ...

    def delete(self, key: str) -> None: ...

    def compare_and_set(
        self, key: str, predicate: Callable[[Optional[Record]], bool], value: Record
    ) -> bool: ...


class InMemoryCredentialStore:
    """Thread-safe dict-backed store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._store: Dict[str, Record] = {}

    def get(self, key: str) -> Optional[Record]:
        with self._lock:
            value = self._store.get(key)
            return dict(value) if value is not None else None

    def put(self, key: str, value: Record) -> None:
        with self._lock:
            self._store[key] = dict(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def compare_and_set(
        self, key: str, predicate: Callable[[Optional[Record]], bool], value: Record
    ) -> bool:
        """Write value only if predicate holds for the current record."""
        with self._lock:
            current = self._store.get(key)
            if not predicate(dict(current) if current is not None else None):
                return False
            self._store[key] = dict(value)
            return True


class JsonFileCredentialStore:
    """Single-file JSON store. Each write replaces the file atomically."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Record]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Credential store file {self.path} is corrupt: {e}")
            raise
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, Record]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".credentials-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[Record]:
        with self._lock:
            return self._read_all().get(key)

    def put(self, key: str, value: Record) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = dict(value)
            self._write_all(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)

    def compare_and_set(
        self, key: str, predicate: Callable[[Optional[Record]], bool], value: Record
    ) -> bool:
        with self._lock:
            data = self._read_all()
            if not predicate(data.get(key)):
                return False
            data[key] = dict(value)
            self._write_all(data)
            return True
