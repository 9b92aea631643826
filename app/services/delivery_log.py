"""
Delivery Log

Append-only sink for DeliveryAttempt records. The pipeline writes exactly
one record per deliver() call; the webhook stats and logs routes read them
back.

- InMemoryDeliveryLog: bounded ring buffer (tests, dev)
- JsonlDeliveryLog: one JSON object per line in a file
"""

import json
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from app.models.delivery import DeliveryAttempt, DeliveryStats

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000


class DeliveryLog(Protocol):
    def append(self, attempt: DeliveryAttempt) -> None: ...


def compute_stats(attempts: Iterable[DeliveryAttempt]) -> DeliveryStats:
    """Totals and success rate (percent, one decimal). Empty log reports 100."""
    total = success = 0
    for attempt in attempts:
        total += 1
        if attempt.succeeded:
            success += 1
    failed = total - success
    rate = round(success / total * 100, 1) if total else 100.0
    return DeliveryStats(total=total, success=success, failed=failed, success_rate=rate)


class InMemoryDeliveryLog:
    """Keeps the most recent max_entries attempts."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._lock = threading.Lock()
        self._entries: deque[DeliveryAttempt] = deque(maxlen=max_entries)

    def append(self, attempt: DeliveryAttempt) -> None:
        with self._lock:
            self._entries.append(attempt)

    def recent(self, limit: int = 50, config_id: Optional[str] = None) -> List[DeliveryAttempt]:
        """Newest first."""
        with self._lock:
            entries = list(self._entries)
        if config_id:
            entries = [entry for entry in entries if entry.config_id == config_id]
        return list(reversed(entries))[: max(0, limit)]

    def stats(self, config_id: Optional[str] = None) -> DeliveryStats:
        with self._lock:
            entries = list(self._entries)
        if config_id:
            entries = [entry for entry in entries if entry.config_id == config_id]
        return compute_stats(entries)

    def __len__(self) -> int:
        return len(self._entries)


class JsonlDeliveryLog:
    """Appends attempts to a JSON Lines file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, attempt: DeliveryAttempt) -> None:
        line = attempt.model_dump_json()
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.error(f"Failed to write delivery log {self.path}: {e}")
                raise

    def _read(self) -> List[DeliveryAttempt]:
        if not self.path.exists():
            return []
        attempts = []
        with self._lock, self.path.open("r", encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    attempts.append(DeliveryAttempt.model_validate(json.loads(line)))
                except ValueError as e:
                    logger.warning(f"Skipping unreadable delivery log line {number}: {e}")
        return attempts

    def recent(self, limit: int = 50, config_id: Optional[str] = None) -> List[DeliveryAttempt]:
        entries = self._read()
        if config_id:
            entries = [entry for entry in entries if entry.config_id == config_id]
        return list(reversed(entries))[: max(0, limit)]

    def stats(self, config_id: Optional[str] = None) -> DeliveryStats:
        entries = self._read()
        if config_id:
            entries = [entry for entry in entries if entry.config_id == config_id]
        return compute_stats(entries)
