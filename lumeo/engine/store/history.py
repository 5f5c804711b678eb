import threading
from typing import List

from lumeo.common.storage.client import PersistenceAdapter


class PayloadHistory:
    """Audit trail of every request body sent to a provider."""

    def __init__(self):
        self._payloads: List[str] = []
        self._lock = threading.Lock()

    def append(self, payload: str) -> None:
        with self._lock:
            self._payloads.append(payload)

    def clear(self) -> None:
        with self._lock:
            self._payloads.clear()

    def entries(self) -> List[str]:
        with self._lock:
            return list(self._payloads)

    def __len__(self):
        with self._lock:
            return len(self._payloads)

    def save(self, persistence: PersistenceAdapter, key: str) -> None:
        persistence.save(key, self.entries())

    def load(self, persistence: PersistenceAdapter, key: str) -> int:
        loaded = persistence.load(key)
        with self._lock:
            self._payloads = list(loaded)
        return len(loaded)
