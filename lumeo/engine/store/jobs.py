import threading
from typing import Dict, List, Optional, Set

from pydantic import ValidationError

from lumeo.common.models.jobs import RemoteJobState
from lumeo.common.storage.client import PersistenceAdapter
from lumeo.engine.progress import highest_percentage, merge_progress
from lumeo.engine.utils.logger import logger


class JobStore:
    """
    In-memory map of server job id -> latest RemoteJobState, plus the
    ordered response history.

    Every mutation goes through `_lock`. An upsert replaces the stored
    state as a whole; the only carried-over value is the running maximum
    of `progress_percent`. A history entry with the same id is replaced
    in the same step, so history never lags the live map.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._states: Dict[str, RemoteJobState] = {}
        self._history: List[RemoteJobState] = []

    # --- Live state ---

    def upsert(self, state: RemoteJobState) -> RemoteJobState:
        with self._lock:
            previous = self._states.get(state.id)

            if previous is not None and previous.is_terminal and state.status != previous.status:
                logger.warning(
                    f"Ignoring {state.status.value} update for job already {previous.status.value}",
                    extra={"event": "stale_update", "job_id": state.id}
                )
                return previous

            progress = merge_progress(
                previous.progress_percent if previous else None,
                state.progress_percent,
                highest_percentage(state.logs),
            )
            if progress != state.progress_percent:
                state = state.model_copy(update={"progress_percent": progress})

            self._states[state.id] = state
            self.update_history(state)
            return state

    def get(self, job_id: str) -> Optional[RemoteJobState]:
        with self._lock:
            return self._states.get(job_id)

    def all_ids(self) -> Set[str]:
        with self._lock:
            return set(self._states.keys())

    def active(self) -> List[RemoteJobState]:
        with self._lock:
            return [s for s in self._states.values() if not s.is_terminal]

    def remove(self, job_id: str) -> bool:
        """Explicit deletion from both the live map and history."""
        with self._lock:
            removed = self._states.pop(job_id, None) is not None
            before = len(self._history)
            self._history = [s for s in self._history if s.id != job_id]
            return removed or len(self._history) != before

    # --- History ---

    def append_to_history(self, state: RemoteJobState) -> bool:
        """Appends unless an entry with the same id exists. Returns True if appended."""
        with self._lock:
            if any(s.id == state.id for s in self._history):
                logger.debug("Duplicate history entry skipped", extra={"event": "history_duplicate", "job_id": state.id})
                return False
            self._history.append(state)
            return True

    def update_history(self, state: RemoteJobState) -> bool:
        """Replaces an existing history entry in place with a fresher state."""
        with self._lock:
            for index, existing in enumerate(self._history):
                if existing.id == state.id:
                    self._history[index] = state
                    return True
            return False

    def clear_history(self, finished_only: bool = False) -> int:
        with self._lock:
            before = len(self._history)
            if finished_only:
                self._history = [s for s in self._history if not s.is_terminal]
            else:
                self._history = []
            return before - len(self._history)

    def history(self) -> List[RemoteJobState]:
        with self._lock:
            return list(self._history)

    # --- Snapshot ---

    def snapshot(self, persistence: PersistenceAdapter, key: str) -> int:
        entries = [s.model_dump_json() for s in self.history()]
        persistence.save(key, entries)
        return len(entries)

    def restore(self, persistence: PersistenceAdapter, key: str) -> int:
        restored = 0
        for raw in persistence.load(key):
            try:
                state = RemoteJobState.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable history entry under {key}: {e}", extra={"event": "restore_skip"})
                continue
            with self._lock:
                if self.append_to_history(state):
                    self._states.setdefault(state.id, state)
                    restored += 1
        return restored
