"""
Rolling per-subject vitals history.

The in-memory buffer is authoritative for the running session; every append
is also written through to durable storage so a cold start can show the
previous session's chart.
"""

from collections import deque

import structlog
from pydantic import TypeAdapter, ValidationError

from vitals_engine.domain.errors import PersistenceError
from vitals_engine.domain.models import HistoryEntry, VitalsReading
from vitals_engine.services.storage import KeyValueStore

logger = structlog.get_logger(__name__)

_entries_adapter = TypeAdapter(list[HistoryEntry])


class HistoryAggregator:
    """Bounded, insertion-ordered history buffers keyed by subject id."""

    def __init__(
        self,
        store: KeyValueStore,
        capacity: int = 24,
        placeholder_temperature_c: float = 37.0,
    ) -> None:
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self.store = store
        self.capacity = capacity
        self.placeholder_temperature_c = placeholder_temperature_c
        self._buffers: dict[str, deque[HistoryEntry]] = {}
        self.logger = logger.bind(component="history_aggregator")

    @staticmethod
    def storage_key(subject_id: str) -> str:
        return f"history_{subject_id}"

    def load(self, subject_id: str) -> list[HistoryEntry]:
        """Return the persisted buffer for a subject, or an empty list."""
        key = self.storage_key(_require_subject(subject_id))
        try:
            raw = self.store.get(key)
        except PersistenceError as e:
            self.logger.error("history_load_failed", subject_id=subject_id, error=str(e))
            return []
        if raw is None:
            return []

        try:
            entries = _entries_adapter.validate_json(raw)
        except ValidationError as e:
            self.logger.warning(
                "history_discarded_unreadable", subject_id=subject_id, error=str(e)
            )
            return []
        return entries[-self.capacity :]

    def append(self, subject_id: str, reading: VitalsReading) -> HistoryEntry:
        """Record a reading for a subject and write the buffer through to storage."""
        buffer = self._buffer_for(subject_id)
        entry = HistoryEntry(
            time=reading.observed_at.astimezone().strftime("%H:%M:%S"),
            heart_rate=reading.heart_rate_bpm,
            spo2=reading.spo2_percent,
            temperature=self.placeholder_temperature_c,
        )
        buffer.append(entry)
        self._persist(subject_id, buffer)
        return entry

    def snapshot(self, subject_id: str) -> list[HistoryEntry]:
        """Current in-memory buffer, oldest first."""
        return list(self._buffer_for(subject_id))

    def clear(self, subject_id: str) -> None:
        self._buffers.pop(subject_id, None)
        try:
            self.store.delete(self.storage_key(_require_subject(subject_id)))
        except PersistenceError as e:
            self.logger.error("history_clear_failed", subject_id=subject_id, error=str(e))

    def _buffer_for(self, subject_id: str) -> deque[HistoryEntry]:
        buffer = self._buffers.get(subject_id)
        if buffer is None:
            buffer = deque(self.load(subject_id), maxlen=self.capacity)
            self._buffers[subject_id] = buffer
        return buffer

    def _persist(self, subject_id: str, buffer: deque[HistoryEntry]) -> None:
        serialized = _entries_adapter.dump_json(list(buffer), by_alias=True).decode()
        try:
            self.store.set(self.storage_key(subject_id), serialized)
        except PersistenceError as e:
            self.logger.error(
                "history_persist_failed",
                subject_id=subject_id,
                entries=len(buffer),
                error=str(e),
            )


def _require_subject(subject_id: str) -> str:
    if not subject_id:
        raise ValueError("subject_id must be a non-empty string")
    return subject_id
