"""
Alert derivation from decoded readings.

The device classifies each reading before publishing it, so evaluation is a
vocabulary match on the status strings rather than numeric thresholds.
"""

import time
from collections import deque
from collections.abc import Iterable, Sequence

import structlog

from vitals_engine.domain.models import Alert, AlertSeverity, VitalsReading

logger = structlog.get_logger(__name__)


class AlertEvaluator:
    """Stateless per-reading alert rules."""

    def __init__(
        self,
        bradycardia_markers: Sequence[str] = ("Bradycardia",),
        unsafe_spo2_markers: Sequence[str] = ("Not Safe",),
        severity: AlertSeverity = AlertSeverity.WARNING,
    ) -> None:
        self.bradycardia_markers = tuple(bradycardia_markers)
        self.unsafe_spo2_markers = tuple(unsafe_spo2_markers)
        self.severity = severity
        self._last_id = 0

    def is_alarming(self, status: str) -> bool:
        """True when a status string carries any alert marker."""
        return _contains_any(status, (*self.bradycardia_markers, *self.unsafe_spo2_markers))

    def evaluate(self, reading: VitalsReading) -> Alert | None:
        bradycardia = _contains_any(reading.heart_rate_status, self.bradycardia_markers)
        unsafe_spo2 = _contains_any(reading.spo2_status, self.unsafe_spo2_markers)
        if not (bradycardia or unsafe_spo2):
            return None

        alert = Alert(
            id=self._next_id(),
            severity=self.severity,
            message=f"{reading.heart_rate_status}. {reading.spo2_status}",
            raised_at=reading.observed_at,
        )
        logger.info(
            "alert_raised",
            alert_id=alert.id,
            bradycardia=bradycardia,
            unsafe_spo2=unsafe_spo2,
            heart_rate_bpm=reading.heart_rate_bpm,
            spo2_percent=reading.spo2_percent,
        )
        return alert

    def _next_id(self) -> int:
        # Millisecond clock, bumped when two alerts land in the same millisecond
        self._last_id = max(time.time_ns() // 1_000_000, self._last_id + 1)
        return self._last_id


class AlertFeed:
    """Bounded recent-alert list, newest first."""

    def __init__(self, capacity: int = 5, initial: Iterable[Alert] = ()) -> None:
        if capacity <= 0:
            raise ValueError("Alert capacity must be positive")
        self.capacity = capacity
        self._alerts: deque[Alert] = deque(list(initial)[:capacity], maxlen=capacity)

    def push(self, alert: Alert) -> None:
        self._alerts.appendleft(alert)

    def snapshot(self) -> list[Alert]:
        return list(self._alerts)

    def clear(self) -> None:
        self._alerts.clear()

    def __len__(self) -> int:
        return len(self._alerts)


def _contains_any(status: str, markers: tuple[str, ...]) -> bool:
    # Exact-case: the device emits a fixed, capitalised vocabulary
    return any(m in status for m in markers)
