"""
Domain models for patient vitals telemetry.

These models represent the core concepts and are framework-agnostic.
They use Pydantic for validation and are frozen wherever a value must not
change after creation.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ConnectionStatus = Literal["connecting", "connected", "error"]


class ConnectionState(str, Enum):
    """Lifecycle of the single broker connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


# Legal moves of the connection state machine; anything else is a bug.
CONNECTION_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.FAILED, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED}),
    ConnectionState.FAILED: frozenset({ConnectionState.CONNECTING, ConnectionState.DISCONNECTED}),
}


class AlertSeverity(str, Enum):
    """Alert severity levels as shown on the dashboard."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class InboundFrame(BaseModel):
    """One message received from the broker, before decoding."""

    model_config = ConfigDict(frozen=True)

    topic: str
    payload: bytes
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class VitalsReading(BaseModel):
    """A decoded vitals sample. Only the reading decoder creates these."""

    model_config = ConfigDict(frozen=True)  # Immutable for better reasoning

    heart_rate_bpm: int = Field(ge=0)
    heart_rate_status: str
    spo2_percent: int = Field(ge=0, le=100)
    spo2_status: str
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class HistoryEntry(BaseModel):
    """
    One point of the rolling history chart.

    Serialized with camelCase aliases so stored buffers keep the layout the
    dashboard has always read.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    time: str = Field(description="Local 24h time label, HH:MM:SS")
    heart_rate: int = Field(alias="heartRate")
    spo2: int
    temperature: float


class Alert(BaseModel):
    """A derived alert shown in the notification list."""

    model_config = ConfigDict(frozen=True)

    id: int
    severity: AlertSeverity
    message: str
    raised_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SessionTimerState(BaseModel):
    """Measurement window countdown."""

    model_config = ConfigDict(frozen=True)

    active: bool = False
    remaining_seconds: int = Field(default=30, ge=0, le=30)


class SubjectProfile(BaseModel):
    """The monitored patient as entered on the details form."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    name: str = ""
    age: str = ""
    phone: str = ""
    address: str = ""
    blood_group: str = Field(default="", alias="bloodGroup")
    gender: str = ""


class MonitoringSnapshot(BaseModel):
    """Consistent view of the derived state for a consumer to render."""

    model_config = ConfigDict(frozen=True)

    connection_status: ConnectionStatus
    subject_id: str | None
    latest_reading: VitalsReading | None
    history: list[HistoryEntry]
    alerts: list[Alert]
    timer: SessionTimerState
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
