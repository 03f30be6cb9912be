"""Error taxonomy for the telemetry engine."""


class TelemetryError(Exception):
    """Base class for every error the engine reports."""


class ConnectError(TelemetryError):
    """Broker handshake, authentication or timeout failure."""


class NotConnectedError(TelemetryError):
    """An operation needed an active broker session and there was none."""


class DecodeError(TelemetryError):
    """An inbound payload could not be turned into a vitals reading."""

    def __init__(self, message: str, payload: bytes = b"") -> None:
        super().__init__(message)
        self.payload = payload


class PersistenceError(TelemetryError):
    """A durable storage read or write failed."""
