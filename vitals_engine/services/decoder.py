"""
Reading decoder: raw broker payloads to typed vitals readings.

Decoding never raises. Every failure comes back as ``Result.err(DecodeError)``
so the dispatch loop can log the frame and move on.
"""

from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vitals_engine.domain.errors import DecodeError
from vitals_engine.domain.models import VitalsReading
from vitals_engine.services.result import Result

logger = structlog.get_logger(__name__)

MAX_HEART_RATE_BPM = 300


class VitalsPayload(BaseModel):
    """Wire shape published by the pulse oximeter: ``{bpm, bpm_status, spo2, spo2_status}``."""

    model_config = ConfigDict(strict=True, extra="ignore")

    bpm: float = Field(ge=0, le=MAX_HEART_RATE_BPM, allow_inf_nan=False)
    bpm_status: str
    spo2: float = Field(ge=0, le=100, allow_inf_nan=False)
    spo2_status: str


def decode(
    raw_payload: bytes | str, observed_at: datetime | None = None
) -> Result[VitalsReading, DecodeError]:
    """Parse and validate one payload."""
    payload_bytes = raw_payload.encode() if isinstance(raw_payload, str) else bytes(raw_payload)

    try:
        text = payload_bytes.decode("utf-8")
    except UnicodeDecodeError as e:
        return Result.err(DecodeError(f"Payload is not valid UTF-8: {e}", payload_bytes))

    try:
        payload = VitalsPayload.model_validate_json(text)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
            for err in e.errors()
        )
        return Result.err(DecodeError(f"Malformed vitals payload ({problems})", payload_bytes))

    reading = VitalsReading(
        heart_rate_bpm=round(payload.bpm),
        heart_rate_status=payload.bpm_status,
        spo2_percent=round(payload.spo2),
        spo2_status=payload.spo2_status,
        observed_at=observed_at or datetime.now(UTC),
    )
    logger.debug(
        "reading_decoded",
        heart_rate_bpm=reading.heart_rate_bpm,
        spo2_percent=reading.spo2_percent,
    )
    return Result.ok(reading)
