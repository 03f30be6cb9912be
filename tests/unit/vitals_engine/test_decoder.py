"""Tests for the reading decoder."""

from datetime import UTC, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vitals_engine.domain.errors import DecodeError
from vitals_engine.services.decoder import decode


def test_decodes_valid_frame(bradycardia_frame: bytes) -> None:
    observed = datetime(2026, 3, 1, 8, 30, tzinfo=UTC)

    result = decode(bradycardia_frame, observed_at=observed)

    assert result.is_ok()
    reading = result.unwrap()
    assert reading.heart_rate_bpm == 45
    assert reading.heart_rate_status == "Bradycardia"
    assert reading.spo2_percent == 89
    assert reading.spo2_status == "Not Safe"
    assert reading.observed_at == observed


def test_accepts_text_payload(normal_frame: bytes) -> None:
    result = decode(normal_frame.decode())
    assert result.unwrap().heart_rate_bpm == 72


def test_fractional_values_rounded() -> None:
    result = decode(b'{"bpm":71.6,"bpm_status":"Normal","spo2":97.4,"spo2_status":"Safe"}')

    reading = result.unwrap()
    assert reading.heart_rate_bpm == 72
    assert reading.spo2_percent == 97


def test_extra_fields_ignored() -> None:
    result = decode(
        b'{"bpm":70,"bpm_status":"Normal","spo2":98,"spo2_status":"Safe","device":"max30102"}'
    )
    assert result.is_ok()


@pytest.mark.parametrize(
    "payload",
    [
        b"start",
        b"",
        b"[]",
        b"null",
        b'"reading"',
        b'{"bpm":70,"bpm_status":"Normal","spo2":98}',
        b'{"bpm_status":"Normal","spo2":98,"spo2_status":"Safe"}',
        b'{"bpm":"70","bpm_status":"Normal","spo2":98,"spo2_status":"Safe"}',
        b'{"bpm":true,"bpm_status":"Normal","spo2":98,"spo2_status":"Safe"}',
        b'{"bpm":70,"bpm_status":3,"spo2":98,"spo2_status":"Safe"}',
        b'{"bpm":70,"bpm_status":"Normal","spo2":101,"spo2_status":"Safe"}',
        b'{"bpm":-4,"bpm_status":"Normal","spo2":98,"spo2_status":"Safe"}',
        b'{"bpm":70,"bpm_status":"Normal","spo2":98,"spo2_status":"Safe"',
        b"\xff\xfe\x00",
    ],
)
def test_malformed_payload_returns_decode_error(payload: bytes) -> None:
    result = decode(payload)

    assert result.is_err()
    error = result.unwrap_err()
    assert isinstance(error, DecodeError)
    assert error.payload == payload


def test_decode_error_names_missing_field() -> None:
    result = decode(b'{"bpm":70,"bpm_status":"Normal","spo2":98}')
    assert "spo2_status" in str(result.unwrap_err())


@given(payload=st.binary(max_size=200))
def test_decode_never_raises_on_arbitrary_bytes(payload: bytes) -> None:
    result = decode(payload)
    assert result.is_ok() or isinstance(result.unwrap_err(), DecodeError)


@given(
    bpm=st.integers(min_value=0, max_value=300),
    spo2=st.integers(min_value=0, max_value=100),
    bpm_status=st.sampled_from(["Normal", "Bradycardia", "Tachycardia"]),
    spo2_status=st.sampled_from(["Safe", "Not Safe"]),
)
def test_every_in_range_frame_decodes(
    bpm: int, spo2: int, bpm_status: str, spo2_status: str
) -> None:
    payload = (
        f'{{"bpm":{bpm},"bpm_status":"{bpm_status}","spo2":{spo2},"spo2_status":"{spo2_status}"}}'
    )

    reading = decode(payload).unwrap()

    assert (reading.heart_rate_bpm, reading.spo2_percent) == (bpm, spo2)
