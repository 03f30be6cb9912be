"""
Tests for the Result type and the domain models.

Testing philosophy:
- Fast feedback (unit tests run in milliseconds)
- Property-based testing for edge cases
- Clear test names that describe behavior
"""

from datetime import UTC, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vitals_engine.domain.models import (
    CONNECTION_TRANSITIONS,
    ConnectionState,
    HistoryEntry,
    SessionTimerState,
    SubjectProfile,
    VitalsReading,
)
from vitals_engine.services.result import Result


class TestResult:
    """Test the Result type for explicit error handling."""

    def test_result_ok_creates_successful_result(self) -> None:
        result: Result[str, Exception] = Result.ok("success")
        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == "success"

    def test_result_error_creates_failed_result(self) -> None:
        error = ValueError("test error")
        result: Result[str, ValueError] = Result.err(error)
        assert not result.is_ok()
        assert result.is_err()
        assert result.unwrap_or("default") == "default"
        assert result.unwrap_err() is error

    def test_unwrap_raises_on_error_result(self) -> None:
        result: Result[str, ValueError] = Result.err(ValueError("test error"))

        with pytest.raises(ValueError, match="test error"):
            result.unwrap()

    def test_unwrap_err_on_ok_value_raises(self) -> None:
        with pytest.raises(ValueError, match="unwrap_err"):
            Result.ok(1).unwrap_err()

    def test_result_needs_exactly_one_side(self) -> None:
        with pytest.raises(ValueError):
            Result()
        with pytest.raises(ValueError):
            Result(value=1, error=RuntimeError("both"))


class TestVitalsReading:
    @given(
        bpm=st.integers(min_value=0, max_value=300),
        spo2=st.integers(min_value=0, max_value=100),
        status=st.text(max_size=30),
    )
    def test_reading_creation_with_random_data(self, bpm: int, spo2: int, status: str) -> None:
        reading = VitalsReading(
            heart_rate_bpm=bpm, heart_rate_status=status, spo2_percent=spo2, spo2_status=status
        )

        assert reading.heart_rate_bpm == bpm
        assert reading.spo2_percent == spo2
        assert reading.observed_at.tzinfo == UTC

    def test_reading_immutability(self) -> None:
        reading = VitalsReading(
            heart_rate_bpm=70, heart_rate_status="Normal", spo2_percent=97, spo2_status="Safe"
        )

        with pytest.raises(ValueError, match="frozen"):
            reading.heart_rate_bpm = 40  # type: ignore

    def test_spo2_above_100_rejected(self) -> None:
        with pytest.raises(ValueError):
            VitalsReading(
                heart_rate_bpm=70, heart_rate_status="Normal", spo2_percent=101, spo2_status="Safe"
            )


class TestHistoryEntry:
    def test_serializes_with_dashboard_field_names(self) -> None:
        entry = HistoryEntry(time="10:15:00", heart_rate=64, spo2=97, temperature=37.0)

        dumped = entry.model_dump(by_alias=True)

        assert dumped == {"time": "10:15:00", "heartRate": 64, "spo2": 97, "temperature": 37.0}

    def test_accepts_stored_camel_case_payload(self) -> None:
        entry = HistoryEntry.model_validate(
            {"time": "10:15:00", "heartRate": 64, "spo2": 97, "temperature": 37.0}
        )
        assert entry.heart_rate == 64


class TestSubjectProfile:
    def test_user_id_required(self) -> None:
        with pytest.raises(ValueError):
            SubjectProfile(user_id="")

    def test_reads_form_field_names(self) -> None:
        profile = SubjectProfile.model_validate(
            {"userId": "P-7", "name": "Ravi", "bloodGroup": "O+", "gender": "male"}
        )
        assert profile.user_id == "P-7"
        assert profile.blood_group == "O+"


class TestSessionTimerState:
    def test_defaults_to_idle_thirty(self) -> None:
        assert SessionTimerState() == SessionTimerState(active=False, remaining_seconds=30)

    @pytest.mark.parametrize("remaining", [-1, 31])
    def test_remaining_out_of_range_rejected(self, remaining: int) -> None:
        with pytest.raises(ValueError):
            SessionTimerState(active=True, remaining_seconds=remaining)


class TestConnectionTransitions:
    def test_connected_never_moves_straight_to_connected(self) -> None:
        assert ConnectionState.CONNECTED not in CONNECTION_TRANSITIONS[ConnectionState.CONNECTED]

    def test_connected_only_reachable_from_connecting(self) -> None:
        sources = {
            source
            for source, targets in CONNECTION_TRANSITIONS.items()
            if ConnectionState.CONNECTED in targets
        }
        assert sources == {ConnectionState.CONNECTING}

    def test_every_state_has_an_entry(self) -> None:
        assert set(CONNECTION_TRANSITIONS) == set(ConnectionState)


def test_observed_at_defaults_to_now() -> None:
    before = datetime.now(UTC)
    reading = VitalsReading(
        heart_rate_bpm=70, heart_rate_status="Normal", spo2_percent=97, spo2_status="Safe"
    )
    assert before <= reading.observed_at <= datetime.now(UTC)
