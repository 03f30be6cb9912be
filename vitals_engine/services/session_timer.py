"""
Measurement window countdown.

Idle(30) -> Active(30) -> Active(29) -> ... -> Active(0) -> Idle(30).
The countdown is a cooperative asyncio task; cancel() stops it and no tick
fires afterwards.
"""

import asyncio
from collections.abc import Callable
from typing import Protocol

import structlog

from vitals_engine.domain.errors import NotConnectedError
from vitals_engine.domain.models import SessionTimerState
from vitals_engine.services.result import Result

logger = structlog.get_logger(__name__)

TimerListener = Callable[[SessionTimerState], None]


class CommandPublisher(Protocol):
    def publish(self, topic: str, payload: str | bytes) -> None: ...


class SessionTimer:
    """Gates measurement requests so only one window runs at a time."""

    def __init__(
        self,
        publisher: CommandPublisher,
        control_topic: str,
        start_command: str = "start",
        duration_seconds: int = 30,
        tick_interval_seconds: float = 1.0,
    ) -> None:
        self.publisher = publisher
        self.control_topic = control_topic
        self.start_command = start_command
        self.duration_seconds = duration_seconds
        self.tick_interval_seconds = tick_interval_seconds
        self.logger = logger.bind(component="session_timer")

        self._state = SessionTimerState(active=False, remaining_seconds=duration_seconds)
        self._task: asyncio.Task[None] | None = None
        self._listeners: list[TimerListener] = []

    @property
    def state(self) -> SessionTimerState:
        return self._state

    def add_listener(self, listener: TimerListener) -> None:
        self._listeners.append(listener)

    def start(self) -> Result[SessionTimerState, NotConnectedError]:
        """
        Request a measurement and open the window.

        Must be called from a running event loop. A call while a window is
        already open returns the current state without starting a second clock.
        """
        if self._state.active:
            self.logger.debug(
                "measurement_already_active", remaining_seconds=self._state.remaining_seconds
            )
            return Result.ok(self._state)

        try:
            self.publisher.publish(self.control_topic, self.start_command)
        except NotConnectedError as e:
            self.logger.warning("measurement_start_failed", error=str(e))
            return Result.err(e)

        self._set_state(SessionTimerState(active=True, remaining_seconds=self.duration_seconds))
        self._task = asyncio.create_task(self._run())
        self.logger.info("measurement_started", duration_seconds=self.duration_seconds)
        return Result.ok(self._state)

    def tick(self) -> SessionTimerState:
        """Advance the countdown by one second."""
        if not self._state.active:
            return self._state

        remaining = max(self._state.remaining_seconds - 1, 0)
        self._set_state(SessionTimerState(active=True, remaining_seconds=remaining))
        if remaining == 0:
            self._reset()
            self.logger.info("measurement_window_completed")
        return self._state

    def cancel(self) -> None:
        """Stop the countdown and return to idle."""
        was_active = self._state.active
        self._reset()
        if was_active:
            self.logger.info("measurement_cancelled")

    async def wait(self) -> None:
        """Wait for the current window to finish or be cancelled."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _run(self) -> None:
        while self._state.active:
            await asyncio.sleep(self.tick_interval_seconds)
            self.tick()

    def _reset(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not _current_task():
            task.cancel()
        idle = SessionTimerState(active=False, remaining_seconds=self.duration_seconds)
        if self._state != idle:
            self._set_state(idle)

    def _set_state(self, state: SessionTimerState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                self.logger.error("timer_listener_failed", error=str(e))


def _current_task() -> "asyncio.Task[object] | None":
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
