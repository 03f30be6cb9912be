"""
Composition root for the vitals telemetry pipeline.

End-to-end flow:
1. Keep one broker connection alive and subscribed to the data topic
2. Decode each frame into a reading (malformed frames are logged and dropped)
3. Append the reading to the current subject's rolling history
4. Derive alerts into the bounded recent-alert feed
5. Publish a fresh snapshot to every listener

Architecture pattern: event-driven pipeline fed by a single inbound channel
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog

from vitals_engine.config import AppConfig, get_config
from vitals_engine.domain.errors import ConnectError, NotConnectedError
from vitals_engine.domain.models import (
    ConnectionState,
    ConnectionStatus,
    MonitoringSnapshot,
    SessionTimerState,
    SubjectProfile,
    VitalsReading,
)
from vitals_engine.services.alerts import AlertEvaluator, AlertFeed
from vitals_engine.services.decoder import decode
from vitals_engine.services.history import HistoryAggregator
from vitals_engine.services.profiles import ProfileStore
from vitals_engine.services.result import Result
from vitals_engine.services.session_timer import SessionTimer
from vitals_engine.services.storage import KeyValueStore, create_store
from vitals_engine.services.transport import BrokerSession, TransportClient

logger = structlog.get_logger(__name__)

SnapshotListener = Callable[[MonitoringSnapshot], None]


class VitalsMonitoringService:
    """
    Owns every component of the pipeline and the one broker connection.

    Construct it once per process (or per dashboard session) and tie its
    lifetime to ``start()``/``stop()`` or the ``session()`` context manager.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        store: KeyValueStore | None = None,
        session_factory: Callable[[], BrokerSession] | None = None,
    ) -> None:
        self.config = config or get_config()
        self.logger = logger.bind(component="vitals_monitoring")

        # Initialize subsystems
        self._init_storage(store)
        self._init_transport(session_factory)
        self._init_derived_state()
        self._init_session_timer()

        # Service state
        self._connection_status: ConnectionStatus = "connecting"
        self._latest_reading: VitalsReading | None = None
        self._listeners: list[SnapshotListener] = []
        self._is_running = False

    def _init_storage(self, store: KeyValueStore | None) -> None:
        self.store = store or create_store(self.config.storage)
        self.profiles = ProfileStore(self.store)
        self.history = HistoryAggregator(
            self.store,
            capacity=self.config.history.capacity,
            placeholder_temperature_c=self.config.history.placeholder_temperature_c,
        )

    def _init_transport(self, session_factory: Callable[[], BrokerSession] | None) -> None:
        self.transport = TransportClient(self.config.broker, session_factory=session_factory)
        self.transport.add_status_listener(self._on_connection_state)
        self.logger.info("transport_initialized", data_topic=self.config.broker.data_topic)

    def _init_derived_state(self) -> None:
        self.evaluator = AlertEvaluator(
            bradycardia_markers=self.config.alerts.bradycardia_markers,
            unsafe_spo2_markers=self.config.alerts.unsafe_spo2_markers,
        )
        self.alerts = AlertFeed(capacity=self.config.alerts.capacity)

    def _init_session_timer(self) -> None:
        self.timer = SessionTimer(
            self.transport,
            control_topic=self.config.broker.control_topic,
            start_command=self.config.broker.start_command,
            duration_seconds=self.config.session.duration_seconds,
            tick_interval_seconds=self.config.session.tick_interval_seconds,
        )
        self.timer.add_listener(self._on_timer_state)

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._connection_status

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        self._listeners.remove(listener)

    async def start(self) -> Result[ConnectionState, ConnectError]:
        """Connect to the broker; the data topic is subscribed once connected."""
        self._is_running = True
        self.logger.info("monitoring_starting", subject_id=self.profiles.current_subject_id())
        result = await self.transport.connect()
        if result.is_err():
            self._set_connection_status("error")
        return result

    async def stop(self) -> None:
        """Stop the countdown and release the broker connection."""
        self.logger.info("stopping_monitoring_service")
        self._is_running = False
        self.timer.cancel()
        self.transport.disconnect()

    @asynccontextmanager
    async def session(self) -> AsyncIterator["VitalsMonitoringService"]:
        """Run the service for the duration of a ``with`` block."""
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    async def updates(self) -> AsyncIterator[MonitoringSnapshot]:
        """Yield a snapshot every time the derived state changes."""
        queue: asyncio.Queue[MonitoringSnapshot] = asyncio.Queue()
        self.add_listener(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            self.remove_listener(queue.put_nowait)

    def start_measurement(self) -> Result[SessionTimerState, NotConnectedError]:
        """Ask the device for a new measurement and open the countdown window."""
        return self.timer.start()

    def select_subject(self, profile: SubjectProfile) -> MonitoringSnapshot:
        """Switch the monitored subject; its stored history becomes visible immediately."""
        self.profiles.select(profile)
        self._latest_reading = None
        return self._notify()

    def logout(self) -> None:
        self.profiles.clear_current()
        self._latest_reading = None
        self._notify()

    def snapshot(self) -> MonitoringSnapshot:
        subject_id = self.profiles.current_subject_id()
        return MonitoringSnapshot(
            connection_status=self._connection_status,
            subject_id=subject_id,
            latest_reading=self._latest_reading,
            history=self.history.snapshot(subject_id) if subject_id else [],
            alerts=self.alerts.snapshot(),
            timer=self.timer.state,
        )

    def handle_frame(self, topic: str, payload: bytes) -> None:
        """Ingestion boundary: nothing raised here may stop the frame stream."""
        result = decode(payload)
        if result.is_err():
            self.logger.warning("frame_decode_failed", topic=topic, error=str(result.unwrap_err()))
            return

        reading = result.unwrap()
        self._latest_reading = reading

        alert = self.evaluator.evaluate(reading)
        if alert is not None:
            self.alerts.push(alert)

        subject_id = self.profiles.current_subject_id()
        if subject_id:
            self._record_history(subject_id, reading)
        else:
            self.logger.info("reading_without_subject", heart_rate_bpm=reading.heart_rate_bpm)

        self._notify()

    def _record_history(self, subject_id: str, reading: VitalsReading) -> None:
        try:
            self.history.append(subject_id, reading)
        except Exception as e:
            # The alert for this reading is already out; keep the stream going
            self.logger.exception("history_append_failed", subject_id=subject_id, error=str(e))

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            self._set_connection_status("connected")
            if self._is_running:
                self._subscribe_data_topic()
        elif state is ConnectionState.CONNECTING:
            self._set_connection_status("connecting")
        elif state is ConnectionState.FAILED:
            self._set_connection_status("error")
        elif self._is_running:
            # Dropped while we still want the feed; the transport is reconnecting
            self._set_connection_status("error")
        else:
            # Released by stop(); back to the pre-connect status
            self._set_connection_status("connecting")

    def _subscribe_data_topic(self) -> None:
        try:
            self.transport.subscribe(self.config.broker.data_topic, self.handle_frame)
        except NotConnectedError as e:
            self.logger.error("data_topic_subscribe_failed", error=str(e))

    def _on_timer_state(self, state: SessionTimerState) -> None:
        self._notify()

    def _set_connection_status(self, status: ConnectionStatus) -> None:
        if status != self._connection_status:
            self.logger.info("connection_status_changed", status=status)
            self._connection_status = status
            self._notify()

    def _notify(self) -> MonitoringSnapshot:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                self.logger.error("snapshot_listener_failed", error=str(e))
        return snapshot
