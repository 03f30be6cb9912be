"""
Broker transport client.

Key patterns:
- Protocol-based session injection (paho-mqtt in production, fakes in tests)
- One asyncio.Queue as the single inbound channel, drained in arrival order
- Broker callbacks marshalled from the network thread onto the event loop
- Explicit connection state machine with listener notifications
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Protocol

import paho.mqtt.client as mqtt
import structlog

from vitals_engine.config import BrokerConfig
from vitals_engine.domain.errors import ConnectError, NotConnectedError
from vitals_engine.domain.models import CONNECTION_TRANSITIONS, ConnectionState, InboundFrame
from vitals_engine.services.result import Result

logger = structlog.get_logger(__name__)

FrameHandler = Callable[[str, bytes], Awaitable[None] | None]
StatusListener = Callable[[ConnectionState], None]


class BrokerSession(Protocol):
    """
    One underlying broker session.

    Callbacks may fire on any thread. ``on_connect`` receives whether the
    handshake succeeded and a reason string; ``on_disconnect`` fires when the
    session drops without being closed by its owner.
    """

    def open(
        self,
        on_connect: Callable[[bool, str], None],
        on_message: Callable[[str, bytes], None],
        on_disconnect: Callable[[str], None],
    ) -> None: ...

    def subscribe(self, topic: str) -> None: ...

    def publish(self, topic: str, payload: str | bytes) -> None: ...

    def close(self) -> None: ...


class PahoSession:
    """BrokerSession backed by a paho-mqtt client running its own network thread."""

    def __init__(self, config: BrokerConfig) -> None:
        self.config = config
        self._client: mqtt.Client | None = None
        self._closing = False

    def open(
        self,
        on_connect: Callable[[bool, str], None],
        on_message: Callable[[str, bytes], None],
        on_disconnect: Callable[[str], None],
    ) -> None:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            clean_session=self.config.clean_session,
            transport=self.config.transport,
            reconnect_on_failure=False,
        )
        if self.config.transport == "websockets":
            client.ws_set_options(path=self.config.websocket_path)
        if self.config.use_tls:
            client.tls_set()
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)

        def _on_connect(client, userdata, flags, reason_code, properties=None):
            on_connect(not reason_code.is_failure, str(reason_code))

        def _on_connect_fail(client, userdata):
            on_connect(False, "connection failed")

        def _on_message(client, userdata, message):
            on_message(message.topic, message.payload)

        def _on_disconnect(client, userdata, disconnect_flags, reason_code, properties=None):
            if not self._closing:
                on_disconnect(str(reason_code))

        client.on_connect = _on_connect
        client.on_connect_fail = _on_connect_fail
        client.on_message = _on_message
        client.on_disconnect = _on_disconnect

        self._client = client
        client.connect_async(
            self.config.host, self.config.port, keepalive=self.config.keepalive_seconds
        )
        client.loop_start()

    def subscribe(self, topic: str) -> None:
        if self._client is not None:
            self._client.subscribe(topic)

    def publish(self, topic: str, payload: str | bytes) -> None:
        if self._client is not None:
            self._client.publish(topic, payload)

    def close(self) -> None:
        if self._client is None:
            return
        self._closing = True
        self._client.disconnect()
        self._client.loop_stop()
        self._client = None


class TransportClient:
    """
    Owns the one live broker connection of the process.

    Construct it once at the composition root and share the instance; the
    state machine and the pending-attempt bookkeeping guarantee that concurrent
    callers never open a second session.
    """

    def __init__(
        self,
        config: BrokerConfig,
        session_factory: Callable[[], BrokerSession] | None = None,
    ) -> None:
        self.config = config
        self._session_factory = session_factory or (lambda: PahoSession(config))
        self.logger = logger.bind(component="transport_client", host=config.host)

        self._state = ConnectionState.DISCONNECTED
        self._session: BrokerSession | None = None
        self._generation = 0
        self._handlers: dict[str, FrameHandler] = {}
        self._status_listeners: list[StatusListener] = []

        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._attempt: asyncio.Task[Result[ConnectionState, ConnectError]] | None = None
        self._handshake: asyncio.Future[None] | None = None
        self._inbound: asyncio.Queue[InboundFrame] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def subscriptions(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.remove(listener)

    async def connect(self) -> Result[ConnectionState, ConnectError]:
        """
        Establish the broker session.

        Callers arriving while a handshake is in flight share its outcome.
        """
        async with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return Result.ok(self._state)
            attempt = self._ensure_attempt()
        try:
            return await asyncio.shield(attempt)
        except asyncio.CancelledError:
            # The attempt was abandoned by disconnect(), not the caller
            if attempt.cancelled():
                return Result.err(
                    ConnectError("Disconnected before the broker handshake completed")
                )
            raise

    def subscribe(self, topic: str, handler: FrameHandler) -> None:
        """Register the handler for a topic. A later registration replaces it."""
        session = self._require_session("subscribe")
        if topic not in self._handlers:
            session.subscribe(topic)
        self._handlers[topic] = handler
        self.logger.info("topic_subscribed", topic=topic)

    def publish(self, topic: str, payload: str | bytes) -> None:
        """Fire-and-forget send."""
        session = self._require_session("publish")
        session.publish(topic, payload)
        self.logger.debug("message_published", topic=topic)

    def disconnect(self) -> None:
        """Release the session and clear the registry. Safe to call at any time."""
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        if self._attempt is not None and not self._attempt.done():
            self._attempt.cancel()
        self._attempt = None

        self._close_session()
        self._handlers.clear()
        self._stop_dispatcher()

        if self._state is not ConnectionState.DISCONNECTED:
            self._transition(ConnectionState.DISCONNECTED)
            self.logger.info("broker_disconnected")

    async def drain(self) -> None:
        """Wait until every frame received so far has been dispatched."""
        if self._inbound is not None:
            await self._inbound.join()

    def _ensure_attempt(self) -> asyncio.Task[Result[ConnectionState, ConnectError]]:
        if self._attempt is None or self._attempt.done():
            self._attempt = asyncio.create_task(self._establish())
        return self._attempt

    async def _establish(self) -> Result[ConnectionState, ConnectError]:
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._transition(ConnectionState.CONNECTING)

        self._generation += 1
        generation = self._generation
        handshake: asyncio.Future[None] = loop.create_future()
        self._handshake = handshake
        if self._inbound is None:
            self._inbound = asyncio.Queue()

        error: ConnectError | None = None
        try:
            session = self._session_factory()
            self._session = session
            session.open(
                on_connect=lambda ok, reason: self._call_in_loop(
                    self._on_session_connect, generation, ok, reason
                ),
                on_message=lambda topic, payload: self._call_in_loop(
                    self._on_session_message, generation, topic, payload
                ),
                on_disconnect=lambda reason: self._call_in_loop(
                    self._on_session_lost, generation, reason
                ),
            )
            await asyncio.wait_for(handshake, timeout=self.config.connect_timeout_seconds)
        except TimeoutError:
            error = ConnectError(
                f"Broker handshake timed out after {self.config.connect_timeout_seconds}s"
            )
        except ConnectError as e:
            error = e
        except Exception as e:
            error = ConnectError(f"Failed to open broker session: {e}")
        finally:
            self._handshake = None

        if error is None:
            self._transition(ConnectionState.CONNECTED)
            self._start_dispatcher()
            self.logger.info("broker_connected", port=self.config.port)
            return Result.ok(self._state)

        if self._session is not None and generation == self._generation:
            self._close_session()
        if self._state is ConnectionState.CONNECTING:
            self._transition(ConnectionState.FAILED)
        self.logger.warning("broker_connect_failed", error=str(error))
        return Result.err(error)

    def _call_in_loop(self, callback: Callable[..., None], *args: object) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _on_session_connect(self, generation: int, ok: bool, reason: str) -> None:
        if generation != self._generation:
            return
        handshake = self._handshake
        if handshake is None or handshake.done():
            return
        if ok:
            handshake.set_result(None)
        else:
            handshake.set_exception(ConnectError(f"Broker refused connection: {reason}"))

    def _on_session_message(self, generation: int, topic: str, payload: bytes) -> None:
        if generation != self._generation or self._inbound is None:
            return
        self._inbound.put_nowait(InboundFrame(topic=topic, payload=bytes(payload)))

    def _on_session_lost(self, generation: int, reason: str) -> None:
        if generation != self._generation:
            return

        handshake = self._handshake
        if handshake is not None and not handshake.done():
            handshake.set_exception(ConnectError(f"Connection lost during handshake: {reason}"))
            return

        if self._state is not ConnectionState.CONNECTED:
            return

        self.logger.warning("broker_connection_lost", reason=reason)
        self._close_session()
        self._handlers.clear()
        self._stop_dispatcher()
        self._transition(ConnectionState.DISCONNECTED)
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempt_number = 0
        while True:
            await asyncio.sleep(self.config.reconnect_interval_seconds)
            attempt_number += 1
            async with self._lock:
                if self._state is ConnectionState.CONNECTED:
                    break
                attempt = self._ensure_attempt()
            result = await asyncio.shield(attempt)
            if result.is_ok():
                self.logger.info("broker_reconnected", attempts=attempt_number)
                break
            self.logger.warning(
                "broker_reconnect_failed",
                attempt=attempt_number,
                error=str(result.unwrap_err()),
            )
        self._reconnect_task = None

    def _start_dispatcher(self) -> None:
        if self._inbound is None:
            self._inbound = asyncio.Queue()
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch_loop(self._inbound))

    def _stop_dispatcher(self) -> None:
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            self._dispatcher = None
        self._inbound = None

    async def _dispatch_loop(self, queue: "asyncio.Queue[InboundFrame]") -> None:
        while True:
            frame = await queue.get()
            try:
                handler = self._handlers.get(frame.topic)
                if handler is None:
                    self.logger.debug("frame_dropped_unregistered_topic", topic=frame.topic)
                    continue
                outcome = handler(frame.topic, frame.payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One bad frame never stops the stream
                self.logger.exception("frame_handler_failed", topic=frame.topic, error=str(e))
            finally:
                queue.task_done()

    def _require_session(self, operation: str) -> BrokerSession:
        if self._state is not ConnectionState.CONNECTED or self._session is None:
            raise NotConnectedError(f"Cannot {operation}: broker client is not connected")
        return self._session

    def _close_session(self) -> None:
        session, self._session = self._session, None
        # Late callbacks from the old session are ignored
        self._generation += 1
        if session is not None:
            try:
                session.close()
            except Exception as e:
                self.logger.warning("broker_session_close_failed", error=str(e))

    def _transition(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if new_state not in CONNECTION_TRANSITIONS[old_state]:
            raise RuntimeError(
                f"Illegal connection transition {old_state.value} -> {new_state.value}"
            )
        self._state = new_state
        self.logger.debug(
            "connection_state_changed", old_state=old_state.value, new_state=new_state.value
        )
        for listener in list(self._status_listeners):
            try:
                listener(new_state)
            except Exception as e:
                self.logger.error("status_listener_failed", error=str(e))
