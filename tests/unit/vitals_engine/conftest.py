"""
Shared fixtures: an in-process broker double and ready-made configs.

The fake sessions call back synchronously from ``open()``; the transport
client still marshals those callbacks through the event loop exactly as it
does for paho's network thread.
"""

from collections.abc import Callable

import pytest

from vitals_engine.config import AppConfig, BrokerConfig, SessionConfig, StorageConfig
from vitals_engine.services.storage import MemoryStore


class FakeSession:
    """Test double that implements the BrokerSession protocol."""

    def __init__(self, accept: bool = True, auto_handshake: bool = True) -> None:
        self.accept = accept
        self.auto_handshake = auto_handshake
        self.opened = False
        self.closed = False
        self.subscribed: list[str] = []
        self.published: list[tuple[str, str | bytes]] = []
        self._on_connect: Callable[[bool, str], None] | None = None
        self._on_message: Callable[[str, bytes], None] | None = None
        self._on_disconnect: Callable[[str], None] | None = None

    def open(
        self,
        on_connect: Callable[[bool, str], None],
        on_message: Callable[[str, bytes], None],
        on_disconnect: Callable[[str], None],
    ) -> None:
        self.opened = True
        self._on_connect = on_connect
        self._on_message = on_message
        self._on_disconnect = on_disconnect
        if self.auto_handshake:
            self.complete_handshake()

    def complete_handshake(self, ok: bool | None = None) -> None:
        assert self._on_connect is not None
        accepted = self.accept if ok is None else ok
        self._on_connect(accepted, "Success" if accepted else "Not authorized")

    def subscribe(self, topic: str) -> None:
        self.subscribed.append(topic)

    def publish(self, topic: str, payload: str | bytes) -> None:
        self.published.append((topic, payload))

    def close(self) -> None:
        self.closed = True

    def deliver(self, topic: str, payload: bytes | str) -> None:
        assert self._on_message is not None
        self._on_message(topic, payload.encode() if isinstance(payload, str) else payload)

    def drop(self, reason: str = "Keep alive timeout") -> None:
        assert self._on_disconnect is not None
        self._on_disconnect(reason)


class FakeBroker:
    """Session factory that remembers every session it handed out."""

    def __init__(self) -> None:
        self.accept = True
        self.auto_handshake = True
        self.sessions: list[FakeSession] = []

    def __call__(self) -> FakeSession:
        session = FakeSession(accept=self.accept, auto_handshake=self.auto_handshake)
        self.sessions.append(session)
        return session

    @property
    def latest(self) -> FakeSession:
        return self.sessions[-1]


@pytest.fixture
def fake_broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def broker_config() -> BrokerConfig:
    return BrokerConfig(
        host="broker.test",
        connect_timeout_seconds=0.2,
        reconnect_interval_seconds=0.01,
    )


@pytest.fixture
def app_config(broker_config: BrokerConfig) -> AppConfig:
    return AppConfig(
        broker=broker_config,
        storage=StorageConfig(backend="memory"),
        # Long tick so tests drive the countdown by hand
        session=SessionConfig(tick_interval_seconds=3600.0),
    )


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


BRADYCARDIA_FRAME = b'{"bpm":45,"bpm_status":"Bradycardia","spo2":89,"spo2_status":"Not Safe"}'
NORMAL_FRAME = b'{"bpm":72,"bpm_status":"Normal","spo2":98,"spo2_status":"Safe"}'


@pytest.fixture
def bradycardia_frame() -> bytes:
    return BRADYCARDIA_FRAME


@pytest.fixture
def normal_frame() -> bytes:
    return NORMAL_FRAME
