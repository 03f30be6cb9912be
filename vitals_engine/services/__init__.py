"""
Core services for the application.

This package contains the service implementations of the telemetry engine:
broker transport, reading decoding, history, alerts, the measurement window
and the composition root that wires them together.
"""

from .alerts import AlertEvaluator, AlertFeed
from .decoder import decode
from .engine import VitalsMonitoringService
from .history import HistoryAggregator
from .profiles import ProfileStore
from .result import Result
from .session_timer import SessionTimer
from .storage import JsonFileStore, KeyValueStore, MemoryStore, SQLiteStore, create_store
from .transport import BrokerSession, PahoSession, TransportClient

__all__ = [
    "AlertEvaluator",
    "AlertFeed",
    "BrokerSession",
    "HistoryAggregator",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "PahoSession",
    "ProfileStore",
    "Result",
    "SQLiteStore",
    "SessionTimer",
    "TransportClient",
    "VitalsMonitoringService",
    "create_store",
    "decode",
]
