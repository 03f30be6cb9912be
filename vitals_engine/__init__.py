"""Telemetry ingestion and derived-state engine for patient vitals.

This package contains the broker transport, the reading decoder and the
derived state (history, alerts, measurement window) a dashboard renders from.
"""
