"""
Console runner for the telemetry engine.

Connects to the configured broker, follows the selected subject and prints
each reading, alert and countdown change as it arrives.

Run with: uv run python -m vitals_engine --subject P-001 --measure
"""

import argparse
import asyncio
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vitals_engine.config import get_config
from vitals_engine.domain.models import MonitoringSnapshot, SubjectProfile
from vitals_engine.observability import configure_logging
from vitals_engine.services.engine import VitalsMonitoringService

console = Console()


def render_snapshot(snapshot: MonitoringSnapshot, service: VitalsMonitoringService) -> Table:
    """Tabulate the latest reading plus the tail of the history."""
    table = Table(title=f"Subject {snapshot.subject_id or '-'} ({snapshot.connection_status})")
    table.add_column("Time")
    table.add_column("Heart rate", justify="right")
    table.add_column("SpO2", justify="right")
    table.add_column("Temp (C)", justify="right")

    for entry in snapshot.history[-5:]:
        table.add_row(
            entry.time, str(entry.heart_rate), f"{entry.spo2}%", f"{entry.temperature:.1f}"
        )

    reading = snapshot.latest_reading
    if reading is not None:
        hr_style = "red" if service.evaluator.is_alarming(reading.heart_rate_status) else "green"
        spo2_style = "red" if service.evaluator.is_alarming(reading.spo2_status) else "green"
        table.caption = (
            f"[{hr_style}]{reading.heart_rate_status}[/{hr_style}] | "
            f"[{spo2_style}]{reading.spo2_status}[/{spo2_style}]"
        )
    return table


async def run(subject_id: str | None, subject_name: str, measure: bool, max_readings: int) -> int:
    config = get_config()
    configure_logging(config.logging)

    service = VitalsMonitoringService(config)
    if subject_id:
        service.select_subject(SubjectProfile(user_id=subject_id, name=subject_name))
    elif service.profiles.current() is None:
        console.print("[red]No subject selected. Pass --subject to choose one.[/red]")
        return 2

    async with service.session():
        if service.connection_status == "error":
            console.print(Panel("Could not connect to the broker", style="red"))
            return 1
        console.print(f"[green]Connected to {config.broker.host}:{config.broker.port}[/green]")

        if measure:
            started = service.start_measurement()
            if started.is_err():
                console.print(f"[red]Measurement not started: {started.unwrap_err()}[/red]")

        last_reading = None
        last_alert_id = None
        readings_seen = 0
        async for snapshot in service.updates():
            if snapshot.latest_reading is not None and snapshot.latest_reading != last_reading:
                last_reading = snapshot.latest_reading
                readings_seen += 1
                console.print(render_snapshot(snapshot, service))

            if snapshot.alerts and snapshot.alerts[0].id != last_alert_id:
                last_alert_id = snapshot.alerts[0].id
                console.print(Panel(snapshot.alerts[0].message, title="ALERT", style="yellow"))

            if snapshot.timer.active:
                console.print(f"Measuring... {snapshot.timer.remaining_seconds}s", end="\r")

            if max_readings and readings_seen >= max_readings:
                break
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="vitals_engine", description=__doc__)
    parser.add_argument("--subject", help="Subject (patient) id to follow")
    parser.add_argument("--name", default="", help="Display name when selecting a new subject")
    parser.add_argument("--measure", action="store_true", help="Request a measurement on start")
    parser.add_argument(
        "--max-readings", type=int, default=0, help="Exit after this many readings (0 = never)"
    )
    args = parser.parse_args(argv)

    try:
        return asyncio.run(run(args.subject, args.name, args.measure, args.max_readings))
    except KeyboardInterrupt:
        console.print("\nMonitoring stopped by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
