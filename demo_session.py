"""
Walkthrough of a patient-viewing session against the simulated metrics API.

This script demonstrates:
1. Configuration loading and validation
2. Latest readings with clinical status
3. Trend summaries over a window
4. Clinician alerts and role checks
5. Optimistic writes, including a rejected one that rolls back

Run with: uv run python demo_session.py
"""

import asyncio
from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.portal import AlertAccessDenied, PatientMetricsViewer, Role
from vitals.config import get_config, print_config_summary, validate_config
from vitals.domain.errors import ValidationError, WriteFailedError
from vitals.domain.models import (
    MetricStatus,
    MetricType,
    NewMetric,
    PatientHealthMetric,
    TrendWindow,
)
from vitals.logging import configure_logging
from vitals.services.cache import MetricsCache
from vitals.services.classifier import classify
from vitals.services.memory_api import InMemoryHealthMetricsAPI
from vitals.services.trends import TrendAggregator

console = Console()

PATIENT_ID = "patient-001"

STATUS_STYLES = {
    MetricStatus.NORMAL: "green",
    MetricStatus.ABNORMAL: "yellow",
    MetricStatus.CRITICAL: "red",
}


def seed_readings(api: InMemoryHealthMetricsAPI) -> None:
    """A week of blood pressure plus a few one-off readings."""
    now = datetime.now(UTC)
    systolic = [110.0, 115.0, 120.0, 130.0, 140.0]
    for day, value in enumerate(systolic):
        api.seed(
            PatientHealthMetric(
                id=f"bp-{day}",
                patient_id=PATIENT_ID,
                metric_type=MetricType.BLOOD_PRESSURE_SYSTOLIC,
                value=value,
                unit="mmHg",
                recorded_at=now - timedelta(days=len(systolic) - day),
            )
        )

    api.seed(
        PatientHealthMetric(
            id="hr-1",
            patient_id=PATIENT_ID,
            metric_type=MetricType.HEART_RATE,
            value=110.0,
            unit="bpm",
            recorded_at=now - timedelta(hours=3),
        ),
        PatientHealthMetric(
            id="glucose-1",
            patient_id=PATIENT_ID,
            metric_type=MetricType.BLOOD_GLUCOSE_FASTING,
            value=95.0,
            unit="mg/dL",
            recorded_at=now - timedelta(hours=12),
        ),
        PatientHealthMetric(
            id="spo2-1",
            patient_id=PATIENT_ID,
            metric_type=MetricType.OXYGEN_SATURATION,
            value=86.0,
            unit="%",
            recorded_at=now - timedelta(hours=1),
            notes="Measured after stairs",
        ),
    )


def build_session(role: Role) -> tuple[InMemoryHealthMetricsAPI, PatientMetricsViewer]:
    config = get_config()
    api = InMemoryHealthMetricsAPI(latency_seconds=0.05)
    seed_readings(api)
    cache = MetricsCache(
        api,
        config.cache,
        aggregator=TrendAggregator(dead_band=config.trends.dead_band),
    )
    return api, PatientMetricsViewer(cache, PATIENT_ID, role)


async def show_configuration() -> bool:
    """Load and display configuration."""

    console.print(Panel("🔧 Configuration", style="blue"))

    try:
        validate_config()
        print_config_summary()
        return True

    except Exception as e:
        console.print(f"❌ Configuration failed: {e}", style="red")
        return False


async def show_latest_readings() -> bool:
    """Open the summary card as a doctor."""

    console.print(Panel("🩺 Latest Readings", style="blue"))

    _, viewer = build_session(Role.DOCTOR)
    latest = await viewer.open()

    table = Table(title=f"Latest readings for {PATIENT_ID}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_column("Status")
    table.add_column("Recorded", style="magenta")

    for metric_type, reading in sorted(latest.items(), key=lambda item: item[0].label):
        status = classify(metric_type, reading.value)
        table.add_row(
            metric_type.label,
            f"{reading.value:g} {reading.unit}",
            f"[{STATUS_STYLES[status]}]{status.value}[/]",
            reading.recorded_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)

    summary = viewer.summary()
    console.print(
        f"Overall status: {summary.overall_status.upper()}",
        style={"healthy": "green", "warning": "yellow", "critical": "red"}[
            summary.overall_status
        ],
    )
    viewer.close()
    return True


async def show_trends() -> bool:
    """Aggregate a week of readings into trend summaries."""

    console.print(Panel("📈 Trends (7 days)", style="blue"))

    _, viewer = build_session(Role.PATIENT)
    trends = await viewer.load_trends(
        [MetricType.BLOOD_PRESSURE_SYSTOLIC, MetricType.HBA1C], TrendWindow.SEVEN_DAYS
    )

    table = Table(title="Trend summaries")
    table.add_column("Metric", style="cyan")
    table.add_column("Points", style="white")
    table.add_column("Average", style="green")
    table.add_column("Min / Max", style="yellow")
    table.add_column("Direction", style="magenta")

    for metric_type, summary in trends.items():
        if not summary.has_data:
            table.add_row(metric_type.label, "0", "no data", "-", summary.direction.value)
            continue
        table.add_row(
            metric_type.label,
            str(len(summary.points)),
            f"{summary.average:.1f}",
            f"{summary.min:g} / {summary.max:g}",
            summary.direction.value,
        )

    console.print(table)
    viewer.close()
    return True


async def show_alerts() -> bool:
    """Clinicians see alerts; patients are refused before any request is made."""

    console.print(Panel("🚨 Alerts", style="blue"))

    api, doctor = build_session(Role.DOCTOR)
    alerts = await doctor.load_alerts()
    for alert in alerts:
        console.print(
            f"  {alert.severity.value.upper():<9} {alert.metric_type.label}: "
            f"{alert.value:g} {alert.unit}",
            style="red" if alert.severity.value == "critical" else "yellow",
        )

    _, patient = build_session(Role.PATIENT)
    try:
        await patient.load_alerts()
        console.print("❌ Patient was allowed to load alerts", style="red")
        return False
    except AlertAccessDenied as e:
        console.print(f"✅ {e}", style="green")

    console.print(f"Alert requests made by the doctor session: {api.calls['get_alerts']}")
    doctor.close()
    patient.close()
    return True


async def show_optimistic_writes() -> bool:
    """Record readings; a rejected write rolls back."""

    console.print(Panel("✍️ Optimistic Writes", style="blue"))

    api, viewer = build_session(Role.DOCTOR)
    await viewer.open()

    created = await viewer.add_reading(
        NewMetric(metric_type=MetricType.HEART_RATE, value=170.0)
    )
    latest_hr = viewer.cache.latest_metrics[MetricType.HEART_RATE]
    console.print(
        f"✅ Recorded heart rate {created.value:g} bpm; latest now {latest_hr.value:g} bpm "
        f"({classify(MetricType.HEART_RATE, latest_hr.value).value})",
        style="green",
    )

    api.fail_next("create_metric", ValidationError("Value must be positive", 422))
    try:
        await viewer.add_reading(NewMetric(metric_type=MetricType.HEART_RATE, value=72.0))
        console.print("❌ Rejected write was not reported", style="red")
        return False
    except WriteFailedError as e:
        rolled_back = viewer.cache.latest_metrics[MetricType.HEART_RATE]
        console.print(f"✅ {e}; latest heart rate back to {rolled_back.value:g} bpm", style="green")

    await viewer.remove_reading(created.id)
    await viewer.cache.settle()
    restored = viewer.cache.latest_metrics[MetricType.HEART_RATE]
    console.print(f"✅ Deleted reading; latest heart rate is {restored.value:g} bpm", style="green")

    viewer.close()
    return True


async def run_demo() -> None:
    """Run every walkthrough step."""

    console.print(Panel("🏥 Health Metrics Engine - Session Walkthrough", style="bold blue"))
    configure_logging(get_config().logging)

    steps = [
        ("Configuration", show_configuration),
        ("Latest Readings", show_latest_readings),
        ("Trends", show_trends),
        ("Alerts", show_alerts),
        ("Optimistic Writes", show_optimistic_writes),
    ]

    results = []

    for step_name, step_func in steps:
        console.print(f"\n{'=' * 60}")
        try:
            result = await step_func()
            results.append((step_name, result))
        except KeyboardInterrupt:
            console.print("\n⏹️  Walkthrough interrupted by user", style="yellow")
            break
        except Exception as e:
            console.print(f"❌ {step_name} failed with exception: {e}", style="red")
            results.append((step_name, False))

    console.print(f"\n{'=' * 60}")
    console.print(Panel("📋 Walkthrough Summary", style="bold"))

    summary_table = Table()
    summary_table.add_column("Step", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for step_name, result in results:
        if result:
            summary_table.add_row(step_name, "✅ OK")
            passed += 1
        else:
            summary_table.add_row(step_name, "❌ FAILED")

    console.print(summary_table)
    console.print(f"\n🎯 Results: {passed}/{len(results)} steps completed")


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\n👋 Walkthrough stopped by user", style="yellow")
