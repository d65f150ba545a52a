"""
Simulated health-metrics API.

Behaves like the remote service closely enough to drive the cache without a
network: per-patient storage, the same filtering and validation rules, and
knobs for latency, held responses and injected failures.
"""

import asyncio
import math
import uuid
from collections import Counter, defaultdict, deque
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

import structlog

from vitals.domain.errors import ApiError, ValidationError
from vitals.domain.models import (
    LatestMetrics,
    MetricAlert,
    MetricFilters,
    MetricsResponse,
    MetricType,
    MetricUpdate,
    NewMetric,
    PatientHealthMetric,
    RawTrendData,
    RawTrendPoint,
    TrendWindow,
)
from vitals.services.alerts import AlertDeriver
from vitals.services.classifier import is_abnormal
from vitals.services.result import Result

logger = structlog.get_logger(__name__)


class InMemoryHealthMetricsAPI:
    """
    In-process stand-in for the metrics API.

    The response is computed when a call arrives; ``hold_next`` and
    ``latency_seconds`` only delay its delivery. That lets tests make an
    older request resolve after a newer one with different data.
    """

    def __init__(
        self,
        latency_seconds: float = 0.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.latency_seconds = latency_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._readings: dict[str, dict[str, PatientHealthMetric]] = defaultdict(dict)
        self._failures: dict[str, deque[ApiError]] = defaultdict(deque)
        self._holds: dict[str, deque[asyncio.Event]] = defaultdict(deque)
        self._deriver = AlertDeriver()
        self.calls: Counter[str] = Counter()
        self.logger = logger.bind(component="in_memory_metrics_api")

    # Test and demo controls

    def seed(self, *readings: PatientHealthMetric) -> None:
        for reading in readings:
            self._readings[reading.patient_id][reading.id] = reading

    def readings(self, patient_id: str) -> list[PatientHealthMetric]:
        return list(self._readings[patient_id].values())

    def fail_next(self, operation: str, error: ApiError) -> None:
        """Make the next call to ``operation`` fail with ``error``."""
        self._failures[operation].append(error)

    def hold_next(self, operation: str) -> asyncio.Event:
        """Delay the next response of ``operation`` until the returned event is set."""
        gate = asyncio.Event()
        self._holds[operation].append(gate)
        return gate

    # HealthMetricsAPI

    async def get_metrics(
        self, patient_id: str, filters: MetricFilters | None = None
    ) -> Result[MetricsResponse, ApiError]:
        return await self._respond("get_metrics", lambda: self._list(patient_id, filters))

    async def get_latest(self, patient_id: str) -> Result[LatestMetrics, ApiError]:
        return await self._respond("get_latest", lambda: Result.ok(self._latest(patient_id)))

    async def get_trends(
        self, patient_id: str, metric_types: Sequence[MetricType], window: TrendWindow
    ) -> Result[dict[MetricType, RawTrendData], ApiError]:
        return await self._respond(
            "get_trends", lambda: Result.ok(self._trends(patient_id, metric_types, window))
        )

    async def get_alerts(self, patient_id: str) -> Result[list[MetricAlert], ApiError]:
        return await self._respond(
            "get_alerts", lambda: Result.ok(self._deriver.derive(self.readings(patient_id)))
        )

    async def create_metric(
        self, patient_id: str, new_metric: NewMetric
    ) -> Result[PatientHealthMetric, ApiError]:
        return await self._respond("create_metric", lambda: self._create(patient_id, new_metric))

    async def update_metric(
        self, patient_id: str, metric_id: str, changes: MetricUpdate
    ) -> Result[PatientHealthMetric, ApiError]:
        return await self._respond(
            "update_metric", lambda: self._update(patient_id, metric_id, changes)
        )

    async def delete_metric(self, patient_id: str, metric_id: str) -> Result[None, ApiError]:
        return await self._respond("delete_metric", lambda: self._delete(patient_id, metric_id))

    async def _respond(self, operation: str, build: Callable[[], Result]) -> Result:
        self.calls[operation] += 1

        if self._failures[operation]:
            result: Result = Result.err(self._failures[operation].popleft())
        else:
            result = build()

        if self._holds[operation]:
            await self._holds[operation].popleft().wait()
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

        self.logger.debug("request_served", operation=operation, ok=result.is_ok())
        return result

    # Server-side behavior

    def _list(
        self, patient_id: str, filters: MetricFilters | None
    ) -> Result[MetricsResponse, ApiError]:
        filters = filters or MetricFilters()
        readings = self.readings(patient_id)

        if filters.metric_type is not None:
            readings = [r for r in readings if r.metric_type == filters.metric_type]
        if filters.period is not None:
            start = self._clock() - filters.period.duration
            readings = [r for r in readings if r.recorded_at >= start]
        if filters.abnormal_only:
            readings = [r for r in readings if is_abnormal(r.metric_type, r.value)]

        readings.sort(key=lambda r: r.recorded_at, reverse=True)
        total = len(readings)
        offset = filters.offset or 0
        end = offset + filters.limit if filters.limit is not None else None
        return Result.ok(MetricsResponse(metrics=readings[offset:end], total=total))

    def _latest(self, patient_id: str) -> LatestMetrics:
        latest: LatestMetrics = {}
        for reading in self.readings(patient_id):
            current = latest.get(reading.metric_type)
            if current is None or reading.recorded_at > current.recorded_at:
                latest[reading.metric_type] = reading
        return latest

    def _trends(
        self, patient_id: str, metric_types: Sequence[MetricType], window: TrendWindow
    ) -> dict[MetricType, RawTrendData]:
        start = self._clock() - window.duration
        trends = {}
        for metric_type in metric_types:
            points = sorted(
                (
                    RawTrendPoint(date=r.recorded_at, value=r.value)
                    for r in self.readings(patient_id)
                    if r.metric_type == metric_type and r.recorded_at >= start
                ),
                key=lambda p: p.date,
            )
            trends[metric_type] = RawTrendData(data_points=points)
        return trends

    def _create(
        self, patient_id: str, new_metric: NewMetric
    ) -> Result[PatientHealthMetric, ApiError]:
        rejection = self._reject_value(new_metric.value)
        if rejection:
            return Result.err(rejection)

        reading = PatientHealthMetric(
            id=uuid.uuid4().hex,
            patient_id=patient_id,
            metric_type=new_metric.metric_type,
            value=new_metric.value,
            unit=new_metric.unit or new_metric.metric_type.unit,
            recorded_at=new_metric.recorded_at or self._clock(),
            notes=new_metric.notes,
        )
        self._readings[patient_id][reading.id] = reading
        return Result.ok(reading)

    def _update(
        self, patient_id: str, metric_id: str, changes: MetricUpdate
    ) -> Result[PatientHealthMetric, ApiError]:
        existing = self._readings[patient_id].get(metric_id)
        if existing is None:
            return Result.err(ApiError("Health metric not found", 404))

        patch = changes.changes()
        if "value" in patch:
            rejection = self._reject_value(patch["value"])
            if rejection:
                return Result.err(rejection)
        if "metric_type" in patch and "unit" not in patch:
            patch["unit"] = patch["metric_type"].unit

        updated = existing.model_copy(update=patch)
        self._readings[patient_id][metric_id] = updated
        return Result.ok(updated)

    def _delete(self, patient_id: str, metric_id: str) -> Result[None, ApiError]:
        if self._readings[patient_id].pop(metric_id, None) is None:
            return Result.err(ApiError("Health metric not found", 404))
        return Result.ok(None)

    @staticmethod
    def _reject_value(value: float | None) -> ValidationError | None:
        if value is None or not math.isfinite(value) or value <= 0:
            return ValidationError("Value must be positive", 422)
        return None
