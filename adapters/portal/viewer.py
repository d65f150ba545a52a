"""
Role-aware viewing session over a MetricsCache.

The alerts endpoint is restricted to clinicians. The server enforces that
too; the viewer simply never asks for alerts on behalf of a patient.
"""

from enum import Enum

import structlog

from vitals.domain.errors import MetricsEngineError
from vitals.domain.models import (
    HealthSummary,
    LatestMetrics,
    MetricAlert,
    MetricFilters,
    MetricType,
    NewMetric,
    PatientHealthMetric,
    TrendSummary,
    TrendWindow,
)
from vitals.services.alerts import summarize
from vitals.services.cache import MetricsCache

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Portal user roles."""

    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    ADMIN = "ADMIN"


PRIVILEGED_ROLES = frozenset({Role.DOCTOR, Role.ADMIN})


class AlertAccessDenied(MetricsEngineError):
    """The current role may not read a patient's alerts."""

    def __init__(self, role: Role) -> None:
        super().__init__(f"Role {role.value} cannot view health-metric alerts")
        self.role = role


class PatientMetricsViewer:
    """One user looking at one patient's health metrics."""

    def __init__(self, cache: MetricsCache, patient_id: str, role: Role) -> None:
        self.cache = cache
        self.patient_id = patient_id
        self.role = role
        self.logger = logger.bind(
            component="patient_metrics_viewer", patient_id=patient_id, role=role.value
        )

    @property
    def can_view_alerts(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    async def open(self) -> LatestMetrics:
        """Load the summary card: latest readings, plus alerts for clinicians."""
        self.logger.info("viewer_opened")
        latest = await self.cache.fetch_latest(self.patient_id)
        if self.can_view_alerts:
            await self.cache.fetch_alerts(self.patient_id)
        return latest

    async def load_history(
        self, filters: MetricFilters | None = None, *, force: bool = False
    ) -> tuple[PatientHealthMetric, ...]:
        return await self.cache.fetch_metrics(self.patient_id, filters, force=force)

    async def load_trends(
        self, metric_types: list[MetricType], window: TrendWindow
    ) -> dict[MetricType, TrendSummary]:
        return await self.cache.fetch_trends(self.patient_id, metric_types, window)

    async def load_alerts(self, *, force: bool = False) -> tuple[MetricAlert, ...]:
        if not self.can_view_alerts:
            self.logger.warning("alert_access_denied")
            raise AlertAccessDenied(self.role)
        return await self.cache.fetch_alerts(self.patient_id, force=force)

    async def add_reading(self, new_metric: NewMetric) -> PatientHealthMetric:
        """Record a reading; clinicians also get the refreshed alert list."""
        created = await self.cache.create_metric(self.patient_id, new_metric)
        if self.can_view_alerts:
            await self.cache.fetch_alerts(self.patient_id, force=True)
        return created

    async def remove_reading(self, metric_id: str) -> None:
        await self.cache.delete_metric(self.patient_id, metric_id)
        if self.can_view_alerts:
            await self.cache.fetch_alerts(self.patient_id, force=True)

    def summary(self) -> HealthSummary:
        return summarize(self.cache.latest_metrics)

    def close(self) -> None:
        self.logger.info("viewer_closed")
        self.cache.clear()
