"""
Alert derivation for non-normal readings.

An alert exists only for a reading the classifier calls ABNORMAL or CRITICAL.
Alerts coming back from the server are re-checked the same way, so a NORMAL
reading can never reach a clinician's alert list.

Who may see alerts is decided by the caller (see ``adapters.portal``); this
module performs no authorization.
"""

from collections import Counter
from collections.abc import Iterable

import structlog

from vitals.domain.errors import ClassificationError
from vitals.domain.models import (
    AlertSeverity,
    HealthSummary,
    LatestMetrics,
    MetricAlert,
    MetricStatus,
    MetricType,
    OverallStatus,
    PatientHealthMetric,
)
from vitals.services.classifier import classify

logger = structlog.get_logger(__name__)

_SEVERITY_BY_STATUS = {
    MetricStatus.ABNORMAL: AlertSeverity.ABNORMAL,
    MetricStatus.CRITICAL: AlertSeverity.CRITICAL,
}


class AlertDeriver:
    """Maps classified readings to alerts, most recent first."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="alert_deriver")

    def derive(self, readings: Iterable[PatientHealthMetric]) -> list[MetricAlert]:
        alerts = []
        for reading in readings:
            status = self._status(reading.metric_type, reading.value, reading.id)
            if status is None or status is MetricStatus.NORMAL:
                continue
            alerts.append(
                MetricAlert(
                    id=reading.id,
                    metric_id=reading.id,
                    metric_type=reading.metric_type,
                    value=reading.value,
                    unit=reading.unit,
                    severity=_SEVERITY_BY_STATUS[status],
                    recorded_at=reading.recorded_at,
                    notes=reading.notes,
                )
            )
        return self._most_recent_first(alerts)

    def reconcile(self, alerts: Iterable[MetricAlert]) -> list[MetricAlert]:
        """Re-classify server-provided alerts, dropping NORMAL ones and fixing severity."""
        kept = []
        for alert in alerts:
            status = self._status(alert.metric_type, alert.value, alert.id)
            if status is None:
                continue
            if status is MetricStatus.NORMAL:
                self.logger.info(
                    "normal_alert_dropped",
                    alert_id=alert.id,
                    metric_type=alert.metric_type.value,
                    value=alert.value,
                )
                continue
            severity = _SEVERITY_BY_STATUS[status]
            if severity is not alert.severity:
                alert = alert.model_copy(update={"severity": severity})
            kept.append(alert)
        return self._most_recent_first(kept)

    def _status(
        self, metric_type: MetricType, value: float, ref: str | None
    ) -> MetricStatus | None:
        try:
            return classify(metric_type, value)
        except ClassificationError as e:
            self.logger.warning("alert_reading_skipped", reference=ref, error=str(e))
            return None

    @staticmethod
    def _most_recent_first(alerts: list[MetricAlert]) -> list[MetricAlert]:
        return sorted(alerts, key=lambda alert: alert.recorded_at, reverse=True)


def summarize(latest: LatestMetrics) -> HealthSummary:
    """Count latest readings per status; overall status follows the worst one."""
    counts: Counter[MetricStatus] = Counter()
    for reading in latest.values():
        try:
            counts[classify(reading.metric_type, reading.value)] += 1
        except ClassificationError as e:
            logger.warning("summary_reading_skipped", reference=reading.id, error=str(e))

    overall: OverallStatus = "healthy"
    if counts[MetricStatus.CRITICAL]:
        overall = "critical"
    elif counts[MetricStatus.ABNORMAL]:
        overall = "warning"

    return HealthSummary(
        counts={status: counts[status] for status in MetricStatus},
        overall_status=overall,
    )
