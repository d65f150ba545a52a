"""
Time-windowed trend aggregation.

Reduces readings of one metric type to ordered, classified points plus
average/min/max and a direction. Aggregation is synchronous and pure given
``now``; the cache passes the clock in so tests can pin it.
"""

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from statistics import fmean

import structlog

from vitals.domain.errors import ClassificationError
from vitals.domain.models import (
    MetricType,
    PatientHealthMetric,
    TrendDirection,
    TrendPoint,
    TrendSummary,
    TrendWindow,
)
from vitals.services.classifier import classify

logger = structlog.get_logger(__name__)

# Relative change between half-means that still counts as flat
DEFAULT_DEAD_BAND = 0.03


class TrendAggregator:
    """
    Builds TrendSummary objects.

    Direction compares the mean of the earlier half of the points with the
    mean of the later half (by index; with an odd count the extra point goes
    to the later half). Fewer than two points have no direction.

    Points the classifier rejects (NaN, infinities) are skipped and logged,
    never zero-filled, so one bad reading cannot distort the statistics.
    """

    def __init__(
        self,
        dead_band: float = DEFAULT_DEAD_BAND,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if dead_band < 0:
            raise ValueError("dead_band must be non-negative")
        self.dead_band = dead_band
        self._clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger.bind(component="trend_aggregator")

    def aggregate(
        self,
        readings: Sequence[PatientHealthMetric],
        window: TrendWindow,
        *,
        metric_type: MetricType | None = None,
        now: datetime | None = None,
    ) -> TrendSummary:
        """
        Summarize readings of a single metric type over ``window``.

        When ``metric_type`` is given, readings of other types are ignored.
        Without it the type is taken from the readings, which must all agree.
        """
        if metric_type is None:
            types = {reading.metric_type for reading in readings}
            if not types:
                raise ValueError("metric_type is required when there are no readings")
            if len(types) > 1:
                raise ValueError(
                    f"readings span multiple metric types: {sorted(t.value for t in types)}"
                )
            metric_type = types.pop()

        pairs = [
            (reading.recorded_at, reading.value)
            for reading in readings
            if reading.metric_type == metric_type
        ]
        return self.aggregate_points(metric_type, pairs, window, now=now)

    def aggregate_points(
        self,
        metric_type: MetricType,
        points: Iterable[tuple[datetime, float]],
        window: TrendWindow,
        now: datetime | None = None,
    ) -> TrendSummary:
        """Summarize raw ``(date, value)`` pairs, e.g. from the trends endpoint."""
        now = now or self._clock()
        start = now - window.duration

        in_window = sorted(
            ((date, value) for date, value in points if start <= date <= now),
            key=lambda pair: pair[0],
        )

        trend_points: list[TrendPoint] = []
        for date, value in in_window:
            try:
                status = classify(metric_type, value)
            except ClassificationError as e:
                self.logger.warning(
                    "trend_point_skipped",
                    metric_type=metric_type.value,
                    recorded_at=date.isoformat(),
                    error=str(e),
                )
                continue
            trend_points.append(TrendPoint(date=date, value=value, status=status))

        if not trend_points:
            return TrendSummary.no_data(metric_type, window)

        values = [point.value for point in trend_points]
        return TrendSummary(
            metric_type=metric_type,
            window=window,
            points=trend_points,
            average=fmean(values),
            min=min(values),
            max=max(values),
            direction=self.direction(values),
        )

    def direction(self, values: Sequence[float]) -> TrendDirection:
        if len(values) < 2:
            return TrendDirection.NONE

        middle = len(values) // 2
        earlier = fmean(values[:middle])
        later = fmean(values[middle:])

        if earlier == 0:
            if later == 0:
                return TrendDirection.FLAT
            return TrendDirection.UP if later > 0 else TrendDirection.DOWN

        change = (later - earlier) / abs(earlier)
        if change > self.dead_band:
            return TrendDirection.UP
        if change < -self.dead_band:
            return TrendDirection.DOWN
        return TrendDirection.FLAT
