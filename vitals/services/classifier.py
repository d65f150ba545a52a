"""
Clinical classification of single readings.

``classify`` is a pure function of (metric type, value): no clock, no
history, no I/O. Everything that shows a status (trend points, alerts,
summaries) goes through it so there is one source of truth.
"""

import math

from vitals.domain.errors import InvalidValueError, UnknownMetricTypeError
from vitals.domain.models import MetricStatus, MetricType, NormalRange


def _range(
    metric_type: MetricType,
    normal: tuple[float, float],
    critical: tuple[float, float] | None = None,
) -> NormalRange:
    if critical is None:
        return NormalRange(metric_type=metric_type, normal_min=normal[0], normal_max=normal[1])
    return NormalRange(
        metric_type=metric_type,
        normal_min=normal[0],
        normal_max=normal[1],
        critical_min=critical[0],
        critical_max=critical[1],
    )


# Thresholds used by the portal's charts and status badges. Types without a
# critical band can be ABNORMAL but never CRITICAL.
NORMAL_RANGES: dict[MetricType, NormalRange] = {
    r.metric_type: r
    for r in (
        _range(MetricType.WEIGHT, (40, 150)),
        _range(MetricType.HEIGHT, (140, 220)),
        _range(MetricType.BMI, (18.5, 24.9), (16, 35)),
        _range(MetricType.BLOOD_PRESSURE_SYSTOLIC, (90, 120), (70, 180)),
        _range(MetricType.BLOOD_PRESSURE_DIASTOLIC, (60, 80), (40, 120)),
        _range(MetricType.BLOOD_GLUCOSE_FASTING, (70, 100), (54, 200)),
        _range(MetricType.BLOOD_GLUCOSE_RANDOM, (70, 140), (54, 250)),
        _range(MetricType.BLOOD_GLUCOSE_POST_MEAL, (70, 140), (54, 250)),
        _range(MetricType.TEMPERATURE, (36.1, 37.2), (35, 39.5)),
        _range(MetricType.OXYGEN_SATURATION, (95, 100), (85, 100)),
        _range(MetricType.HEART_RATE, (60, 100), (40, 150)),
        _range(MetricType.RESPIRATORY_RATE, (12, 20), (8, 30)),
        _range(MetricType.CHOLESTEROL_TOTAL, (125, 200), (0, 300)),
        _range(MetricType.CHOLESTEROL_LDL, (0, 100), (0, 190)),
        _range(MetricType.CHOLESTEROL_HDL, (40, 100)),
        _range(MetricType.TRIGLYCERIDES, (0, 150), (0, 500)),
        _range(MetricType.HBA1C, (4, 5.7), (0, 10)),
    )
}


def _resolve_type(metric_type: MetricType | str) -> MetricType:
    if isinstance(metric_type, MetricType):
        return metric_type
    try:
        return MetricType(metric_type)
    except ValueError:
        raise UnknownMetricTypeError(metric_type) from None


def get_normal_range(metric_type: MetricType | str) -> NormalRange:
    """Look up the bands for a metric type. Unknown types are a caller bug."""
    resolved = _resolve_type(metric_type)
    try:
        return NORMAL_RANGES[resolved]
    except KeyError:
        raise UnknownMetricTypeError(metric_type) from None


def classify(metric_type: MetricType | str, value: float) -> MetricStatus:
    """
    Classify one reading.

    Inside the normal band (inclusive) is NORMAL, outside it but inside the
    critical band (inclusive) is ABNORMAL, anything beyond is CRITICAL.

    Raises:
        UnknownMetricTypeError: the metric type has no range entry.
        InvalidValueError: the value is not a finite number.
    """
    bands = get_normal_range(metric_type)

    if isinstance(value, bool) or not isinstance(value, int | float) or not math.isfinite(value):
        raise InvalidValueError(bands.metric_type, value)

    if bands.normal_min <= value <= bands.normal_max:
        return MetricStatus.NORMAL
    if bands.critical_min <= value <= bands.critical_max:
        return MetricStatus.ABNORMAL
    return MetricStatus.CRITICAL


def is_abnormal(metric_type: MetricType | str, value: float) -> bool:
    """True for ABNORMAL and CRITICAL readings."""
    return classify(metric_type, value) is not MetricStatus.NORMAL
