"""
Domain models for patient health metrics.

These models represent the clinical concepts the engine works with. They use
Pydantic for validation at the API boundary; attribute names are snake_case
while the wire format stays camelCase.
"""

import hashlib
import json
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Overall status of a patient's latest readings, as shown on the summary card
OverallStatus = Literal["healthy", "warning", "critical"]


def _ensure_utc(value: datetime) -> datetime:
    # The portal submits local "YYYY-MM-DDTHH:MM" strings without an offset
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class MetricType(str, Enum):
    """Vital-sign and lab categories a reading can belong to."""

    WEIGHT = "WEIGHT"
    HEIGHT = "HEIGHT"
    BMI = "BMI"
    BLOOD_PRESSURE_SYSTOLIC = "BLOOD_PRESSURE_SYSTOLIC"
    BLOOD_PRESSURE_DIASTOLIC = "BLOOD_PRESSURE_DIASTOLIC"
    BLOOD_GLUCOSE_FASTING = "BLOOD_GLUCOSE_FASTING"
    BLOOD_GLUCOSE_RANDOM = "BLOOD_GLUCOSE_RANDOM"
    BLOOD_GLUCOSE_POST_MEAL = "BLOOD_GLUCOSE_POST_MEAL"
    TEMPERATURE = "TEMPERATURE"
    OXYGEN_SATURATION = "OXYGEN_SATURATION"
    HEART_RATE = "HEART_RATE"
    RESPIRATORY_RATE = "RESPIRATORY_RATE"
    CHOLESTEROL_TOTAL = "CHOLESTEROL_TOTAL"
    CHOLESTEROL_LDL = "CHOLESTEROL_LDL"
    CHOLESTEROL_HDL = "CHOLESTEROL_HDL"
    TRIGLYCERIDES = "TRIGLYCERIDES"
    HBA1C = "HBA1C"

    @property
    def unit(self) -> str:
        return METRIC_UNITS[self]

    @property
    def label(self) -> str:
        return METRIC_LABELS[self]


METRIC_UNITS: dict[MetricType, str] = {
    MetricType.WEIGHT: "kg",
    MetricType.HEIGHT: "cm",
    MetricType.BMI: "kg/m²",
    MetricType.BLOOD_PRESSURE_SYSTOLIC: "mmHg",
    MetricType.BLOOD_PRESSURE_DIASTOLIC: "mmHg",
    MetricType.BLOOD_GLUCOSE_FASTING: "mg/dL",
    MetricType.BLOOD_GLUCOSE_RANDOM: "mg/dL",
    MetricType.BLOOD_GLUCOSE_POST_MEAL: "mg/dL",
    MetricType.TEMPERATURE: "°C",
    MetricType.OXYGEN_SATURATION: "%",
    MetricType.HEART_RATE: "bpm",
    MetricType.RESPIRATORY_RATE: "breaths/min",
    MetricType.CHOLESTEROL_TOTAL: "mg/dL",
    MetricType.CHOLESTEROL_LDL: "mg/dL",
    MetricType.CHOLESTEROL_HDL: "mg/dL",
    MetricType.TRIGLYCERIDES: "mg/dL",
    MetricType.HBA1C: "%",
}

METRIC_LABELS: dict[MetricType, str] = {
    MetricType.WEIGHT: "Weight",
    MetricType.HEIGHT: "Height",
    MetricType.BMI: "BMI",
    MetricType.BLOOD_PRESSURE_SYSTOLIC: "Blood Pressure (Systolic)",
    MetricType.BLOOD_PRESSURE_DIASTOLIC: "Blood Pressure (Diastolic)",
    MetricType.BLOOD_GLUCOSE_FASTING: "Blood Glucose (Fasting)",
    MetricType.BLOOD_GLUCOSE_RANDOM: "Blood Glucose (Random)",
    MetricType.BLOOD_GLUCOSE_POST_MEAL: "Blood Glucose (Post-Meal)",
    MetricType.TEMPERATURE: "Body Temperature",
    MetricType.OXYGEN_SATURATION: "Oxygen Saturation",
    MetricType.HEART_RATE: "Heart Rate",
    MetricType.RESPIRATORY_RATE: "Respiratory Rate",
    MetricType.CHOLESTEROL_TOTAL: "Total Cholesterol",
    MetricType.CHOLESTEROL_LDL: "LDL Cholesterol",
    MetricType.CHOLESTEROL_HDL: "HDL Cholesterol",
    MetricType.TRIGLYCERIDES: "Triglycerides",
    MetricType.HBA1C: "HbA1c",
}


class MetricStatus(str, Enum):
    """Clinical status of a single reading. Always derived, never stored."""

    NORMAL = "NORMAL"
    ABNORMAL = "ABNORMAL"
    CRITICAL = "CRITICAL"


class AlertSeverity(str, Enum):
    ABNORMAL = "abnormal"
    CRITICAL = "critical"


class TrendWindow(str, Enum):
    """Relative time spans a trend can be requested for."""

    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    NINETY_DAYS = "90d"
    HALF_YEAR = "180d"
    ONE_YEAR = "1y"

    @property
    def duration(self) -> timedelta:
        return _WINDOW_DURATIONS[self]


_WINDOW_DURATIONS: dict[TrendWindow, timedelta] = {
    TrendWindow.SEVEN_DAYS: timedelta(days=7),
    TrendWindow.THIRTY_DAYS: timedelta(days=30),
    TrendWindow.NINETY_DAYS: timedelta(days=90),
    TrendWindow.HALF_YEAR: timedelta(days=180),
    TrendWindow.ONE_YEAR: timedelta(days=365),
}


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"
    NONE = "none"


class WireModel(BaseModel):
    """Base for models that cross the API boundary in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PatientHealthMetric(WireModel):
    """One recorded reading for a patient."""

    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    metric_type: MetricType
    value: float
    unit: str
    recorded_at: datetime
    notes: str | None = None

    utc_recorded_at = field_validator("recorded_at")(_ensure_utc)


LatestMetrics = dict[MetricType, PatientHealthMetric]


class NormalRange(BaseModel):
    """Inclusive normal and critical bands for one metric type."""

    model_config = ConfigDict(frozen=True)

    metric_type: MetricType
    normal_min: float
    normal_max: float
    critical_min: float = float("-inf")
    critical_max: float = float("inf")

    @model_validator(mode="after")
    def bands_are_nested(self) -> "NormalRange":
        if not (self.critical_min <= self.normal_min <= self.normal_max <= self.critical_max):
            raise ValueError(
                f"{self.metric_type.value}: critical band must enclose the normal band"
            )
        return self


class TrendPoint(WireModel):
    model_config = ConfigDict(frozen=True)

    date: datetime
    value: float
    status: MetricStatus


class TrendSummary(WireModel):
    """Aggregated view of one metric type over a trend window.

    ``average``, ``min`` and ``max`` are only defined when there is at least
    one point; an empty summary means "no data" and is never zero-filled.
    """

    model_config = ConfigDict(frozen=True)

    metric_type: MetricType
    window: TrendWindow
    points: list[TrendPoint] = Field(default_factory=list)
    average: float | None = None
    min: float | None = None
    max: float | None = None
    direction: TrendDirection = TrendDirection.NONE

    @model_validator(mode="after")
    def stats_only_with_points(self) -> "TrendSummary":
        stats = (self.average, self.min, self.max)
        if self.points and any(stat is None for stat in stats):
            raise ValueError("average, min and max are required when points are present")
        if not self.points and any(stat is not None for stat in stats):
            raise ValueError("a summary without points cannot carry statistics")
        return self

    @property
    def has_data(self) -> bool:
        return bool(self.points)

    @classmethod
    def no_data(cls, metric_type: MetricType, window: TrendWindow) -> "TrendSummary":
        return cls(metric_type=metric_type, window=window)


class MetricAlert(WireModel):
    """A non-normal reading surfaced to clinicians."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    metric_id: str | None = None
    metric_type: MetricType
    value: float
    unit: str
    severity: AlertSeverity
    recorded_at: datetime
    notes: str | None = None

    utc_recorded_at = field_validator("recorded_at")(_ensure_utc)


class HealthSummary(BaseModel):
    """Status counts over a patient's latest reading of each metric type."""

    counts: dict[MetricStatus, int]
    overall_status: OverallStatus
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class NewMetric(WireModel):
    """Payload for recording a new reading."""

    metric_type: MetricType
    value: float
    unit: str | None = None
    notes: str | None = None
    recorded_at: datetime | None = None

    @model_validator(mode="after")
    def default_unit(self) -> "NewMetric":
        if not self.unit:
            self.unit = self.metric_type.unit
        if self.recorded_at is not None:
            self.recorded_at = _ensure_utc(self.recorded_at)
        return self

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Fields every stored reading has; an update may change them but not clear them
_REQUIRED_ON_READING = frozenset({"metric_type", "value", "unit", "recorded_at"})


class MetricUpdate(WireModel):
    """Partial update; only explicitly set fields are sent."""

    metric_type: MetricType | None = None
    value: float | None = None
    unit: str | None = None
    notes: str | None = None
    recorded_at: datetime | None = None

    @field_validator("recorded_at")
    @classmethod
    def utc_recorded_at(cls, v: datetime | None) -> datetime | None:
        return _ensure_utc(v) if v is not None else None

    @model_validator(mode="after")
    def required_fields_not_cleared(self) -> "MetricUpdate":
        cleared = sorted(
            name
            for name in self.model_fields_set & _REQUIRED_ON_READING
            if getattr(self, name) is None
        )
        if cleared:
            raise ValueError(f"cannot clear required fields: {', '.join(cleared)}")
        return self

    def changes(self) -> dict[str, object]:
        """Set fields by attribute name, for patching cached records."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class MetricFilters(WireModel):
    """Query parameters for listing a patient's readings."""

    model_config = ConfigDict(frozen=True)

    metric_type: MetricType | None = None
    period: TrendWindow | None = None
    abnormal_only: bool | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int | None = Field(default=None, ge=0)

    def to_params(self) -> dict[str, str | int]:
        params = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        # Query strings carry booleans as "true"/"false"
        if "abnormalOnly" in params:
            params["abnormalOnly"] = "true" if params["abnormalOnly"] else "false"
        return params

    def params_hash(self) -> str:
        encoded = json.dumps(self.to_params(), sort_keys=True).encode()
        return hashlib.sha1(encoded).hexdigest()[:12]


# Per-endpoint response envelopes, validated before anything reaches the cache


class MetricsResponse(WireModel):
    metrics: list[PatientHealthMetric]
    total: int | None = None


class LatestMetricsResponse(WireModel):
    data: dict[MetricType, PatientHealthMetric] = Field(default_factory=dict)


class RawTrendPoint(WireModel):
    date: datetime
    value: float

    utc_date = field_validator("date")(_ensure_utc)


class RawTrendData(WireModel):
    data_points: list[RawTrendPoint] = Field(default_factory=list)


class TrendsResponse(WireModel):
    data: dict[MetricType, RawTrendData] = Field(default_factory=dict)


class AlertsResponse(WireModel):
    data: list[MetricAlert] = Field(default_factory=list)


class MetricResponse(WireModel):
    data: PatientHealthMetric
