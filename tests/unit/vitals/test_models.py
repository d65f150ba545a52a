"""
Tests for domain models and wire conversion.

Covers camelCase aliases, UTC normalization, payload helpers and the
invariants the models enforce.
"""

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vitals.domain.models import (
    MetricFilters,
    MetricsResponse,
    MetricStatus,
    MetricType,
    MetricUpdate,
    NewMetric,
    PatientHealthMetric,
    TrendPoint,
    TrendSummary,
    TrendWindow,
)


class TestPatientHealthMetric:
    def test_parses_camel_case_payload(self) -> None:
        metric = PatientHealthMetric.model_validate(
            {
                "id": "m1",
                "patientId": "p1",
                "metricType": "HEART_RATE",
                "value": 72,
                "unit": "bpm",
                "recordedAt": "2026-03-01T08:30:00Z",
            }
        )

        assert metric.patient_id == "p1"
        assert metric.metric_type is MetricType.HEART_RATE
        assert metric.recorded_at == datetime(2026, 3, 1, 8, 30, tzinfo=UTC)
        assert metric.notes is None

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        metric = PatientHealthMetric(
            id="m1",
            patient_id="p1",
            metric_type=MetricType.HEART_RATE,
            value=72,
            unit="bpm",
            recorded_at=datetime(2026, 3, 1, 8, 30),
        )

        assert metric.recorded_at.tzinfo == UTC

    def test_metric_immutability(self) -> None:
        metric = PatientHealthMetric(
            id="m1",
            patient_id="p1",
            metric_type=MetricType.HEART_RATE,
            value=72,
            unit="bpm",
            recorded_at=datetime.now(UTC),
        )

        with pytest.raises(ValueError, match="frozen"):
            metric.value = 75.0  # type: ignore[misc]

    def test_unknown_metric_type_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            MetricsResponse.model_validate(
                {
                    "metrics": [
                        {
                            "id": "m1",
                            "patientId": "p1",
                            "metricType": "BLOOD_OXYGEN",
                            "value": 97,
                            "unit": "%",
                            "recordedAt": "2026-03-01T08:30:00Z",
                        }
                    ]
                }
            )


class TestMetricTypeMetadata:
    def test_every_type_has_unit_and_label(self) -> None:
        for metric_type in MetricType:
            assert metric_type.unit
            assert metric_type.label

    def test_window_durations(self) -> None:
        assert TrendWindow.SEVEN_DAYS.duration == timedelta(days=7)
        assert TrendWindow.ONE_YEAR.duration == timedelta(days=365)


class TestPayloads:
    def test_new_metric_defaults_unit_from_type(self) -> None:
        new_metric = NewMetric(metric_type=MetricType.BLOOD_GLUCOSE_FASTING, value=95)

        assert new_metric.unit == "mg/dL"
        assert new_metric.to_payload() == {
            "metricType": "BLOOD_GLUCOSE_FASTING",
            "value": 95.0,
            "unit": "mg/dL",
        }

    def test_update_sends_only_set_fields(self) -> None:
        update = MetricUpdate(value=80, notes=None)

        assert update.to_payload() == {"value": 80.0, "notes": None}
        assert update.changes() == {"value": 80.0, "notes": None}

    def test_update_cannot_clear_metric_type(self) -> None:
        with pytest.raises(ValueError, match="metric_type"):
            MetricUpdate(metric_type=None, value=80)

    def test_update_cannot_clear_value(self) -> None:
        with pytest.raises(ValueError, match="value"):
            MetricUpdate(value=None)

    def test_update_cannot_clear_required_fields_via_wire_names(self) -> None:
        with pytest.raises(ValueError, match="recorded_at, unit"):
            MetricUpdate.model_validate({"unit": None, "recordedAt": None})

    def test_update_may_clear_notes(self) -> None:
        assert MetricUpdate(notes=None).changes() == {"notes": None}

    def test_empty_update_has_no_changes(self) -> None:
        assert MetricUpdate().changes() == {}
        assert MetricUpdate().to_payload() == {}


class TestMetricFilters:
    def test_to_params_uses_wire_names(self) -> None:
        filters = MetricFilters(
            metric_type=MetricType.HEART_RATE,
            period=TrendWindow.THIRTY_DAYS,
            abnormal_only=True,
            limit=20,
        )

        assert filters.to_params() == {
            "metricType": "HEART_RATE",
            "period": "30d",
            "abnormalOnly": "true",
            "limit": 20,
        }

    def test_equal_filters_hash_equally(self) -> None:
        a = MetricFilters(limit=10, metric_type=MetricType.BMI)
        b = MetricFilters(metric_type=MetricType.BMI, limit=10)

        assert a.params_hash() == b.params_hash()
        assert a.params_hash() != MetricFilters(limit=20).params_hash()

    def test_invalid_paging_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            MetricFilters(limit=0)
        with pytest.raises(ValueError):
            MetricFilters(offset=-1)

    @given(limit=st.integers(min_value=1, max_value=500), offset=st.integers(0, 500))
    def test_params_hash_is_stable(self, limit: int, offset: int) -> None:
        filters = MetricFilters(limit=limit, offset=offset)
        assert filters.params_hash() == MetricFilters(limit=limit, offset=offset).params_hash()


class TestTrendSummary:
    def test_no_data_summary_has_no_statistics(self) -> None:
        summary = TrendSummary.no_data(MetricType.HBA1C, TrendWindow.NINETY_DAYS)

        assert not summary.has_data
        assert summary.average is None

    def test_statistics_without_points_are_rejected(self) -> None:
        with pytest.raises(ValueError, match="without points"):
            TrendSummary(
                metric_type=MetricType.HBA1C, window=TrendWindow.NINETY_DAYS, average=0.0
            )

    def test_points_require_statistics(self) -> None:
        point = TrendPoint(date=datetime.now(UTC), value=5.2, status=MetricStatus.NORMAL)
        with pytest.raises(ValueError, match="required"):
            TrendSummary(
                metric_type=MetricType.HBA1C, window=TrendWindow.NINETY_DAYS, points=[point]
            )
