"""
Tests for the httpx-based metrics API client.

Every test drives the client through ``httpx.MockTransport`` so the real
request building, status mapping and envelope validation run unchanged.
"""

from collections.abc import Callable

import httpx
import pytest

from vitals.config import ApiConfig
from vitals.domain.errors import ApiError, MalformedResponseError, NetworkError, ValidationError
from vitals.domain.models import (
    MetricFilters,
    MetricType,
    MetricUpdate,
    NewMetric,
    TrendWindow,
)
from vitals.services.api_client import HttpHealthMetricsAPI

Handler = Callable[[httpx.Request], httpx.Response]

READING = {
    "id": "m1",
    "patientId": "p1",
    "metricType": "HEART_RATE",
    "value": 72,
    "unit": "bpm",
    "recordedAt": "2026-03-01T08:30:00Z",
}


def make_client(handler: Handler) -> HttpHealthMetricsAPI:
    return HttpHealthMetricsAPI(
        ApiConfig(base_url="https://portal.example/api"),
        transport=httpx.MockTransport(handler),
    )


class TestRequests:
    """Paths, query parameters and bodies sent to the server."""

    async def test_get_metrics_sends_filters(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"metrics": [READING], "total": 1})

        async with make_client(handler) as api:
            result = await api.get_metrics(
                "p1", MetricFilters(metric_type=MetricType.HEART_RATE, abnormal_only=False)
            )

        response = result.unwrap()
        assert response.total == 1
        assert response.metrics[0].metric_type is MetricType.HEART_RATE
        assert seen[0].url.path == "/api/patient/p1/health-metrics"
        assert seen[0].url.params["metricType"] == "HEART_RATE"
        assert seen[0].url.params["abnormalOnly"] == "false"

    async def test_get_trends_repeats_metric_types(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "data": {
                        "HEART_RATE": {
                            "dataPoints": [{"date": "2026-03-01T08:00:00Z", "value": 70}]
                        }
                    }
                },
            )

        async with make_client(handler) as api:
            result = await api.get_trends(
                "p1", [MetricType.HEART_RATE, MetricType.BMI], TrendWindow.THIRTY_DAYS
            )

        trends = result.unwrap()
        assert trends[MetricType.HEART_RATE].data_points[0].value == 70
        assert seen[0].url.path == "/api/patient/p1/health-metrics/trends"
        assert seen[0].url.params.get_list("metricTypes[]") == ["HEART_RATE", "BMI"]
        assert seen[0].url.params["period"] == "30d"

    async def test_get_latest_unwraps_envelope(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/health-metrics/latest")
            return httpx.Response(200, json={"data": {"HEART_RATE": READING}})

        async with make_client(handler) as api:
            latest = (await api.get_latest("p1")).unwrap()

        assert latest[MetricType.HEART_RATE].id == "m1"

    async def test_get_alerts(self) -> None:
        alert = {
            "id": "a1",
            "metricType": "HEART_RATE",
            "value": 120,
            "unit": "bpm",
            "severity": "abnormal",
            "recordedAt": "2026-03-01T08:30:00Z",
        }

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/health-metrics/alerts")
            return httpx.Response(200, json={"data": [alert]})

        async with make_client(handler) as api:
            alerts = (await api.get_alerts("p1")).unwrap()

        assert [a.id for a in alerts] == ["a1"]

    async def test_create_posts_camel_case_body(self) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            bodies.append(request.content)
            return httpx.Response(201, json={"data": READING})

        async with make_client(handler) as api:
            created = await api.create_metric(
                "p1", NewMetric(metric_type=MetricType.HEART_RATE, value=72)
            )

        assert created.unwrap().id == "m1"
        assert b'"metricType":"HEART_RATE"' in bodies[0].replace(b" ", b"")

    async def test_update_puts_only_changed_fields(self) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "PUT"
            assert request.url.path == "/api/patient/p1/health-metrics/m1"
            bodies.append(request.content)
            return httpx.Response(200, json={"data": {**READING, "value": 80}})

        async with make_client(handler) as api:
            updated = await api.update_metric("p1", "m1", MetricUpdate(value=80))

        assert updated.unwrap().value == 80
        assert bodies[0].replace(b" ", b"") == b'{"value":80.0}'

    async def test_delete_returns_ok_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "DELETE"
            return httpx.Response(204)

        async with make_client(handler) as api:
            result = await api.delete_metric("p1", "m1")

        assert result.is_ok()
        assert result.unwrap() is None

    async def test_patient_id_is_path_escaped(self) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.raw_path.decode())
            return httpx.Response(200, json={"data": {}})

        async with make_client(handler) as api:
            await api.get_latest("a/b")

        assert paths[0].startswith("/api/patient/a%2Fb/health-metrics/latest")


class TestErrorMapping:
    """HTTP failures become typed ApiError values, never exceptions."""

    @pytest.mark.parametrize(
        "status,error_type",
        [
            (500, NetworkError),
            (503, NetworkError),
            (400, ValidationError),
            (422, ValidationError),
            (403, ApiError),
            (404, ApiError),
        ],
    )
    async def test_status_codes(self, status: int, error_type: type[ApiError]) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"message": "server says no"})

        async with make_client(handler) as api:
            result = await api.get_latest("p1")

        error = result.unwrap_err()
        assert type(error) is error_type
        assert error.status_code == status
        assert error.message == "server says no"

    async def test_validation_message_is_passed_through(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Value must be positive"})

        async with make_client(handler) as api:
            result = await api.create_metric(
                "p1", NewMetric(metric_type=MetricType.WEIGHT, value=70)
            )

        assert result.unwrap_err().message == "Value must be positive"

    async def test_transport_error_is_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as api:
            result = await api.get_alerts("p1")

        assert isinstance(result.unwrap_err(), NetworkError)
        assert result.unwrap_err().status_code is None

    async def test_timeout_is_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        async with make_client(handler) as api:
            result = await api.get_latest("p1")

        assert isinstance(result.unwrap_err(), NetworkError)

    @pytest.mark.parametrize(
        "body",
        [
            {"metrics": [{"id": "m1"}]},
            {"metrics": "nope"},
            {"unexpected": True},
        ],
    )
    async def test_malformed_body(self, body: object) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        async with make_client(handler) as api:
            result = await api.get_metrics("p1")

        assert isinstance(result.unwrap_err(), MalformedResponseError)

    async def test_non_json_body_is_malformed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        async with make_client(handler) as api:
            result = await api.get_latest("p1")

        assert isinstance(result.unwrap_err(), MalformedResponseError)
