"""
Client side of the remote health-metrics API.

``HealthMetricsAPI`` is the protocol the cache depends on. Every call returns
a Result; responses are validated against a per-endpoint envelope before they
are handed over, so the cache never sees an unchecked payload.
"""

from collections.abc import Sequence
from typing import Any, Protocol, TypeVar
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from vitals.config import ApiConfig
from vitals.domain.errors import ApiError, MalformedResponseError, NetworkError, ValidationError
from vitals.domain.models import (
    AlertsResponse,
    LatestMetrics,
    LatestMetricsResponse,
    MetricAlert,
    MetricFilters,
    MetricResponse,
    MetricsResponse,
    MetricType,
    MetricUpdate,
    NewMetric,
    PatientHealthMetric,
    RawTrendData,
    TrendsResponse,
    TrendWindow,
)
from vitals.services.result import Result

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class HealthMetricsAPI(Protocol):
    """
    Remote metrics API as seen by the cache.

    Implemented by HttpHealthMetricsAPI and InMemoryHealthMetricsAPI.
    """

    async def get_metrics(
        self, patient_id: str, filters: MetricFilters | None = None
    ) -> Result[MetricsResponse, ApiError]: ...

    async def get_latest(self, patient_id: str) -> Result[LatestMetrics, ApiError]: ...

    async def get_trends(
        self, patient_id: str, metric_types: Sequence[MetricType], window: TrendWindow
    ) -> Result[dict[MetricType, RawTrendData], ApiError]: ...

    async def get_alerts(self, patient_id: str) -> Result[list[MetricAlert], ApiError]: ...

    async def create_metric(
        self, patient_id: str, new_metric: NewMetric
    ) -> Result[PatientHealthMetric, ApiError]: ...

    async def update_metric(
        self, patient_id: str, metric_id: str, changes: MetricUpdate
    ) -> Result[PatientHealthMetric, ApiError]: ...

    async def delete_metric(self, patient_id: str, metric_id: str) -> Result[None, ApiError]: ...


def _patient_path(patient_id: str, *parts: str) -> str:
    segments = [quote(patient_id, safe=""), "health-metrics", *(quote(p, safe="") for p in parts)]
    return "/patient/" + "/".join(segments)


class HttpHealthMetricsAPI:
    """
    httpx-based implementation of HealthMetricsAPI.

    Status mapping: transport errors, timeouts and 5xx become NetworkError
    (retryable); 400/422 become ValidationError carrying the server message;
    any other non-2xx becomes a plain ApiError.
    """

    def __init__(
        self,
        config: ApiConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.config = config or ApiConfig()
        self._transport = transport
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._client: httpx.AsyncClient | None = None
        self.logger = logger.bind(component="metrics_api", base_url=self.config.base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpHealthMetricsAPI":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def get_metrics(
        self, patient_id: str, filters: MetricFilters | None = None
    ) -> Result[MetricsResponse, ApiError]:
        params = filters.to_params() if filters else None
        result = await self._request("GET", _patient_path(patient_id), params=params)
        return self._parse(result, MetricsResponse)

    async def get_latest(self, patient_id: str) -> Result[LatestMetrics, ApiError]:
        result = await self._request("GET", _patient_path(patient_id, "latest"))
        parsed = self._parse(result, LatestMetricsResponse)
        if parsed.is_err():
            return Result.err(parsed.unwrap_err())
        return Result.ok(parsed.unwrap().data)

    async def get_trends(
        self, patient_id: str, metric_types: Sequence[MetricType], window: TrendWindow
    ) -> Result[dict[MetricType, RawTrendData], ApiError]:
        params = {"metricTypes[]": [t.value for t in metric_types], "period": window.value}
        result = await self._request("GET", _patient_path(patient_id, "trends"), params=params)
        parsed = self._parse(result, TrendsResponse)
        if parsed.is_err():
            return Result.err(parsed.unwrap_err())
        return Result.ok(parsed.unwrap().data)

    async def get_alerts(self, patient_id: str) -> Result[list[MetricAlert], ApiError]:
        result = await self._request("GET", _patient_path(patient_id, "alerts"))
        parsed = self._parse(result, AlertsResponse)
        if parsed.is_err():
            return Result.err(parsed.unwrap_err())
        return Result.ok(parsed.unwrap().data)

    async def create_metric(
        self, patient_id: str, new_metric: NewMetric
    ) -> Result[PatientHealthMetric, ApiError]:
        result = await self._request(
            "POST", _patient_path(patient_id), json=new_metric.to_payload()
        )
        parsed = self._parse(result, MetricResponse)
        if parsed.is_err():
            return Result.err(parsed.unwrap_err())
        return Result.ok(parsed.unwrap().data)

    async def update_metric(
        self, patient_id: str, metric_id: str, changes: MetricUpdate
    ) -> Result[PatientHealthMetric, ApiError]:
        result = await self._request(
            "PUT", _patient_path(patient_id, metric_id), json=changes.to_payload()
        )
        parsed = self._parse(result, MetricResponse)
        if parsed.is_err():
            return Result.err(parsed.unwrap_err())
        return Result.ok(parsed.unwrap().data)

    async def delete_metric(self, patient_id: str, metric_id: str) -> Result[None, ApiError]:
        result = await self._request("DELETE", _patient_path(patient_id, metric_id))
        if result.is_err():
            return Result.err(result.unwrap_err())
        return Result.ok(None)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Result[httpx.Response, ApiError]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            self.logger.warning("request_timeout", method=method, path=path, error=str(e))
            return Result.err(NetworkError(f"Request timed out: {method} {path}"))
        except httpx.TransportError as e:
            self.logger.warning("request_transport_error", method=method, path=path, error=str(e))
            return Result.err(NetworkError(f"Could not reach metrics API: {e}"))

        if response.is_success:
            return Result.ok(response)

        message = self._error_message(response)
        self.logger.warning(
            "request_failed",
            method=method,
            path=path,
            status_code=response.status_code,
            error=message,
        )
        if response.status_code >= 500:
            return Result.err(NetworkError(message, response.status_code))
        if response.status_code in (400, 422):
            return Result.err(ValidationError(message, response.status_code))
        return Result.err(ApiError(message, response.status_code))

    def _parse(
        self, result: Result[httpx.Response, ApiError], model: type[ModelT]
    ) -> Result[ModelT, ApiError]:
        if result.is_err():
            return Result.err(result.unwrap_err())
        response = result.unwrap()
        try:
            return Result.ok(model.model_validate(response.json()))
        except (ValueError, PydanticValidationError) as e:
            self.logger.warning(
                "malformed_response", url=str(response.url), schema=model.__name__, error=str(e)
            )
            return Result.err(
                MalformedResponseError(
                    f"Unexpected {model.__name__} payload from {response.url.path}",
                    response.status_code,
                )
            )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for field in ("message", "error"):
                if isinstance(body.get(field), str) and body[field]:
                    return body[field]
        return response.text or response.reason_phrase or f"HTTP {response.status_code}"
