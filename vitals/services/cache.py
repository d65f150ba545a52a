"""
Session cache in front of the health-metrics API.

One MetricsCache lives for one patient-viewing session. It owns every read
and write against the API and exposes an immutable MetricsState that
subscribers observe.

Guarantees:
- At most one request in flight per cache key; concurrent callers share it.
- Last issued wins: a response is dropped if a newer request for the same
  key was issued after it (forced refresh, mutation, or clear()).
- Writes are optimistic. The patch, its cascade into latest_metrics and the
  invalidation of alerts/trends land in a single state transition; a failed
  write applies the inverse patch and raises WriteFailedError.
- Failed reads keep the previous data and record a per-key error.
"""

import asyncio
import hashlib
import itertools
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

import structlog

from vitals.config import CacheConfig
from vitals.domain.errors import ApiError, NetworkError, StaleWriteDiscarded, WriteFailedError
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
    TrendSummary,
    TrendWindow,
)
from vitals.services.alerts import AlertDeriver
from vitals.services.api_client import HealthMetricsAPI
from vitals.services.result import Result
from vitals.services.trends import TrendAggregator

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Listener = Callable[["MetricsState"], None]


@dataclass(frozen=True)
class CacheKey:
    """Identifies one cacheable request: (patient, operation, parameters)."""

    patient_id: str
    operation: str
    params_hash: str = ""

    def __str__(self) -> str:
        suffix = f":{self.params_hash}" if self.params_hash else ""
        return f"{self.patient_id}:{self.operation}{suffix}"

    @classmethod
    def metrics(cls, patient_id: str, filters: MetricFilters | None = None) -> "CacheKey":
        return cls(patient_id, "metrics", (filters or MetricFilters()).params_hash())

    @classmethod
    def latest(cls, patient_id: str) -> "CacheKey":
        return cls(patient_id, "latest")

    @classmethod
    def trends(
        cls, patient_id: str, metric_types: Iterable[MetricType], window: TrendWindow
    ) -> "CacheKey":
        types = ",".join(sorted({t.value for t in metric_types}))
        digest = hashlib.sha1(f"{types}|{window.value}".encode()).hexdigest()[:12]
        return cls(patient_id, "trends", digest)

    @classmethod
    def alerts(cls, patient_id: str) -> "CacheKey":
        return cls(patient_id, "alerts")


@dataclass
class CacheEntry(Generic[T]):
    """Raw server value for one key plus its request bookkeeping."""

    value: T | None = None
    fetched_at: datetime | None = None
    in_flight: asyncio.Task[None] | None = None
    request_id: int | None = None
    invalidated: bool = False
    error: ApiError | None = None

    def is_fresh(self, now: datetime, ttl_seconds: float) -> bool:
        if self.fetched_at is None or self.invalidated:
            return False
        return (now - self.fetched_at).total_seconds() < ttl_seconds


@dataclass(frozen=True)
class MetricsState:
    """
    Everything a UI may render. Replaced wholesale on every change; never
    mutate the containers in place.
    """

    metrics: tuple[PatientHealthMetric, ...] = ()
    latest_metrics: LatestMetrics = field(default_factory=dict)
    trends: dict[MetricType, TrendSummary] = field(default_factory=dict)
    alerts: tuple[MetricAlert, ...] = ()
    loading: bool = False
    error: str | None = None
    errors: dict[str, str] = field(default_factory=dict)


def _with_error(errors: dict[str, str], key: str, message: str) -> dict[str, str]:
    # Most recent error last, so state.error can point at it
    updated = {k: v for k, v in errors.items() if k != key}
    updated[key] = message
    return updated


def _without_error(errors: dict[str, str], key: str) -> dict[str, str]:
    return {k: v for k, v in errors.items() if k != key}


def _last_error(errors: dict[str, str]) -> str | None:
    return next(reversed(errors.values()), None)


def _restore_latest(
    latest: LatestMetrics,
    before: dict[MetricType, PatientHealthMetric | None],
    touched_ids: set[str],
) -> LatestMetrics:
    """Put back pre-mutation latest entries the mutation itself changed."""
    restored = dict(latest)
    for metric_type, previous in before.items():
        current = restored.get(metric_type)
        if current is not None and current.id not in touched_ids:
            continue  # refreshed by someone else since; keep it
        if previous is None:
            restored.pop(metric_type, None)
        else:
            restored[metric_type] = previous
    return restored


def _promote_latest(latest: LatestMetrics, reading: PatientHealthMetric) -> LatestMetrics:
    current = latest.get(reading.metric_type)
    if current is None or current.id == reading.id or reading.recorded_at >= current.recorded_at:
        return {**latest, reading.metric_type: reading}
    return latest


class MetricsCache:
    """
    Reads, writes and caches one session's health metrics.

    Reads never raise for API failures: they return the current (possibly
    stale) view and record the error. Writes raise WriteFailedError after
    rolling back their optimistic change.
    """

    def __init__(
        self,
        api: HealthMetricsAPI,
        config: CacheConfig | None = None,
        *,
        aggregator: TrendAggregator | None = None,
        deriver: AlertDeriver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._api = api
        self.config = config or CacheConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._aggregator = aggregator or TrendAggregator(clock=self._clock)
        self._deriver = deriver or AlertDeriver()

        self._state = MetricsState()
        self._entries: dict[CacheKey, CacheEntry[Any]] = {}
        self._listeners: list[Listener] = []
        self._request_ids = itertools.count(1)
        self._placeholder_ids = itertools.count(1)
        self._pending = 0
        self._generation = 0
        self._metrics_key_issued: CacheKey | None = None
        self._metrics_key_shown: CacheKey | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self.logger = logger.bind(component="metrics_cache")

    # Observation

    @property
    def state(self) -> MetricsState:
        return self._state

    @property
    def metrics(self) -> tuple[PatientHealthMetric, ...]:
        return self._state.metrics

    @property
    def latest_metrics(self) -> LatestMetrics:
        return self._state.latest_metrics

    @property
    def trends(self) -> dict[MetricType, TrendSummary]:
        return self._state.trends

    @property
    def alerts(self) -> tuple[MetricAlert, ...]:
        return self._state.alerts

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def error(self) -> str | None:
        return self._state.error

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the new state after every change. Returns an unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def error_for(self, key: CacheKey) -> ApiError | None:
        entry = self._entries.get(key)
        return entry.error if entry else None

    async def settle(self) -> None:
        """Wait for background refreshes started by mutations."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def clear(self) -> None:
        """Drop all cached state. Responses still on the wire are discarded."""
        self._entries.clear()
        self._generation += 1
        self._metrics_key_issued = None
        self._metrics_key_shown = None
        self.logger.info("cache_cleared", pending_requests=self._pending)
        self._commit(MetricsState(loading=self._pending > 0))

    # Reads

    async def fetch_metrics(
        self, patient_id: str, filters: MetricFilters | None = None, *, force: bool = False
    ) -> tuple[PatientHealthMetric, ...]:
        """Load the readings list for ``filters``; returns the current metrics view."""
        key = CacheKey.metrics(patient_id, filters)
        self._metrics_key_issued = key

        entry = self._entries.get(key)
        if (
            not force
            and entry is not None
            and entry.in_flight is None
            and key != self._metrics_key_shown
            and entry.is_fresh(self._clock(), self.config.ttl_seconds)
        ):
            # Switching back to a filter we already hold
            self._metrics_key_shown = key
            self._commit(replace(self._state, metrics=tuple(entry.value.metrics)))
            return self._state.metrics

        def apply(state: MetricsState, response: MetricsResponse) -> MetricsState:
            if self._metrics_key_issued != key:
                return state
            self._metrics_key_shown = key
            return replace(state, metrics=tuple(response.metrics))

        await self._read(key, lambda: self._api.get_metrics(patient_id, filters), apply, force)
        return self._state.metrics

    async def fetch_latest(self, patient_id: str, *, force: bool = False) -> LatestMetrics:
        """Load the most recent reading of each metric type."""

        def apply(state: MetricsState, latest: LatestMetrics) -> MetricsState:
            return replace(state, latest_metrics=dict(latest))

        key = CacheKey.latest(patient_id)
        await self._read(key, lambda: self._api.get_latest(patient_id), apply, force)
        return self._state.latest_metrics

    async def fetch_trends(
        self,
        patient_id: str,
        metric_types: Sequence[MetricType],
        window: TrendWindow,
        *,
        force: bool = False,
    ) -> dict[MetricType, TrendSummary]:
        """Load raw trend points and aggregate them into one summary per type."""
        requested = list(dict.fromkeys(metric_types))

        def apply(state: MetricsState, raw: dict[MetricType, RawTrendData]) -> MetricsState:
            summaries = {}
            for metric_type in requested:
                data = raw.get(metric_type)
                points = [(p.date, p.value) for p in data.data_points] if data else []
                summaries[metric_type] = self._aggregator.aggregate_points(
                    metric_type, points, window, now=self._clock()
                )
            return replace(state, trends={**state.trends, **summaries})

        key = CacheKey.trends(patient_id, requested, window)
        await self._read(
            key, lambda: self._api.get_trends(patient_id, requested, window), apply, force
        )
        return {t: self._state.trends[t] for t in requested if t in self._state.trends}

    async def fetch_alerts(
        self, patient_id: str, *, force: bool = False
    ) -> tuple[MetricAlert, ...]:
        """
        Load alerts for abnormal readings.

        The caller decides whether the current user may see alerts; the
        server enforces it too. Alerts are re-classified before caching.
        """

        def apply(state: MetricsState, alerts: list[MetricAlert]) -> MetricsState:
            return replace(state, alerts=tuple(self._deriver.reconcile(alerts)))

        key = CacheKey.alerts(patient_id)
        await self._read(key, lambda: self._api.get_alerts(patient_id), apply, force)
        return self._state.alerts

    async def _read(
        self,
        key: CacheKey,
        request: Callable[[], Awaitable[Result[T, ApiError]]],
        apply: Callable[[MetricsState, T], MetricsState],
        force: bool,
    ) -> None:
        entry = self._entries.setdefault(key, CacheEntry())

        if not force:
            if entry.in_flight is not None:
                self.logger.debug("fetch_deduplicated", key=str(key))
                await asyncio.shield(entry.in_flight)
                return
            if entry.is_fresh(self._clock(), self.config.ttl_seconds):
                self.logger.debug("cache_hit", key=str(key))
                return

        request_id = next(self._request_ids)
        entry.request_id = request_id
        task = asyncio.create_task(self._run_fetch(key, request_id, request, apply))
        entry.in_flight = task
        await asyncio.shield(task)

    async def _run_fetch(
        self,
        key: CacheKey,
        request_id: int,
        request: Callable[[], Awaitable[Result[T, ApiError]]],
        apply: Callable[[MetricsState, T], MetricsState],
    ) -> None:
        self.logger.debug("fetch_started", key=str(key), request_id=request_id)
        self._pending += 1
        self._sync_loading()
        try:
            result = await request()
        except Exception as e:
            self.logger.exception("unexpected_fetch_error", key=str(key), error=str(e))
            result = Result.err(NetworkError(str(e)))
        finally:
            self._pending -= 1

        try:
            entry = self._current_entry(key, request_id)
        except StaleWriteDiscarded as stale:
            self.logger.debug(
                "stale_write_discarded",
                key=str(key),
                request_id=stale.request_id,
                latest_request_id=stale.latest_request_id,
            )
            self._sync_loading()
            return

        entry.in_flight = None
        loading = self._pending > 0

        if result.is_err():
            error = result.unwrap_err()
            entry.error = error
            self.logger.warning(
                "fetch_failed", key=str(key), error=error.message, status_code=error.status_code
            )
            errors = _with_error(self._state.errors, str(key), error.message)
            self._commit(replace(self._state, loading=loading, errors=errors, error=error.message))
            return

        entry.value = result.unwrap()
        entry.fetched_at = self._clock()
        entry.invalidated = False
        entry.error = None

        errors = _without_error(self._state.errors, str(key))
        state = apply(self._state, entry.value)
        self._commit(replace(state, loading=loading, errors=errors, error=_last_error(errors)))
        self.logger.debug("fetch_completed", key=str(key), request_id=request_id)

    def _current_entry(self, key: CacheKey, request_id: int) -> CacheEntry[Any]:
        entry = self._entries.get(key)
        if entry is None or entry.request_id != request_id:
            raise StaleWriteDiscarded(key, request_id, entry.request_id if entry else None)
        return entry

    # Writes

    async def create_metric(self, patient_id: str, new_metric: NewMetric) -> PatientHealthMetric:
        """Record a reading. The cache shows it immediately under a placeholder id."""
        placeholder = PatientHealthMetric(
            id=f"pending-{next(self._placeholder_ids)}",
            patient_id=patient_id,
            metric_type=new_metric.metric_type,
            value=new_metric.value,
            unit=new_metric.unit or new_metric.metric_type.unit,
            recorded_at=new_metric.recorded_at or self._clock(),
            notes=new_metric.notes,
        )
        metric_type = placeholder.metric_type
        latest_before = {metric_type: self._state.latest_metrics.get(metric_type)}

        def apply(state: MetricsState) -> MetricsState:
            return replace(
                state,
                metrics=state.metrics + (placeholder,),
                latest_metrics=_promote_latest(state.latest_metrics, placeholder),
            )

        def commit(state: MetricsState, created: PatientHealthMetric) -> MetricsState:
            ids = {m.id for m in state.metrics}
            if placeholder.id in ids:
                metrics = tuple(created if m.id == placeholder.id else m for m in state.metrics)
            elif created.id in ids:
                metrics = state.metrics
            else:
                metrics = state.metrics + (created,)

            latest = dict(state.latest_metrics)
            if latest.get(metric_type) is not None and latest[metric_type].id == placeholder.id:
                del latest[metric_type]
                latest = _restore_latest(latest, latest_before, {placeholder.id})
            return replace(state, metrics=metrics, latest_metrics=_promote_latest(latest, created))

        def rollback(state: MetricsState) -> MetricsState:
            return replace(
                state,
                metrics=tuple(m for m in state.metrics if m.id != placeholder.id),
                latest_metrics=_restore_latest(
                    state.latest_metrics, latest_before, {placeholder.id}
                ),
            )

        return await self._mutate(
            "create_metric",
            patient_id,
            apply=apply,
            request=lambda: self._api.create_metric(patient_id, new_metric),
            commit=commit,
            rollback=rollback,
        )

    async def update_metric(
        self, patient_id: str, metric_id: str, changes: MetricUpdate
    ) -> PatientHealthMetric:
        """Patch a reading in place; latest_metrics follows when it shows that reading."""
        patch = changes.changes()
        if "metric_type" in patch and "unit" not in patch:
            patch["unit"] = patch["metric_type"].unit

        original = self._find(metric_id)
        patched = original.model_copy(update=patch) if original else None
        affected = {r.metric_type for r in (original, patched) if r is not None}
        latest_before = {t: self._state.latest_metrics.get(t) for t in affected}

        def place(state: MetricsState, reading: PatientHealthMetric) -> MetricsState:
            # Stays latest even if recorded_at moved earlier; the background refresh corrects it
            metrics = tuple(reading if m.id == metric_id else m for m in state.metrics)
            latest = {
                t: r
                for t, r in state.latest_metrics.items()
                if not (r.id == metric_id and t != reading.metric_type)
            }
            return replace(state, metrics=metrics, latest_metrics=_promote_latest(latest, reading))

        def apply(state: MetricsState) -> MetricsState:
            return place(state, patched) if patched else state

        def rollback(state: MetricsState) -> MetricsState:
            metrics = tuple(
                original if (original and m.id == metric_id) else m for m in state.metrics
            )
            latest = _restore_latest(state.latest_metrics, latest_before, {metric_id})
            return replace(state, metrics=metrics, latest_metrics=latest)

        updated = await self._mutate(
            "update_metric",
            patient_id,
            apply=apply,
            request=lambda: self._api.update_metric(patient_id, metric_id, changes),
            commit=place,
            rollback=rollback,
        )
        if "metric_type" in patch or "recorded_at" in patch:
            # Another reading may now be the most recent of its type
            self._refresh_latest_in_background(patient_id)
        return updated

    async def delete_metric(self, patient_id: str, metric_id: str) -> None:
        """Remove a reading, then refresh latest_metrics from the server."""
        original = self._find(metric_id)
        position = next(
            (i for i, m in enumerate(self._state.metrics) if m.id == metric_id), None
        )
        latest_before = {
            t: r for t, r in self._state.latest_metrics.items() if r.id == metric_id
        }

        def apply(state: MetricsState) -> MetricsState:
            return replace(
                state,
                metrics=tuple(m for m in state.metrics if m.id != metric_id),
                latest_metrics={
                    t: r for t, r in state.latest_metrics.items() if r.id != metric_id
                },
            )

        def commit(state: MetricsState, _: None) -> MetricsState:
            return state

        def rollback(state: MetricsState) -> MetricsState:
            metrics = list(state.metrics)
            if original is not None and position is not None and metric_id not in {
                m.id for m in metrics
            }:
                metrics.insert(min(position, len(metrics)), original)
            latest = _restore_latest(state.latest_metrics, latest_before, {metric_id})
            return replace(state, metrics=tuple(metrics), latest_metrics=latest)

        await self._mutate(
            "delete_metric",
            patient_id,
            apply=apply,
            request=lambda: self._api.delete_metric(patient_id, metric_id),
            commit=commit,
            rollback=rollback,
        )
        self._refresh_latest_in_background(patient_id)

    async def _mutate(
        self,
        operation: str,
        patient_id: str,
        *,
        apply: Callable[[MetricsState], MetricsState],
        request: Callable[[], Awaitable[Result[T, ApiError]]],
        commit: Callable[[MetricsState, T], MetricsState],
        rollback: Callable[[MetricsState], MetricsState],
    ) -> T:
        """Apply a patch, call the API, then commit or apply the inverse patch."""
        generation = self._generation
        error_key = f"{patient_id}:{operation}"

        # Reads already on the wire predate this write
        self._supersede(patient_id, "metrics", "latest")
        self._invalidate_hidden_views(patient_id)
        self._invalidate(patient_id, "alerts", "trends")
        self._pending += 1
        self._commit(replace(apply(self._state), loading=True))
        self.logger.info("optimistic_update_applied", operation=operation, patient_id=patient_id)

        try:
            result = await request()
        except Exception as e:
            self.logger.exception("unexpected_write_error", operation=operation, error=str(e))
            result = Result.err(NetworkError(str(e)))
        finally:
            self._pending -= 1

        if generation != self._generation:
            # clear() ran while the write was in flight; nothing left to patch
            self._sync_loading()
            if result.is_err():
                error = result.unwrap_err()
                raise WriteFailedError(operation, error) from error
            return result.unwrap()

        loading = self._pending > 0
        if result.is_err():
            error = result.unwrap_err()
            errors = _with_error(self._state.errors, error_key, error.message)
            self._commit(
                replace(rollback(self._state), loading=loading, errors=errors, error=error.message)
            )
            self.logger.warning(
                "optimistic_rollback",
                operation=operation,
                patient_id=patient_id,
                error=error.message,
                status_code=error.status_code,
            )
            raise WriteFailedError(operation, error) from error

        value = result.unwrap()
        # Cached list responses predate the write, the one on screen included
        self._invalidate(patient_id, "metrics")
        errors = _without_error(self._state.errors, error_key)
        state = commit(self._state, value)
        self._commit(replace(state, loading=loading, errors=errors, error=_last_error(errors)))
        self.logger.info("write_committed", operation=operation, patient_id=patient_id)
        return value

    # Internals

    def _find(self, metric_id: str) -> PatientHealthMetric | None:
        for reading in self._state.metrics:
            if reading.id == metric_id:
                return reading
        for reading in self._state.latest_metrics.values():
            if reading.id == metric_id:
                return reading
        return None

    def _entries_for(self, patient_id: str, operations: set[str]) -> list[CacheEntry[Any]]:
        return [
            entry
            for key, entry in self._entries.items()
            if key.patient_id == patient_id and key.operation in operations
        ]

    def _supersede(self, patient_id: str, *operations: str) -> None:
        for entry in self._entries_for(patient_id, set(operations)):
            if entry.in_flight is not None:
                entry.request_id = next(self._request_ids)
                entry.in_flight = None

    def _invalidate(self, patient_id: str, *operations: str) -> None:
        self._supersede(patient_id, *operations)
        for entry in self._entries_for(patient_id, set(operations)):
            entry.invalidated = True

    def _invalidate_hidden_views(self, patient_id: str) -> None:
        # Filter views not on screen do not receive the optimistic patch
        for key, entry in self._entries.items():
            if (
                key.patient_id == patient_id
                and key.operation == "metrics"
                and key != self._metrics_key_shown
            ):
                entry.invalidated = True

    def _refresh_latest_in_background(self, patient_id: str) -> None:
        generation = self._generation

        async def refresh() -> None:
            if generation == self._generation:
                await self.fetch_latest(patient_id, force=True)

        task = asyncio.create_task(refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _sync_loading(self) -> None:
        loading = self._pending > 0
        if loading != self._state.loading:
            self._commit(replace(self._state, loading=loading))

    def _commit(self, state: MetricsState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                self.logger.exception("listener_failed", error=str(e))
