"""
Services for the health-metrics engine.

This package contains the classifier, trend aggregation, alert derivation,
the API clients and the session cache that ties them together.
"""

from .alerts import AlertDeriver, summarize
from .api_client import HealthMetricsAPI, HttpHealthMetricsAPI
from .cache import CacheKey, MetricsCache, MetricsState
from .classifier import classify, get_normal_range, is_abnormal
from .memory_api import InMemoryHealthMetricsAPI
from .result import Result
from .trends import TrendAggregator

__all__ = [
    "AlertDeriver",
    "CacheKey",
    "HealthMetricsAPI",
    "HttpHealthMetricsAPI",
    "InMemoryHealthMetricsAPI",
    "MetricsCache",
    "MetricsState",
    "Result",
    "TrendAggregator",
    "classify",
    "get_normal_range",
    "is_abnormal",
    "summarize",
]
