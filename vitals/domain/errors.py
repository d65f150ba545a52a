"""
Error taxonomy for the health-metrics engine.

Classifier errors are programming errors and fail loudly. API errors describe
what went wrong talking to the metrics service and are carried inside a
Result so the cache decides explicitly what to do with each one.
"""


class MetricsEngineError(Exception):
    """Base class for every error raised by the engine."""


class ClassificationError(MetricsEngineError, ValueError):
    """A (metric type, value) pair could not be classified."""


class UnknownMetricTypeError(ClassificationError):
    def __init__(self, metric_type: object) -> None:
        super().__init__(f"Unknown metric type: {metric_type!r}")
        self.metric_type = metric_type


class InvalidValueError(ClassificationError):
    def __init__(self, metric_type: object, value: object) -> None:
        super().__init__(f"Invalid value {value!r} for metric type {metric_type!s}")
        self.metric_type = metric_type
        self.value = value


class ApiError(MetricsEngineError):
    """The metrics API could not complete a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NetworkError(ApiError):
    """Transport failure or server-side outage. Safe for the caller to retry."""


class ValidationError(ApiError):
    """The server rejected a write. The message is meant for the user as-is."""


class MalformedResponseError(ApiError):
    """The server answered with a body that does not match the endpoint's schema."""


class WriteFailedError(MetricsEngineError):
    """A mutation failed after its optimistic change was rolled back."""

    def __init__(self, operation: str, cause: ApiError) -> None:
        super().__init__(f"{operation} failed: {cause.message}")
        self.operation = operation
        self.cause = cause


class StaleWriteDiscarded(MetricsEngineError):
    """A response arrived after a newer request for the same key was issued."""

    def __init__(self, key: object, request_id: int, latest_request_id: int | None) -> None:
        super().__init__(
            f"Response for {key} (request {request_id}) superseded by request {latest_request_id}"
        )
        self.key = key
        self.request_id = request_id
        self.latest_request_id = latest_request_id
