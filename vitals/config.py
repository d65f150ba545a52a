"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- No secrets in code; the API base URL comes from the environment
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()


class ApiConfig(BaseModel):
    """Remote health-metrics API settings."""

    base_url: str = Field(
        default="http://localhost:5000/api", description="Base URL of the metrics API"
    )
    timeout_seconds: float = Field(default=10.0, gt=0.0, description="Per-request timeout")

    @field_validator("base_url")
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("API base URL must start with http:// or https://")
        return v.rstrip("/")


class CacheConfig(BaseModel):
    """Session cache settings."""

    ttl_seconds: float = Field(
        default=60.0, ge=0.0, description="Age after which a cached view is refetched"
    )


class TrendConfig(BaseModel):
    """Trend aggregation settings."""

    dead_band: float = Field(
        default=0.03,
        ge=0.0,
        lt=1.0,
        description="Relative change between half-means still reported as flat",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    api: ApiConfig = Field(default_factory=ApiConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    trends: TrendConfig = Field(default_factory=TrendConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    api_config = ApiConfig(
        base_url=os.getenv("METRICS_API_BASE_URL", "http://localhost:5000/api"),
        timeout_seconds=float(os.getenv("METRICS_API_TIMEOUT_SECONDS", "10.0")),
    )

    cache_config = CacheConfig(
        ttl_seconds=float(os.getenv("CACHE_TTL_SECONDS", "60.0")),
    )

    trend_config = TrendConfig(
        dead_band=float(os.getenv("TREND_DEAD_BAND", "0.03")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        api=api_config,
        cache=cache_config,
        trends=trend_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")
        print(f"✅ Metrics API: {config.api.base_url}")
    except Exception as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\n🌐 API CONFIGURATION")
    print(f"Base URL: {config.api.base_url}")
    print(f"Timeout: {config.api.timeout_seconds}s")

    print("\n📊 CACHE & TRENDS")
    print(f"Cache TTL: {config.cache.ttl_seconds}s")
    print(f"Trend Dead-band: {config.trends.dead_band:.1%}")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
