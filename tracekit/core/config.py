"""Runtime settings for the tracing SDK.

Values come from keyword arguments, then ``TRACEKIT_*`` environment
variables, then a local ``.env`` file. ``SERVICE_NAME`` and ``ENVIRONMENT``
are honoured without the prefix for compatibility with existing deployments.
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tracekit.core.errors import ConfigurationError


class TraceKitSettings(BaseSettings):
    api_key: str = Field(validation_alias=AliasChoices("TRACEKIT_API_KEY"))
    service_name: str = Field(
        default="python-app",
        validation_alias=AliasChoices("TRACEKIT_SERVICE_NAME", "SERVICE_NAME"),
    )
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("TRACEKIT_ENVIRONMENT", "ENVIRONMENT"),
    )

    # Collector
    endpoint: str = "localhost:8081"
    use_ssl: bool = False
    traces_path: str = "/v1/traces"
    export_timeout_s: float = 10.0

    # Sampling (1.0 = every trace)
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    # Export pipeline
    max_queue_size: int = Field(default=2048, ge=1)
    batch_size: int = Field(default=512, ge=1)
    linger_ms: int = Field(default=5000, ge=0)
    max_retries: int = Field(default=3, ge=0)
    initial_backoff_ms: int = Field(default=100, ge=0)
    max_backoff_ms: int = Field(default=5000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    shutdown_timeout_s: float = Field(default=5.0, ge=0.0)

    # host:port -> logical service name, used to label outbound CLIENT spans
    service_name_mappings: Dict[str, str] = Field(default_factory=dict)

    # Record variable snapshots from capture_snapshot on the active span
    enable_code_monitoring: bool = False

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="TRACEKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("api_key")
    @classmethod
    def _api_key_present(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("TRACEKIT_API_KEY is required")
        return value

    @field_validator("endpoint")
    @classmethod
    def _endpoint_present(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("TRACEKIT_ENDPOINT must not be empty")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value

    @property
    def collector_url(self) -> str:
        if self.endpoint.startswith(("http://", "https://")):
            base = self.endpoint
        else:
            base = f"{'https' if self.use_ssl else 'http'}://{self.endpoint}"
        return base.rstrip("/") + "/" + self.traces_path.lstrip("/")


def load_settings(**overrides: Any) -> TraceKitSettings:
    """Build settings, failing fast with ``ConfigurationError``."""
    try:
        return TraceKitSettings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid TraceKit configuration: {problems}") from e
