"""Telemetry configuration.

The backend configuration (endpoint, credentials, sampling) is treated as an
opaque object by the facade and only interpreted by the bootstrap. It is
normally built from the standard OTEL_* environment variables, with the
build-time MAIN_VITE_OTEL_* variables used as fallbacks.
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping

from pydantic import BaseModel, Field, field_validator

from kicktalk import __version__
from kicktalk.logging import get_logger

logger = get_logger("kicktalk.telemetry.config")

# Build-time variables copied onto their runtime names when the latter are unset
ENV_FALLBACKS = {
    "MAIN_VITE_OTEL_EXPORTER_OTLP_ENDPOINT": "OTEL_EXPORTER_OTLP_ENDPOINT",
    "MAIN_VITE_OTEL_EXPORTER_OTLP_HEADERS": "OTEL_EXPORTER_OTLP_HEADERS",
    "MAIN_VITE_OTEL_DIAG_LOG_LEVEL": "OTEL_DIAG_LOG_LEVEL",
    "MAIN_VITE_OTEL_DEPLOYMENT_ENV": "OTEL_DEPLOYMENT_ENV",
    "MAIN_VITE_OTEL_SERVICE_NAME": "OTEL_SERVICE_NAME",
}

DEFAULT_SERVICE_NAME = "kicktalk"

_FALSE_VALUES = {"0", "false", "no", "off"}
_DIAG_LEVELS = {"NONE", "ERROR", "WARN", "WARNING", "INFO", "DEBUG", "VERBOSE", "ALL"}


def parse_key_value_list(raw: str | None) -> dict[str, str]:
    """Parse a "k1=v1,k2=v2" string as used by OTEL_* variables.

    Entries without "=" or with an empty key are skipped.
    """
    result: dict[str, str] = {}
    if not raw:
        return result
    for item in raw.split(","):
        key, sep, value = item.strip().partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        result[key] = value.strip()
    return result


def map_env_fallbacks(environ: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of environ with MAIN_VITE_OTEL_* values mapped onto OTEL_*."""
    env = dict(environ)
    for src, dest in ENV_FALLBACKS.items():
        if env.get(src) and not env.get(dest):
            env[dest] = env[src]
    return env


class TelemetryConfig(BaseModel):
    """Configuration for the observability pipeline."""
    enabled: bool = True
    endpoint: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    service_name: str = DEFAULT_SERVICE_NAME
    service_version: str = __version__
    deployment_environment: str = "development"
    resource_attributes: dict[str, str] = Field(default_factory=dict)
    sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    export_interval_ms: int = Field(default=60_000, gt=0)
    diag_log_level: str | None = None

    @field_validator("diag_log_level")
    @classmethod
    def _normalize_diag_level(cls, value: str | None) -> str | None:
        if value is None:
            return None
        level = value.strip().upper()
        # Unknown levels are ignored rather than rejected
        return level if level in _DIAG_LEVELS else None

    @field_validator("endpoint")
    @classmethod
    def _strip_endpoint(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def traces_endpoint(self) -> str | None:
        """OTLP/HTTP traces URL derived from the base endpoint."""
        return self._signal_endpoint("traces")

    @property
    def metrics_endpoint(self) -> str | None:
        """OTLP/HTTP metrics URL derived from the base endpoint."""
        return self._signal_endpoint("metrics")

    def _signal_endpoint(self, signal: str) -> str | None:
        if not self.endpoint:
            return None
        base = self.endpoint.rstrip("/")
        for known in ("/v1/traces", "/v1/metrics"):
            if base.endswith(known):
                base = base[: -len(known)]
                break
        return f"{base}/v1/{signal}"

    def resource_dict(self) -> dict[str, str]:
        """Resource attributes with the service identity applied last."""
        attrs = dict(self.resource_attributes)
        attrs.setdefault("service.name", self.service_name)
        attrs["service.version"] = self.service_version
        attrs.setdefault("deployment.environment", self.deployment_environment)
        return attrs

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TelemetryConfig:
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            TelemetryConfig with every recognised variable applied.
        """
        env = map_env_fallbacks(os.environ if environ is None else environ)

        kwargs: dict = {
            "endpoint": env.get("OTEL_EXPORTER_OTLP_ENDPOINT"),
            "headers": parse_key_value_list(env.get("OTEL_EXPORTER_OTLP_HEADERS")),
            "diag_log_level": env.get("OTEL_DIAG_LOG_LEVEL"),
        }

        enabled = env.get("KICKTALK_TELEMETRY_ENABLED")
        if enabled is not None:
            kwargs["enabled"] = enabled.strip().lower() not in _FALSE_VALUES

        resource = parse_key_value_list(env.get("OTEL_RESOURCE_ATTRIBUTES"))
        resource.pop("service.version", None)

        service_name = env.get("OTEL_SERVICE_NAME") or resource.get("service.name")
        if service_name:
            kwargs["service_name"] = service_name
        resource.pop("service.name", None)

        deployment = env.get("OTEL_DEPLOYMENT_ENV") or resource.get("deployment.environment")
        if not deployment and env.get("PYTEST_CURRENT_TEST"):
            deployment = "test"
        if deployment:
            kwargs["deployment_environment"] = deployment
        resource.pop("deployment.environment", None)

        kwargs["resource_attributes"] = resource

        ratio = env.get("OTEL_TRACES_SAMPLER_ARG")
        if ratio:
            try:
                value = float(ratio)
            except ValueError:
                value = math.nan
            if math.isfinite(value):
                kwargs["sample_ratio"] = min(max(value, 0.0), 1.0)
            else:
                logger.warning("Ignoring invalid OTEL_TRACES_SAMPLER_ARG: %s", ratio)

        interval = env.get("OTEL_METRIC_EXPORT_INTERVAL")
        if interval and interval.isdigit() and int(interval) > 0:
            kwargs["export_interval_ms"] = int(interval)

        return cls(**kwargs)
