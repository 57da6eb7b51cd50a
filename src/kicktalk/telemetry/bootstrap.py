"""OpenTelemetry pipeline bootstrap for KickTalk.

Owns the tracer and meter providers and their OTLP/HTTP exporters.
init() never raises: every failure is logged and reported as False so the
facade can degrade to no-ops.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from kicktalk.logging import get_logger
from kicktalk.telemetry.config import TelemetryConfig

if TYPE_CHECKING:
    from opentelemetry.metrics import Meter
    from opentelemetry.trace import Tracer

logger = get_logger("kicktalk.telemetry.bootstrap")

INSTRUMENTATION_NAME = "kicktalk"

_DIAG_LEVELS = {
    "NONE": logging.CRITICAL + 10,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "VERBOSE": logging.DEBUG,
    "ALL": logging.DEBUG,
}


def apply_diag_log_level(level: str | None) -> None:
    """Route the OpenTelemetry SDK's own diagnostics at the requested level."""
    if not level or level not in _DIAG_LEVELS:
        return
    logging.getLogger("opentelemetry").setLevel(_DIAG_LEVELS[level])


class Bootstrap(ABC):
    """Lifecycle owner of the observability pipeline."""

    @abstractmethod
    def init(self) -> bool:
        """Construct and start the pipeline. Must never raise."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Flush exporters and stop the pipeline. Idempotent."""

    @property
    @abstractmethod
    def started(self) -> bool:
        """Whether the pipeline is currently running."""

    def discard(self) -> None:
        """Synchronously release anything started, without flushing guarantees."""

    @property
    def tracer(self) -> Tracer | None:
        return None

    @property
    def meter(self) -> Meter | None:
        return None


class NoOpBootstrap(Bootstrap):
    """Bootstrap used in degraded mode. Never starts anything."""

    def init(self) -> bool:
        return False

    async def shutdown(self) -> None:
        return None

    @property
    def started(self) -> bool:
        return False


class OTelBootstrap(Bootstrap):
    """Builds the OpenTelemetry SDK pipeline from a TelemetryConfig.

    Providers are owned by this instance rather than installed as the
    global providers, so a shutdown followed by a new init gets a clean
    pipeline.

    Args:
        config: Pipeline configuration.
        span_exporter: Optional exporter used instead of OTLP (exported
            synchronously, e.g. InMemorySpanExporter).
        metric_reader: Optional reader used instead of the periodic OTLP
            reader (e.g. InMemoryMetricReader).
    """

    def __init__(
        self,
        config: TelemetryConfig | None = None,
        span_exporter: Any = None,
        metric_reader: Any = None,
    ):
        self._config = config or TelemetryConfig()
        self._span_exporter = span_exporter
        self._metric_reader = metric_reader
        self._tracer_provider: Any = None
        self._meter_provider: Any = None
        self._tracer: Tracer | None = None
        self._meter: Meter | None = None
        self._atexit_registered = False

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def started(self) -> bool:
        return self._tracer_provider is not None

    @property
    def tracer(self) -> Tracer | None:
        return self._tracer

    @property
    def meter(self) -> Meter | None:
        return self._meter

    def init(self) -> bool:
        """Initialize tracing and metrics providers.

        Returns:
            True if the pipeline is running, False if telemetry is disabled,
            unconfigured, the SDK is missing, or construction failed.
        """
        if self.started:
            return True

        config = self._config
        if not config.enabled:
            logger.info("Telemetry disabled by configuration", extra={"component": "bootstrap"})
            return False

        use_overrides = self._span_exporter is not None or self._metric_reader is not None
        if not config.endpoint and not use_overrides:
            logger.info("No OTLP endpoint configured, telemetry stays disabled",
                        extra={"component": "bootstrap"})
            return False

        apply_diag_log_level(config.diag_log_level)

        try:
            self._build(config)
        except ImportError as exc:
            logger.error("OpenTelemetry modules are not available, disabling telemetry: %s", exc,
                         extra={"component": "bootstrap"})
            self.discard()
            return False
        except Exception as exc:
            logger.warning("Failed to start telemetry pipeline: %s", exc,
                           extra={"component": "bootstrap", "endpoint": config.endpoint})
            self.discard()
            return False

        if not self._atexit_registered:
            atexit.register(self._flush_at_exit)
            self._atexit_registered = True

        logger.info("Telemetry pipeline started",
                    extra={"component": "bootstrap", "endpoint": config.endpoint})
        return True

    def _build(self, config: TelemetryConfig) -> None:
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
        from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

        resource = Resource.create(config.resource_dict())

        tracer_provider = TracerProvider(
            resource=resource,
            sampler=ParentBased(TraceIdRatioBased(config.sample_ratio)),
        )
        if self._span_exporter is not None:
            tracer_provider.add_span_processor(SimpleSpanProcessor(self._span_exporter))
        elif config.traces_endpoint:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

            exporter = OTLPSpanExporter(endpoint=config.traces_endpoint, headers=config.headers)
            tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
        self._tracer_provider = tracer_provider

        if self._metric_reader is not None:
            reader = self._metric_reader
        else:
            from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter

            reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=config.metrics_endpoint, headers=config.headers),
                export_interval_millis=config.export_interval_ms,
            )
        self._meter_provider = MeterProvider(resource=resource, metric_readers=[reader])

        self._tracer = tracer_provider.get_tracer(INSTRUMENTATION_NAME, config.service_version)
        self._meter = self._meter_provider.get_meter(INSTRUMENTATION_NAME, config.service_version)

    def discard(self) -> None:
        """Drop whatever was partially built during a failed init."""
        self._shutdown_providers()
        self._unregister_atexit()

    def _shutdown_providers(self) -> None:
        for provider in (self._tracer_provider, self._meter_provider):
            if provider is None:
                continue
            try:
                provider.shutdown()
            except Exception as exc:
                logger.warning("Telemetry provider shutdown failed: %s", exc,
                               extra={"component": "bootstrap"})
        self._tracer_provider = None
        self._meter_provider = None
        self._tracer = None
        self._meter = None

    def _unregister_atexit(self) -> None:
        if self._atexit_registered:
            atexit.unregister(self._flush_at_exit)
            self._atexit_registered = False

    def _flush_at_exit(self) -> None:
        if self.started:
            self._shutdown_providers()

    async def shutdown(self) -> None:
        """Flush and stop both providers.

        Resolves immediately if the pipeline was never started.
        """
        if not self.started:
            return
        await asyncio.to_thread(self._shutdown_providers)
        self._unregister_atexit()
        logger.info("Telemetry pipeline stopped", extra={"component": "bootstrap"})
