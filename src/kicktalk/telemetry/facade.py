"""Telemetry facade: fail-atomic wiring of bootstrap, tracing and metrics.

The facade owns one TelemetryState. init() either wires all three real
components or none of them; on any failure the whole set is replaced with
no-op substitutes that expose the same methods, so call sites never check
which mode they are in.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kicktalk import __version__
from kicktalk.exceptions import BootstrapError, ComponentLoadError, TelemetryError
from kicktalk.logging import get_logger
from kicktalk.telemetry.bootstrap import Bootstrap, NoOpBootstrap, OTelBootstrap
from kicktalk.telemetry.config import TelemetryConfig
from kicktalk.telemetry.instruments import BaseMetrics, MetricsHelper, NoOpMetrics
from kicktalk.telemetry.spans import BaseTracing, NoOpTracing, TracingHelper

logger = get_logger("kicktalk.telemetry")

BootstrapFactory = Callable[[TelemetryConfig], Bootstrap]
TracingFactory = Callable[[Bootstrap], BaseTracing]
MetricsFactory = Callable[[Bootstrap, BaseTracing], BaseMetrics]


class TelemetryMode(str, Enum):
    """Operating mode of the facade."""

    ACTIVE = "ACTIVE"
    DEGRADED = "DEGRADED"


@dataclass
class TelemetryState:
    """The wired component set. Degraded (all no-ops) by default."""
    initialized: bool = False
    mode: TelemetryMode = TelemetryMode.DEGRADED
    bootstrap: Bootstrap = field(default_factory=NoOpBootstrap)
    tracing: BaseTracing = field(default_factory=NoOpTracing)
    metrics: BaseMetrics = field(default_factory=NoOpMetrics)


class ComponentProxy:
    """Stable handle that forwards attribute access to the current component.

    Callers can keep a reference across init/shutdown and always reach
    whichever implementation is wired at call time.
    """

    def __init__(self, resolve: Callable[[], Any], label: str):
        self._resolve = resolve
        self._label = label

    def __getattr__(self, name: str) -> Any:
        return getattr(self._resolve(), name)

    def __dir__(self):
        return dir(self._resolve())

    def __repr__(self) -> str:
        return f"<{self._label} proxy -> {type(self._resolve()).__name__}>"


def default_tracing_factory(bootstrap: Bootstrap) -> BaseTracing:
    return TracingHelper(bootstrap.tracer)


def default_metrics_factory(bootstrap: Bootstrap, tracing: BaseTracing) -> BaseMetrics:
    return MetricsHelper(bootstrap.meter, tracing)


class TelemetryFacade:
    """Orchestrates the telemetry lifecycle for one process.

    Args:
        config: Pipeline configuration. Read from the environment at init
            time when omitted.
        bootstrap_factory: Builds the Bootstrap from the config.
        tracing_factory: Builds tracing from a started bootstrap.
        metrics_factory: Builds metrics from a started bootstrap and tracing.
        version: Application version reported in the startup event.
            Defaults to the configured service version.
    """

    def __init__(
        self,
        config: TelemetryConfig | None = None,
        *,
        bootstrap_factory: BootstrapFactory = OTelBootstrap,
        tracing_factory: TracingFactory = default_tracing_factory,
        metrics_factory: MetricsFactory = default_metrics_factory,
        version: str | None = None,
    ):
        self._config = config
        self._bootstrap_factory = bootstrap_factory
        self._tracing_factory = tracing_factory
        self._metrics_factory = metrics_factory
        self._version = version
        self._state = TelemetryState()
        self._metrics_proxy = ComponentProxy(lambda: self._state.metrics, "metrics")
        self._tracing_proxy = ComponentProxy(lambda: self._state.tracing, "tracing")

    @property
    def state(self) -> TelemetryState:
        return self._state

    @property
    def mode(self) -> TelemetryMode:
        return self._state.mode

    @property
    def metrics(self) -> ComponentProxy:
        return self._metrics_proxy

    @property
    def tracing(self) -> ComponentProxy:
        return self._tracing_proxy

    def is_initialized(self) -> bool:
        return self._state.initialized

    def init(self) -> bool:
        """Start telemetry, or degrade to no-ops if any component fails.

        Returns:
            True if the real pipeline is wired (including when it already
            was), False if running degraded.
        """
        if self._state.initialized:
            return True

        bootstrap: Bootstrap | None = None
        try:
            config = self._config if self._config is not None else _load("config", TelemetryConfig.from_env)
            bootstrap = _load("bootstrap", self._bootstrap_factory, config)
            if not _load("bootstrap", bootstrap.init):
                raise BootstrapError("Telemetry pipeline did not start", endpoint=config.endpoint)
            tracing = _load("tracing", self._tracing_factory, bootstrap)
            metrics = _load("metrics", self._metrics_factory, bootstrap, tracing)
        except TelemetryError as exc:
            logger.warning("Telemetry unavailable, running degraded: %s", exc,
                           extra={"mode": TelemetryMode.DEGRADED.value})
            if bootstrap is not None:
                _discard(bootstrap)
            self._state = TelemetryState()
            return False

        self._state = TelemetryState(
            initialized=True,
            mode=TelemetryMode.ACTIVE,
            bootstrap=bootstrap,
            tracing=tracing,
            metrics=metrics,
        )
        version = self._version or config.service_version or __version__
        metrics.record_application_start(version)
        logger.info("Telemetry initialized", extra={"mode": TelemetryMode.ACTIVE.value})
        return True

    async def shutdown(self) -> None:
        """Flush and stop the pipeline, then return to degraded mode.

        Resolves immediately if telemetry was never initialized.
        """
        if not self._state.initialized:
            return
        bootstrap = self._state.bootstrap
        try:
            await bootstrap.shutdown()
        except Exception as exc:
            logger.warning("Telemetry shutdown failed: %s", exc, extra={"component": "bootstrap"})
        finally:
            self._state = TelemetryState()


def _load(component: str, factory: Callable[..., Any], *args: Any) -> Any:
    """Call a component constructor, normalising failures to ComponentLoadError."""
    try:
        return factory(*args)
    except TelemetryError:
        raise
    except Exception as exc:
        raise ComponentLoadError(component, exc) from exc


def _discard(bootstrap: Bootstrap) -> None:
    try:
        bootstrap.discard()
    except Exception as exc:
        logger.warning("Failed to discard partially started telemetry: %s", exc,
                       extra={"component": "bootstrap"})
