"""KickTalk Telemetry: OpenTelemetry metrics and tracing with graceful degradation.

One TelemetryFacade exists per process. Every call made through `metrics`
and `tracing` works whether or not the pipeline started: when it could not
be initialized they are no-ops and wrapped functions run untouched.

    from kicktalk.telemetry import init_telemetry, metrics, shutdown_telemetry, tracing

    init_telemetry()
    result = tracing.trace_kick_api_call("/api/v2/channels", "GET", fetch_channel)
    metrics.record_message_sent("chatroom-1", "regular")
    await shutdown_telemetry()
"""

from __future__ import annotations

from kicktalk.telemetry.config import TelemetryConfig
from kicktalk.telemetry.facade import ComponentProxy, TelemetryFacade, TelemetryMode, TelemetryState

_telemetry = TelemetryFacade()


def get_telemetry() -> TelemetryFacade:
    """Return the process-wide telemetry facade."""
    return _telemetry


def reset_telemetry(facade: TelemetryFacade | None = None) -> TelemetryFacade:
    """Replace the process-wide facade (a fresh, uninitialized one by default).

    The module-level `metrics` and `tracing` proxies follow the new facade.
    The previous facade is not shut down.
    """
    global _telemetry
    _telemetry = facade if facade is not None else TelemetryFacade()
    return _telemetry


def init_telemetry(config: TelemetryConfig | None = None) -> bool:
    """Initialize telemetry. Returns False (and degrades) on any failure.

    Args:
        config: Overrides the facade's configuration before initializing.
    """
    facade = get_telemetry()
    if config is not None and not facade.is_initialized():
        facade = reset_telemetry(TelemetryFacade(config))
    return facade.init()


async def shutdown_telemetry() -> None:
    """Flush and stop telemetry. A no-op if never initialized."""
    await get_telemetry().shutdown()


def is_initialized() -> bool:
    return get_telemetry().is_initialized()


metrics = ComponentProxy(lambda: get_telemetry().state.metrics, "metrics")
tracing = ComponentProxy(lambda: get_telemetry().state.tracing, "tracing")

__all__ = [
    "ComponentProxy",
    "TelemetryConfig",
    "TelemetryFacade",
    "TelemetryMode",
    "TelemetryState",
    "get_telemetry",
    "init_telemetry",
    "is_initialized",
    "metrics",
    "reset_telemetry",
    "shutdown_telemetry",
    "tracing",
]
