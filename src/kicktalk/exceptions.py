"""
KickTalk Custom Exceptions

Exception hierarchy for the KickTalk telemetry layer.
All KickTalk-specific exceptions inherit from KickTalkError.

Exception hierarchy:
    KickTalkError
    +-- TelemetryError
        +-- BootstrapError          (pipeline could not be constructed or started)
        +-- ComponentLoadError      (a telemetry collaborator failed to construct)
        +-- TelemetryInternalError  (failure inside metrics/tracing plumbing)

None of these reach business code: the facade catches them and degrades,
or logs and drops them. Exceptions raised by instrumented business
functions are never wrapped.
"""

from __future__ import annotations


class KickTalkError(Exception):
    """Base exception for all KickTalk errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class TelemetryError(KickTalkError):
    """Base exception for telemetry failures."""

    pass


class BootstrapError(TelemetryError):
    """Raised when the observability pipeline could not be started."""

    def __init__(self, message: str, endpoint: str | None = None, details: dict | None = None):
        super().__init__(
            message,
            details={"endpoint": endpoint, **(details or {})},
        )
        self.endpoint = endpoint


class ComponentLoadError(TelemetryError):
    """Raised when a telemetry component (bootstrap, metrics, tracing) fails to load.

    Wraps the original failure so the facade can log which component
    broke before substituting the no-op set.
    """

    def __init__(self, component: str, cause: BaseException, details: dict | None = None):
        super().__init__(
            f"Telemetry component '{component}' failed to load: {cause}",
            details={"component": component, **(details or {})},
        )
        self.component = component
        self.cause = cause


class TelemetryInternalError(TelemetryError):
    """Raised inside metrics or tracing plumbing. Always contained."""

    def __init__(self, operation: str, message: str, details: dict | None = None):
        super().__init__(
            f"Telemetry operation '{operation}' failed: {message}",
            details={"operation": operation, **(details or {})},
        )
        self.operation = operation
