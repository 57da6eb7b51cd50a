"""Tracing for KickTalk.

BaseTracing defines the full tracing surface. On its own it runs every
wrapped function untraced, which is exactly the degraded behaviour, so
NoOpTracing adds nothing. TracingHelper overrides the span runner to
create real OpenTelemetry spans.

Every wrapper returns what the wrapped function returns and raises what it
raises. Failures inside the tracing plumbing are logged and dropped.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
from collections.abc import Callable, Coroutine, Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from kicktalk.exceptions import ComponentLoadError, TelemetryInternalError
from kicktalk.logging import get_logger

if TYPE_CHECKING:
    from opentelemetry.trace import Tracer

logger = get_logger("kicktalk.telemetry.spans")

T = TypeVar("T")

SuccessHook = Callable[[Any, Any, float], None]
ErrorHook = Callable[[Any, BaseException], None]

_PRIMITIVES = (str, bool, int, float)


def clean_attributes(attributes: Mapping[str, Any] | None) -> dict[str, Any]:
    """Drop None values and stringify anything OpenTelemetry cannot store."""
    if not attributes:
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, _PRIMITIVES):
            cleaned[str(key)] = value
        elif isinstance(value, (list, tuple)) and all(isinstance(v, _PRIMITIVES) for v in value):
            cleaned[str(key)] = list(value)
        else:
            cleaned[str(key)] = str(value)
    return cleaned


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


@contextmanager
def contained(
    operation: str,
    *,
    log: logging.Logger | None = None,
    level: int = logging.DEBUG,
    **extra: Any,
) -> Iterator[None]:
    """Log and drop any failure raised inside telemetry plumbing.

    Failures are reported as TelemetryInternalError naming the operation
    that broke. Business exceptions never pass through here.
    """
    try:
        yield
    except Exception as exc:
        error = exc if isinstance(exc, TelemetryInternalError) else TelemetryInternalError(
            operation, _error_message(exc)
        )
        (log or logger).log(level, "%s", error, extra=extra or None)


def _result_field(result: Any, *names: str) -> Any:
    """Read the first present field from a mapping or object result."""
    if result is None:
        return None
    for name in names:
        if isinstance(result, Mapping):
            if name in result:
                return result[name]
        elif hasattr(result, name):
            return getattr(result, name)
    return None


class NoOpSpan:
    """Span handed to callbacks when tracing is degraded."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass

    def is_recording(self) -> bool:
        return False

    def set_attribute(self, key: str, value: object) -> None:
        pass

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        pass

    def set_status(self, status: object, description: str | None = None) -> None:
        pass

    def record_exception(self, exception: BaseException, attributes: Mapping[str, Any] | None = None) -> None:
        pass

    def add_event(self, name: str, attributes: Mapping[str, Any] | None = None) -> None:
        pass

    def end(self, end_time: int | None = None) -> None:
        pass


NOOP_SPAN = NoOpSpan()


class BaseTracing:
    """The tracing surface shared by the real and no-op implementations."""

    def start_active_span(
        self,
        name: str,
        fn: Callable[[Any], T],
        attributes: Mapping[str, Any] | None = None,
    ) -> T:
        """Run fn(span) with a new span active for its duration.

        fn may be synchronous, a coroutine function, or return an awaitable.
        In the async cases the returned coroutine must be awaited; the span
        stays active inside it and ends once the awaitable settles.
        """
        return self._run_in_span(name, fn, attributes)

    def add_event(self, name: str, attributes: Mapping[str, Any] | None = None) -> None:
        """Attach an event to the active span, if any."""

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        """Merge attributes into the active span, if any."""

    def get_active_span(self) -> Any:
        """Return the active recording span, or None."""
        return None

    def _run_in_span(
        self,
        name: str,
        call: Callable[[Any], T],
        attributes: Mapping[str, Any] | None = None,
        on_success: SuccessHook | None = None,
        on_error: ErrorHook | None = None,
    ) -> T:
        return call(NOOP_SPAN)

    # Domain wrappers

    def trace_emote_load(self, provider: str, emote_id: str, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            span.set_attributes({
                "emote.load_success": True,
                "emote.from_cache": bool(_result_field(result, "fromCache", "from_cache") or False),
            })

        def on_error(span, exc):
            span.set_attributes({
                "emote.load_success": False,
                "emote.error": _error_message(exc),
            })

        return self._run_in_span(
            "emote_load",
            lambda _span: fn(),
            {"emote.provider": provider, "emote.id": emote_id, "emote.operation": "load"},
            on_success,
            on_error,
        )

    def trace_message_send(self, message_id: str, content: str | None, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            span.set_attributes({
                "message.send_success": True,
                "message.send_duration_ms": elapsed_ms,
            })

        def on_error(span, exc):
            span.set_attributes({
                "message.send_success": False,
                "message.send_error": _error_message(exc),
            })

        return self._run_in_span(
            "message_send",
            lambda _span: fn(),
            {
                "message.id": message_id,
                "message.content_length": len(content) if content else 0,
                "message.operation": "send",
            },
            on_success,
            on_error,
        )

    def trace_kick_api_call(self, endpoint: str, method: str, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            status = _result_field(result, "status", "status_code")
            span.set_attributes({
                "http.status_code": status if isinstance(status, int) else 200,
                "http.response_time_ms": elapsed_ms,
                "http.success": True,
            })

        def on_error(span, exc):
            status = _result_field(exc, "status", "status_code")
            span.set_attributes({
                "http.success": False,
                "http.error": _error_message(exc),
                "http.status_code": status if isinstance(status, int) else 500,
            })

        return self._run_in_span(
            f"kick_api_{method.lower()}",
            lambda _span: fn(),
            {"http.method": method, "http.url": endpoint, "service.name": "kick_api"},
            on_success,
            on_error,
        )

    def trace_websocket_connection(self, chatroom_id: str, streamer_id: str, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            span.set_attributes({
                "websocket.connection_success": True,
                "websocket.connection_duration_ms": elapsed_ms,
            })

        def on_error(span, exc):
            span.set_attributes({
                "websocket.connection_success": False,
                "websocket.error": _error_message(exc),
            })

        return self._run_in_span(
            "websocket_connection",
            lambda _span: fn(),
            {
                "websocket.chatroom_id": chatroom_id,
                "websocket.streamer_id": streamer_id,
                "websocket.operation": "connect",
            },
            on_success,
            on_error,
        )

    def trace_api_request(self, url: str, method: str, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            span.set_attributes({"http.request_success": True})

        def on_error(span, exc):
            span.set_attributes({
                "http.request_success": False,
                "http.error": _error_message(exc),
            })

        return self._run_in_span(
            "api_request",
            lambda _span: fn(),
            {"http.method": method, "http.url": url, "http.request_type": "api"},
            on_success,
            on_error,
        )

    def trace_message_flow(self, message_id: str, message_type: str, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            span.set_attributes({"message.processed": True})

        def on_error(span, exc):
            span.set_attributes({
                "message.processed": False,
                "message.error": _error_message(exc),
            })

        return self._run_in_span(
            "message_flow",
            lambda _span: fn(),
            {"message.id": message_id, "message.type": message_type, "message.operation": "process"},
            on_success,
            on_error,
        )

    def trace_seventv_operation(self, operation: str, chatroom_id: str, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            span.set_attributes({"seventv.operation_success": True})

        def on_error(span, exc):
            span.set_attributes({
                "seventv.operation_success": False,
                "seventv.error": _error_message(exc),
            })

        return self._run_in_span(
            f"seventv_{operation}",
            lambda _span: fn(),
            {"seventv.operation": operation, "seventv.chatroom_id": chatroom_id, "service.name": "7tv"},
            on_success,
            on_error,
        )

    def trace_user_interaction(self, interaction_type: str, component: str, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            span.set_attributes({
                "user.interaction_success": True,
                "user.response_time_ms": elapsed_ms,
            })

        def on_error(span, exc):
            span.set_attributes({
                "user.interaction_success": False,
                "user.error": _error_message(exc),
            })

        return self._run_in_span(
            "user_interaction",
            lambda _span: fn(),
            {
                "user.interaction_type": interaction_type,
                "user.component": component,
                "user.operation": "interact",
            },
            on_success,
            on_error,
        )

    def trace_performance_operation(self, operation: str, category: str, fn: Callable[[], T]) -> T:
        def on_success(span, result, elapsed_ms):
            span.set_attributes({
                "performance.duration_ms": elapsed_ms,
                "performance.success": True,
            })

        def on_error(span, exc):
            span.set_attributes({
                "performance.success": False,
                "performance.error": _error_message(exc),
            })

        return self._run_in_span(
            f"performance_{operation}",
            lambda _span: fn(),
            {"performance.operation": operation, "performance.category": category},
            on_success,
            on_error,
        )


class NoOpTracing(BaseTracing):
    """Tracing used in degraded mode: runs everything untraced."""


class TracingHelper(BaseTracing):
    """OpenTelemetry-backed tracing.

    Active spans are propagated through OpenTelemetry context, which lives
    in contextvars, so each asyncio task sees only its own active span.
    """

    def __init__(self, tracer: Tracer | None):
        if tracer is None:
            raise ComponentLoadError("tracing", RuntimeError("no tracer available"))

        from opentelemetry import context, trace
        from opentelemetry.trace import Status, StatusCode

        self._tracer = tracer
        self._context = context
        self._trace = trace
        self._status = Status
        self._status_code = StatusCode

    def add_event(self, name: str, attributes: Mapping[str, Any] | None = None) -> None:
        span = self.get_active_span()
        if span is None:
            return
        with contained("add_event", span_name=name):
            span.add_event(name, clean_attributes(attributes))
            logger.debug("Event: %s", name)

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        span = self.get_active_span()
        if span is None:
            return
        with contained("set_attributes"):
            span.set_attributes(clean_attributes(attributes))

    def get_active_span(self) -> Any:
        span = self._trace.get_current_span()
        return span if span.is_recording() else None

    def _run_in_span(
        self,
        name: str,
        call: Callable[[Any], T],
        attributes: Mapping[str, Any] | None = None,
        on_success: SuccessHook | None = None,
        on_error: ErrorHook | None = None,
    ) -> T:
        try:
            span = self._tracer.start_span(name, attributes=clean_attributes(attributes))
            token = self._context.attach(self._trace.set_span_in_context(span))
        except Exception as exc:
            logger.warning("Could not start span %s, running untraced: %s", name, exc,
                           extra={"span_name": name})
            return call(NOOP_SPAN)

        started = time.monotonic()
        try:
            result = call(span)
        except BaseException as exc:
            self._end_with_error(span, exc, on_error)
            raise
        finally:
            self._context.detach(token)

        if asyncio.isfuture(result):
            # Futures are shared handles; the caller keeps the same object
            result.add_done_callback(
                functools.partial(self._end_from_future, span, started, on_success, on_error)
            )
            return result
        if inspect.isawaitable(result):
            return _SpanCoroutine(self, span, result, started, on_success, on_error)

        self._end_ok(span, result, started, on_success)
        return result

    async def _await_in_span(self, span, awaitable, started, on_success, on_error):
        token = self._context.attach(self._trace.set_span_in_context(span))
        try:
            result = await awaitable
        except BaseException as exc:
            self._end_with_error(span, exc, on_error)
            raise
        finally:
            self._context.detach(token)

        self._end_ok(span, result, started, on_success)
        return result

    def _end_from_future(self, span, started, on_success, on_error, future) -> None:
        if future.cancelled():
            self._end_with_error(span, asyncio.CancelledError(), on_error)
        elif future.exception() is not None:
            self._end_with_error(span, future.exception(), on_error)
        else:
            self._end_ok(span, future.result(), started, on_success)

    def _end_ok(self, span, result, started: float, on_success: SuccessHook | None) -> None:
        elapsed_ms = (time.monotonic() - started) * 1000
        try:
            with contained("end_ok"):
                if on_success is not None:
                    on_success(_SafeSpan(span), result, elapsed_ms)
                span.set_status(self._status(self._status_code.OK))
        finally:
            self._end(span)

    def _end_with_error(self, span, error: BaseException, on_error: ErrorHook | None) -> None:
        try:
            with contained("end_with_error"):
                if on_error is not None:
                    on_error(_SafeSpan(span), error)
                span.record_exception(error)
                span.set_status(self._status(self._status_code.ERROR, _error_message(error)))
        finally:
            self._end(span)

    @staticmethod
    def _end(span) -> None:
        with contained("end_span"):
            span.end()


class _SpanCoroutine(Coroutine):
    """Coroutine returned when a traced function produces an awaitable.

    Drives _await_in_span, and also ends the span when it is cancelled,
    closed or garbage collected before its first step, which a native
    coroutine never observes.
    """

    def __init__(self, helper: TracingHelper, span, awaitable, started, on_success, on_error):
        self._helper = helper
        self._span = span
        self._awaitable = awaitable
        self._on_error = on_error
        self._runner = helper._await_in_span(span, awaitable, started, on_success, on_error)
        self._stepped = False

    def __await__(self):
        return self

    def __next__(self):
        return self.send(None)

    def send(self, value):
        self._stepped = True
        return self._runner.send(value)

    def throw(self, typ, val=None, tb=None):
        if isinstance(typ, BaseException):
            exc = typ
        elif isinstance(val, BaseException):
            exc = val
        else:
            exc = typ() if val is None else typ(val)
        if tb is not None:
            exc = exc.with_traceback(tb)
        if self._stepped:
            return self._runner.throw(exc)
        self._abandon(exc)
        raise exc

    def close(self) -> None:
        if self._stepped:
            self._runner.close()
        else:
            self._abandon(GeneratorExit())

    def __del__(self):
        if not getattr(self, "_stepped", True):
            self.close()

    def _abandon(self, exc: BaseException) -> None:
        self._stepped = True
        self._runner.close()
        if inspect.iscoroutine(self._awaitable):
            self._awaitable.close()
        self._helper._end_with_error(self._span, exc, self._on_error)


class _SafeSpan:
    """Span view used by domain hooks: attribute values are cleaned first."""

    def __init__(self, span):
        self._span = span

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        self._span.set_attributes(clean_attributes(attributes))
