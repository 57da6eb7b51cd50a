"""OpenTelemetry metrics for KickTalk.

A fixed catalog of counters, histograms and gauges for chat client events.
BaseMetrics is the recording surface with no-op bodies (the degraded
implementation); MetricsHelper records against real instruments.
No recording method ever raises.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from kicktalk.exceptions import ComponentLoadError, TelemetryInternalError
from kicktalk.logging import get_logger
from kicktalk.telemetry.errors import ERROR_CATEGORIES, classify_error, error_code, error_name
from kicktalk.telemetry.spans import BaseTracing, clean_attributes, contained

if TYPE_CHECKING:
    from opentelemetry.metrics import Meter

logger = get_logger("kicktalk.telemetry.instruments")

F = TypeVar("F", bound=Callable[..., Any])


class InstrumentKind(str, Enum):
    """Kinds of metric instruments in the catalog."""

    COUNTER = "COUNTER"
    UP_DOWN_COUNTER = "UP_DOWN_COUNTER"
    HISTOGRAM = "HISTOGRAM"
    GAUGE = "GAUGE"


@dataclass(frozen=True)
class InstrumentDefinition:
    name: str
    kind: InstrumentKind
    description: str
    unit: str = "1"


APPLICATION_START = "application.start"
APPLICATION_STARTUP_DURATION = "application.startup.duration"
WS_CONNECTIONS = "ws.connections"
WS_RECONNECTIONS = "ws.reconnections"
WS_CONNECTION_ERRORS = "ws.connection_errors"
WS_CONNECTION_DURATION = "ws.connection.duration"
MESSAGES_RECEIVED = "messages.received"
MESSAGES_SENT = "messages.sent"
MESSAGE_SEND_DURATION = "message.send.duration"
API_REQUESTS = "api.requests"
API_REQUEST_DURATION = "api.request.duration"
CHATROOM_SWITCH_DURATION = "chatroom.switch.duration"
ERRORS = "errors"
RENDERER_MEMORY = "renderer.memory"
DOM_NODE_COUNT = "dom.node_count"
WINDOWS_OPEN = "windows.open"
SEVENTV_CONNECTIONS = "seventv.connections"
SEVENTV_EMOTE_UPDATES = "seventv.emote_updates"
SEVENTV_EMOTE_UPDATE_DURATION = "seventv.emote_update.duration"

CATALOG: tuple[InstrumentDefinition, ...] = (
    InstrumentDefinition(APPLICATION_START, InstrumentKind.COUNTER, "Application starts"),
    InstrumentDefinition(APPLICATION_STARTUP_DURATION, InstrumentKind.HISTOGRAM, "Time from launch to ready", "s"),
    InstrumentDefinition(WS_CONNECTIONS, InstrumentKind.UP_DOWN_COUNTER, "Open chat websocket connections"),
    InstrumentDefinition(WS_RECONNECTIONS, InstrumentKind.COUNTER, "Websocket reconnection attempts"),
    InstrumentDefinition(WS_CONNECTION_ERRORS, InstrumentKind.COUNTER, "Websocket connection errors"),
    InstrumentDefinition(WS_CONNECTION_DURATION, InstrumentKind.HISTOGRAM, "Time to establish a websocket", "s"),
    InstrumentDefinition(MESSAGES_RECEIVED, InstrumentKind.COUNTER, "Chat messages received"),
    InstrumentDefinition(MESSAGES_SENT, InstrumentKind.COUNTER, "Chat messages sent"),
    InstrumentDefinition(MESSAGE_SEND_DURATION, InstrumentKind.HISTOGRAM, "Chat message send latency", "s"),
    InstrumentDefinition(API_REQUESTS, InstrumentKind.COUNTER, "Kick API requests"),
    InstrumentDefinition(API_REQUEST_DURATION, InstrumentKind.HISTOGRAM, "Kick API request latency", "s"),
    InstrumentDefinition(CHATROOM_SWITCH_DURATION, InstrumentKind.HISTOGRAM, "Time to switch chatrooms", "s"),
    InstrumentDefinition(ERRORS, InstrumentKind.COUNTER, "Recorded application errors"),
    InstrumentDefinition(RENDERER_MEMORY, InstrumentKind.GAUGE, "Renderer JS heap usage", "By"),
    InstrumentDefinition(DOM_NODE_COUNT, InstrumentKind.GAUGE, "DOM node count"),
    InstrumentDefinition(WINDOWS_OPEN, InstrumentKind.UP_DOWN_COUNTER, "Open windows"),
    InstrumentDefinition(SEVENTV_CONNECTIONS, InstrumentKind.GAUGE, "7TV websocket connections"),
    InstrumentDefinition(SEVENTV_EMOTE_UPDATES, InstrumentKind.COUNTER, "7TV emote set updates"),
    InstrumentDefinition(SEVENTV_EMOTE_UPDATE_DURATION, InstrumentKind.HISTOGRAM, "7TV emote update processing time", "s"),
)

CATALOG_BY_NAME = {definition.name: definition for definition in CATALOG}


def _contained(method: F) -> F:
    """Log and drop any exception raised while recording."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with contained(method.__name__, log=logger, level=logging.WARNING, instrument=method.__name__):
            return method(self, *args, **kwargs)
        return None

    return wrapper  # type: ignore[return-value]


class BaseMetrics:
    """The metrics recording surface. Every method here is a no-op."""

    def record(self, name: str, value: float = 1, attributes: Mapping[str, Any] | None = None) -> None:
        """Record a value against a catalog instrument by name."""

    def record_application_start(self, version: str) -> None:
        pass

    def record_startup_duration(self, seconds: float) -> None:
        pass

    def increment_websocket_connections(
        self, chatroom_id: str, streamer_id: str, streamer_name: str | None = None
    ) -> None:
        pass

    def decrement_websocket_connections(
        self, chatroom_id: str, streamer_id: str, streamer_name: str | None = None
    ) -> None:
        pass

    def record_reconnection(self, chatroom_id: str, reason: str) -> None:
        pass

    def record_connection_error(self, error_type: str, chatroom_id: str | None = None) -> None:
        pass

    def record_websocket_connection_duration(self, seconds: float, chatroom_id: str, success: bool = True) -> None:
        pass

    def record_message_received(
        self, chatroom_id: str, message_type: str, sender_id: str, streamer_name: str | None = None
    ) -> None:
        pass

    def record_message_sent(
        self, chatroom_id: str, message_type: str = "regular", streamer_name: str | None = None
    ) -> None:
        pass

    def record_message_send_duration(self, seconds: float, chatroom_id: str, success: bool = True) -> None:
        pass

    def record_api_request(self, endpoint: str, method: str, status_code: int, seconds: float) -> None:
        pass

    def record_chatroom_switch(self, from_chatroom_id: str | None, to_chatroom_id: str, seconds: float) -> None:
        pass

    def record_error(self, error: BaseException | str, context: Mapping[str, Any] | None = None) -> None:
        pass

    def record_renderer_memory(self, memory: Mapping[str, Any]) -> None:
        pass

    def record_dom_node_count(self, count: int) -> None:
        pass

    def increment_open_windows(self) -> None:
        pass

    def decrement_open_windows(self) -> None:
        pass

    def record_seventv_connection_health(self, chatroom_count: int, connection_count: int, state: str) -> None:
        pass

    def record_seventv_emote_update(
        self, chatroom_id: str, pulled: int = 0, pushed: int = 0, updated: int = 0, seconds: float | None = None
    ) -> None:
        pass

    @property
    def websocket_connections(self) -> int:
        return 0

    @property
    def open_windows(self) -> int:
        return 0

    # Timers work in every mode; callers compute durations with them.

    @staticmethod
    def start_timer() -> int:
        """Return a monotonic start timestamp in nanoseconds."""
        return time.monotonic_ns()

    @staticmethod
    def end_timer(start: int) -> float:
        """Return seconds elapsed since start_timer()."""
        return (time.monotonic_ns() - start) / 1_000_000_000


class NoOpMetrics(BaseMetrics):
    """Metrics used in degraded mode."""


class MetricsHelper(BaseMetrics):
    """Records the catalog against an OpenTelemetry meter.

    Args:
        meter: Meter from the running pipeline.
        tracing: Tracing component; record_application_start also emits an
            application.start event through it.
    """

    def __init__(self, meter: Meter | None, tracing: BaseTracing):
        if meter is None:
            raise ComponentLoadError("metrics", RuntimeError("no meter available"))

        from opentelemetry.metrics import Observation

        self._observation = Observation
        self._tracing = tracing
        self._instruments: dict[str, Any] = {}
        self._gauge_values: dict[str, dict[tuple, tuple[float, dict[str, Any]]]] = {
            definition.name: {} for definition in CATALOG if definition.kind is InstrumentKind.GAUGE
        }
        self._ws_connections: dict[str, int] = {}
        self._open_windows = 0

        for definition in CATALOG:
            self._instruments[definition.name] = self._create(meter, definition)

    def _create(self, meter: Meter, definition: InstrumentDefinition) -> Any:
        if definition.kind is InstrumentKind.COUNTER:
            return meter.create_counter(definition.name, unit=definition.unit, description=definition.description)
        if definition.kind is InstrumentKind.UP_DOWN_COUNTER:
            return meter.create_up_down_counter(definition.name, unit=definition.unit, description=definition.description)
        if definition.kind is InstrumentKind.HISTOGRAM:
            return meter.create_histogram(definition.name, unit=definition.unit, description=definition.description)
        return meter.create_observable_gauge(
            definition.name,
            callbacks=[self._gauge_callback(definition.name)],
            unit=definition.unit,
            description=definition.description,
        )

    def _gauge_callback(self, name: str):
        def observe(options):
            # Copied: the periodic reader collects from its own thread
            values = list(self._gauge_values[name].values())
            return [self._observation(value, attrs) for value, attrs in values]

        return observe

    def _set_gauge(self, name: str, value: float, attributes: Mapping[str, Any] | None = None) -> None:
        attrs = clean_attributes(attributes)
        self._gauge_values[name][tuple(sorted(attrs.items()))] = (value, attrs)

    @_contained
    def record(self, name: str, value: float = 1, attributes: Mapping[str, Any] | None = None) -> None:
        definition = CATALOG_BY_NAME.get(name)
        if definition is None:
            raise TelemetryInternalError("record", f"unknown instrument '{name}'")
        if definition.kind is InstrumentKind.UP_DOWN_COUNTER:
            # Open counts are only moved by the increment/decrement methods
            raise TelemetryInternalError(
                "record", f"'{name}' is an up-down counter; use its increment/decrement methods"
            )
        attrs = clean_attributes(attributes)
        if definition.kind is InstrumentKind.GAUGE:
            self._set_gauge(name, value, attrs)
        elif definition.kind is InstrumentKind.HISTOGRAM:
            self._instruments[name].record(value, attrs)
        else:
            self._instruments[name].add(value, attrs)

    @_contained
    def record_application_start(self, version: str) -> None:
        self._instruments[APPLICATION_START].add(1, {"version": version})
        self._tracing.add_event("application.start", {
            "app.version": version,
            "timestamp": int(time.time() * 1000),
        })

    @_contained
    def record_startup_duration(self, seconds: float) -> None:
        self._instruments[APPLICATION_STARTUP_DURATION].record(seconds)

    @_contained
    def increment_websocket_connections(
        self, chatroom_id: str, streamer_id: str, streamer_name: str | None = None
    ) -> None:
        self._ws_connections[chatroom_id] = self._ws_connections.get(chatroom_id, 0) + 1
        self._instruments[WS_CONNECTIONS].add(1, clean_attributes({
            "chatroom_id": chatroom_id,
            "streamer_id": streamer_id,
        }))
        logger.debug("WebSocket INCREMENT for %s (%s)", streamer_name or "unknown", chatroom_id)

    @_contained
    def decrement_websocket_connections(
        self, chatroom_id: str, streamer_id: str, streamer_name: str | None = None
    ) -> None:
        current = self._ws_connections.get(chatroom_id, 0)
        if current <= 0:
            logger.debug("WebSocket DECREMENT ignored for %s (%s): no open connection",
                         streamer_name or "unknown", chatroom_id)
            return
        if current == 1:
            del self._ws_connections[chatroom_id]
        else:
            self._ws_connections[chatroom_id] = current - 1
        self._instruments[WS_CONNECTIONS].add(-1, clean_attributes({
            "chatroom_id": chatroom_id,
            "streamer_id": streamer_id,
        }))
        logger.debug("WebSocket DECREMENT for %s (%s)", streamer_name or "unknown", chatroom_id)

    @_contained
    def record_reconnection(self, chatroom_id: str, reason: str) -> None:
        self._instruments[WS_RECONNECTIONS].add(1, {"chatroom_id": chatroom_id, "reason": reason})

    @_contained
    def record_connection_error(self, error_type: str, chatroom_id: str | None = None) -> None:
        self._instruments[WS_CONNECTION_ERRORS].add(1, clean_attributes({
            "error_type": error_type,
            "chatroom_id": chatroom_id,
        }))

    @_contained
    def record_websocket_connection_duration(self, seconds: float, chatroom_id: str, success: bool = True) -> None:
        self._instruments[WS_CONNECTION_DURATION].record(seconds, {
            "chatroom_id": chatroom_id,
            "success": str(success).lower(),
        })

    @_contained
    def record_message_received(
        self, chatroom_id: str, message_type: str, sender_id: str, streamer_name: str | None = None
    ) -> None:
        self._instruments[MESSAGES_RECEIVED].add(1, clean_attributes({
            "chatroom_id": chatroom_id,
            "message_type": message_type,
            "sender_id": sender_id,
            "streamer_name": streamer_name,
        }))

    @_contained
    def record_message_sent(
        self, chatroom_id: str, message_type: str = "regular", streamer_name: str | None = None
    ) -> None:
        self._instruments[MESSAGES_SENT].add(1, clean_attributes({
            "chatroom_id": chatroom_id,
            "message_type": message_type,
            "streamer_name": streamer_name,
        }))

    @_contained
    def record_message_send_duration(self, seconds: float, chatroom_id: str, success: bool = True) -> None:
        self._instruments[MESSAGE_SEND_DURATION].record(seconds, {
            "chatroom_id": chatroom_id,
            "success": str(success).lower(),
        })

    @_contained
    def record_api_request(self, endpoint: str, method: str, status_code: int, seconds: float) -> None:
        attrs = {"endpoint": endpoint, "method": method, "status_code": str(status_code)}
        self._instruments[API_REQUESTS].add(1, attrs)
        self._instruments[API_REQUEST_DURATION].record(seconds, attrs)

    @_contained
    def record_chatroom_switch(self, from_chatroom_id: str | None, to_chatroom_id: str, seconds: float) -> None:
        self._instruments[CHATROOM_SWITCH_DURATION].record(seconds, clean_attributes({
            "from_chatroom_id": from_chatroom_id,
            "to_chatroom_id": to_chatroom_id,
        }))

    @_contained
    def record_error(self, error: BaseException | str, context: Mapping[str, Any] | None = None) -> None:
        category = ERROR_CATEGORIES[classify_error(error, context)]
        attrs = clean_attributes(context)
        attrs.update({
            "error_category": category.name,
            "severity": category.severity,
            "error_type": error_name(error),
            "error_code": error_code(error),
        })
        self._instruments[ERRORS].add(1, attrs)

    @_contained
    def record_renderer_memory(self, memory: Mapping[str, Any]) -> None:
        used = memory.get("jsHeapUsedSize", memory.get("js_heap_used_size"))
        total = memory.get("jsHeapTotalSize", memory.get("js_heap_total_size"))
        if used is not None:
            self._set_gauge(RENDERER_MEMORY, used, {"type": "heap_used"})
        if total is not None:
            self._set_gauge(RENDERER_MEMORY, total, {"type": "heap_total"})

    @_contained
    def record_dom_node_count(self, count: int) -> None:
        self._set_gauge(DOM_NODE_COUNT, count)

    @_contained
    def increment_open_windows(self) -> None:
        self._open_windows += 1
        self._instruments[WINDOWS_OPEN].add(1)

    @_contained
    def decrement_open_windows(self) -> None:
        if self._open_windows <= 0:
            return
        self._open_windows -= 1
        self._instruments[WINDOWS_OPEN].add(-1)

    @_contained
    def record_seventv_connection_health(self, chatroom_count: int, connection_count: int, state: str) -> None:
        self._set_gauge(SEVENTV_CONNECTIONS, connection_count)
        logger.debug("7TV Connection Health: %s connections, %s chatrooms, state: %s",
                     connection_count, chatroom_count, state)

    @_contained
    def record_seventv_emote_update(
        self, chatroom_id: str, pulled: int = 0, pushed: int = 0, updated: int = 0, seconds: float | None = None
    ) -> None:
        self._instruments[SEVENTV_EMOTE_UPDATES].add(1, {
            "chatroom_id": chatroom_id,
            "has_changes": str(bool(pulled or pushed or updated)).lower(),
        })
        if seconds is not None:
            self._instruments[SEVENTV_EMOTE_UPDATE_DURATION].record(seconds, {"chatroom_id": chatroom_id})

    @property
    def websocket_connections(self) -> int:
        """Open websocket connections tracked across all chatrooms."""
        return sum(self._ws_connections.values())

    @property
    def open_windows(self) -> int:
        """Open windows tracked by increment/decrement calls."""
        return self._open_windows
