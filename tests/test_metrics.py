"""Tests for KickTalk metrics: the instrument catalog and its no-op fallback."""

from unittest.mock import MagicMock, patch

import pytest

from conftest import metric_points
from kicktalk.exceptions import ComponentLoadError, TelemetryInternalError
from kicktalk.telemetry.instruments import (
    API_REQUEST_DURATION,
    API_REQUESTS,
    APPLICATION_START,
    CATALOG,
    CATALOG_BY_NAME,
    DOM_NODE_COUNT,
    ERRORS,
    MESSAGE_SEND_DURATION,
    MESSAGES_RECEIVED,
    MESSAGES_SENT,
    RENDERER_MEMORY,
    SEVENTV_CONNECTIONS,
    WINDOWS_OPEN,
    WS_CONNECTION_ERRORS,
    WS_CONNECTIONS,
    WS_RECONNECTIONS,
    BaseMetrics,
    InstrumentKind,
    MetricsHelper,
    NoOpMetrics,
)
from kicktalk.telemetry.spans import BaseTracing


def _sample_calls():
    """One representative call for every recording method."""
    return [
        ("record", ("messages.sent", 1, {"chatroom_id": "1"})),
        ("record_application_start", ("1.1.0",)),
        ("record_startup_duration", (2.5,)),
        ("increment_websocket_connections", ("room1", "streamer1", "Streamer")),
        ("decrement_websocket_connections", ("room1", "streamer1", "Streamer")),
        ("record_reconnection", ("room1", "connection_lost")),
        ("record_connection_error", ("timeout", "room1")),
        ("record_websocket_connection_duration", (0.3, "room1", True)),
        ("record_message_received", ("room1", "emote", "user1", "Streamer")),
        ("record_message_sent", ("room1", "regular", "Streamer")),
        ("record_message_send_duration", (0.5, "room1", True)),
        ("record_api_request", ("/api/users", "GET", 200, 0.15)),
        ("record_chatroom_switch", ("room1", "room2", 0.2)),
        ("record_error", (ValueError("bad"), {"component": "chat"})),
        ("record_renderer_memory", ({"jsHeapUsedSize": 50, "jsHeapTotalSize": 80},)),
        ("record_dom_node_count", (1500,)),
        ("increment_open_windows", ()),
        ("decrement_open_windows", ()),
        ("record_seventv_connection_health", (5, 3, "connected")),
        ("record_seventv_emote_update", ("room1", 1, 0, 2, 0.05)),
    ]


class TestCatalog:
    def test_names_are_unique(self):
        assert len(CATALOG_BY_NAME) == len(CATALOG)

    @pytest.mark.parametrize("name,kind", [
        ("application.start", InstrumentKind.COUNTER),
        ("ws.connections", InstrumentKind.UP_DOWN_COUNTER),
        ("ws.reconnections", InstrumentKind.COUNTER),
        ("messages.received", InstrumentKind.COUNTER),
        ("messages.sent", InstrumentKind.COUNTER),
        ("message.send.duration", InstrumentKind.HISTOGRAM),
        ("errors", InstrumentKind.COUNTER),
        ("renderer.memory", InstrumentKind.GAUGE),
        ("dom.node_count", InstrumentKind.GAUGE),
        ("windows.open", InstrumentKind.UP_DOWN_COUNTER),
    ])
    def test_stable_instrument_names(self, name, kind):
        assert CATALOG_BY_NAME[name].kind is kind


class TestConnectionMetrics:
    def test_increment_and_decrement(self, metrics, metric_reader):
        metrics.increment_websocket_connections("room1", "streamer1", "Streamer")
        metrics.increment_websocket_connections("room2", "streamer2")
        metrics.decrement_websocket_connections("room1", "streamer1", "Streamer")

        assert metrics.websocket_connections == 1
        total = sum(p.value for p in metric_points(metric_reader, WS_CONNECTIONS))
        assert total == 1

    def test_decrement_never_goes_negative(self, metrics, metric_reader):
        metrics.decrement_websocket_connections("room1", "streamer1")

        assert metrics.websocket_connections == 0
        assert sum(p.value for p in metric_points(metric_reader, WS_CONNECTIONS)) == 0

    def test_reconnection(self, metrics, metric_reader):
        metrics.record_reconnection("room1", "connection_lost")

        points = metric_points(metric_reader, WS_RECONNECTIONS)
        assert len(points) == 1
        assert points[0].value == 1
        assert dict(points[0].attributes) == {"chatroom_id": "room1", "reason": "connection_lost"}

    def test_connection_error_without_chatroom(self, metrics, metric_reader):
        metrics.record_connection_error("network_failure")

        points = metric_points(metric_reader, WS_CONNECTION_ERRORS)
        assert dict(points[0].attributes) == {"error_type": "network_failure"}


class TestMessageMetrics:
    def test_messages_sent(self, metrics, metric_reader):
        metrics.record_message_sent("room1", "regular", "Streamer")

        points = metric_points(metric_reader, MESSAGES_SENT)
        assert points[0].value == 1
        assert dict(points[0].attributes) == {
            "chatroom_id": "room1",
            "message_type": "regular",
            "streamer_name": "Streamer",
        }

    def test_messages_received(self, metrics, metric_reader):
        metrics.record_message_received("room1", "emote", "user1", "Streamer")
        metrics.record_message_received("room1", "emote", "user1", "Streamer")

        points = metric_points(metric_reader, MESSAGES_RECEIVED)
        assert points[0].value == 2
        assert points[0].attributes["sender_id"] == "user1"

    def test_send_duration(self, metrics, metric_reader):
        metrics.record_message_send_duration(0.5, "room1", False)

        points = metric_points(metric_reader, MESSAGE_SEND_DURATION)
        assert points[0].count == 1
        assert points[0].sum == pytest.approx(0.5)
        assert dict(points[0].attributes) == {"chatroom_id": "room1", "success": "false"}


class TestApiAndErrorMetrics:
    def test_api_request(self, metrics, metric_reader):
        metrics.record_api_request("/api/users", "GET", 200, 0.15)

        expected = {"endpoint": "/api/users", "method": "GET", "status_code": "200"}
        counter = metric_points(metric_reader, API_REQUESTS)
        histogram = metric_points(metric_reader, API_REQUEST_DURATION)
        assert dict(counter[0].attributes) == expected
        assert dict(histogram[0].attributes) == expected
        assert histogram[0].sum == pytest.approx(0.15)

    def test_record_error_uses_exception_type(self, metrics, metric_reader):
        metrics.record_error(ValueError("bad"), {"component": "chat"})

        points = metric_points(metric_reader, ERRORS)
        assert dict(points[0].attributes) == {
            "component": "chat",
            "error_category": "NETWORK",
            "severity": "high",
            "error_type": "ValueError",
            "error_code": "unknown",
        }

    def test_record_error_categorises_from_context(self, metrics, metric_reader):
        metrics.record_error(RuntimeError("handshake failed"), {"component": "websocket", "chatroom_id": "room1"})

        attrs = metric_points(metric_reader, ERRORS)[0].attributes
        assert attrs["error_category"] == "WEBSOCKET"
        assert attrs["severity"] == "high"
        assert attrs["chatroom_id"] == "room1"

    def test_record_error_auth_status(self, metrics, metric_reader):
        metrics.record_error({"status_code": 401, "message": "Unauthorized"}, {"operation": "api_request"})

        attrs = metric_points(metric_reader, ERRORS)[0].attributes
        assert attrs["error_category"] == "AUTH"
        assert attrs["severity"] == "critical"
        assert attrs["error_code"] == "401"

    def test_record_error_with_string(self, metrics, metric_reader):
        metrics.record_error("websocket_closed")
        assert metric_points(metric_reader, ERRORS)[0].attributes["error_type"] == "websocket_closed"


class TestGauges:
    def test_dom_node_count(self, metrics, metric_reader):
        metrics.record_dom_node_count(1500)
        metrics.record_dom_node_count(1600)

        points = metric_points(metric_reader, DOM_NODE_COUNT)
        assert [p.value for p in points] == [1600]

    def test_renderer_memory(self, metrics, metric_reader):
        metrics.record_renderer_memory({"jsHeapUsedSize": 50, "jsHeapTotalSize": 80})

        values = {p.attributes["type"]: p.value for p in metric_points(metric_reader, RENDERER_MEMORY)}
        assert values == {"heap_used": 50, "heap_total": 80}

    def test_seventv_connection_health(self, metrics, metric_reader):
        metrics.record_seventv_connection_health(5, 3, "connected")
        assert [p.value for p in metric_points(metric_reader, SEVENTV_CONNECTIONS)] == [3]

    def test_open_windows(self, metrics, metric_reader):
        metrics.increment_open_windows()
        metrics.increment_open_windows()
        metrics.decrement_open_windows()
        metrics.decrement_open_windows()
        metrics.decrement_open_windows()

        assert metrics.open_windows == 0
        assert sum(p.value for p in metric_points(metric_reader, WINDOWS_OPEN)) == 0


class TestGenericRecord:
    def test_known_counter(self, metrics, metric_reader):
        metrics.record(MESSAGES_SENT, 3, {"chatroom_id": "room1"})
        assert metric_points(metric_reader, MESSAGES_SENT)[0].value == 3

    def test_known_gauge(self, metrics, metric_reader):
        metrics.record(DOM_NODE_COUNT, 42)
        assert [p.value for p in metric_points(metric_reader, DOM_NODE_COUNT)] == [42]

    def test_unknown_instrument_is_dropped(self, metrics):
        with patch("kicktalk.telemetry.instruments.logger") as log:
            metrics.record("does.not.exist", 1)  # Should not raise

        error = log.log.call_args[0][2]
        assert isinstance(error, TelemetryInternalError)
        assert error.operation == "record"
        assert "does.not.exist" in str(error)

    @pytest.mark.parametrize("name", [WS_CONNECTIONS, WINDOWS_OPEN])
    def test_up_down_counters_are_rejected(self, metrics, metric_reader, name):
        with patch("kicktalk.telemetry.instruments.logger") as log:
            metrics.record(name, -1)

        assert isinstance(log.log.call_args[0][2], TelemetryInternalError)
        assert metrics.websocket_connections == 0
        assert metrics.open_windows == 0
        assert sum(p.value for p in metric_points(metric_reader, name)) == 0


class TestApplicationStart:
    def test_counts_and_emits_event(self, bootstrap, metric_reader):
        tracing = MagicMock(spec=BaseTracing)
        helper = MetricsHelper(bootstrap.meter, tracing)

        helper.record_application_start("1.1.0")

        assert metric_points(metric_reader, APPLICATION_START)[0].value == 1
        tracing.add_event.assert_called_once()
        name, attrs = tracing.add_event.call_args[0]
        assert name == "application.start"
        assert attrs["app.version"] == "1.1.0"

    def test_event_lands_on_active_span(self, metrics, tracing, span_exporter):
        tracing.start_active_span("startup", lambda span: metrics.record_application_start("1.1.0"))

        span = span_exporter.get_finished_spans()[0]
        events = [e for e in span.events if e.name == "application.start"]
        assert events[0].attributes["app.version"] == "1.1.0"


class TestFailureContainment:
    def test_broken_instrument_does_not_raise(self, metrics):
        metrics._instruments[MESSAGES_SENT] = MagicMock(add=MagicMock(side_effect=RuntimeError("exporter gone")))
        metrics.record_message_sent("room1")  # Should not raise

    def test_broken_tracing_does_not_break_start(self, bootstrap):
        tracing = MagicMock(spec=BaseTracing)
        tracing.add_event.side_effect = RuntimeError("tracing broken")
        helper = MetricsHelper(bootstrap.meter, tracing)
        helper.record_application_start("1.1.0")  # Should not raise

    def test_requires_meter(self, tracing):
        with pytest.raises(ComponentLoadError):
            MetricsHelper(None, tracing)


class TestTimers:
    def test_start_timer_is_int(self):
        assert isinstance(BaseMetrics.start_timer(), int)

    def test_end_timer_seconds(self):
        with patch("kicktalk.telemetry.instruments.time.monotonic_ns", return_value=1_500_000_000):
            assert NoOpMetrics.end_timer(1_000_000_000) == pytest.approx(0.5)


class TestNoOpMetrics:
    @pytest.mark.parametrize("method,args", _sample_calls())
    def test_every_method_is_silent(self, method, args):
        assert getattr(NoOpMetrics(), method)(*args) is None

    @pytest.mark.parametrize("method,args", _sample_calls())
    def test_every_real_method_is_silent(self, metrics, method, args):
        assert getattr(metrics, method)(*args) is None

    def test_same_surface_as_real_metrics(self):
        def public(cls):
            return {name for name in dir(cls) if not name.startswith("_")}

        assert public(NoOpMetrics) == public(MetricsHelper) == public(BaseMetrics)

    def test_counts_are_zero(self):
        noop = NoOpMetrics()
        noop.increment_open_windows()
        assert noop.open_windows == 0
        assert noop.websocket_connections == 0
