"""Shared test fixtures for the KickTalk telemetry test suite."""

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from kicktalk.telemetry.bootstrap import OTelBootstrap
from kicktalk.telemetry.config import TelemetryConfig
from kicktalk.telemetry.facade import TelemetryFacade
from kicktalk.telemetry.instruments import MetricsHelper
from kicktalk.telemetry.spans import NoOpTracing, TracingHelper


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def metric_reader():
    return InMemoryMetricReader()


@pytest.fixture
def bootstrap(span_exporter, metric_reader):
    boot = OTelBootstrap(TelemetryConfig(), span_exporter=span_exporter, metric_reader=metric_reader)
    assert boot.init() is True
    yield boot
    boot.discard()


@pytest.fixture
def tracing(bootstrap):
    return TracingHelper(bootstrap.tracer)


@pytest.fixture
def noop_tracing():
    return NoOpTracing()


@pytest.fixture
def metrics(bootstrap, tracing):
    return MetricsHelper(bootstrap.meter, tracing)


@pytest.fixture
def in_memory_bootstrap_factory(span_exporter, metric_reader):
    created = []

    def factory(config):
        # Readers and exporters are single-use; later bootstraps get fresh ones
        if created:
            boot = OTelBootstrap(config, span_exporter=InMemorySpanExporter(),
                                 metric_reader=InMemoryMetricReader())
        else:
            boot = OTelBootstrap(config, span_exporter=span_exporter, metric_reader=metric_reader)
        created.append(boot)
        return boot

    factory.created = created
    yield factory
    for boot in created:
        boot.discard()


@pytest.fixture
def facade(in_memory_bootstrap_factory):
    return TelemetryFacade(
        TelemetryConfig(),
        bootstrap_factory=in_memory_bootstrap_factory,
        version="1.1.0-test",
    )


def metric_points(reader, name):
    """Collect data points for one instrument from an in-memory reader."""
    data = reader.get_metrics_data()
    points = []
    if data is None:
        return points
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == name:
                    points.extend(metric.data.data_points)
    return points


def exception_events(span):
    return [event for event in span.events if event.name == "exception"]
