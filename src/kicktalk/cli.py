"""
KickTalk Telemetry CLI

Commands:
    kicktalk-telemetry status   Show telemetry configuration and dependencies
    kicktalk-telemetry check    Start the pipeline and emit a test span

Usage:
    OTEL_EXPORTER_OTLP_ENDPOINT=http://localhost:4318 kicktalk-telemetry check
"""

from __future__ import annotations

import asyncio
import importlib
import sys

import click

from kicktalk import __version__
from kicktalk.telemetry.config import TelemetryConfig


@click.group()
@click.version_option(version=__version__, prog_name="kicktalk-telemetry")
def cli() -> None:
    """KickTalk telemetry tools."""
    pass


@cli.command()
def status() -> None:
    """Show telemetry configuration resolved from the environment."""
    _print_header("KickTalk Telemetry Status")
    click.echo(f"  Version: {__version__}")
    click.echo(f"  Python: {sys.version.split()[0]}")

    config = TelemetryConfig.from_env()
    click.echo("\n  Configuration:")
    click.echo(f"    {'enabled':24s} {config.enabled}")
    click.echo(f"    {'endpoint':24s} {config.endpoint or 'NOT SET'}")
    click.echo(f"    {'service':24s} {config.service_name} {config.service_version}")
    click.echo(f"    {'environment':24s} {config.deployment_environment}")
    click.echo(f"    {'sample ratio':24s} {config.sample_ratio}")
    # Header values are credentials; only their names are shown
    headers = ", ".join(sorted(config.headers)) or "none"
    click.echo(f"    {'headers':24s} {headers}")

    deps = {
        "opentelemetry.sdk": "OpenTelemetry SDK",
        "opentelemetry.exporter.otlp.proto.http": "OTLP/HTTP exporter",
    }
    click.echo("\n  Dependencies:")
    for module, label in deps.items():
        try:
            importlib.import_module(module)
            click.echo(f"    {label:24s} installed")
        except ImportError:
            click.echo(f"    {label:24s} NOT INSTALLED")


@cli.command()
def check() -> None:
    """Initialize telemetry, emit one test span, then shut down."""
    _print_header("KickTalk Telemetry Check")
    ok = asyncio.run(_check())
    if not ok:
        click.echo("  Telemetry is DEGRADED: all calls are no-ops.")
        sys.exit(1)
    click.echo("  Telemetry is ACTIVE: startup event and test span exported.")


async def _check() -> bool:
    from kicktalk.telemetry import init_telemetry, is_initialized, shutdown_telemetry, tracing

    init_telemetry()
    active = is_initialized()
    tracing.start_active_span("telemetry_check", lambda span: span.set_attribute("check.cli", True))
    await shutdown_telemetry()
    return active


def _print_header(title: str) -> None:
    click.echo(f"\n{'=' * 50}")
    click.echo(f"  {title}")
    click.echo(f"{'=' * 50}\n")


if __name__ == "__main__":
    cli()
