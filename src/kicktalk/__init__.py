"""
KickTalk: telemetry core for the KickTalk chat client

Usage:
    from kicktalk.telemetry import init_telemetry, metrics, shutdown_telemetry, tracing

    init_telemetry()
    metrics.record_message_sent("chatroom-1", "regular", "streamer")
    emotes = await tracing.trace_emote_load("7tv", "emote-1", load_emote)
    await shutdown_telemetry()

If the OpenTelemetry pipeline cannot be started, every call above still
works as a no-op.
"""

__version__ = "1.1.0"

__all__ = ["__version__"]
