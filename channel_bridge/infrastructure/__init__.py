"""Infrastructure — process-level output routing."""

from channel_bridge.infrastructure.stdio_guard import (
    LogSink,
    PassthroughSink,
    ProtocolSplitSink,
    stdio_guard,
)

__all__ = ["LogSink", "PassthroughSink", "ProtocolSplitSink", "stdio_guard"]
