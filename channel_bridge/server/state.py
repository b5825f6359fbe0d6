"""Shared state for the MCP tools — the running Discord handler."""

from __future__ import annotations

from typing import Optional

from channel_bridge.adapters.discord.handler import DiscordChannelHandler


class ChannelState:
    """Holds the handler the tools act on; set once at process start."""

    def __init__(self):
        self.handler: Optional[DiscordChannelHandler] = None


# Module-level singleton
_state: Optional[ChannelState] = None


def get_state() -> ChannelState:
    global _state
    if _state is None:
        _state = ChannelState()
    return _state
