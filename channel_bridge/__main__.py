"""Discord channel entry point: ``python -m channel_bridge``."""

import os
import sys

from channel_bridge.adapters.discord.handler import DiscordChannelHandler
from channel_bridge.bridge import run_channel


def discord_channel_prompt() -> str:
    return (
        "Messages come from Discord. DMs are private chats; server channels are groups. "
        "Messages that @mention you carry a mentions_self tag. "
        "Reply with the discord_send_message tool using the chat_id tag."
    )


def main():
    token = os.getenv("DISCORD_BOT_TOKEN", "")
    if not token:
        print("Missing DISCORD_BOT_TOKEN.", file=sys.stderr)
        sys.exit(1)

    from channel_bridge.server.mcp_server import mcp
    from channel_bridge.server.state import get_state

    handler = DiscordChannelHandler(token)
    get_state().handler = handler
    run_channel(handler, tool_server=mcp, build_channel_prompt=discord_channel_prompt)


if __name__ == "__main__":
    main()
