"""Discord channel MCP stdio server — FastMCP tool surface.

Outbound actions (AI -> Discord) and channel data access are exposed as MCP
tools. The bridge starts this server before connecting to the gateway.
"""

from mcp.server.fastmcp import FastMCP

mcp = FastMCP(
    "discord-channel",
    instructions="Discord channel - send messages to Discord chats and read/write channel data.",
)

# Import tool modules to register them with mcp
from channel_bridge.server.tools import discord_tools  # noqa: F401, E402
from channel_bridge.server.tools import data_tools  # noqa: F401, E402
