"""MCP tool for sending Discord messages."""

from channel_bridge.server.mcp_server import mcp
from channel_bridge.server.state import get_state


@mcp.tool()
async def discord_send_message(chat_id: str, text: str) -> dict:
    """Send a text message to a Discord channel or DM.

    Args:
        chat_id: Discord channel id, as given in the chat_id context tag.
        text: Message text. Long text is split into 2000-character messages.
    """
    handler = get_state().handler
    if handler is None:
        return {"success": False, "error": "Discord handler is not running."}
    if not text.strip():
        return {"success": False, "error": "text is empty."}
    try:
        chunks = await handler.send_text(chat_id, text)
    except Exception as e:
        return {"success": False, "error": str(e)}
    return {"success": True, "chunks": chunks}
