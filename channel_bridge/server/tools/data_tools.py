"""MCP tools for the channel key/value store (persisted by the gateway)."""

from channel_bridge.server.mcp_server import mcp
from channel_bridge.server.state import get_state


def _provider():
    handler = get_state().handler
    return handler.data_provider if handler is not None else None


@mcp.tool()
async def channel_data_get(key: str) -> dict:
    """Read a value from the channel data store.

    Args:
        key: Key to look up.
    """
    provider = _provider()
    if provider is None:
        return {"success": False, "error": "Gateway connection not ready."}
    try:
        value = await provider.get_data(key)
    except Exception as e:
        return {"success": False, "error": str(e)}
    return {"success": True, "found": value is not None, "value": value}


@mcp.tool()
async def channel_data_set(key: str, value: str) -> dict:
    """Store a value in the channel data store.

    Args:
        key: Key to write.
        value: String value.
    """
    provider = _provider()
    if provider is None:
        return {"success": False, "error": "Gateway connection not ready."}
    try:
        await provider.set_data(key, value)
    except Exception as e:
        return {"success": False, "error": str(e)}
    return {"success": True}
