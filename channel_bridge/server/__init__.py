"""MCP tool surface for the Discord channel."""
