"""Adapters: gateway websocket client and platform handlers."""
