from channel_bridge.adapters.gateway.client import DEFAULT_CHAT_ID, PendingRequest, SignalClient

__all__ = ["DEFAULT_CHAT_ID", "PendingRequest", "SignalClient"]
