"""Port interfaces (Hexagonal Architecture)."""

from channel_bridge.ports.inbound import Attachment, BridgeMessage
from channel_bridge.ports.outbound import BridgeHandler, DataProvider, MessageCallback, ToolServer

__all__ = [
    "Attachment",
    "BridgeMessage",
    "BridgeHandler",
    "DataProvider",
    "MessageCallback",
    "ToolServer",
]
