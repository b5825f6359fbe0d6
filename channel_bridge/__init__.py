"""Channel Bridge — reverse websocket bridge between chat platforms and the gateway."""

from channel_bridge.config import BridgeConfig, __version__
from channel_bridge.errors import (
    BridgeStartupError,
    ClientClosedError,
    ConfigError,
    ConnectionLostError,
    GatewayError,
    NotConnectedError,
    RegistrationError,
    RemoteCallError,
    TransportError,
)
from channel_bridge.ports.inbound import Attachment, BridgeMessage
from channel_bridge.domain.models import ContextTag, InboundSignal
from channel_bridge.adapters.gateway.client import SignalClient
from channel_bridge.bridge import ChannelBridge, default_channel_prompt, run_channel, run_tools

__all__ = [
    "__version__",
    "BridgeConfig",
    "BridgeStartupError",
    "ClientClosedError",
    "ConfigError",
    "ConnectionLostError",
    "GatewayError",
    "NotConnectedError",
    "RegistrationError",
    "RemoteCallError",
    "TransportError",
    "Attachment",
    "BridgeMessage",
    "ContextTag",
    "InboundSignal",
    "SignalClient",
    "ChannelBridge",
    "default_channel_prompt",
    "run_channel",
    "run_tools",
]
