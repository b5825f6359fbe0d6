"""Exception types raised by the gateway client and the channel bridge."""

from typing import List, Optional


class GatewayError(Exception):
    """Base class for everything that goes wrong talking to the gateway."""


class TransportError(GatewayError):
    """The socket to the gateway could not be opened."""


class NotConnectedError(GatewayError):
    """A remote call was attempted while no socket was open."""

    def __init__(self, message: str = "gateway websocket not connected"):
        super().__init__(message)


class ConnectionLostError(GatewayError):
    """The socket carrying a pending request closed before its response arrived."""

    def __init__(self, message: str = "gateway connection lost"):
        super().__init__(message)


class ClientClosedError(GatewayError):
    """The client was closed explicitly and will not reconnect."""

    def __init__(self, message: str = "gateway client closed"):
        super().__init__(message)


class RemoteCallError(GatewayError):
    """The gateway answered a request with ok=false."""

    def __init__(self, method: str, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.method = method
        self.code = code
        self.message = message


class RegistrationError(RemoteCallError):
    """The gateway rejected the connect handshake."""


class ConfigError(Exception):
    """Required configuration is missing."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__("Missing required configuration: " + ", ".join(self.missing))


class BridgeStartupError(Exception):
    """A fatal failure while starting the channel bridge."""
