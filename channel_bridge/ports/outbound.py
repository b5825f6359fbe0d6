"""Outbound ports — interfaces between the bridge and its collaborators."""

from typing import Awaitable, Callable, Dict, Optional, Protocol, Union, runtime_checkable

from channel_bridge.ports.inbound import BridgeMessage

MessageCallback = Callable[[BridgeMessage], Union[None, Awaitable[None]]]


@runtime_checkable
class DataProvider(Protocol):
    """Channel key/value persistence, backed by the gateway."""

    async def get_data(self, key: str) -> Optional[str]: ...
    async def get_data_by_prefix(self, prefix: str) -> Dict[str, str]: ...
    async def set_data(self, key: str, value: str) -> None: ...
    async def set_data_batch(self, items: Dict[str, str]) -> None: ...
    async def delete_data(self, key: str) -> None: ...
    async def delete_data_by_prefix(self, prefix: str) -> None: ...


@runtime_checkable
class BridgeHandler(Protocol):
    """Interface every platform handler implements.

    ``stop`` and ``set_data_provider`` are optional; the bridge looks them
    up with getattr.
    """

    def set_on_message(self, callback: MessageCallback) -> None: ...

    def start(self) -> Union[None, Awaitable[None]]: ...


@runtime_checkable
class ToolServer(Protocol):
    """Local request/response tool surface (an MCP stdio server)."""

    async def run_stdio_async(self) -> None: ...
