"""Reverse websocket client for the gateway.

One socket per client. The connect handshake registers the channel
(token, name, display name, prompt) in a single request. Requests are
multiplexed over the socket and matched to responses by correlation id.
When the socket drops, every pending request on it fails with
ConnectionLostError and a single reconnection attempt is scheduled after a
fixed delay, repeating until close().

Outbound actions (AI -> platform) go through the MCP tool surface, not here.
"""

import asyncio
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

import aiohttp

from channel_bridge.adapters.gateway.protocol import (
    FRAME_RESPONSE,
    decode_frame,
    encode_request,
    response_error,
    response_payload,
)
from channel_bridge.config import BridgeConfig
from channel_bridge.domain.context_tags import tag_value
from channel_bridge.domain.models import InboundSignal
from channel_bridge.errors import (
    ClientClosedError,
    ConnectionLostError,
    NotConnectedError,
    RegistrationError,
    RemoteCallError,
    TransportError,
)

DEFAULT_CHAT_ID = "main"
HEARTBEAT_SECONDS = 30.0


def _log(msg: str):
    print(msg, file=sys.stderr)


@dataclass
class PendingRequest:
    """One in-flight request, bound to the socket that carried it."""

    request_id: str
    method: str
    future: asyncio.Future
    ws: Any
    error_cls: Type[RemoteCallError] = RemoteCallError


class SignalClient:
    """Gateway connection: handshake, correlation, reconnection, remote calls.

    Also serves as the channel's DataProvider (channel.data.* methods).
    """

    def __init__(
        self,
        config: BridgeConfig,
        channel_prompt: str = "",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = config.ws_url
        self.token = config.token
        self.channel = config.channel_name
        self.display_name = config.display_name
        self.default_requires_response = config.default_requires_response
        self.channel_prompt = channel_prompt
        self.reconnect_delay = config.reconnect_delay
        self.reconnect_attempts = 0

        self._session = session
        self._owns_session = session is None
        self._ws = None
        self._registered = False
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, PendingRequest] = {}
        self._req_id = 0
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._ready_waiters: List[asyncio.Future] = []
        self._closed = False

    @property
    def tag(self) -> str:
        return f"[{self.channel}]"

    @property
    def is_connected(self) -> bool:
        return self._registered and self._ws is not None and not self._ws.closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ── Connection ──────────────────────────────────────────

    def _registration_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "role": "channel",
            "token": self.token,
            "channel": self.channel,
        }
        if self.display_name:
            params["displayName"] = self.display_name
        if self.default_requires_response is not None:
            params["defaultRequiresResponse"] = self.default_requires_response
        params["prompt"] = self.channel_prompt
        return params

    async def connect(self) -> None:
        """Open the socket and register the channel.

        Raises TransportError if the socket cannot be opened and
        RegistrationError if the gateway rejects the handshake. If the socket
        closes after opening but before registration completes, this waits
        for the scheduled reconnection instead of failing.
        """
        try:
            await self._open_and_register()
        except ConnectionLostError:
            if self._closed:
                raise ClientClosedError()
            _log(f"{self.tag} gateway closed during registration, waiting for reconnect")
            await self._wait_until_registered()

    async def _open_and_register(self) -> None:
        if self._closed:
            raise ClientClosedError()
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            ws = await self._session.ws_connect(self.url, heartbeat=HEARTBEAT_SECONDS)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"cannot open gateway websocket {self.url}: {e}") from e

        if self._closed:
            await ws.close()
            raise ClientClosedError()

        self._ws = ws
        self._registered = False
        self._reader_task = asyncio.create_task(self._read_loop(ws))

        try:
            await self._send_request(
                ws, "connect", self._registration_params(), error_cls=RegistrationError
            )
        except RegistrationError:
            # Detach first so the close below does not schedule a reconnect.
            self._ws = None
            await ws.close()
            raise

        self._registered = True
        self.reconnect_attempts = 0
        _log(f"{self.tag} registered with gateway {self.url}")
        for waiter in self._ready_waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._ready_waiters.clear()

    async def _wait_until_registered(self) -> None:
        if self._closed:
            raise ClientClosedError()
        if self.is_connected:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._ready_waiters.append(waiter)
        try:
            await waiter
        finally:
            if waiter in self._ready_waiters:
                self._ready_waiters.remove(waiter)

    async def _read_loop(self, ws) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    _log(f"{self.tag} gateway websocket error: {ws.exception()}")
                    break
        finally:
            self._on_socket_closed(ws)

    def _dispatch(self, raw: str) -> None:
        frame = decode_frame(raw)
        if frame is None:
            _log(f"{self.tag} ignoring malformed frame: {str(raw)[:80]}")
            return
        if frame.get("type") != FRAME_RESPONSE:
            return
        request_id = frame.get("id")
        if not isinstance(request_id, str):
            return
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        if frame.get("ok"):
            pending.future.set_result(response_payload(frame))
        else:
            pending.future.set_exception(
                response_error(pending.method, frame, error_cls=pending.error_cls)
            )

    def _on_socket_closed(self, ws) -> None:
        self._fail_pending(ws)
        if ws is not self._ws:
            return  # detached or superseded socket
        self._ws = None
        self._registered = False
        if self._closed:
            return
        _log(f"{self.tag} gateway websocket closed, reconnecting in {self.reconnect_delay}s")
        self._schedule_reconnect()

    def _fail_pending(self, ws=None) -> None:
        """Fail pending requests carried by ``ws`` (all of them if None)."""
        for request_id, pending in list(self._pending.items()):
            if ws is not None and pending.ws is not ws:
                continue
            del self._pending[request_id]
            if not pending.future.done():
                pending.future.set_exception(
                    ConnectionLostError(f"gateway connection lost before {pending.method} response")
                )

    # ── Reconnection ────────────────────────────────────────

    def _schedule_reconnect(self) -> None:
        if self._closed or self._reconnect_handle is not None:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closed:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        self.reconnect_attempts += 1
        attempt = self.reconnect_attempts
        try:
            await self._open_and_register()
        except ClientClosedError:
            return
        except Exception as e:
            _log(f"{self.tag} reconnect attempt {attempt} failed: {e}")
            self._reconnect_task = None
            self._schedule_reconnect()
            return
        self._reconnect_task = None
        _log(f"{self.tag} reconnected after {attempt} attempt(s)")

    # ── Requests ────────────────────────────────────────────

    def _next_id(self, method: str) -> str:
        self._req_id += 1
        return f"{method}-{self._req_id}"

    async def request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send one request and wait for its correlated response payload.

        There is no per-request timeout: an unanswered request waits until
        the socket closes, then fails with ConnectionLostError.
        """
        ws = self._ws
        if not self._registered or ws is None or ws.closed:
            raise NotConnectedError()
        return await self._send_request(ws, method, params)

    async def _send_request(
        self,
        ws,
        method: str,
        params: Dict[str, Any],
        error_cls: Type[RemoteCallError] = RemoteCallError,
    ) -> Dict[str, Any]:
        request_id = self._next_id(method)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(request_id, method, future, ws, error_cls)
        try:
            await ws.send_str(encode_request(request_id, method, params))
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            self._pending.pop(request_id, None)
            raise ConnectionLostError(f"failed to send {method}: {e}") from e
        try:
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def send_inbound_signal(self, signal: InboundSignal) -> Dict[str, Any]:
        """Deliver one inbound signal via channel.accept; returns the reply payload."""
        chat_id = signal.chat_id or tag_value(signal.context_tags, "chat_id") or DEFAULT_CHAT_ID
        params: Dict[str, Any] = {
            "chatId": chat_id,
            "text": signal.text or "",
            "contextTags": [t.to_dict() for t in signal.context_tags],
            "attachments": [a.to_dict() for a in signal.attachments],
        }
        if signal.requires_response is not None:
            params["requiresResponse"] = signal.requires_response
        return await self.request("channel.accept", params)

    # ── DataProvider (gateway-side key/value store) ────────

    async def get_data(self, key: str) -> Optional[str]:
        res = await self.request("channel.data.get", {"key": key})
        if not res.get("found"):
            return None
        value = res.get("value")
        return None if value is None else str(value)

    async def get_data_by_prefix(self, prefix: str) -> Dict[str, str]:
        res = await self.request("channel.data.getByPrefix", {"prefix": prefix})
        items = res.get("items") or {}
        return {str(k): str(v) for k, v in items.items()}

    async def set_data(self, key: str, value: str) -> None:
        await self.request("channel.data.set", {"key": key, "value": value})

    async def set_data_batch(self, items: Dict[str, str]) -> None:
        await self.request("channel.data.setBatch", {"items": dict(items)})

    async def delete_data(self, key: str) -> None:
        await self.request("channel.data.delete", {"key": key})

    async def delete_data_by_prefix(self, prefix: str) -> None:
        await self.request("channel.data.deleteByPrefix", {"prefix": prefix})

    # ── Shutdown ────────────────────────────────────────────

    async def close(self) -> None:
        """Stop reconnecting, close the socket and fail anything pending. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        for waiter in self._ready_waiters:
            if not waiter.done():
                waiter.set_exception(ClientClosedError())
        self._ready_waiters.clear()

        ws = self._ws
        self._ws = None
        self._registered = False
        if ws is not None and not ws.closed:
            await ws.close()
        self._fail_pending()

        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
        self._reader_task = None

        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
