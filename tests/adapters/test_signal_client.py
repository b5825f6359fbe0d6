"""Tests for SignalClient — handshake, correlation, reconnection, data store."""

import asyncio
import json
from types import SimpleNamespace

import aiohttp
import pytest

from channel_bridge.adapters.gateway.client import SignalClient
from channel_bridge.config import BridgeConfig
from channel_bridge.domain.models import ContextTag, InboundSignal
from channel_bridge.errors import (
    ClientClosedError,
    ConnectionLostError,
    NotConnectedError,
    RegistrationError,
    RemoteCallError,
    TransportError,
)
from channel_bridge.ports.inbound import Attachment


def _text(data):
    if not isinstance(data, str):
        data = json.dumps(data)
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data)


def ok(frame, payload=None):
    res = {"type": "res", "id": frame["id"], "ok": True}
    if payload is not None:
        res["payload"] = payload
    return res


def fail(frame, message, code="ERR"):
    return {"type": "res", "id": frame["id"], "ok": False, "error": {"code": code, "message": message}}


def accept_connect(frame):
    """Default server: accept the handshake, leave everything else unanswered."""
    if frame["method"] == "connect":
        return [ok(frame)]
    return []


class FakeWebSocket:
    """In-memory stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self, responder=accept_connect):
        self.sent = []
        self.closed = False
        self.responder = responder
        self._inbox = asyncio.Queue()

    async def send_str(self, data):
        if self.closed:
            raise ConnectionResetError("socket closed")
        frame = json.loads(data)
        self.sent.append(frame)
        if self.responder:
            for reply in self.responder(frame) or []:
                self.push(reply)

    def push(self, frame):
        self._inbox.put_nowait(_text(frame))

    def drop(self):
        """Server side closes the connection."""
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    async def close(self):
        self.drop()

    def exception(self):
        return None

    def sent_methods(self):
        return [f["method"] for f in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class FakeSession:
    """Hands out the queued sockets (or raises the queued errors) in order."""

    def __init__(self, *sockets):
        self.sockets = list(sockets)
        self.connect_calls = 0
        self.closed = False

    async def ws_connect(self, url, **kwargs):
        self.connect_calls += 1
        if not self.sockets:
            raise aiohttp.ClientConnectionError("gateway unreachable")
        item = self.sockets.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True


def make_config(**overrides):
    values = dict(
        ws_url="ws://gateway.test/ws",
        token="tok",
        channel_name="channel:test",
        display_name="Test",
        reconnect_delay=0.01,
    )
    values.update(overrides)
    return BridgeConfig(**values)


async def settle(times=5):
    for _ in range(times):
        await asyncio.sleep(0)


async def connected_client(ws=None, **config):
    ws = ws or FakeWebSocket()
    session = FakeSession(ws)
    client = SignalClient(make_config(**config), channel_prompt="be nice", session=session)
    await client.connect()
    return client, ws, session


class TestConnect:
    @pytest.mark.asyncio
    async def test_handshake_params(self):
        client, ws, _ = await connected_client(default_requires_response=False)
        frame = ws.sent[0]
        assert frame["type"] == "req"
        assert frame["method"] == "connect"
        assert frame["id"] == "connect-1"
        assert frame["params"] == {
            "role": "channel",
            "token": "tok",
            "channel": "channel:test",
            "displayName": "Test",
            "defaultRequiresResponse": False,
            "prompt": "be nice",
        }
        assert client.is_connected is True
        await client.close()

    @pytest.mark.asyncio
    async def test_optional_identity_fields_omitted(self):
        client, ws, _ = await connected_client(display_name="")
        params = ws.sent[0]["params"]
        assert "displayName" not in params
        assert "defaultRequiresResponse" not in params
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_surfaces(self):
        session = FakeSession(aiohttp.ClientConnectionError("refused"))
        client = SignalClient(make_config(), session=session)
        with pytest.raises(TransportError):
            await client.connect()
        assert client.is_connected is False
        await settle()
        # No implicit retry from a failed first connect
        assert session.connect_calls == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_registration_rejected(self):
        ws = FakeWebSocket(responder=lambda f: [fail(f, "bad token", code="AUTH")])
        client = SignalClient(make_config(), session=FakeSession(ws))
        with pytest.raises(RegistrationError) as exc_info:
            await client.connect()
        assert str(exc_info.value) == "bad token"
        assert exc_info.value.code == "AUTH"
        assert ws.closed is True
        await settle()
        # Rejected socket is detached, so its close does not schedule a reconnect
        assert client._reconnect_handle is None
        await client.close()

    @pytest.mark.asyncio
    async def test_close_during_handshake_waits_for_reconnect(self):
        first = FakeWebSocket(responder=None)
        second = FakeWebSocket()
        session = FakeSession(first, second)
        client = SignalClient(make_config(), session=session)

        task = asyncio.create_task(client.connect())
        await settle()
        assert first.sent_methods() == ["connect"]
        first.drop()

        await asyncio.wait_for(task, timeout=1)
        assert client.is_connected is True
        assert session.connect_calls == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_close_while_waiting_for_reconnect_fails_connect(self):
        first = FakeWebSocket(responder=None)
        session = FakeSession(first, FakeWebSocket())
        client = SignalClient(make_config(reconnect_delay=10), session=session)

        task = asyncio.create_task(client.connect())
        await settle()
        first.drop()
        await settle()
        await client.close()

        with pytest.raises(ClientClosedError):
            await asyncio.wait_for(task, timeout=1)
        assert session.connect_calls == 1


class TestRequest:
    @pytest.mark.asyncio
    async def test_not_connected_fails_fast(self):
        session = FakeSession()
        client = SignalClient(make_config(), session=session)
        with pytest.raises(NotConnectedError):
            await client.request("channel.data.get", {"key": "k"})
        assert session.connect_calls == 0
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_responses_routed_by_id_out_of_order(self):
        client, ws, _ = await connected_client()

        task_a = asyncio.create_task(client.request("method.a", {"n": 1}))
        task_b = asyncio.create_task(client.request("method.b", {"n": 2}))
        await settle()
        frame_a, frame_b = ws.sent[1], ws.sent[2]
        assert frame_a["id"] == "method.a-2"
        assert frame_b["id"] == "method.b-3"

        ws.push(ok(frame_b, {"who": "b"}))
        ws.push(ok(frame_a, {"who": "a"}))

        assert await task_a == {"who": "a"}
        assert await task_b == {"who": "b"}
        assert client.pending_count == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_ids_are_monotonic(self):
        def echo(frame):
            return [ok(frame)]

        client, ws, _ = await connected_client(FakeWebSocket(responder=echo))
        for _ in range(3):
            await client.request("ping", {})
        assert [f["id"] for f in ws.sent] == ["connect-1", "ping-2", "ping-3", "ping-4"]
        await client.close()

    @pytest.mark.asyncio
    async def test_unrelated_and_malformed_frames_ignored(self):
        client, ws, _ = await connected_client()
        task = asyncio.create_task(client.request("method.a", {}))
        await settle()

        ws.push({"type": "event", "event": "tick", "seq": 1})
        ws.push({"type": "res", "id": "other-99", "ok": True})
        ws._inbox.put_nowait(_text("not json"))
        ws._inbox.put_nowait(_text("[1, 2]"))
        await settle()
        assert not task.done()

        ws.push(ok(ws.sent[1], {"done": True}))
        assert await task == {"done": True}
        await client.close()

    @pytest.mark.asyncio
    async def test_remote_failure_raises_gateway_message(self):
        def reject(frame):
            if frame["method"] == "connect":
                return [ok(frame)]
            return [fail(frame, "quota exceeded", code="QUOTA")]

        client, _, _ = await connected_client(FakeWebSocket(responder=reject))
        with pytest.raises(RemoteCallError) as exc_info:
            await client.request("channel.accept", {})
        assert str(exc_info.value) == "quota exceeded"
        assert exc_info.value.code == "QUOTA"
        assert exc_info.value.method == "channel.accept"
        await client.close()

    @pytest.mark.asyncio
    async def test_remote_failure_without_message(self):
        def reject(frame):
            if frame["method"] == "connect":
                return [ok(frame)]
            return [{"type": "res", "id": frame["id"], "ok": False}]

        client, _, _ = await connected_client(FakeWebSocket(responder=reject))
        with pytest.raises(RemoteCallError, match="channel.accept failed"):
            await client.request("channel.accept", {})
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_payload_resolves_empty(self):
        client, ws, _ = await connected_client(FakeWebSocket(responder=lambda f: [ok(f)]))
        assert await client.request("anything", {}) == {}
        await client.close()


class TestConnectionLoss:
    @pytest.mark.asyncio
    async def test_pending_requests_fail_on_close(self):
        client, ws, _ = await connected_client()
        tasks = [asyncio.create_task(client.request(f"m{i}", {})) for i in range(3)]
        await settle()
        assert client.pending_count == 3

        ws.drop()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, ConnectionLostError) for r in results)
        assert client.pending_count == 0
        assert client.is_connected is False
        await client.close()

    @pytest.mark.asyncio
    async def test_reconnects_after_drop(self):
        second = FakeWebSocket()
        client, first, session = await connected_client(FakeWebSocket())
        session.sockets.append(second)

        first.drop()
        for _ in range(50):
            await asyncio.sleep(0.01)
            if client.is_connected:
                break
        assert client.is_connected is True
        assert second.sent_methods() == ["connect"]
        assert second.sent[0]["id"] == "connect-2"
        await client.close()

    @pytest.mark.asyncio
    async def test_retries_with_fixed_delay(self, monkeypatch):
        client, first, session = await connected_client(FakeWebSocket())
        final = FakeWebSocket()
        session.sockets.extend([
            aiohttp.ClientConnectionError("down"),
            aiohttp.ClientConnectionError("down"),
            aiohttp.ClientConnectionError("down"),
            final,
        ])

        loop = asyncio.get_running_loop()
        delays = []
        real_call_later = loop.call_later

        def spy(delay, callback, *args, **kwargs):
            if callback == client._fire_reconnect:
                delays.append(delay)
            return real_call_later(delay, callback, *args, **kwargs)

        monkeypatch.setattr(loop, "call_later", spy)

        first.drop()
        for _ in range(100):
            await asyncio.sleep(0.01)
            if client.is_connected:
                break

        assert client.is_connected is True
        # Initial schedule plus one retry per failure, never growing
        assert delays == [0.01, 0.01, 0.01, 0.01]
        assert session.connect_calls == 5
        assert client.reconnect_attempts == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_only_one_reconnect_pending(self):
        client, ws, _ = await connected_client(reconnect_delay=10)
        ws.drop()
        await settle()
        handle = client._reconnect_handle
        assert handle is not None

        client._schedule_reconnect()
        client._schedule_reconnect()
        assert client._reconnect_handle is handle
        await client.close()
        assert handle.cancelled()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client, ws, session = await connected_client()
        await client.close()
        await client.close()
        assert ws.closed is True
        assert client.is_closed is True
        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_close_fails_pending(self):
        client, ws, _ = await connected_client()
        task = asyncio.create_task(client.request("slow", {}))
        await settle()
        await client.close()
        with pytest.raises(ConnectionLostError):
            await task

    @pytest.mark.asyncio
    async def test_no_reconnect_after_close(self):
        client, ws, session = await connected_client()
        await client.close()
        ws.drop()
        await asyncio.sleep(0.05)
        assert session.connect_calls == 1
        assert client._reconnect_handle is None

    @pytest.mark.asyncio
    async def test_close_mid_handshake(self):
        ws = FakeWebSocket(responder=None)
        session = FakeSession(ws, FakeWebSocket())
        client = SignalClient(make_config(), session=session)
        task = asyncio.create_task(client.connect())
        await settle()

        await client.close()
        with pytest.raises(ClientClosedError):
            await task
        await asyncio.sleep(0.05)
        assert session.connect_calls == 1

    @pytest.mark.asyncio
    async def test_connect_after_close_refused(self):
        client = SignalClient(make_config(), session=FakeSession(FakeWebSocket()))
        await client.close()
        with pytest.raises(ClientClosedError):
            await client.connect()

    @pytest.mark.asyncio
    async def test_injected_session_left_open(self):
        client, _, session = await connected_client()
        await client.close()
        assert session.closed is False


class TestInboundSignal:
    @pytest.mark.asyncio
    async def test_accept_params(self):
        def reply(frame):
            if frame["method"] == "connect":
                return [ok(frame)]
            return [ok(frame, {"text": "hi back"})]

        client, ws, _ = await connected_client(FakeWebSocket(responder=reply))
        signal = InboundSignal(
            text="hello",
            context_tags=[ContextTag("chat_type", "group", session_key=True)],
            chat_id="c1",
            attachments=[Attachment(type="image", url="https://x/y.png")],
        )
        result = await client.send_inbound_signal(signal)
        assert result == {"text": "hi back"}

        frame = ws.sent[1]
        assert frame["method"] == "channel.accept"
        assert frame["params"] == {
            "chatId": "c1",
            "text": "hello",
            "contextTags": [
                {"kind": "chat_type", "value": "group", "sessionKey": True, "routingOnly": False}
            ],
            "attachments": [{"type": "image", "url": "https://x/y.png"}],
        }
        await client.close()

    @pytest.mark.asyncio
    async def test_requires_response_only_when_set(self):
        client, ws, _ = await connected_client(FakeWebSocket(responder=lambda f: [ok(f)]))
        await client.send_inbound_signal(InboundSignal(text="a", requires_response=False))
        assert ws.sent[1]["params"]["requiresResponse"] is False
        await client.close()

    @pytest.mark.asyncio
    async def test_chat_id_fallbacks(self):
        client, ws, _ = await connected_client(FakeWebSocket(responder=lambda f: [ok(f)]))
        await client.send_inbound_signal(
            InboundSignal(text="a", context_tags=[ContextTag("chat_id", "from-tag")])
        )
        await client.send_inbound_signal(InboundSignal(text="b"))
        assert ws.sent[1]["params"]["chatId"] == "from-tag"
        assert ws.sent[2]["params"]["chatId"] == "main"
        assert "requiresResponse" not in ws.sent[2]["params"]
        await client.close()


class KeyValueServer:
    """Responder that implements the channel.data.* methods over a dict."""

    def __init__(self):
        self.store = {}

    def __call__(self, frame):
        method, params = frame["method"], frame["params"]
        if method == "connect":
            return [ok(frame)]
        if method == "channel.data.get":
            if params["key"] in self.store:
                return [ok(frame, {"found": True, "value": self.store[params["key"]]})]
            return [ok(frame, {"found": False})]
        if method == "channel.data.set":
            self.store[params["key"]] = params["value"]
        elif method == "channel.data.setBatch":
            self.store.update(params["items"])
        elif method == "channel.data.delete":
            self.store.pop(params["key"], None)
        elif method == "channel.data.getByPrefix":
            items = {k: v for k, v in self.store.items() if k.startswith(params["prefix"])}
            return [ok(frame, {"items": items})]
        elif method == "channel.data.deleteByPrefix":
            for k in [k for k in self.store if k.startswith(params["prefix"])]:
                del self.store[k]
        return [ok(frame)]


class TestDataStore:
    @pytest.mark.asyncio
    async def test_get_absent_returns_none(self):
        client, _, _ = await connected_client(FakeWebSocket(responder=KeyValueServer()))
        assert await client.get_data("missing") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_empty_string_is_not_absent(self):
        client, _, _ = await connected_client(FakeWebSocket(responder=KeyValueServer()))
        await client.set_data("blank", "")
        assert await client.get_data("blank") == ""
        await client.close()

    @pytest.mark.asyncio
    async def test_set_then_get(self):
        client, _, _ = await connected_client(FakeWebSocket(responder=KeyValueServer()))
        await client.set_data("cursor", "msg-42")
        assert await client.get_data("cursor") == "msg-42"
        await client.delete_data("cursor")
        assert await client.get_data("cursor") is None
        await client.close()

    @pytest.mark.asyncio
    async def test_prefix_variants(self):
        server = KeyValueServer()
        client, _, _ = await connected_client(FakeWebSocket(responder=server))
        await client.set_data_batch({"seen:1": "a", "seen:2": "b", "other": "c"})
        assert await client.get_data_by_prefix("seen:") == {"seen:1": "a", "seen:2": "b"}
        await client.delete_data_by_prefix("seen:")
        assert server.store == {"other": "c"}
        await client.close()
