"""Channel bridge — wires a platform handler to the gateway.

Flow:
  1. Start the local tool surface (MCP stdio server, outbound tools)
  2. Open the reverse websocket and register the channel
  3. Inject the client as the handler's data provider
  4. Start the platform handler
  5. SIGINT / SIGTERM -> stop handler, close client, exit

Step 4 runs last so persistence and signalling are ready before the first
inbound message can arrive.
"""

import asyncio
import inspect
import signal
import sys
from typing import Any, Callable, Dict, Optional

from channel_bridge.adapters.gateway.client import SignalClient
from channel_bridge.config import BridgeConfig
from channel_bridge.domain.context_tags import build_context_tags, has_content
from channel_bridge.domain.models import InboundSignal
from channel_bridge.errors import BridgeStartupError
from channel_bridge.infrastructure.stdio_guard import LogSink, stdio_guard
from channel_bridge.ports.inbound import BridgeMessage
from channel_bridge.ports.outbound import BridgeHandler, ToolServer


def _log(msg: str):
    print(msg, file=sys.stderr)


def default_channel_prompt() -> str:
    return "Messages that @mention you carry a mentions_self tag."


def _describe_sender(msg: BridgeMessage) -> str:
    if msg.sender_name:
        return f"{msg.sender_name}({msg.sender_id or ''})"
    return msg.sender_id or "unknown"


class ChannelBridge:
    """Adapts one platform handler into inbound signals and owns the process lifecycle."""

    def __init__(
        self,
        config: BridgeConfig,
        handler: BridgeHandler,
        tool_server: Optional[ToolServer] = None,
        client: Optional[SignalClient] = None,
        build_channel_prompt: Optional[Callable[[], str]] = None,
    ):
        self.config = config
        self.handler = handler
        self.tool_server = tool_server
        prompt = (build_channel_prompt or default_channel_prompt)()
        self.client = client if client is not None else SignalClient(config, channel_prompt=prompt)
        self.tag = f"[{config.channel_name}]"
        self._tool_task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None
        self._shutting_down = False
        self._shutdown_task: Optional[asyncio.Future] = None

        handler.set_on_message(self.on_message)

    # ── Inbound ─────────────────────────────────────────────

    async def on_message(self, msg: BridgeMessage) -> Optional[Dict[str, Any]]:
        """Forward one platform message; failures are logged, never raised."""
        if not has_content(msg):
            _log(f"{self.tag} skipped {msg.chat_type} {msg.chat_id} (no text, attachments or tags)")
            return None

        _log(
            f"{self.tag} {msg.chat_type} {msg.chat_id} from {_describe_sender(msg)}: "
            f"{(msg.text or '')[:80]}"
        )

        try:
            inbound = InboundSignal(
                text=msg.text or "",
                context_tags=build_context_tags(msg),
                chat_id=msg.chat_id,
                attachments=list(msg.attachments),
                requires_response=msg.requires_response,
            )
            return await self.client.send_inbound_signal(inbound)
        except Exception as e:
            _log(f"{self.tag} send to gateway failed: {e}")
            return None

    # ── Lifecycle ───────────────────────────────────────────

    async def _run_tools(self) -> None:
        try:
            await self.tool_server.run_stdio_async()
        except Exception as e:
            _log(f"{self.tag} MCP stdio server error: {e}")

    async def start(self) -> None:
        """Run the startup sequence. Raises BridgeStartupError on a fatal step."""
        if self.tool_server is not None:
            self._tool_task = asyncio.create_task(self._run_tools())
            await asyncio.sleep(0)
            _log(f"{self.tag} MCP stdio server started")

        try:
            await self.client.connect()
        except Exception as e:
            raise BridgeStartupError(f"reverse websocket connect failed: {e}") from e
        _log(f"{self.tag} reverse websocket connected")

        set_provider = getattr(self.handler, "set_data_provider", None)
        if set_provider is not None:
            set_provider(self.client)

        _log(f"{self.tag} starting handler...")
        try:
            result = self.handler.start()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            raise BridgeStartupError(f"handler start failed: {e}") from e
        _log(f"{self.tag} handler started successfully")

    async def shutdown(self, reason: str = "shutdown") -> None:
        """Stop the handler and the client. Safe to call more than once."""
        if self._shutting_down:
            return
        self._shutting_down = True
        _log(f"{self.tag} shutting down ({reason})...")

        stop = getattr(self.handler, "stop", None)
        if stop is not None:
            try:
                result = stop()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                _log(f"{self.tag} handler stop failed: {e}")

        await self.client.close()

        if self._tool_task is not None and not self._tool_task.done():
            self._tool_task.cancel()
        if self._stopped is not None:
            self._stopped.set()

    def _on_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self.shutdown(sig.name))

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                _log(f"{self.tag} cannot install handler for {sig.name} on this platform")

    async def run(self) -> int:
        """Start, then wait for a shutdown signal. Returns the process exit code."""
        self._stopped = asyncio.Event()
        self.install_signal_handlers()
        try:
            await self.start()
        except BridgeStartupError as e:
            if self._shutting_down:
                # Interrupted by a signal, not a startup failure.
                await self._stopped.wait()
                return 0
            _log(f"{self.tag} {e}")
            await self.shutdown("startup failed")
            return 1
        await self._stopped.wait()
        return 0


def run_channel(
    handler: BridgeHandler,
    tool_server: Optional[ToolServer] = None,
    config: Optional[BridgeConfig] = None,
    build_channel_prompt: Optional[Callable[[], str]] = None,
    sink: Optional[LogSink] = None,
) -> None:
    """Process entry point for a channel. Never returns; exits with 0 or 1."""
    config = config or BridgeConfig.from_env()
    missing = config.missing()
    if missing:
        _log(
            f"Missing {', '.join(missing)}. "
            "Channel must be started by the gateway."
        )
        sys.exit(1)

    with stdio_guard(sink):
        bridge = ChannelBridge(
            config,
            handler,
            tool_server=tool_server,
            build_channel_prompt=build_channel_prompt,
        )
        code = asyncio.run(bridge.run())
    sys.exit(code)


def run_tools(tool_server: ToolServer, sink: Optional[LogSink] = None) -> None:
    """Run only the MCP tool surface (outbound-only channels, no gateway socket)."""
    with stdio_guard(sink):
        try:
            asyncio.run(tool_server.run_stdio_async())
        except Exception as e:
            _log(f"[mcp] MCP start failed: {e}")
            sys.exit(1)
