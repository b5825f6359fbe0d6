"""stdout protection for channels that share stdout with a protocol stream.

The MCP stdio transport owns stdout: any stray line that is not a JSON-RPC
message breaks the client ("invalid character 'i'..."). While a guard is
installed, ``sys.stdout`` is a sink that forwards lines starting with ``{``
to the real stdout and everything else to stderr, so channel code and
third-party libraries can print freely.

The MCP transport itself writes to ``sys.stdout.buffer``, which the sink
maps to the real stdout buffer, so protocol traffic is never filtered.
"""

import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional, Protocol, TextIO, runtime_checkable

MAX_LINE_BUFFER = 64 * 1024
UNTERMINATED_PREFIX = "[stdio-guard] unterminated line: "


@runtime_checkable
class LogSink(Protocol):
    """Text stream the rest of the process writes diagnostics to."""

    def write(self, text: str) -> int: ...
    def flush(self) -> None: ...


class PassthroughSink:
    """Forwards everything to one stream unchanged (non-protocol deployments)."""

    def __init__(self, target: Optional[TextIO] = None):
        self._target = target or sys.stderr

    @property
    def buffer(self):
        return self._target.buffer

    def write(self, text: str) -> int:
        return self._target.write(text)

    def flush(self) -> None:
        self._target.flush()

    def isatty(self) -> bool:
        return False

    def close(self) -> None:
        self.flush()


def is_protocol_line(line: str) -> bool:
    """A line belongs to the protocol stream if it looks like a JSON object."""
    return line.strip().startswith("{")


class ProtocolSplitSink:
    """Line-buffered sink that routes protocol lines to stdout, the rest to stderr."""

    def __init__(self, stdout: Optional[TextIO] = None, stderr: Optional[TextIO] = None):
        self._stdout = stdout or sys.__stdout__
        self._stderr = stderr or sys.__stderr__
        self._pending = ""

    @property
    def buffer(self):
        return self._stdout.buffer

    def write(self, text: str) -> int:
        if not isinstance(text, str):
            text = text.decode("utf-8", errors="replace")
        self._pending += text
        if len(self._pending) > MAX_LINE_BUFFER:
            self._pending = self._pending[-MAX_LINE_BUFFER:]

        lines = self._pending.split("\n")
        self._pending = lines.pop()

        to_stdout: List[str] = []
        to_stderr: List[str] = []
        for raw in lines:
            line = raw.rstrip("\r") + "\n"
            if is_protocol_line(line):
                to_stdout.append(line)
            else:
                to_stderr.append(line)
        if to_stderr:
            self._stderr.write("".join(to_stderr))
            self._stderr.flush()
        if to_stdout:
            self._stdout.write("".join(to_stdout))
            self._stdout.flush()
        return len(text)

    def flush(self) -> None:
        self._stdout.flush()
        self._stderr.flush()

    def isatty(self) -> bool:
        return False

    def close(self) -> None:
        """Emit a pending partial line, if any."""
        if self._pending:
            leftover, self._pending = self._pending, ""
            if is_protocol_line(leftover):
                self._stdout.write(leftover + "\n")
            else:
                self._stderr.write(UNTERMINATED_PREFIX + leftover + "\n")
        self.flush()


@contextmanager
def stdio_guard(sink: Optional[LogSink] = None) -> Iterator[LogSink]:
    """Install ``sink`` as sys.stdout for the duration of the block."""
    sink = sink if sink is not None else ProtocolSplitSink()
    original = sys.stdout
    sys.stdout = sink
    try:
        yield sink
    finally:
        sys.stdout = original
        close = getattr(sink, "close", None)
        if close is not None:
            close()
