"""Configuration for a channel process.

The gateway injects the connection settings into the environment when it
spawns a channel, so everything here is read from env vars (a local .env is
honoured for development).
"""

__version__ = "0.1.0"

import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from channel_bridge.errors import ConfigError

load_dotenv()

_stderr_print = lambda *a, **kw: print(*a, **kw, file=sys.stderr)

DEFAULT_RECONNECT_DELAY = 3.0

# (field, primary env var, fallback env var)
_REQUIRED = [
    ("ws_url", "AIDO_WS_URL", "AILO_WS_URL"),
    ("token", "AIDO_TOKEN", "AILO_TOKEN"),
    ("channel_name", "AIDO_MCP_NAME", "AILO_MCP_NAME"),
]


def env_or(name: str, fallback: str) -> str:
    """Read ``name`` from the environment, then ``fallback``, else ``""``."""
    value = os.getenv(name)
    if value is None:
        value = os.getenv(fallback, "")
    return value


def _env_flag(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        _stderr_print(f"Invalid {name}={raw!r}, falling back to {default}")
        return default
    if value < 0:
        _stderr_print(f"Negative {name}={raw!r}, falling back to {default}")
        return default
    return value


def get_workdir() -> Optional[str]:
    """Private working directory assigned to this channel, if any."""
    return os.getenv("AILO_MCP_WORKDIR") or None


@dataclass
class BridgeConfig:
    """Connection identity and tuning for one channel process."""

    ws_url: str = ""
    token: str = ""
    channel_name: str = ""
    display_name: str = ""
    default_requires_response: Optional[bool] = None
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    workdir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Create BridgeConfig from environment variables."""
        return cls(
            ws_url=env_or("AIDO_WS_URL", "AILO_WS_URL"),
            token=env_or("AIDO_TOKEN", "AILO_TOKEN"),
            channel_name=env_or("AIDO_MCP_NAME", "AILO_MCP_NAME"),
            display_name=os.getenv("AILO_DISPLAY_NAME", ""),
            default_requires_response=_env_flag("AILO_DEFAULT_REQUIRES_RESPONSE"),
            reconnect_delay=_env_float("AILO_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY),
            workdir=get_workdir(),
        )

    def missing(self) -> List[str]:
        """Env var names (primary/fallback) of required settings that are empty."""
        return [
            f"{primary}/{fallback}"
            for attr, primary, fallback in _REQUIRED
            if not getattr(self, attr)
        ]

    def validate(self) -> None:
        missing = self.missing()
        if missing:
            raise ConfigError(missing)
