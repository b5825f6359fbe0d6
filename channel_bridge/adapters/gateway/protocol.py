"""JSON frame codec for the gateway websocket.

Request:  {"type": "req", "id", "method", "params"}
Response: {"type": "res", "id", "ok", "payload"?, "error": {"code", "message"}?}
Event frames ({"type": "event"}) may appear on the wire; the client ignores them.
"""

import json
from typing import Any, Dict, Optional

from channel_bridge.errors import RemoteCallError

FRAME_REQUEST = "req"
FRAME_RESPONSE = "res"
FRAME_EVENT = "event"


def encode_request(request_id: str, method: str, params: Dict[str, Any]) -> str:
    return json.dumps(
        {"type": FRAME_REQUEST, "id": request_id, "method": method, "params": params},
        ensure_ascii=False,
    )


def decode_frame(raw: str) -> Optional[Dict[str, Any]]:
    """Parse one text frame; None if it is not a JSON object."""
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return frame if isinstance(frame, dict) else None


def response_error(method: str, frame: Dict[str, Any], error_cls=RemoteCallError) -> RemoteCallError:
    """Build the exception for a response frame with ok=false."""
    error = frame.get("error") or {}
    if not isinstance(error, dict):
        error = {"message": str(error)}
    return error_cls(
        method,
        error.get("message") or f"{method} failed",
        code=error.get("code"),
    )


def response_payload(frame: Dict[str, Any]) -> Dict[str, Any]:
    payload = frame.get("payload")
    return payload if isinstance(payload, dict) else {}
