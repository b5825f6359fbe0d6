"""Domain data models — pure Python dataclasses."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from channel_bridge.ports.inbound import Attachment


@dataclass
class ContextTag:
    """One ordered, classified annotation on an inbound signal.

    ``session_key`` marks tags the gateway uses to derive the session key;
    only the leading contiguous run of marked tags counts.
    """

    kind: str  # e.g. "chat_type", "chat_id", "sender_name"
    value: str
    session_key: bool = False
    routing_only: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "value": self.value,
            "sessionKey": self.session_key,
            "routingOnly": self.routing_only,
        }


@dataclass
class InboundSignal:
    """Normalized platform event, forwarded once via channel.accept."""

    text: str = ""
    context_tags: List[ContextTag] = field(default_factory=list)
    chat_id: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    requires_response: Optional[bool] = None
