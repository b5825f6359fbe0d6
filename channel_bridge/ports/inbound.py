"""Inbound port — platform-agnostic message representation."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class Attachment:
    """Image/audio/video/file carried with a message.

    Inbound media is referenced by exactly one of ``path``, ``url`` or
    ``base64``; non-image types may also use ``ref`` plus ``channel``.
    ``file_path`` is used on the outbound side.
    """

    type: str
    url: Optional[str] = None
    path: Optional[str] = None
    ref: Optional[str] = None
    channel: Optional[str] = None
    base64: Optional[str] = None
    mime: Optional[str] = None
    name: Optional[str] = None
    file_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class BridgeMessage:
    """Discord/Feishu/email-agnostic inbound message.

    Every platform handler reports messages through this type.
    ``timestamp`` is epoch milliseconds, as an int or a numeric string.
    """

    chat_id: str
    chat_type: str
    message_id: Optional[str] = None
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    chat_name: Optional[str] = None
    text: Optional[str] = None
    is_private: bool = False
    mentions_self: bool = False
    attachments: List[Attachment] = field(default_factory=list)
    timestamp: Optional[Union[int, float, str]] = None
    context_tags: list = field(default_factory=list)
    requires_response: Optional[bool] = None
