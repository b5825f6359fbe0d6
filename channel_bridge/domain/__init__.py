"""Domain layer — pure Python, no framework dependencies."""

from channel_bridge.domain.models import ContextTag, InboundSignal
from channel_bridge.domain.context_tags import (
    build_context_tags,
    format_sent_at,
    group_label,
    has_content,
    session_key_tags,
    tag_value,
)

__all__ = [
    "ContextTag",
    "InboundSignal",
    "build_context_tags",
    "format_sent_at",
    "group_label",
    "has_content",
    "session_key_tags",
    "tag_value",
]
