"""Context tag construction for inbound messages.

Tag order is significant to the gateway. Tags marked ``session_key`` must
form a contiguous run from the start of the sequence: private chats mark
every tag, group chats stop after the group label.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Union

from channel_bridge.domain.models import ContextTag
from channel_bridge.ports.inbound import BridgeMessage

GROUP_LABEL_PREFIX = "group-"
GROUP_LABEL_SUFFIX_LEN = 8


def tag_value(tags: Sequence[ContextTag], kind: str) -> str:
    """Value of the first tag of ``kind``, or ``""``."""
    for tag in tags:
        if tag.kind == kind:
            return tag.value
    return ""


def session_key_tags(tags: Sequence[ContextTag]) -> List[ContextTag]:
    """Leading run of key-participating tags; stops at the first unmarked one."""
    run: List[ContextTag] = []
    for tag in tags:
        if not tag.session_key:
            break
        run.append(tag)
    return run


def has_content(msg: BridgeMessage) -> bool:
    """True when the message is worth the gateway's attention."""
    if (msg.text or "").strip():
        return True
    if msg.attachments:
        return True
    return bool(msg.context_tags)


def format_sent_at(timestamp: Optional[Union[int, float, str]]) -> Optional[str]:
    """Format an epoch-milliseconds timestamp as local ``YYYY-MM-DD HH:MM``.

    Returns None for missing, unparsable or non-positive values.
    """
    if timestamp is None or isinstance(timestamp, bool):
        return None
    if isinstance(timestamp, str):
        try:
            ts_ms = float(timestamp.strip())
        except ValueError:
            return None
    else:
        ts_ms = timestamp
    if ts_ms != ts_ms or ts_ms <= 0:  # NaN
        return None
    try:
        dt = datetime.fromtimestamp(ts_ms / 1000)
    except (OverflowError, OSError, ValueError):
        return None
    return dt.strftime("%Y-%m-%d %H:%M")


def group_label(msg: BridgeMessage) -> str:
    """Human-readable label for a group chat; empty for private chats."""
    if msg.is_private:
        return ""
    if msg.chat_name:
        return msg.chat_name
    if msg.chat_id:
        return GROUP_LABEL_PREFIX + msg.chat_id[-GROUP_LABEL_SUFFIX_LEN:]
    return ""


def build_context_tags(msg: BridgeMessage) -> List[ContextTag]:
    """Build the ordered tag sequence for ``msg``.

    chat_type, chat_id and (groups only) chat_name always join the session
    key. From sender_name onward a tag joins only in private chats.
    Handler-supplied tags are appended last under the same rule.
    """
    tags = [
        ContextTag("chat_type", msg.chat_type, session_key=True),
        ContextTag("chat_id", msg.chat_id, session_key=True),
    ]
    label = group_label(msg)
    if label:
        tags.append(ContextTag("chat_name", label, session_key=True))

    private = msg.is_private
    tags.append(ContextTag("sender_name", msg.sender_name or "", session_key=private))
    tags.append(ContextTag("sender_id", msg.sender_id or "", session_key=private))
    if msg.mentions_self:
        tags.append(ContextTag("mentions_self", "true", session_key=private))

    sent_at = format_sent_at(msg.timestamp)
    if sent_at:
        tags.append(ContextTag("sent_at", sent_at, session_key=private))

    for extra in msg.context_tags:
        tags.append(
            ContextTag(
                extra.kind,
                extra.value,
                session_key=private,
                routing_only=extra.routing_only,
            )
        )
    return tags
