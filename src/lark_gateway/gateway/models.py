"""Gateway data models — lightweight message objects."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class GatewayMessage:
    """Normalised inbound message flowing from a channel to the consumer."""

    id: str
    channel: str
    channel_message_id: str
    sender_id: str
    sender_name: str
    reply_target: str
    text: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class OutboundMessage:
    """A message to deliver through a channel.

    ``recipient`` is the platform's conversation identifier (a Lark
    ``chat_id``); it is not validated before it reaches the platform.
    """

    recipient: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


def create_message(
    channel: str,
    sender_id: str,
    reply_target: str,
    text: str,
    **kwargs: Any,
) -> GatewayMessage:
    """Create a :class:`GatewayMessage` with auto-generated UUID and timestamp."""
    return GatewayMessage(
        id=kwargs.pop("id", str(uuid.uuid4())),
        channel=channel,
        channel_message_id=kwargs.pop("channel_message_id", ""),
        sender_id=sender_id,
        sender_name=kwargs.pop("sender_name", sender_id),
        reply_target=reply_target,
        text=text,
        timestamp=kwargs.pop("timestamp", datetime.now(UTC)),
        **kwargs,
    )
