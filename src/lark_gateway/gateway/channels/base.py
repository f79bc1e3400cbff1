"""Channel protocol — defines the interface all channel adapters implement."""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from lark_gateway.gateway.models import GatewayMessage, OutboundMessage

__all__ = [
    "Channel",
    "GatewayMessage",
    "InboundQueue",
    "OutboundMessage",
]

InboundQueue = asyncio.Queue[GatewayMessage]


@runtime_checkable
class Channel(Protocol):
    """Protocol that all gateway channel adapters must satisfy.

    Each adapter bridges one chat platform to the normalised
    :class:`GatewayMessage` / :class:`OutboundMessage` types.  Adapters
    are selected at configuration-load time and held by the runtime
    purely through this interface.
    """

    @property
    def name(self) -> str:
        """Stable platform identifier, e.g. ``"feishu"``."""

    async def send(self, message: OutboundMessage) -> None:
        """Deliver one outbound message.

        Raises:
            TransportError: The platform call failed.  Not retried.
        """

    async def listen(self, queue: InboundQueue) -> None:
        """Receive inbound messages and put each accepted one on *queue*.

        Runs for the lifetime of the adapter, preserving arrival order.
        Messages from senders outside the allow-list are dropped.
        """

    async def health_check(self) -> bool:
        """Check the platform is reachable.  Returns ``False`` instead of raising."""

    async def start_typing(self, recipient: str) -> None:
        """Best-effort "typing" signal towards *recipient*."""

    async def stop_typing(self, recipient: str) -> None:
        """Clear the "typing" signal towards *recipient*."""
