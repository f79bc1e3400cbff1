"""Lark gateway: channel adapters and the shared message types."""

from lark_gateway.gateway.allowlist import WILDCARD, AllowList
from lark_gateway.gateway.models import GatewayMessage, OutboundMessage, create_message

__all__ = [
    "WILDCARD",
    "AllowList",
    "GatewayMessage",
    "OutboundMessage",
    "create_message",
]
