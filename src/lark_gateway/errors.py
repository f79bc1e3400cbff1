"""Gateway error hierarchy.

Structured exception types shared by the configuration layer and the
channel adapters.  Dropping a message from a sender outside the
allow-list is *not* an error and has no exception type.
"""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base error for all gateway exceptions."""

    code = "GATEWAY_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(GatewayError):
    """A required setting is missing or inconsistent with the receive mode."""

    code = "CONFIGURATION"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, {"field": field})
        self.field = field


class TransportError(GatewayError):
    """A platform API call or the underlying network failed."""

    code = "TRANSPORT"

    def __init__(
        self,
        message: str,
        channel: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, {"channel": channel, "status_code": status_code})
        self.channel = channel
        self.status_code = status_code
