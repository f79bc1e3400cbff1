"""Pydantic models for gateway configuration.

Channel sections use plain ``BaseModel`` so pydantic-settings does not
read stray environment variables such as ``$PORT`` into them.  Only the
top-level :class:`GatewayConfig` extends ``BaseSettings``.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LarkReceiveMode(StrEnum):
    """How inbound events reach the adapter."""

    WEBHOOK = "webhook"  # Platform POSTs events to our HTTP server
    WEBSOCKET = "websocket"  # We hold a persistent connection open


class GatewaySection(BaseModel):
    """Gateway core settings."""

    log_level: str = "info"
    queue_size: int = 100


class _LarkFamilyConfig(BaseModel):
    """Fields shared by every channel of the Lark platform family."""

    enabled: bool = False
    app_id: str = ""
    app_secret: str = ""
    encrypt_key: str | None = None
    verification_token: str | None = None
    allowed_users: list[str] = Field(default_factory=list)
    receive_mode: LarkReceiveMode = LarkReceiveMode.WEBSOCKET
    port: int | None = None

    @model_validator(mode="after")
    def _require_port_for_webhook(self) -> _LarkFamilyConfig:
        if self.receive_mode == LarkReceiveMode.WEBHOOK and self.port is None:
            raise ValueError("port is required when receive_mode is 'webhook'")
        return self


class LarkConfig(_LarkFamilyConfig):
    """Lark channel configuration (international, or Feishu via ``use_feishu``)."""

    use_feishu: bool = False


class FeishuConfig(_LarkFamilyConfig):
    """Feishu channel configuration.

    Identical to :class:`LarkConfig` minus ``use_feishu``: the Feishu
    channel always talks to the domestic endpoints.
    """


class ChannelsSection(BaseModel):
    """Channel adapter configurations."""

    lark: LarkConfig = Field(default_factory=LarkConfig)
    feishu: FeishuConfig = Field(default_factory=FeishuConfig)


class GatewayConfig(BaseSettings):
    """Top-level gateway configuration model.

    Maps to the TOML structure:
        [gateway] / [channels.lark] / [channels.feishu]

    Every field has a default, so an empty file is a valid (inert)
    configuration.  Sections not passed explicitly can be supplied via
    the environment, e.g. ``LARK_GATEWAY_GATEWAY__LOG_LEVEL=debug``.
    """

    model_config = SettingsConfigDict(
        env_prefix="LARK_GATEWAY_",
        env_nested_delimiter="__",
    )

    gateway: GatewaySection = Field(default_factory=GatewaySection)
    channels: ChannelsSection = Field(default_factory=ChannelsSection)
