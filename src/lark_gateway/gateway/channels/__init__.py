"""Gateway channel adapters for the Lark platform family.

:func:`build_channels` turns the ``[channels]`` config section into live
adapters keyed by channel name.  The runtime only ever sees them through
the :class:`~lark_gateway.gateway.channels.base.Channel` protocol.
"""

from __future__ import annotations

import logging

from lark_gateway.config.schema import ChannelsSection, LarkReceiveMode
from lark_gateway.errors import ConfigurationError
from lark_gateway.gateway.channels.base import Channel
from lark_gateway.gateway.channels.feishu import FeishuAdapter
from lark_gateway.gateway.channels.lark import LarkAdapter

__all__ = [
    "ALL_CHANNELS",
    "Channel",
    "FeishuAdapter",
    "LarkAdapter",
    "build_channels",
]

logger = logging.getLogger(__name__)

ALL_CHANNELS = ("lark", "feishu")


def build_channels(config: ChannelsSection) -> dict[str, Channel]:
    """Create an adapter for every enabled channel section.

    Raises:
        ConfigurationError: An enabled section lacks credentials or a
            webhook port, or more than one enabled section uses
            websocket receive mode (lark-oapi allows one per process).
    """
    channels: dict[str, Channel] = {}
    websocket_channels: list[str] = []

    for name in ALL_CHANNELS:
        section = getattr(config, name)
        if not section.enabled:
            continue
        if not section.app_id or not section.app_secret:
            raise ConfigurationError(
                f"Channel '{name}' is enabled but app_id/app_secret are not set",
                field=f"channels.{name}.app_id",
            )
        if section.receive_mode == LarkReceiveMode.WEBSOCKET:
            websocket_channels.append(name)
        if name == "lark":
            channels[name] = LarkAdapter.from_config(config.lark)
        else:
            channels[name] = FeishuAdapter.from_config(config.feishu)
        logger.debug("Built %s channel (%s mode)", name, section.receive_mode)

    if len(websocket_channels) > 1:
        raise ConfigurationError(
            f"Channels {', '.join(websocket_channels)} both use websocket receive mode; "
            "switch all but one to webhook",
            field=f"channels.{websocket_channels[-1]}.receive_mode",
        )
    return channels
