"""Feishu channel adapter — Lark pinned to the mainland China endpoints."""

from __future__ import annotations

from collections.abc import Iterable

from lark_gateway.config.schema import FeishuConfig, LarkReceiveMode
from lark_gateway.gateway.channels.base import InboundQueue
from lark_gateway.gateway.channels.lark import LarkAdapter
from lark_gateway.gateway.models import OutboundMessage


class FeishuAdapter:
    """Channel adapter for Feishu (飞书), the domestic edition of Lark.

    Owns a single :class:`LarkAdapter` created with ``use_feishu=True``
    and forwards every channel operation to it unchanged.  The
    configuration surface has no ``use_feishu`` knob: a Feishu adapter
    always talks to ``open.feishu.cn``.  For the international service
    use :class:`LarkAdapter` directly.
    """

    name = "feishu"

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        verification_token: str = "",
        port: int | None = None,
        allowed_users: Iterable[str] = (),
        *,
        receive_mode: LarkReceiveMode = LarkReceiveMode.WEBHOOK,
    ) -> None:
        self._inner = LarkAdapter(
            app_id,
            app_secret,
            verification_token,
            port,
            allowed_users,
            use_feishu=True,
            receive_mode=receive_mode,
        )

    @classmethod
    def from_config(cls, config: FeishuConfig) -> FeishuAdapter:
        """Build an adapter from a ``[channels.feishu]`` config section."""
        return cls(
            config.app_id,
            config.app_secret,
            config.verification_token or "",
            config.port,
            config.allowed_users,
            receive_mode=config.receive_mode,
        )

    @property
    def use_feishu(self) -> bool:
        return self._inner.use_feishu

    @property
    def receive_mode(self) -> LarkReceiveMode:
        return self._inner.receive_mode

    def is_user_allowed(self, open_id: str) -> bool:
        return self._inner.is_user_allowed(open_id)

    # ------------------------------------------------------------------
    # Channel interface
    # ------------------------------------------------------------------

    async def send(self, message: OutboundMessage) -> None:
        await self._inner.send(message)

    async def listen(self, queue: InboundQueue) -> None:
        await self._inner.listen(queue)

    async def health_check(self) -> bool:
        return await self._inner.health_check()

    async def start_typing(self, recipient: str) -> None:
        await self._inner.start_typing(recipient)

    async def stop_typing(self, recipient: str) -> None:
        await self._inner.stop_typing(recipient)

    async def aclose(self) -> None:
        await self._inner.aclose()
