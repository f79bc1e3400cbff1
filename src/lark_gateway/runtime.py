"""Gateway runtime — builds channels and supervises their listen loops."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from lark_gateway.config import ConfigManager
from lark_gateway.config.schema import GatewayConfig
from lark_gateway.gateway.channels import Channel, build_channels
from lark_gateway.gateway.models import GatewayMessage, OutboundMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, GatewayMessage], Awaitable[None]]


class GatewayRuntime:
    """Holds the live channel adapters and the tasks that drive them.

    Each channel gets its own inbound queue, a ``listen`` task feeding it
    and a consumer task draining it into the handler, so messages from one
    channel are delivered in arrival order and a channel that fails only
    takes down its own tasks.
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        channels: dict[str, Channel] | None = None,
    ) -> None:
        self._config = config or ConfigManager().load()
        self._channels = channels if channels is not None else build_channels(self._config.channels)
        self._tasks: dict[str, list[asyncio.Task[None]]] = {}
        self._failed: dict[str, BaseException] = {}

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def channels(self) -> dict[str, Channel]:
        """Return a copy of the registered channels."""
        return dict(self._channels)

    @property
    def failed(self) -> dict[str, BaseException]:
        """Channels whose listen loop ended with an error, and the error."""
        return dict(self._failed)

    @property
    def running(self) -> bool:
        return any(not t.done() for tasks in self._tasks.values() for t in tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, handler: MessageHandler) -> None:
        """Start listening on every channel; inbound messages go to *handler*."""
        if self._tasks:
            logger.warning("Runtime already started")
            return
        if not self._channels:
            logger.warning("No channels enabled; nothing to listen on")

        for name, channel in self._channels.items():
            queue: asyncio.Queue[GatewayMessage] = asyncio.Queue(maxsize=self._config.gateway.queue_size)
            self._tasks[name] = [
                asyncio.create_task(self._listen(name, channel, queue), name=f"{name}-listen"),
                asyncio.create_task(self._consume(name, queue, handler), name=f"{name}-consume"),
            ]
            logger.info("Channel %s started", name)

    async def run(self, handler: MessageHandler) -> None:
        """Start all channels and wait until every listen loop has ended."""
        await self.start(handler)
        listeners = [tasks[0] for tasks in self._tasks.values()]
        try:
            await asyncio.gather(*listeners)
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Cancel every task and close the adapters' HTTP clients."""
        tasks = [t for group in self._tasks.values() for t in group]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        for name, channel in self._channels.items():
            aclose = getattr(channel, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception:
                logger.exception("Error closing channel %s", name)
        logger.info("Gateway runtime stopped")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def send(self, channel_name: str, message: OutboundMessage) -> None:
        """Send *message* through the named channel.

        Raises:
            KeyError: No channel with that name is registered.
            TransportError: The channel failed to deliver.
        """
        await self._channels[channel_name].send(message)

    async def health(self) -> dict[str, bool]:
        """Health-check every channel concurrently."""
        names = list(self._channels)
        results = await asyncio.gather(*(self._channels[n].health_check() for n in names))
        return dict(zip(names, results, strict=True))

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _listen(self, name: str, channel: Channel, queue: asyncio.Queue[GatewayMessage]) -> None:
        try:
            await channel.listen(queue)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._failed[name] = exc
            logger.exception("Channel %s stopped listening", name)
            for task in self._tasks.get(name, [])[1:]:
                task.cancel()
        else:
            logger.info("Channel %s listen loop ended", name)

    async def _consume(
        self,
        name: str,
        queue: asyncio.Queue[GatewayMessage],
        handler: MessageHandler,
    ) -> None:
        while True:
            message = await queue.get()
            try:
                await handler(name, message)
            except Exception:
                logger.exception("Error handling message %s from %s", message.id, name)
            finally:
                queue.task_done()
