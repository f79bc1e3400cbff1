"""Lark / Feishu Open Platform channel adapter.

Lark (international) and Feishu (mainland China) are the same platform
served from two hosts.  :class:`LarkAdapter` implements both; the
``use_feishu`` flag picks the host and is fixed for the lifetime of an
instance.  Inbound events arrive either through an HTTP webhook or
through the SDK's persistent WebSocket connection.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lark_gateway.config.schema import LarkConfig, LarkReceiveMode
from lark_gateway.errors import ConfigurationError, TransportError
from lark_gateway.gateway.allowlist import AllowList
from lark_gateway.gateway.channels.base import InboundQueue
from lark_gateway.gateway.models import GatewayMessage, OutboundMessage, create_message

try:
    import lark_oapi as lark
    import lark_oapi.ws.client as lark_ws_client

    HAS_LARK_SDK = True
except ImportError:
    HAS_LARK_SDK = False

logger = logging.getLogger(__name__)

FEISHU_API_BASE = "https://open.feishu.cn/open-apis"
LARK_API_BASE = "https://open.larksuite.com/open-apis"
WEBHOOK_PATH = "/lark"

_MESSAGE_EVENT = "im.message.receive_v1"
_TOKEN_REFRESH_MARGIN = 60  # seconds before expiry
_TYPING_EMOJI = "Typing"
_WS_JOIN_TIMEOUT = 5.0  # seconds to wait for the SDK thread on shutdown
_TYPING_ANCHOR_LIMIT = 1024  # chats remembered for typing reactions

# lark-oapi runs every ws.Client on one module-level event loop, so only a
# single persistent connection may be live per process.
_ws_slot = threading.Lock()


class LarkAdapter:
    """Channel adapter for the Lark / Feishu Open Platform bot API.

    Construction fixes every setting.  The fluent :meth:`with_feishu`
    and :meth:`with_receive_mode` return a *new* adapter rather than
    mutating this one, so an adapter that is already listening can never
    change host or receive mode underneath its callers.
    """

    name = "lark"

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        verification_token: str = "",
        port: int | None = None,
        allowed_users: Iterable[str] = (),
        *,
        use_feishu: bool = False,
        receive_mode: LarkReceiveMode = LarkReceiveMode.WEBHOOK,
    ) -> None:
        receive_mode = LarkReceiveMode(receive_mode)
        if receive_mode == LarkReceiveMode.WEBHOOK and port is None:
            raise ConfigurationError("Lark webhook mode requires a port", field="port")

        self._app_id = app_id
        self._app_secret = app_secret
        self._verification_token = verification_token
        self._port = port
        self._allowed = AllowList(allowed_users)
        self._use_feishu = use_feishu
        self._receive_mode = receive_mode

        self._http: httpx.AsyncClient | None = None
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()
        # chat_id -> id of the last inbound message, used as the typing anchor (LRU)
        self._last_message_ids: OrderedDict[str, str] = OrderedDict()
        # chat_id -> (message_id, reaction_id) of an active typing reaction
        self._typing_reactions: dict[str, tuple[str, str]] = {}

    @classmethod
    def from_config(cls, config: LarkConfig) -> LarkAdapter:
        """Build an adapter from a ``[channels.lark]`` config section."""
        return cls(
            config.app_id,
            config.app_secret,
            config.verification_token or "",
            config.port,
            config.allowed_users,
            use_feishu=config.use_feishu,
            receive_mode=config.receive_mode,
        )

    # ------------------------------------------------------------------
    # Fluent configuration
    # ------------------------------------------------------------------

    def with_feishu(self, use_feishu: bool) -> LarkAdapter:
        """Return a copy of this adapter bound to the Feishu (or Lark) host."""
        return self._replace(use_feishu=use_feishu)

    def with_receive_mode(self, receive_mode: LarkReceiveMode) -> LarkAdapter:
        """Return a copy of this adapter using *receive_mode* for inbound events."""
        return self._replace(receive_mode=receive_mode)

    def _replace(self, **changes: Any) -> LarkAdapter:
        params: dict[str, Any] = {
            "app_id": self._app_id,
            "app_secret": self._app_secret,
            "verification_token": self._verification_token,
            "port": self._port,
            "allowed_users": list(self._allowed),
            "use_feishu": self._use_feishu,
            "receive_mode": self._receive_mode,
        }
        params.update(changes)
        return LarkAdapter(**params)

    # ------------------------------------------------------------------
    # Read-only settings
    # ------------------------------------------------------------------

    @property
    def use_feishu(self) -> bool:
        return self._use_feishu

    @property
    def receive_mode(self) -> LarkReceiveMode:
        return self._receive_mode

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def platform(self) -> str:
        """Platform the messages actually travel through: ``feishu`` or ``lark``."""
        return "feishu" if self._use_feishu else "lark"

    @property
    def api_base(self) -> str:
        return FEISHU_API_BASE if self._use_feishu else LARK_API_BASE

    @property
    def allowed_users(self) -> AllowList:
        return self._allowed

    def is_user_allowed(self, open_id: str) -> bool:
        """Return ``True`` if messages from *open_id* may be processed."""
        return self._allowed.is_allowed(open_id)

    # ------------------------------------------------------------------
    # Channel interface
    # ------------------------------------------------------------------

    async def send(self, message: OutboundMessage) -> None:
        """Send a text message to the chat identified by ``message.recipient``."""
        await self._api(
            "POST",
            "/im/v1/messages",
            params={"receive_id_type": "chat_id"},
            body={
                "receive_id": message.recipient,
                "msg_type": "text",
                "content": json.dumps({"text": message.text}, ensure_ascii=False),
            },
        )
        logger.debug("%s: sent message to %s", self.platform, message.recipient)

    async def listen(self, queue: InboundQueue) -> None:
        """Receive events until the transport shuts down."""
        if self._receive_mode == LarkReceiveMode.WEBSOCKET:
            await self._listen_websocket(queue)
        else:
            await self._listen_webhook(queue)

    async def health_check(self) -> bool:
        """Fetch a fresh tenant access token; any failure reports ``False``."""
        try:
            await self._tenant_access_token(force_refresh=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s health check failed: %s", self.platform, exc)
            return False
        return True

    async def start_typing(self, recipient: str) -> None:
        """Mark the last message from *recipient* with a "Typing" reaction.

        Lark has no typing-indicator API; a reaction is the closest
        visible signal.  Does nothing until a message from that chat has
        been received.
        """
        message_id = self._last_message_ids.get(recipient)
        if not message_id or recipient in self._typing_reactions:
            return
        data = await self._api(
            "POST",
            f"/im/v1/messages/{message_id}/reactions",
            body={"reaction_type": {"emoji_type": _TYPING_EMOJI}},
        )
        reaction_id = (data.get("data") or {}).get("reaction_id")
        if reaction_id:
            self._typing_reactions[recipient] = (message_id, reaction_id)

    async def stop_typing(self, recipient: str) -> None:
        """Remove the reaction placed by :meth:`start_typing`, if any."""
        entry = self._typing_reactions.pop(recipient, None)
        if entry is None:
            return
        message_id, reaction_id = entry
        await self._api("DELETE", f"/im/v1/messages/{message_id}/reactions/{reaction_id}")

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # Webhook receive mode
    # ------------------------------------------------------------------

    def build_webhook_app(self, queue: InboundQueue) -> FastAPI:
        """Return the ASGI app that accepts Lark event callbacks.

        Exposed so the endpoint can be mounted in an existing FastAPI
        application instead of the standalone server :meth:`listen` runs.
        """
        app = FastAPI(title=f"{self.platform} webhook", docs_url=None, redoc_url=None)
        adapter = self  # capture for closures

        @app.post(WEBHOOK_PATH)
        async def receive_event(request: Request) -> JSONResponse:
            try:
                payload = await request.json()
            except ValueError:
                return JSONResponse({"error": "invalid JSON"}, status_code=400)
            if not isinstance(payload, dict):
                return JSONResponse({"error": "expected a JSON object"}, status_code=400)

            if "encrypt" in payload:
                logger.warning("%s: encrypted event rejected, unset the encrypt key", adapter.platform)
                return JSONResponse({"error": "encrypted events are not supported"}, status_code=400)

            if payload.get("type") == "url_verification":
                if not adapter._token_matches(payload.get("token")):
                    return JSONResponse({"error": "invalid verification token"}, status_code=403)
                return JSONResponse({"challenge": payload.get("challenge", "")})

            header = _as_dict(payload.get("header"))
            if not adapter._token_matches(header.get("token")):
                return JSONResponse({"error": "invalid verification token"}, status_code=403)

            await adapter._dispatch_event(payload, queue)
            return JSONResponse({"code": 0})

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        return app

    async def _listen_webhook(self, queue: InboundQueue) -> None:
        assert self._port is not None  # enforced in __init__
        app = self.build_webhook_app(queue)
        server = uvicorn.Server(
            uvicorn.Config(app, host="0.0.0.0", port=self._port, log_level="warning")
        )
        logger.info("%s webhook listening on port %d", self.platform, self._port)
        try:
            await server.serve()
        except SystemExit as exc:
            # uvicorn exits the process when it cannot bind
            raise TransportError(
                f"{self.platform} webhook server failed to start on port {self._port}",
                channel=self.platform,
            ) from exc
        logger.info("%s webhook server stopped", self.platform)

    def _token_matches(self, token: object) -> bool:
        if not self._verification_token:
            return True
        return token == self._verification_token

    # ------------------------------------------------------------------
    # WebSocket receive mode
    # ------------------------------------------------------------------

    async def _listen_websocket(self, queue: InboundQueue) -> None:
        if not HAS_LARK_SDK:
            raise ImportError("Install lark-oapi: pip install lark-gateway[websocket]")
        if not _ws_slot.acquire(blocking=False):
            raise ConfigurationError(
                "Only one Lark/Feishu channel per process can use websocket receive mode",
                field="receive_mode",
            )

        loop = asyncio.get_running_loop()
        finished: asyncio.Future[None] = loop.create_future()
        stopping = threading.Event()

        def on_message(data: Any) -> None:
            if stopping.is_set():
                return
            payload = json.loads(lark.JSON.marshal(data))
            # Block the SDK thread until the event is queued so order is kept
            asyncio.run_coroutine_threadsafe(self._dispatch_event(payload, queue), loop).result()

        try:
            handler = (
                lark.EventDispatcherHandler.builder("", self._verification_token)
                .register_p2_im_message_receive_v1(on_message)
                .build()
            )
            client = lark.ws.Client(
                self._app_id,
                self._app_secret,
                event_handler=handler,
                domain=lark.FEISHU_DOMAIN if self._use_feishu else lark.LARK_DOMAIN,
                log_level=lark.LogLevel.INFO,
            )
        except Exception:
            _ws_slot.release()
            raise
        ws_loop = asyncio.new_event_loop()

        def run_client() -> None:
            # The SDK drives one module-level loop; _ws_slot makes this thread its only user
            asyncio.set_event_loop(ws_loop)
            lark_ws_client.loop = ws_loop
            try:
                client.start()
            except Exception as exc:  # noqa: BLE001
                if not stopping.is_set():
                    loop.call_soon_threadsafe(_settle, finished, exc)
            else:
                if not stopping.is_set():
                    loop.call_soon_threadsafe(_settle, finished, None)
            finally:
                ws_loop.close()
                _ws_slot.release()

        thread = threading.Thread(target=run_client, name=f"{self.platform}-ws", daemon=True)
        try:
            thread.start()
        except RuntimeError:
            ws_loop.close()
            _ws_slot.release()
            raise
        logger.info("%s persistent connection started", self.platform)

        try:
            await finished
        except Exception as exc:
            raise TransportError(
                f"{self.platform} persistent connection failed: {exc}",
                channel=self.platform,
            ) from exc
        finally:
            if finished.cancelled():
                # listen() was cancelled while the client was still connected
                stopping.set()
                self._stop_ws_client(client, ws_loop)
            await asyncio.to_thread(thread.join, _WS_JOIN_TIMEOUT)
            if thread.is_alive():
                logger.warning("%s persistent connection thread did not exit", self.platform)
        logger.info("%s persistent connection closed", self.platform)

    def _stop_ws_client(self, client: Any, ws_loop: asyncio.AbstractEventLoop) -> None:
        """Halt the loop driving the SDK client, then shut the client down."""
        try:
            ws_loop.call_soon_threadsafe(ws_loop.stop)
        except RuntimeError:
            pass  # loop already closed by the worker thread
        # Older lark-oapi releases have no stop(); halting the loop ends start() there
        stop = getattr(client, "stop", None)
        if stop is not None:
            try:
                stop()
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s: error stopping persistent connection: %s", self.platform, exc)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    async def _dispatch_event(self, payload: dict[str, Any], queue: InboundQueue) -> None:
        """Convert one event payload and queue it if the sender is allowed."""
        message = self._parse_event(payload)
        if message is None:
            return
        if not self.is_user_allowed(message.sender_id):
            logger.debug("%s: dropped message from %s (not in allow-list)", self.platform, message.sender_id)
            return
        self._last_message_ids[message.reply_target] = message.channel_message_id
        self._last_message_ids.move_to_end(message.reply_target)
        if len(self._last_message_ids) > _TYPING_ANCHOR_LIMIT:
            self._last_message_ids.popitem(last=False)
        await queue.put(message)

    def _parse_event(self, payload: dict[str, Any]) -> GatewayMessage | None:
        """Turn an ``im.message.receive_v1`` text event into a message.

        Returns ``None`` for other event types, non-text messages and
        messages whose text is empty.
        """
        header = _as_dict(payload.get("header"))
        if header.get("event_type") != _MESSAGE_EVENT:
            return None

        event = _as_dict(payload.get("event"))
        msg = _as_dict(event.get("message"))
        if msg.get("message_type") != "text":
            logger.debug("%s: skipping %s message", self.platform, msg.get("message_type"))
            return None

        sender_id = _as_dict(_as_dict(event.get("sender")).get("sender_id"))
        open_id = sender_id.get("open_id") or ""
        if not isinstance(open_id, str):
            return None
        try:
            content = json.loads(msg.get("content") or "{}")
        except (TypeError, json.JSONDecodeError):
            return None
        text = content.get("text") if isinstance(content, dict) else ""
        if not isinstance(text, str):
            return None
        text = text.strip()
        if not text or not open_id:
            return None

        extra: dict[str, Any] = {}
        create_time = str(msg.get("create_time") or "")
        if create_time.isdigit():
            extra["timestamp"] = datetime.fromtimestamp(int(create_time) / 1000, UTC)

        chat_id = msg.get("chat_id") or open_id
        return create_message(
            channel=self.platform,
            sender_id=open_id,
            reply_target=chat_id,
            text=text,
            channel_message_id=msg.get("message_id", ""),
            metadata={
                "chat_id": chat_id,
                "chat_type": msg.get("chat_type", ""),
                "event_id": header.get("event_id", ""),
            },
            **extra,
        )

    # ------------------------------------------------------------------
    # Open Platform API
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.api_base, timeout=30.0)
        return self._http

    async def _tenant_access_token(self, *, force_refresh: bool = False) -> str:
        """Return a cached tenant access token, fetching a new one when stale."""
        async with self._token_lock:
            now = time.monotonic()
            if not force_refresh and self._token and now < self._token_expires_at:
                return self._token

            data = await self._api(
                "POST",
                "/auth/v3/tenant_access_token/internal",
                body={"app_id": self._app_id, "app_secret": self._app_secret},
                authenticated=False,
            )
            token = data.get("tenant_access_token")
            if not token:
                raise TransportError("tenant_access_token missing from response", channel=self.platform)

            expire = int(data.get("expire", 7200))
            self._token = token
            self._token_expires_at = now + max(expire - _TOKEN_REFRESH_MARGIN, 0)
            return token

    async def _api(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> dict[str, Any]:
        """Call the Open Platform API and return the decoded body.

        Raises:
            TransportError: network failure, HTTP error status, or a
                non-zero ``code`` in the response body.
        """
        headers: dict[str, str] = {}
        if authenticated:
            headers["Authorization"] = f"Bearer {await self._tenant_access_token()}"

        try:
            resp = await self._client().request(method, path, params=params, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}", channel=self.platform) from exc

        if resp.status_code >= 400:
            raise TransportError(
                f"{method} {path} returned {resp.status_code}: {resp.text}",
                channel=self.platform,
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned invalid JSON", channel=self.platform) from exc
        if not isinstance(data, dict):
            raise TransportError(
                f"{method} {path} returned {type(data).__name__}, expected a JSON object",
                channel=self.platform,
                status_code=resp.status_code,
            )

        code = data.get("code", 0)
        if code != 0:
            raise TransportError(
                f"{method} {path} failed with code {code}: {data.get('msg', '')}",
                channel=self.platform,
                status_code=resp.status_code,
            )
        return data


def _as_dict(value: object) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _settle(future: asyncio.Future[None], exc: BaseException | None) -> None:
    if future.done():
        return
    if exc is None:
        future.set_result(None)
    else:
        future.set_exception(exc)
