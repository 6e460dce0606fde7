"""WebSocket page host.

A thin storefront shim opens ``/visits``, sends one ``init`` message and
then streams input signals. The engine answers with rendering commands.
Storage writes are applied locally at once and mirrored to the shim, so
admission bookkeeping never waits on the socket.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

import httpx
import orjson
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from fastapi.websockets import WebSocketState

from .engine import NudgeEngine
from .logger import get_logger
from .overlay import OverlayView
from .page import Page
from .schemas import SignalMessage, VisitInit
from .settings import Settings
from .storage import MemoryStorage

logger = get_logger("bridge")

Outbox = Callable[[Dict[str, Any]], None]


class BridgeStorage(MemoryStorage):
    """One browser storage area (``session`` or ``local``) mirrored over the socket."""

    def __init__(self, area: str, initial: Optional[Dict[str, str]], outbox: Outbox):
        super().__init__(initial, enabled=initial is not None)
        self.area = area
        self._outbox = outbox

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._outbox({"type": "store", "area": self.area, "key": key, "value": value})


class WebSocketRenderer:
    def __init__(self, outbox: Outbox):
        self._outbox = outbox

    def mount(self, view: OverlayView) -> None:
        self._outbox({
            "type": "mount",
            "nudge_id": view.nudge_id,
            "html": view.to_html(),
            "css": view.custom_css,
            "stylesheet": view.stylesheet,
        })

    def hide(self) -> None:
        self._outbox({"type": "hide"})

    def unmount(self) -> None:
        self._outbox({"type": "unmount"})

    def navigate(self, url: str) -> None:
        self._outbox({"type": "navigate", "url": url})

    def copy_text(self, text: str) -> None:
        self._outbox({"type": "clipboard", "text": text})


class VisitBridge:
    def __init__(self, websocket: WebSocket, http: httpx.AsyncClient, app_settings: Settings):
        self.websocket = websocket
        self._http = http
        self._settings = app_settings
        self._outbox: asyncio.Queue = asyncio.Queue()

    def post(self, message: Dict[str, Any]) -> None:
        self._outbox.put_nowait(message)

    async def run(self) -> None:
        init = await self._receive_init()
        if init is None:
            if self.websocket.client_state == WebSocketState.CONNECTED:
                await self.websocket.close(code=1003)
            return

        cart_value = init.cart.total_price / 100 if init.cart.total_price is not None else None
        page = Page(
            path=init.path,
            viewport_height=init.viewport_height,
            cart_token=init.cart.token,
            cart_value=cart_value,
        )
        engine = NudgeEngine(
            init.shop_domain,
            page,
            WebSocketRenderer(self.post),
            self._http,
            session_storage=BridgeStorage("session", init.storage.session, self.post),
            local_storage=BridgeStorage("local", init.storage.local, self.post),
            app_settings=self._settings,
        )
        writer = asyncio.create_task(self._write())
        try:
            enabled = await engine.start()
            self.post({"type": "ready", "enabled": enabled, "armed": sorted(engine.armed)})
            await self._pump(page)
        except WebSocketDisconnect:
            logger.info(f"Visit for {init.shop_domain} disconnected")
        finally:
            await engine.close()
            writer.cancel()

    async def _receive_init(self) -> Optional[VisitInit]:
        try:
            return VisitInit.model_validate_json(await self.websocket.receive_text())
        except WebSocketDisconnect:
            logger.info("Visit closed before init")
            return None
        except ValidationError as e:
            logger.warning(f"Rejected visit with malformed init message. Error={e}")
            return None

    async def _pump(self, page: Page) -> None:
        while True:
            raw = await self.websocket.receive_text()
            try:
                message = SignalMessage.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed visit message. Error={e}")
                continue
            page.emit(message.name, message.data)

    async def _write(self) -> None:
        while True:
            message = await self._outbox.get()
            await self.websocket.send_text(orjson.dumps(message).decode())
