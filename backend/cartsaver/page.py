"""The storefront page as the engine sees it: a path, some geometry and a signal hub."""

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, DefaultDict, Dict, List, Optional

from .logger import logger

POINTER_LEAVE = "pointer_leave"
POINTER_MOVE = "pointer_move"
KEY_DOWN = "key_down"
SCROLL = "scroll"
OVERLAY_BACKDROP = "overlay_backdrop"
OVERLAY_CLOSE = "overlay_close"
OVERLAY_CTA = "overlay_cta"
OVERLAY_COPY = "overlay_copy"

Listener = Callable[[Dict[str, Any]], None]


@dataclass
class Rect:
    top: float
    bottom: float


class Page:
    def __init__(
        self,
        path: str = "/",
        viewport_height: float = 0,
        cart_token: Optional[str] = None,
        cart_value: Optional[float] = None,
    ):
        self.path = path
        self.viewport_height = viewport_height
        self.cart_token = cart_token
        self.cart_value = cart_value
        self.shipping_rect: Optional[Rect] = None
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)

    def on(self, signal: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to a signal. Returns an idempotent unsubscribe callback."""
        self._listeners[signal].append(listener)

        def off() -> None:
            try:
                self._listeners[signal].remove(listener)
            except ValueError:
                pass

        return off

    def listener_count(self, signal: str) -> int:
        return len(self._listeners.get(signal, ()))

    def emit(self, signal: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Deliver a signal to its listeners. A failing listener never reaches the caller."""
        data = data or {}
        try:
            self._observe(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed geometry on {signal}: {e}")
        for listener in list(self._listeners.get(signal, ())):
            try:
                listener(data)
            except Exception as e:
                logger.error(f"Listener for {signal} failed: {e}")

    def on_cart_page(self, cart_path: str) -> bool:
        return cart_path in self.path

    def shipping_in_view(self) -> bool:
        rect = self.shipping_rect
        if rect is None:
            return False
        return rect.top >= 0 and rect.bottom <= self.viewport_height

    def _observe(self, data: Dict[str, Any]) -> None:
        # Geometry rides along with scroll signals from the host.
        if "viewport_height" in data:
            self.viewport_height = float(data["viewport_height"])
        if "shipping_rect" in data:
            rect = data["shipping_rect"]
            self.shipping_rect = Rect(top=float(rect["top"]), bottom=float(rect["bottom"])) if rect else None
