"""Trigger detectors.

Each detector watches page signals for one trigger type and fires at most
once per page: the first firing disposes every listener and timer it owns,
then hands the nudge to the coordinator. The coordinator's answer is not
looked at; rejected firings are simply done.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, Dict, Optional

from .context import EngineContext
from .logger import logger
from .page import KEY_DOWN, POINTER_LEAVE, POINTER_MOVE, SCROLL
from .schemas import NudgeDefinition
from .timers import Debouncer, Disposable, Timer, call_later

OnFire = Callable[[NudgeDefinition], Any]

DEFAULT_HESITATION_SECONDS = 45.0
DEFAULT_SHIPPING_FALLBACK_SECONDS = 8.0
DEFAULT_SHIPPING_DELAY_SECONDS = 3.0


class Detector(ABC):
    type: ClassVar[str]

    def __init__(self, context: EngineContext):
        self.context = context
        self.page = context.page
        self.settings = context.settings

    def applies(self) -> bool:
        return True

    def arm(self, nudge: NudgeDefinition, on_fire: OnFire) -> Disposable:
        armed = Disposable()

        def fire() -> None:
            if armed.disposed:
                return
            armed.dispose()
            logger.info(f"{self.type} trigger fired for nudge {nudge.id}")
            try:
                on_fire(nudge)
            except Exception as e:
                logger.error(f"Display request for nudge {nudge.id} failed: {e}")

        if self.applies():
            self.watch(nudge, fire, armed)
        return armed

    @abstractmethod
    def watch(self, nudge: NudgeDefinition, fire: Callable[[], None], armed: Disposable) -> None:
        """Register listeners and timers on ``armed``; call ``fire`` when the condition holds."""


def _vertical(data: Dict[str, Any]) -> Optional[float]:
    try:
        return float(data["y"])
    except (KeyError, TypeError, ValueError):
        return None


class ExitIntentDetector(Detector):
    """Pointer leaving through the top edge of the viewport."""

    type = "exit_intent"

    def watch(self, nudge, fire, armed):
        threshold = self.settings.exit_intent_threshold_px

        def on_leave(data: Dict[str, Any]) -> None:
            y = _vertical(data)
            if y is None or y > threshold:
                return
            off()
            armed.add(call_later(nudge.delay(0), fire).cancel)

        off = armed.add(self.page.on(POINTER_LEAVE, on_leave))


class HesitantBrowserDetector(Detector):
    """Fires after ``time_seconds`` with no settled burst of activity."""

    type = "hesitant_browser"

    def watch(self, nudge, fire, armed):
        countdown = Timer(nudge.trigger_seconds("time_seconds", DEFAULT_HESITATION_SECONDS), fire)
        restart = Debouncer(self.settings.activity_debounce_seconds, countdown.start)
        armed.add(countdown.cancel)
        armed.add(restart.cancel)
        for signal in (POINTER_MOVE, KEY_DOWN, SCROLL):
            armed.add(self.page.on(signal, restart))
        countdown.start()


class ShippingShockDetector(Detector):
    """Cart page only. Shipping cost scrolled into view, or a fallback timer, whichever is first."""

    type = "shipping_shock"

    def applies(self) -> bool:
        return self.page.on_cart_page(self.settings.cart_path)

    def watch(self, nudge, fire, armed):
        detected = False

        def settle(delay: float) -> None:
            nonlocal detected
            detected = True
            scroll_check.cancel()
            fallback.cancel()
            off_scroll()
            armed.add(call_later(delay, fire).cancel)

        def check_shipping() -> None:
            if not detected and self.page.shipping_in_view():
                settle(nudge.delay(DEFAULT_SHIPPING_DELAY_SECONDS))

        def on_fallback() -> None:
            if detected or self.context.overlay_active:
                return
            settle(nudge.delay(0))

        scroll_check = Debouncer(self.settings.scroll_debounce_seconds, check_shipping)
        fallback = Timer(
            nudge.trigger_seconds("fallback_seconds", DEFAULT_SHIPPING_FALLBACK_SECONDS),
            on_fallback,
        )
        armed.add(scroll_check.cancel)
        armed.add(fallback.cancel)
        off_scroll = armed.add(self.page.on(SCROLL, scroll_check))
        fallback.start()


DETECTORS: Dict[str, type] = {
    cls.type: cls
    for cls in (ExitIntentDetector, HesitantBrowserDetector, ShippingShockDetector)
}
