import asyncio
import html
from dataclasses import dataclass, replace
from typing import Optional, Protocol, Set

from .context import EngineContext
from .coordinator import ActiveNudge
from .logger import logger
from .page import KEY_DOWN, OVERLAY_BACKDROP, OVERLAY_CLOSE, OVERLAY_COPY, OVERLAY_CTA
from .schemas import Event, NudgeDefinition, NudgeId
from .timers import Disposable, Timer, call_later

DEFAULT_HEADLINE = "Wait! Don't leave yet."
DEFAULT_BODY = "We have a special offer just for you."
DEFAULT_CTA = "Claim My Offer"
BRANDING = "Powered by CartSaver"


@dataclass(frozen=True)
class OverlayView:
    nudge_id: NudgeId
    headline: str
    body_text: str
    cta_text: str
    coupon_code: Optional[str] = None
    show_branding: bool = False
    custom_css: Optional[str] = None
    stylesheet: Optional[str] = None

    def to_html(self) -> str:
        esc = html.escape
        coupon = ""
        if self.coupon_code:
            coupon = (
                '<div id="cartsaver-coupon">'
                '<span id="cartsaver-coupon-label">Use code:</span>'
                f'<span id="cartsaver-coupon-code">{esc(self.coupon_code)}</span>'
                '<button id="cartsaver-copy-btn">Copy</button>'
                "</div>"
            )
        branding = f'<p id="cartsaver-branding">{BRANDING}</p>' if self.show_branding else ""
        return (
            f'<div id="cartsaver-overlay" role="dialog" aria-modal="true" aria-label="{esc(self.headline)}">'
            '<div id="cartsaver-backdrop"></div>'
            '<div id="cartsaver-modal">'
            '<button id="cartsaver-close" aria-label="Close">&times;</button>'
            f'<h2 id="cartsaver-headline">{esc(self.headline)}</h2>'
            f'<p id="cartsaver-body">{esc(self.body_text)}</p>'
            f"{coupon}"
            f'<button id="cartsaver-cta">{esc(self.cta_text)}</button>'
            f"{branding}"
            "</div></div>"
        )


class Renderer(Protocol):
    """Host side of the overlay. Any exception from ``mount`` counts as a failed render."""

    def mount(self, view: OverlayView) -> None: ...

    def hide(self) -> None: ...

    def unmount(self) -> None: ...

    def navigate(self, url: str) -> None: ...

    def copy_text(self, text: str) -> None: ...


class OverlayController:
    """Renders the admitted nudge and drives its single terminal transition.

    Accept and dismiss are mutually exclusive: ``ActiveNudge.terminate`` is
    claimed once and the loser is a no-op. After either, the context stays
    active through the exit animation, then is released.
    """

    def __init__(self, context: EngineContext):
        self.context = context
        self._tasks: Set[asyncio.Task] = set()
        self._handlers = Disposable()
        self._removal: Optional[Timer] = None

    def start(self, active: ActiveNudge) -> None:
        task = asyncio.create_task(self.present(active))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def build_view(self, nudge: NudgeDefinition) -> OverlayView:
        return OverlayView(
            nudge_id=nudge.id,
            headline=nudge.headline or DEFAULT_HEADLINE,
            body_text=nudge.body_text or DEFAULT_BODY,
            cta_text=nudge.cta_text or DEFAULT_CTA,
            show_branding=self.context.config.show_branding,
            custom_css=self.context.config.custom_css,
            stylesheet=self.context.settings.stylesheet,
        )

    async def present(self, active: ActiveNudge) -> None:
        nudge = active.nudge
        coupon = None
        if nudge.coupon_enabled:
            coupon = asyncio.create_task(self.context.coupons.provision(nudge))

        try:
            view = self.build_view(nudge)
            if coupon is not None:
                active.coupon_code = await coupon
                view = replace(view, coupon_code=active.coupon_code)

            self._handlers = self._attach(active)
            self.context.renderer.mount(view)
        except Exception as e:
            # Marks stay: a nudge that failed to render is not offered again.
            logger.error(f"Overlay for nudge {nudge.id} failed to render: {e}")
            self._handlers.dispose()
            self.context.coordinator.release(active)
            return

        active.rendered = True
        self._report("impression", active)

    def dismiss(self, active: Optional[ActiveNudge] = None) -> bool:
        active = active or self.context.coordinator.active
        if active is None or not active.rendered or not active.terminate():
            return False
        self._report("dismissed", active)
        self._begin_removal(active)
        return True

    def accept(self, active: Optional[ActiveNudge] = None) -> bool:
        active = active or self.context.coordinator.active
        if active is None or not active.rendered or not active.terminate():
            return False
        self._report("click", active, coupon_used=active.coupon_code)
        self._begin_removal(active)
        cart_path = self.context.settings.cart_path
        if self.context.page.path != cart_path:
            self.context.renderer.navigate(cart_path)
        return True

    def stop(self) -> None:
        self._handlers.dispose()
        if self._removal is not None:
            self._removal.cancel()
        for task in list(self._tasks):
            task.cancel()

    def _attach(self, active: ActiveNudge) -> Disposable:
        page = self.context.page
        handlers = Disposable()

        def on_key(data) -> None:
            if data.get("key") == "Escape":
                self.dismiss(active)

        handlers.add(page.on(OVERLAY_BACKDROP, lambda _: self.dismiss(active)))
        handlers.add(page.on(OVERLAY_CLOSE, lambda _: self.dismiss(active)))
        handlers.add(page.on(KEY_DOWN, on_key))
        handlers.add(page.on(OVERLAY_CTA, lambda _: self.accept(active)))
        if active.coupon_code:
            handlers.add(page.on(OVERLAY_COPY, lambda _: self.context.renderer.copy_text(active.coupon_code)))
        return handlers

    def _begin_removal(self, active: ActiveNudge) -> None:
        self._handlers.dispose()
        try:
            self.context.renderer.hide()
        except Exception as e:
            logger.warning(f"Overlay hide failed for nudge {active.nudge.id}: {e}")
        self._removal = call_later(
            self.context.settings.exit_animation_seconds,
            lambda: self._finish_removal(active),
        )

    def _finish_removal(self, active: ActiveNudge) -> None:
        self._removal = None
        try:
            self.context.renderer.unmount()
        except Exception as e:
            logger.warning(f"Overlay unmount failed for nudge {active.nudge.id}: {e}")
        finally:
            self.context.coordinator.release(active)

    def _report(self, event_type: str, active: ActiveNudge, **extra) -> None:
        ctx = self.context
        ctx.reporter.send(Event(
            type=event_type,
            nudge_id=active.nudge.id,
            session_id=ctx.sessions.get_session().id,
            cart_token=ctx.page.cart_token,
            cart_value=ctx.page.cart_value,
            timestamp=int(ctx.clock() * 1000),
            **extra,
        ))
