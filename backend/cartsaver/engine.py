import time
from typing import Callable, Dict, Optional

import httpx

from .config_loader import ConfigLoader
from .context import EngineContext
from .coordinator import TriggerCoordinator
from .coupons import CouponProvisioner
from .detectors import DETECTORS
from .logger import logger
from .overlay import OverlayController, Renderer
from .page import Page
from .reporter import EventReporter
from .schemas import Configuration
from .settings import Settings, settings as default_settings
from .storage import CooldownStore, KeyValueStorage, MemoryStorage, SessionStore
from .timers import Disposable


class NudgeEngine:
    """One visit's nudge engine.

    ``session_storage`` holds the visit record (tab scoped),
    ``local_storage`` the cooldown markers (durable). Both default to
    fresh in-memory stores.
    """

    def __init__(
        self,
        shop_domain: str,
        page: Page,
        renderer: Renderer,
        http: httpx.AsyncClient,
        session_storage: Optional[KeyValueStorage] = None,
        local_storage: Optional[KeyValueStorage] = None,
        app_settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self.shop_domain = shop_domain
        self.page = page
        self.renderer = renderer
        self.settings = app_settings
        self.clock = clock
        self._http = http
        self._session_storage = session_storage if session_storage is not None else MemoryStorage()
        self._local_storage = local_storage if local_storage is not None else MemoryStorage()
        self.loader = ConfigLoader(http)
        self.context: Optional[EngineContext] = None
        self.armed: Dict[str, Disposable] = {}
        self._started = False

    async def start(self) -> bool:
        """Load configuration and arm detectors. Returns False when nothing was armed."""
        if self._started:
            return self.context is not None
        self._started = True

        config = await self.loader.load(self.shop_domain)
        if config is None or not config.enabled:
            logger.info(f"Nudges disabled for {self.shop_domain}")
            return False

        self.context = self._build(config)
        self._arm(self.context)
        logger.info(f"Initialized for {self.shop_domain}, armed: {sorted(self.armed)}")
        return True

    def stop(self) -> None:
        for disposable in self.armed.values():
            disposable.dispose()
        if self.context is not None:
            self.context.overlay.stop()

    async def close(self) -> None:
        self.stop()
        if self.context is not None:
            await self.context.reporter.drain()

    def _build(self, config: Configuration) -> EngineContext:
        sessions = SessionStore(self._session_storage, self.clock)
        cooldowns = CooldownStore(self._local_storage)
        context = EngineContext(
            shop_domain=self.shop_domain,
            settings=self.settings,
            config=config,
            page=self.page,
            renderer=self.renderer,
            sessions=sessions,
            cooldowns=cooldowns,
            coupons=CouponProvisioner(self._http, sessions, self.settings.coupon_timeout_seconds),
            reporter=EventReporter(self._http, self.shop_domain),
            clock=self.clock,
        )
        context.overlay = OverlayController(context)
        context.coordinator = TriggerCoordinator(
            config, sessions, cooldowns, on_admit=context.overlay.start, clock=self.clock
        )
        return context

    def _arm(self, context: EngineContext) -> None:
        for nudge_type, detector_cls in DETECTORS.items():
            nudge = context.config.nudge_for(nudge_type)
            if nudge is None:
                continue
            try:
                detector = detector_cls(context)
                if not detector.applies():
                    continue
                self.armed[nudge_type] = detector.arm(nudge, context.coordinator.request_display)
            except Exception as e:
                logger.error(f"Could not arm {nudge_type} for nudge {nudge.id}: {e}")
