import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from .coupons import CouponProvisioner
from .page import Page
from .reporter import EventReporter
from .schemas import Configuration
from .settings import Settings
from .storage import CooldownStore, SessionStore

if TYPE_CHECKING:
    from .coordinator import TriggerCoordinator
    from .overlay import OverlayController, Renderer


@dataclass
class EngineContext:
    """Everything one visit's engine shares. Replaces page-level globals."""

    shop_domain: str
    settings: Settings
    config: Configuration
    page: Page
    renderer: "Renderer"
    sessions: SessionStore
    cooldowns: CooldownStore
    coupons: CouponProvisioner
    reporter: EventReporter
    clock: Callable[[], float] = time.time
    coordinator: Optional["TriggerCoordinator"] = field(default=None)
    overlay: Optional["OverlayController"] = field(default=None)

    @property
    def overlay_active(self) -> bool:
        return self.coordinator is not None and self.coordinator.active is not None
