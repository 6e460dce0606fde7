import math

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing import Literal, Optional, List, Dict, Any, Tuple, Union

from .logger import logger

NudgeType = Literal["exit_intent", "shipping_shock", "hesitant_browser"]
CouponType = Literal["percentage", "fixed"]
EventType = Literal["impression", "click", "dismissed", "converted"]
NudgeId = Union[int, str]

NUDGE_TYPES = ("exit_intent", "shipping_shock", "hesitant_browser")
DEFAULT_MAX_PER_SESSION = 2
DEFAULT_COOLDOWN_HOURS = 24


class NudgeDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: NudgeId
    type: NudgeType
    headline: Optional[str] = None
    body_text: Optional[str] = None
    cta_text: Optional[str] = None
    coupon_enabled: bool = False
    coupon_type: CouponType = "percentage"
    coupon_value: Optional[float] = None
    delay_seconds: Optional[float] = None
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    display_config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("trigger_config", "display_config", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or {}

    @field_validator("coupon_type", mode="before")
    @classmethod
    def _default_coupon_type(cls, value):
        return value or "percentage"

    def delay(self, default: float = 0.0) -> float:
        """Seconds to wait between detection and firing; zero or unset means ``default``."""
        return self.delay_seconds or default

    def trigger_seconds(self, key: str, default: float) -> float:
        """Read a duration from ``trigger_config``, falling back when absent or not a positive number."""
        value = self.trigger_config.get(key)
        if isinstance(value, bool):
            return default
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            return default
        if not math.isfinite(seconds) or seconds <= 0:
            return default
        return seconds


class Configuration(BaseModel):
    """Per-visit snapshot returned by the config endpoint. Never mutated."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    max_per_session: int = DEFAULT_MAX_PER_SESSION
    cooldown_hours: float = DEFAULT_COOLDOWN_HOURS
    show_branding: bool = False
    custom_css: Optional[str] = None
    nudges: Tuple[NudgeDefinition, ...] = ()

    @field_validator("max_per_session", mode="before")
    @classmethod
    def _default_cap(cls, value):
        if value is None:
            return DEFAULT_MAX_PER_SESSION
        return max(int(value), 0)

    @field_validator("cooldown_hours", mode="before")
    @classmethod
    def _default_cooldown(cls, value):
        if value is None:
            return DEFAULT_COOLDOWN_HOURS
        return max(float(value), 0.0)

    @field_validator("nudges", mode="before")
    @classmethod
    def _valid_nudges_only(cls, value):
        if not value:
            return ()
        nudges = []
        for raw in value:
            if isinstance(raw, NudgeDefinition):
                nudges.append(raw)
                continue
            if not isinstance(raw, dict) or raw.get("type") not in NUDGE_TYPES:
                continue
            try:
                nudges.append(NudgeDefinition.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping invalid nudge {raw.get('id')}. Error={e}")
        return nudges

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_hours * 3600

    def nudge_for(self, nudge_type: str) -> Optional[NudgeDefinition]:
        for nudge in self.nudges:
            if nudge.type == nudge_type:
                return nudge
        return None


class SessionState(BaseModel):
    id: str
    nudges_shown: List[NudgeId] = Field(default_factory=list)
    created_at: int  # in milliseconds


class CouponGrant(BaseModel):
    code: str
    expires_at: Optional[str] = None


class Event(BaseModel):
    type: EventType
    nudge_id: NudgeId
    session_id: str
    cart_token: Optional[str] = None
    cart_value: Optional[float] = None
    coupon_used: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int  # in milliseconds

    def to_payload(self, shop_domain: str) -> Dict[str, Any]:
        return {
            "shop_domain": shop_domain,
            "nudge_id": self.nudge_id,
            "event_type": self.type,
            "session_id": self.session_id,
            "cart_token": self.cart_token,
            "cart_value": self.cart_value,
            "coupon_used": self.coupon_used,
            "metadata": self.metadata,
        }


# Visit bridge messages

class CartInfo(BaseModel):
    token: Optional[str] = None
    total_price: Optional[int] = None  # in cents


class StoredAreas(BaseModel):
    # null means the browser has that storage area disabled
    session: Optional[Dict[str, str]] = Field(default_factory=dict)
    local: Optional[Dict[str, str]] = Field(default_factory=dict)


class VisitInit(BaseModel):
    type: Literal["init"] = "init"
    shop_domain: str
    path: str = "/"
    viewport_height: float = 0
    cart: CartInfo = Field(default_factory=CartInfo)
    storage: StoredAreas = Field(default_factory=StoredAreas)


class SignalMessage(BaseModel):
    type: Literal["signal"]
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
