"""Pytest configuration and fixtures."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from cartsaver.context import EngineContext
from cartsaver.coupons import CouponProvisioner
from cartsaver.engine import NudgeEngine
from cartsaver.page import Page
from cartsaver.reporter import EventReporter
from cartsaver.schemas import Configuration
from cartsaver.settings import Settings
from cartsaver.storage import CooldownStore, MemoryStorage, SessionStore

API_HOST = "http://cartsaver.test"
SHOP = "demo-shop.myshopify.com"


def nudge(id, type, **overrides) -> Dict[str, Any]:
    data = {
        "id": id,
        "type": type,
        "headline": f"Headline {id}",
        "body_text": "Body",
        "cta_text": "Go",
        "coupon_enabled": False,
        "coupon_type": "percentage",
        "coupon_value": 10,
        "delay_seconds": 0,
        "trigger_config": {},
    }
    data.update(overrides)
    return data


def config_payload(nudges: List[Dict[str, Any]], **policy) -> Dict[str, Any]:
    payload = {
        "enabled": True,
        "max_per_session": 2,
        "cooldown_hours": 24,
        "show_branding": False,
        "custom_css": "",
        "nudges": nudges,
    }
    payload.update(policy)
    return payload


class FakeApi:
    """In-memory stand-in for the CartSaver storefront API."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config
        self.config_status = 200
        self.config_requests = 0
        self.coupon_code = "CARTSAVE10"
        self.coupon_status = 200
        self.coupon_delay = 0.0
        self.coupon_requests: List[Dict[str, Any]] = []
        self.events: List[Dict[str, Any]] = []
        self.events_status = 200

    def events_of(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event_type"] == event_type]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/api/config/"):
            self.config_requests += 1
            if self.config is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(self.config_status, json=self.config)
        if path == "/api/coupons/generate":
            self.coupon_requests.append(json.loads(request.content))
            if self.coupon_delay:
                await asyncio.sleep(self.coupon_delay)
            if self.coupon_status != 200:
                return httpx.Response(self.coupon_status, json={"error": "boom"})
            return httpx.Response(200, json={"code": self.coupon_code, "expires_at": "2026-10-19T00:00:00Z"})
        if path == "/api/events":
            self.events.append(json.loads(request.content))
            return httpx.Response(self.events_status, json={"ok": True})
        return httpx.Response(404)


class RecordingRenderer:
    def __init__(self, fail_mount: bool = False):
        self.fail_mount = fail_mount
        self.calls: List[tuple] = []
        self.mounted = []

    def mount(self, view) -> None:
        if self.fail_mount:
            raise RuntimeError("document.body is gone")
        self.mounted.append(view)
        self.calls.append(("mount", view.nudge_id))

    def hide(self) -> None:
        self.calls.append(("hide",))

    def unmount(self) -> None:
        self.calls.append(("unmount",))

    def navigate(self, url: str) -> None:
        self.calls.append(("navigate", url))

    def copy_text(self, text: str) -> None:
        self.calls.append(("copy", text))


class FakeClock:
    def __init__(self, now: float = 1_760_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        api_host=API_HOST,
        coupon_timeout_seconds=0.1,
        activity_debounce_seconds=0.02,
        scroll_debounce_seconds=0.02,
        exit_animation_seconds=0.03,
    )


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest_asyncio.fixture
async def http(api):
    async with httpx.AsyncClient(base_url=API_HOST, transport=httpx.MockTransport(api.handler)) as client:
        yield client


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_engine(http, renderer, fast_settings, clock):
    def factory(page: Optional[Page] = None, session_storage=None, local_storage=None, **kwargs) -> NudgeEngine:
        return NudgeEngine(
            SHOP,
            page or Page(path="/products/hat"),
            kwargs.pop("renderer", renderer),
            http,
            session_storage=session_storage,
            local_storage=local_storage,
            app_settings=fast_settings,
            clock=kwargs.pop("clock", clock),
        )

    return factory


@pytest.fixture
def make_context(http, renderer, fast_settings, clock):
    """Bare engine context for exercising detectors on their own."""

    def factory(page: Page, config: Optional[Configuration] = None) -> EngineContext:
        sessions = SessionStore(MemoryStorage(), clock)
        return EngineContext(
            shop_domain=SHOP,
            settings=fast_settings,
            config=config or Configuration(enabled=True),
            page=page,
            renderer=renderer,
            sessions=sessions,
            cooldowns=CooldownStore(MemoryStorage()),
            coupons=CouponProvisioner(http, sessions, fast_settings.coupon_timeout_seconds),
            reporter=EventReporter(http, SHOP),
            clock=clock,
        )

    return factory
