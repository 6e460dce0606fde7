"""End-to-end tests for the nudge engine."""

import asyncio
import random

import pytest

from cartsaver.coordinator import Decision
from cartsaver.page import OVERLAY_CLOSE, POINTER_LEAVE, POINTER_MOVE, SCROLL, Page
from cartsaver.storage import MemoryStorage

from conftest import FakeClock, RecordingRenderer, config_payload, nudge


class CountingRenderer(RecordingRenderer):
    def __init__(self):
        super().__init__()
        self.visible = 0
        self.max_visible = 0

    def mount(self, view) -> None:
        super().mount(view)
        self.visible += 1
        self.max_visible = max(self.max_visible, self.visible)

    def unmount(self) -> None:
        super().unmount()
        self.visible -= 1


@pytest.mark.asyncio
async def test_missing_config_arms_nothing(api, make_engine, renderer):
    api.config = None
    page = Page(path="/cart")
    engine = make_engine(page)

    assert await engine.start() is False

    page.emit(POINTER_LEAVE, {"y": 0})
    page.emit(SCROLL, {"shipping_rect": {"top": 0, "bottom": 10}})
    await asyncio.sleep(0.05)
    engine.stop()

    assert engine.context is None
    assert engine.armed == {}
    assert renderer.calls == []
    assert page.listener_count(POINTER_LEAVE) == 0


@pytest.mark.asyncio
async def test_disabled_config_arms_nothing(api, make_engine):
    api.config = config_payload([nudge(1, "exit_intent")], enabled=False)
    engine = make_engine()

    assert await engine.start() is False
    assert engine.armed == {}


@pytest.mark.asyncio
async def test_start_is_idempotent(api, make_engine):
    api.config = config_payload([nudge(1, "exit_intent"), nudge(2, "shipping_shock")])
    engine = make_engine(Page(path="/products/hat"))

    assert await engine.start()
    assert await engine.start()

    assert api.config_requests == 1
    assert list(engine.armed) == ["exit_intent"]


@pytest.mark.asyncio
async def test_stop_disposes_detectors(api, make_engine):
    api.config = config_payload([nudge(1, "exit_intent"), nudge(2, "hesitant_browser")])
    page = Page()
    engine = make_engine(page)
    await engine.start()

    engine.stop()

    assert page.listener_count(POINTER_LEAVE) == 0
    assert page.listener_count(POINTER_MOVE) == 0


@pytest.mark.asyncio
async def test_session_cap_and_serialization_scenario(api, make_engine):
    api.config = config_payload(
        [
            nudge(1, "exit_intent"),
            nudge(2, "hesitant_browser", trigger_config={"time_seconds": 0.05}),
            nudge(3, "shipping_shock", trigger_config={"fallback_seconds": 0.3}),
        ],
        max_per_session=2,
        cooldown_hours=24,
    )
    session_storage, local_storage = MemoryStorage(), MemoryStorage()

    # Product page: exit intent shown, hesitant browser fires while it is open.
    first_page = Page(path="/products/hat")
    first = make_engine(first_page, session_storage, local_storage)
    await first.start()
    first_page.emit(POINTER_LEAVE, {"y": 3})
    await asyncio.sleep(0.1)

    assert first.context.sessions.get_session().nudges_shown == [1]
    assert "hesitant_browser" in first.armed and first.armed["hesitant_browser"].disposed

    first_page.emit(OVERLAY_CLOSE)
    await asyncio.sleep(0.05)
    await first.close()

    # Cart page in the same tab: hesitant browser admitted, cap reached, shipping shock rejected.
    cart_page = Page(path="/cart", viewport_height=800)
    second = make_engine(cart_page, session_storage, local_storage)
    await second.start()
    await asyncio.sleep(0.1)
    assert second.context.sessions.get_session().nudges_shown == [1, 2]

    cart_page.emit(OVERLAY_CLOSE)
    await asyncio.sleep(0.3)
    await second.close()

    assert second.context.coordinator.active is None
    assert [e["nudge_id"] for e in api.events_of("impression")] == [1, 2]
    assert len(api.events_of("dismissed")) == 2
    shipping = second.context.config.nudge_for("shipping_shock")
    assert second.context.coordinator.request_display(shipping) is Decision.SESSION_CAP


@pytest.mark.asyncio
async def test_cooldown_survives_new_session(api, make_engine):
    api.config = config_payload([nudge(1, "exit_intent")], max_per_session=5, cooldown_hours=24)
    local_storage = MemoryStorage()
    clock = FakeClock()

    async def visit():
        renderer = RecordingRenderer()
        page = Page()
        engine = make_engine(page, MemoryStorage(), local_storage, renderer=renderer, clock=clock)
        await engine.start()
        page.emit(POINTER_LEAVE, {"y": 0})
        await asyncio.sleep(0.02)
        page.emit(OVERLAY_CLOSE)
        await asyncio.sleep(0.05)
        await engine.close()
        return renderer.mounted

    assert len(await visit()) == 1
    clock.advance(3600)
    assert await visit() == []
    clock.advance(24 * 3600)
    assert len(await visit()) == 1


@pytest.mark.asyncio
async def test_engine_runs_with_storage_disabled(api, make_engine, renderer):
    api.config = config_payload([nudge(1, "exit_intent")])
    page = Page()
    engine = make_engine(page, MemoryStorage(enabled=False), MemoryStorage(enabled=False))
    await engine.start()

    page.emit(POINTER_LEAVE, {"y": 0})
    await asyncio.sleep(0.02)

    assert len(renderer.mounted) == 1
    assert engine.context.sessions.memory_only


@pytest.mark.asyncio
async def test_random_firing_order_keeps_invariants(api, make_engine):
    definitions = [
        nudge(1, "exit_intent"),
        nudge(2, "hesitant_browser", trigger_config={"time_seconds": 10}),
        nudge(3, "shipping_shock", trigger_config={"fallback_seconds": 10}),
    ]
    api.config = config_payload(definitions, max_per_session=2, cooldown_hours=0)
    renderer = CountingRenderer()
    page = Page(path="/cart")
    engine = make_engine(page, renderer=renderer)
    await engine.start()
    context = engine.context
    rng = random.Random(7)

    for _ in range(60):
        target = context.config.nudges[rng.randrange(3)]
        context.coordinator.request_display(target)
        context.coordinator.request_display(target)
        await asyncio.sleep(rng.choice([0, 0, 0.005]))
        if rng.random() < 0.3:
            page.emit(OVERLAY_CLOSE)
    page.emit(OVERLAY_CLOSE)
    await asyncio.sleep(0.05)
    await engine.close()

    shown = context.sessions.get_session().nudges_shown
    assert renderer.max_visible == 1
    assert len(shown) == len(set(shown)) <= 2
    impressions = [e["nudge_id"] for e in api.events_of("impression")]
    assert len(impressions) == len(set(impressions)) <= 2
    terminal = [e["nudge_id"] for e in api.events if e["event_type"] in ("click", "dismissed")]
    assert sorted(terminal) == sorted(impressions)
