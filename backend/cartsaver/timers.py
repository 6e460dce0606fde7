"""Timer primitives with explicit cancellation handles.

All of them schedule on the running asyncio loop, so they must be created
from inside a coroutine or a loop callback.
"""

import asyncio
from typing import Callable, List, Optional


class Timer:
    """One-shot timer. ``start()`` re-arms, ``cancel()`` is always safe."""

    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = max(delay, 0.0)
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def start(self) -> "Timer":
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._run)
        return self

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _run(self) -> None:
        self._handle = None
        self._callback()


def call_later(delay: float, callback: Callable[[], None]) -> Timer:
    return Timer(delay, callback).start()


class Debouncer:
    """Trailing-edge debounce: ``callback`` runs once ``wait`` seconds pass with no new call."""

    def __init__(self, wait: float, callback: Callable[[], None]):
        self._timer = Timer(wait, callback)

    @property
    def pending(self) -> bool:
        return self._timer.pending

    def __call__(self, *_args, **_kwargs) -> None:
        self._timer.start()

    def cancel(self) -> None:
        self._timer.cancel()


class Disposable:
    """Collects cleanup callbacks and runs them once, newest first."""

    def __init__(self):
        self._callbacks: List[Callable[[], None]] = []
        self.disposed = False

    def add(self, callback: Callable[[], None]) -> Callable[[], None]:
        if self.disposed:
            callback()
        else:
            self._callbacks.append(callback)
        return callback

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        while self._callbacks:
            self._callbacks.pop()()
