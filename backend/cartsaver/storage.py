"""Visit-scoped session record and durable per-nudge cooldown markers.

Both stores sit on a ``KeyValueStorage`` modelled on the browser's
``sessionStorage``/``localStorage``: string keys, string values, and an
exception when the medium is disabled. Every failure degrades open.
"""

import time
import uuid
from typing import Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from .errors import StorageUnavailable
from .logger import logger
from .schemas import NudgeId, SessionState

SESSION_KEY = "cartsaver_session"
COOLDOWN_KEY_PREFIX = "cartsaver_last_"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    """In-process storage. ``enabled=False`` behaves like a browser with storage blocked."""

    def __init__(self, initial: Optional[Dict[str, str]] = None, enabled: bool = True):
        self.data: Dict[str, str] = dict(initial or {})
        self.enabled = enabled

    def get(self, key: str) -> Optional[str]:
        if not self.enabled:
            raise StorageUnavailable(f"storage disabled, cannot read {key}")
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        if not self.enabled:
            raise StorageUnavailable(f"storage disabled, cannot write {key}")
        self.data[key] = value


def new_session_id() -> str:
    return f"cs_{uuid.uuid4().hex[:12]}{int(time.time() * 1000):x}"


class SessionStore:
    def __init__(self, storage: KeyValueStorage, clock: Callable[[], float] = time.time):
        self._storage = storage
        self._clock = clock
        self._session: Optional[SessionState] = None
        self.memory_only = False

    def get_session(self) -> SessionState:
        if self._session is None:
            self._session = self._restore() or SessionState(
                id=new_session_id(),
                nudges_shown=[],
                created_at=int(self._clock() * 1000),
            )
        return self._session

    def is_shown(self, nudge_id: NudgeId) -> bool:
        return nudge_id in self.get_session().nudges_shown

    def mark_shown(self, nudge_id: NudgeId) -> None:
        session = self.get_session()
        if nudge_id in session.nudges_shown:
            return
        session.nudges_shown.append(nudge_id)
        self._persist(session)

    def _restore(self) -> Optional[SessionState]:
        try:
            raw = self._storage.get(SESSION_KEY)
        except StorageUnavailable as e:
            logger.warning(f"Session storage unavailable, keeping session in memory. Error={e}")
            self.memory_only = True
            return None
        if not raw:
            return None
        try:
            session = SessionState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding corrupt session record. Error={e}")
            return None
        session.nudges_shown = list(dict.fromkeys(session.nudges_shown))
        return session

    def _persist(self, session: SessionState) -> None:
        if self.memory_only:
            return
        try:
            self._storage.set(SESSION_KEY, session.model_dump_json())
        except StorageUnavailable as e:
            logger.warning(f"Could not persist session, continuing in memory. Error={e}")
            self.memory_only = True


class CooldownStore:
    """Last-shown timestamps per nudge. Missing or unreadable records mean "never shown"."""

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    @staticmethod
    def key(nudge_id: NudgeId) -> str:
        return f"{COOLDOWN_KEY_PREFIX}{nudge_id}"

    def last_shown(self, nudge_id: NudgeId) -> Optional[float]:
        try:
            raw = self._storage.get(self.key(nudge_id))
        except StorageUnavailable:
            return None
        if not raw:
            return None
        try:
            return int(raw) / 1000
        except ValueError:
            logger.debug(f"Ignoring malformed cooldown marker for nudge {nudge_id}: {raw!r}")
            return None

    def set_shown(self, nudge_id: NudgeId, now: float) -> None:
        try:
            self._storage.set(self.key(nudge_id), str(int(now * 1000)))
        except StorageUnavailable as e:
            logger.warning(f"Could not store cooldown for nudge {nudge_id}. Error={e}")
