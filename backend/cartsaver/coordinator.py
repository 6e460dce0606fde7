"""Single gatekeeper for nudge displays.

Admission and its bookkeeping run synchronously: the active placeholder,
the session mark and the cooldown marker are all written before anything
awaits, so a detector firing on the next loop turn already sees them.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .logger import logger
from .schemas import Configuration, NudgeDefinition
from .storage import CooldownStore, SessionStore


class Decision(str, Enum):
    ADMITTED = "admitted"
    ACTIVE = "active"
    ALREADY_SHOWN = "already_shown"
    SESSION_CAP = "session_cap"
    COOLDOWN = "cooldown"

    @property
    def admitted(self) -> bool:
        return self is Decision.ADMITTED


@dataclass(eq=False)
class ActiveNudge:
    nudge: NudgeDefinition
    coupon_code: Optional[str] = None
    rendered: bool = False
    terminated: bool = False

    def terminate(self) -> bool:
        """Claim the terminal transition. Only the first caller gets True."""
        if self.terminated:
            return False
        self.terminated = True
        return True


class TriggerCoordinator:
    def __init__(
        self,
        config: Configuration,
        sessions: SessionStore,
        cooldowns: CooldownStore,
        on_admit: Callable[[ActiveNudge], None],
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._sessions = sessions
        self._cooldowns = cooldowns
        self._on_admit = on_admit
        self._clock = clock
        self.active: Optional[ActiveNudge] = None

    def request_display(self, nudge: NudgeDefinition) -> Decision:
        decision = self._check(nudge)
        if not decision.admitted:
            logger.debug(f"Rejected nudge {nudge.id} ({nudge.type}): {decision.value}")
            return decision

        active = ActiveNudge(nudge=nudge)
        self.active = active
        self._sessions.mark_shown(nudge.id)
        self._cooldowns.set_shown(nudge.id, self._clock())
        logger.info(f"Admitted nudge {nudge.id} ({nudge.type})")

        self._on_admit(active)
        return decision

    def release(self, active: ActiveNudge) -> bool:
        if self.active is not active:
            return False
        self.active = None
        return True

    def _check(self, nudge: NudgeDefinition) -> Decision:
        if self.active is not None:
            return Decision.ACTIVE
        shown = self._sessions.get_session().nudges_shown
        if nudge.id in shown:
            return Decision.ALREADY_SHOWN
        if len(shown) >= self._config.max_per_session:
            return Decision.SESSION_CAP
        last_shown = self._cooldowns.last_shown(nudge.id)
        if last_shown is not None and self._clock() - last_shown < self._config.cooldown_seconds:
            return Decision.COOLDOWN
        return Decision.ADMITTED
