import asyncio
from typing import Optional

import httpx
from pydantic import ValidationError

from .errors import CouponUnavailable
from .logger import logger
from .schemas import CouponGrant, NudgeDefinition
from .storage import SessionStore


class CouponProvisioner:
    """Requests a discount code for a nudge, bounded by ``timeout`` seconds.

    Never raises: a slow or failing coupon service yields ``None`` and the
    nudge is rendered without its coupon block.
    """

    def __init__(self, http: httpx.AsyncClient, sessions: SessionStore, timeout: float):
        self._http = http
        self._sessions = sessions
        self._timeout = timeout

    async def provision(self, nudge: NudgeDefinition) -> Optional[str]:
        if not nudge.coupon_enabled:
            return None
        try:
            grant = await asyncio.wait_for(self._request(nudge), self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Coupon for nudge {nudge.id} not ready after {self._timeout}s, showing without it")
            return None
        except CouponUnavailable as e:
            logger.warning(f"Coupon for nudge {nudge.id} unavailable: {e}")
            return None
        return grant.code or None

    async def _request(self, nudge: NudgeDefinition) -> CouponGrant:
        payload = {"nudge_id": nudge.id, "session_id": self._sessions.get_session().id}
        try:
            resp = await self._http.post("/api/coupons/generate", json=payload)
        except httpx.HTTPError as e:
            raise CouponUnavailable(f"request failed: {e}") from e
        if resp.is_error:
            raise CouponUnavailable(f"unexpected status {resp.status_code}")
        try:
            return CouponGrant.model_validate_json(resp.content)
        except ValidationError as e:
            raise CouponUnavailable(f"invalid payload: {e}") from e
