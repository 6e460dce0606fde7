from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .errors import ConfigUnavailable
from .logger import logger
from .schemas import Configuration


class ConfigLoader:
    """Fetches the configuration snapshot for a visit, once."""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http
        self._loaded = False
        self.config: Optional[Configuration] = None

    async def load(self, shop_domain: str) -> Optional[Configuration]:
        if self._loaded:
            return self.config
        try:
            self.config = await self._fetch(shop_domain)
        except ConfigUnavailable as e:
            logger.warning(f"Could not load config for {shop_domain}: {e}")
            self.config = None
        self._loaded = True
        return self.config

    async def _fetch(self, shop_domain: str) -> Configuration:
        try:
            resp = await self._http.get(f"/api/config/{quote(shop_domain, safe='')}")
        except httpx.HTTPError as e:
            raise ConfigUnavailable(f"request failed: {e}") from e
        if resp.is_error:
            raise ConfigUnavailable(f"unexpected status {resp.status_code}")
        try:
            return Configuration.model_validate_json(resp.content)
        except ValidationError as e:
            raise ConfigUnavailable(f"invalid payload: {e}") from e
