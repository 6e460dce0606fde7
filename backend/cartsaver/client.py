from typing import Optional

import httpx

from .settings import Settings


def create_http_client(
    app_settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared client for the storefront-facing CartSaver API (config, coupons, events)."""
    return httpx.AsyncClient(
        base_url=app_settings.api_host,
        timeout=app_settings.http_timeout_seconds,
        transport=transport,
    )
