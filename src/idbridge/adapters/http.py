"""HTTP helpers shared by IdP and directory clients."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from idbridge.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Failures worth retrying for idempotent requests
TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


def build_client(settings: Settings | None = None, **kwargs: Any) -> httpx.AsyncClient:
    """Create an AsyncClient with the configured timeout.

    Args:
        settings: Settings to read the timeout from.
        **kwargs: Extra AsyncClient arguments (base_url, headers).

    Returns:
        A new client. The caller closes it.
    """
    settings = settings or get_settings()
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds, **kwargs)


async def get_with_retry(
    client: httpx.AsyncClient,
    url: str,
    retries: int = 1,
    **kwargs: Any,
) -> httpx.Response:
    """Send a GET, retrying on network errors and 5xx responses.

    Only GETs go through here. Token exchanges are never retried since
    authorization codes are single-use.

    Args:
        client: Client to send with.
        url: Absolute or base-relative URL.
        retries: Extra attempts after the first.
        **kwargs: Passed to ``client.get``.

    Returns:
        The last response received.

    Raises:
        httpx.TransportError: If every attempt failed at the network level.
    """
    attempt = 0
    while True:
        try:
            response = await client.get(url, **kwargs)
        except TRANSIENT_ERRORS as e:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(f"GET {url} failed ({e!r}), retry {attempt}/{retries}")
            continue

        if response.status_code >= 500 and attempt < retries:
            attempt += 1
            logger.warning(
                f"GET {url} returned {response.status_code}, retry {attempt}/{retries}"
            )
            continue
        return response
