"""
Shared utilities for provider modules.
"""
import asyncio
import aiohttp
import logging
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager

from nearby_places.providers.base import (
    AUTH_STATUSES,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def get_session(session: Optional[aiohttp.ClientSession] = None):
    """Context manager for aiohttp session handling.

    If session is provided, yields it.
    If not, creates a new session and closes it after use.
    """
    if session is not None:
        yield session
    else:
        async with aiohttp.ClientSession() as new_session:
            yield new_session


def raise_for_status(status: int, provider_name: str, url: str) -> None:
    """Translate a non-200 status into the matching ProviderError."""
    if status == 200:
        return
    details = {"status": status, "url": url}
    if status in AUTH_STATUSES:
        raise ProviderAuthError(f"{provider_name} request failed: {status}", provider_name, details)
    if status == 429:
        raise ProviderRateLimitError(f"{provider_name} rate limited: {status}", provider_name, details)
    raise ProviderError(f"{provider_name} request failed: {status}", provider_name, details)


async def http_get(
    url: str,
    provider_name: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 15,
    session: Optional[aiohttp.ClientSession] = None,
) -> Any:
    """
    HTTP GET returning parsed JSON.

    Args:
        url: The URL to request
        provider_name: Source name used in raised errors
        params: Query parameters
        headers: Request headers
        timeout: Request timeout in seconds
        session: Optional aiohttp session to reuse

    Returns:
        Parsed JSON response

    Raises:
        ProviderAuthError: On 401/403
        ProviderRateLimitError: On 429
        ProviderTimeoutError: If the request timed out
        ProviderError: On any other status or transport failure
    """
    try:
        async with get_session(session) as sess:
            async with sess.get(url, params=params, headers=headers,
                                timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
                raise_for_status(resp.status, provider_name, url)
                return await resp.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise ProviderTimeoutError(f"{provider_name} GET timed out after {timeout}s", provider_name,
                                   {"url": url}) from e
    except aiohttp.ClientError as e:
        logger.debug(f"HTTP GET {url} failed: {e}")
        raise ProviderError(f"{provider_name} GET failed: {e}", provider_name, {"url": url}) from e


async def http_post(
    url: str,
    provider_name: str,
    data: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 15,
    session: Optional[aiohttp.ClientSession] = None,
) -> Any:
    """
    HTTP form POST returning parsed JSON. Errors as for ``http_get``.
    """
    try:
        async with get_session(session) as sess:
            async with sess.post(url, data=data, headers=headers,
                                 timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
                raise_for_status(resp.status, provider_name, url)
                return await resp.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise ProviderTimeoutError(f"{provider_name} POST timed out after {timeout}s", provider_name,
                                   {"url": url}) from e
    except aiohttp.ClientError as e:
        logger.debug(f"HTTP POST {url} failed: {e}")
        raise ProviderError(f"{provider_name} POST failed: {e}", provider_name, {"url": url}) from e
