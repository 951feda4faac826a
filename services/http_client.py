#!/usr/bin/env python3
"""Shared async GET/POST helpers with timeout and bounded retry/backoff."""
import asyncio
import itertools
import logging
from typing import Any, Dict, Optional

import aiohttp

from constants import DEFAULT_HTTP_RETRIES, DEFAULT_HTTP_TIMEOUT, DEFAULT_RETRY_BACKOFF
from errors import ProviderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 425, 429})


def _is_retryable(status: int) -> bool:
    return status >= 500 or status in RETRYABLE_STATUSES


async def _request_json(
    open_request,
    *,
    provider: str,
    description: str,
    retries: int,
    backoff: float,
) -> Any:
    last_error: Optional[ProviderError] = None
    attempts = max(1, retries)
    for attempt in range(attempts):
        try:
            async with open_request() as response:
                if response.status >= 400:
                    error = ProviderError(provider, f"{description} failed", response.status)
                    if not _is_retryable(response.status):
                        raise error
                    last_error = error
                else:
                    try:
                        return await response.json(content_type=None)
                    except ValueError as exc:
                        raise ProviderError(provider, f"{description} returned malformed JSON") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            last_error = ProviderError(provider, f"{description} failed: {exc or type(exc).__name__}")

        if attempt < attempts - 1:
            await asyncio.sleep(backoff * (2 ** attempt))

    logger.error("%s request failed after %d attempts: %s", provider, attempts, last_error)
    raise last_error


async def api_get(
    session: aiohttp.ClientSession,
    url: str,
    *,
    provider: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    retries: int = DEFAULT_HTTP_RETRIES,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    backoff: float = DEFAULT_RETRY_BACKOFF,
) -> Any:
    """Makes an async GET request and returns the decoded JSON body, or raises ProviderError."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    return await _request_json(
        lambda: session.get(url, params=params, headers=headers, timeout=client_timeout),
        provider=provider,
        description=f"GET {url}",
        retries=retries,
        backoff=backoff,
    )


async def api_post(
    session: aiohttp.ClientSession,
    url: str,
    payload: Dict[str, Any],
    *,
    provider: str,
    headers: Optional[Dict[str, str]] = None,
    retries: int = DEFAULT_HTTP_RETRIES,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    backoff: float = DEFAULT_RETRY_BACKOFF,
) -> Any:
    """Makes an async JSON POST request and returns the decoded JSON body, or raises ProviderError."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    return await _request_json(
        lambda: session.post(url, json=payload, headers=headers, timeout=client_timeout),
        provider=provider,
        description=f"POST {url}",
        retries=retries,
        backoff=backoff,
    )


class JsonRpcClient:
    """Minimal JSON-RPC 2.0 client over a shared aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        rpc_url: str,
        *,
        provider: str,
        retries: int = DEFAULT_HTTP_RETRIES,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> None:
        self._session = session
        self._rpc_url = rpc_url
        self._provider = provider
        self._retries = retries
        self._timeout = timeout
        self._backoff = backoff
        self._request_ids = itertools.count(1)

    async def call(self, method: str, params: list) -> Any:
        request_id = next(self._request_ids)
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }
        data = await api_post(
            self._session,
            self._rpc_url,
            payload,
            provider=self._provider,
            retries=self._retries,
            timeout=self._timeout,
            backoff=self._backoff,
        )
        if not isinstance(data, dict):
            raise ProviderError(self._provider, f"{method} returned a non-object payload")
        if data.get('error'):
            error = data['error']
            message = error.get('message') if isinstance(error, dict) else str(error)
            raise ProviderError(self._provider, f"{method} error: {message}")
        if 'result' not in data:
            raise ProviderError(self._provider, f"{method} response has no result")
        return data['result']
