#!/usr/bin/env python3
from typing import Optional

import aiohttp

from constants import DEFAULT_HTTP_RETRIES, DEFAULT_HTTP_TIMEOUT, DEFAULT_RETRY_BACKOFF, DEFAULT_TONCENTER_BASE_URL
from errors import ProviderError
from services.http_client import api_get


class TonCenterClient:
    """Client for the TON Center v2 HTTP API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        retries: int = DEFAULT_HTTP_RETRIES,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> None:
        self._session = session
        self._base_url = (base_url or DEFAULT_TONCENTER_BASE_URL).rstrip('/')
        self._headers = {'accept': 'application/json'}
        if api_key:
            self._headers['X-API-Key'] = api_key
        self._retries = retries
        self._timeout = timeout
        self._backoff = backoff

    async def get_balance_nanotons(self, address: str) -> str:
        """Returns the balance as a decimal string of nanotons, e.g. '1500000000'."""
        data = await api_get(
            self._session,
            f"{self._base_url}/getAddressBalance",
            provider='toncenter',
            params={'address': address},
            headers=self._headers,
            retries=self._retries,
            timeout=self._timeout,
            backoff=self._backoff,
        )
        if not isinstance(data, dict) or data.get('ok') is not True:
            detail = data.get('error') if isinstance(data, dict) else None
            raise ProviderError('toncenter', f"getAddressBalance not ok: {detail or data!r}")

        result = data.get('result')
        if isinstance(result, int) and not isinstance(result, bool):
            result = str(result)
        if not isinstance(result, str) or not result.isdigit():
            raise ProviderError('toncenter', f"malformed balance {result!r}")
        return result
