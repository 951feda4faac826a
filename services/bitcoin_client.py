#!/usr/bin/env python3
from typing import Optional
from urllib.parse import quote

import aiohttp

from constants import DEFAULT_BTC_API_BASE_URL, DEFAULT_HTTP_RETRIES, DEFAULT_HTTP_TIMEOUT, DEFAULT_RETRY_BACKOFF
from errors import ProviderError
from services.http_client import api_get


def _as_sats(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


class BitcoinClient:
    """Thin async wrapper for an Esplora-compatible API (blockstream.info, mempool.space)."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: Optional[str] = None,
        *,
        retries: int = DEFAULT_HTTP_RETRIES,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> None:
        self._session = session
        self._base_url = (base_url or DEFAULT_BTC_API_BASE_URL).rstrip('/')
        self._retries = retries
        self._timeout = timeout
        self._backoff = backoff

    async def get_balance_sats(self, address: str) -> int:
        """Confirmed balance in satoshi: funded minus spent output sums."""
        url = f"{self._base_url}/address/{quote(address, safe='')}"
        data = await api_get(
            self._session,
            url,
            provider='esplora',
            headers={'accept': 'application/json'},
            retries=self._retries,
            timeout=self._timeout,
            backoff=self._backoff,
        )
        stats = data.get('chain_stats') if isinstance(data, dict) else None
        if not isinstance(stats, dict):
            raise ProviderError('esplora', f"address stats missing for {address}")

        funded = _as_sats(stats.get('funded_txo_sum', 0))
        spent = _as_sats(stats.get('spent_txo_sum', 0))
        if funded is None or spent is None or funded < spent:
            raise ProviderError('esplora', f"malformed chain_stats {stats!r}")
        return funded - spent
