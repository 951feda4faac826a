#!/usr/bin/env python3
import asyncio
import time
from typing import Dict, List, Optional

import aiohttp

from constants import COINGECKO_API_BASE_URL, DEFAULT_HTTP_RETRIES, DEFAULT_HTTP_TIMEOUT, DEFAULT_RETRY_BACKOFF
from errors import ProviderError
from services.http_client import api_get


class CoinGeckoClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: Optional[str] = None,
        *,
        base_url: str = COINGECKO_API_BASE_URL,
        rate_limit_delay: float = 2.0,
        retries: int = DEFAULT_HTTP_RETRIES,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        backoff: float = DEFAULT_RETRY_BACKOFF,
    ):
        self.session = session
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.headers = {'accept': 'application/json'}
        if self.api_key:
            self.headers['x-cg-demo-api-key'] = self.api_key
        self._last_request_time = 0.0
        self._rate_limit_delay = rate_limit_delay
        self._retries = retries
        self._timeout = timeout
        self._backoff = backoff

    async def _wait_for_rate_limit(self):
        elapsed = time.time() - self._last_request_time
        if elapsed < self._rate_limit_delay:
            await asyncio.sleep(self._rate_limit_delay - elapsed)
        self._last_request_time = time.time()

    async def get_price(self, coin_ids: List[str], vs_currencies: List[str]) -> Dict:
        """Returns the raw /simple/price payload, e.g. {'ethereum': {'usd': 3200.5}}."""
        await self._wait_for_rate_limit()
        url = f"{self.base_url}/simple/price"
        params = {'ids': ",".join(coin_ids), 'vs_currencies': ",".join(vs_currencies)}
        data = await api_get(
            self.session,
            url,
            provider='coingecko',
            params=params,
            headers=self.headers,
            retries=self._retries,
            timeout=self._timeout,
            backoff=self._backoff,
        )
        if not isinstance(data, dict):
            raise ProviderError('coingecko', 'simple/price returned a non-object payload')
        return data
