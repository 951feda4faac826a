"""In-process TTL cache and the USD price service built on it."""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from analysis.models import PriceSnapshot
from constants import DEFAULT_PRICE_CACHE_TTL, DEFAULT_TRACKED_ASSETS, PRICE_CACHE_KEY
from services.coingecko_client import CoinGeckoClient

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _CacheEntry:
    value: Any
    stored_at: datetime
    expires_at: datetime


class TTLCache:
    """Key/value store whose entries expire a fixed number of seconds after being set.

    An entry is served strictly before ``stored_at + ttl``; from that instant on it is
    a miss and is discarded. Entries are immutable and replaced with a single dict
    assignment, so concurrent readers see either the old or the new value.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or _utc_now
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            # Only drop the entry we inspected; a concurrent set() may have replaced it.
            if self._entries.get(key) is entry:
                del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        now = self._clock()
        self._entries[key] = _CacheEntry(
            value=value,
            stored_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _parse_usd(payload: Mapping[str, Any], coin_id: str) -> Optional[Decimal]:
    entry = payload.get(coin_id)
    if not isinstance(entry, dict):
        return None
    value = entry.get('usd')
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return Decimal(str(value))


class PriceService:
    """Serves the latest USD prices of the tracked assets, refreshing lazily on cache miss."""

    def __init__(
        self,
        coingecko_client: CoinGeckoClient,
        cache: Optional[TTLCache] = None,
        *,
        tracked_assets: Optional[Mapping[str, str]] = None,
        ttl_seconds: float = DEFAULT_PRICE_CACHE_TTL,
        clock: Optional[Clock] = None,
    ) -> None:
        self._client = coingecko_client
        self._clock = clock or _utc_now
        self._cache = cache if cache is not None else TTLCache(clock=self._clock)
        assets = tracked_assets if tracked_assets is not None else DEFAULT_TRACKED_ASSETS
        self._tracked_assets = {symbol.upper(): coin_id for symbol, coin_id in assets.items()}
        self._ttl_seconds = ttl_seconds
        self._refresh_lock = asyncio.Lock()

    @property
    def tracked_symbols(self) -> frozenset:
        return frozenset(self._tracked_assets)

    async def get_prices_usd(self) -> PriceSnapshot:
        cached = self._cache.get(PRICE_CACHE_KEY)
        if cached is not None:
            return cached

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock.
            cached = self._cache.get(PRICE_CACHE_KEY)
            if cached is not None:
                return cached
            snapshot = await self._fetch_snapshot()
            self._cache.set(PRICE_CACHE_KEY, snapshot, self._ttl_seconds)
            return snapshot

    async def _fetch_snapshot(self) -> PriceSnapshot:
        coin_ids = sorted(set(self._tracked_assets.values()))
        payload = await self._client.get_price(coin_ids=coin_ids, vs_currencies=['usd'])
        prices = {
            symbol: _parse_usd(payload, coin_id)
            for symbol, coin_id in self._tracked_assets.items()
        }
        missing = sorted(symbol for symbol, price in prices.items() if price is None)
        if missing:
            logger.warning("Price provider returned no USD price for: %s", ", ".join(missing))
        return PriceSnapshot(prices=prices, fetched_at=self._clock(), ttl_seconds=self._ttl_seconds)
