#!/usr/bin/env python3
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class PriceSnapshot:
    """USD prices for the tracked assets, as fetched at a single instant."""
    prices: Mapping[str, Optional[Decimal]]
    fetched_at: datetime
    ttl_seconds: float

    def __post_init__(self):
        object.__setattr__(self, 'prices', MappingProxyType(dict(self.prices)))

    def get(self, symbol: str) -> Optional[Decimal]:
        return self.prices.get(symbol.upper())

    @property
    def expires_at(self) -> datetime:
        return self.fetched_at + timedelta(seconds=self.ttl_seconds)


@dataclass(frozen=True)
class CanonicalBalance:
    """A balance expressed as an exact amount of a chain's native asset."""
    chain: str
    symbol: str
    amount: Decimal
    fiat: Optional[Decimal] = None


@dataclass
class Portfolio:
    """Valuation of a single (chain, address) pair."""
    chain: str
    address_masked: str
    total_fiat: Optional[Decimal]
    assets: List[CanonicalBalance]
    updated_at: datetime


@dataclass
class PortfolioFailure:
    """A (chain, address) request that could not be valued, with its error."""
    chain: str
    address_masked: str
    error: Exception


@dataclass
class PortfolioSummary:
    """Result of valuing several (chain, address) pairs in one call."""
    portfolios: List[Portfolio]
    failures: List[PortfolioFailure]
    total_fiat: Decimal
    updated_at: datetime


@dataclass
class Alert:
    """A user-defined threshold alert joined with its notification target."""
    id: int
    owner: str
    type: str  # 'price' or 'apy'
    chain: str
    asset: str
    condition: str  # 'above' or 'below'
    threshold: Any
    frequency: str = 'instant'
    enabled: bool = True
    last_triggered_at: Optional[datetime] = None
    cooldown_minutes: int = 60
    target: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)


@dataclass(frozen=True)
class Opportunity:
    """A yield-bearing product listed in the opportunity catalog."""
    id: str
    title: str
    chain: str
    asset: str
    apy: Optional[float]
    risk: Optional[str] = None
    lockup_days: int = 0
    why_risk: Optional[str] = None
    action_url: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.asset, self.chain)
