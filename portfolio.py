# portfolio.py
import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, localcontext
from typing import Callable, Iterable, List, Mapping, Optional, Tuple

from analysis.models import CanonicalBalance, Portfolio, PortfolioFailure, PortfolioSummary, PriceSnapshot
from services.balance_adapters import BalanceAdapter, get_adapter
from services.price_cache import PriceService

logger = logging.getLogger(__name__)

# Enough digits for any uint256 wei balance times a price.
VALUATION_PRECISION = 100


def mask_address(address: str) -> str:
    if not address or len(address) < 10:
        return address
    return f"{address[:4]}…{address[-4:]}"


def value_balance(balance: CanonicalBalance, snapshot: PriceSnapshot) -> CanonicalBalance:
    """Attaches a USD value when the snapshot knows the asset's price; otherwise fiat stays None."""
    price = snapshot.get(balance.symbol)
    if price is None:
        return CanonicalBalance(chain=balance.chain, symbol=balance.symbol, amount=balance.amount, fiat=None)
    with localcontext() as ctx:
        ctx.prec = VALUATION_PRECISION
        fiat = balance.amount * price
    return CanonicalBalance(chain=balance.chain, symbol=balance.symbol, amount=balance.amount, fiat=fiat)


def sum_present(values: Iterable[Optional[Decimal]]) -> Optional[Decimal]:
    """Sums the values that are present. Returns None when none is present."""
    present = [value for value in values if value is not None]
    if not present:
        return None
    with localcontext() as ctx:
        ctx.prec = VALUATION_PRECISION
        return sum(present, Decimal(0))


class PortfolioAggregator:
    """Values (chain, address) pairs by combining balance adapters with the shared price snapshot."""

    def __init__(
        self,
        price_service: PriceService,
        adapters: Mapping[str, BalanceAdapter],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.price_service = price_service
        self.adapters = adapters
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def build_portfolio(self, chain: str, address: str) -> Portfolio:
        """
        Values a single address. Validation and provider errors propagate to the caller;
        a failed balance read is never reported as a zero balance.
        """
        adapter = get_adapter(self.adapters, chain)
        adapter.validate_address(address)
        snapshot = await self.price_service.get_prices_usd()
        return await self._value_address(adapter, address, snapshot)

    async def build_portfolios(self, requests: Iterable[Tuple[str, str]]) -> PortfolioSummary:
        """
        Values several addresses concurrently against one price snapshot.

        Each request succeeds or fails on its own: failures are collected next to the
        request that caused them and never abort the sibling requests.
        """
        requests = list(requests)
        snapshot = await self.price_service.get_prices_usd()

        async def _run(chain: str, address: str) -> Portfolio:
            adapter = get_adapter(self.adapters, chain)
            return await self._value_address(adapter, address, snapshot)

        results = await asyncio.gather(
            *(_run(chain, address) for chain, address in requests),
            return_exceptions=True,
        )

        portfolios: List[Portfolio] = []
        failures: List[PortfolioFailure] = []
        for (chain, address), result in zip(requests, results):
            if isinstance(result, Portfolio):
                portfolios.append(result)
            elif isinstance(result, Exception):
                logger.warning("Portfolio request for %s %s failed: %s", chain, mask_address(address), result)
                failures.append(PortfolioFailure(chain=chain, address_masked=mask_address(address), error=result))
            else:
                raise result

        total = sum_present(portfolio.total_fiat for portfolio in portfolios)
        return PortfolioSummary(
            portfolios=portfolios,
            failures=failures,
            total_fiat=total if total is not None else Decimal(0),
            updated_at=self._clock(),
        )

    async def _value_address(self, adapter: BalanceAdapter, address: str, snapshot: PriceSnapshot) -> Portfolio:
        balance = await adapter.fetch_balance(address)
        assets = [value_balance(balance, snapshot)]
        return Portfolio(
            chain=adapter.chain,
            address_masked=mask_address(address.strip()),
            total_fiat=sum_present(asset.fiat for asset in assets),
            assets=assets,
            updated_at=self._clock(),
        )
