from datetime import datetime, timezone
from decimal import Decimal

import pytest

from analysis.models import CanonicalBalance, PriceSnapshot
from errors import BalanceProviderError, ProviderError, ValidationError
from portfolio import PortfolioAggregator, mask_address, sum_present, value_balance
from services.balance_adapters import build_balance_adapters

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
EVM_ADDRESS = "0x" + "ab" * 20
BTC_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
SOL_ADDRESS = "So11111111111111111111111111111111111111112"
TON_ADDRESS = "EQ" + "A" * 46


class FakePriceService:
    def __init__(self, prices=None, error=None):
        self.prices = prices or {}
        self.error = error
        self.calls = 0

    @property
    def tracked_symbols(self):
        return frozenset(self.prices)

    async def get_prices_usd(self):
        self.calls += 1
        if self.error:
            raise self.error
        return PriceSnapshot(prices=self.prices, fetched_at=NOW, ttl_seconds=60)


class FakeChainClient:
    def __init__(self, raw=None, error=None):
        self.raw = raw
        self.error = error
        self.calls = 0

    async def _fetch(self, address):
        self.calls += 1
        if self.error:
            raise self.error
        return self.raw

    get_balance_wei = _fetch
    get_balance_sats = _fetch
    get_balance_lamports = _fetch
    get_balance_nanotons = _fetch


def _aggregator(price_service, evm=None, btc=None, sol=None, ton=None):
    adapters = build_balance_adapters(
        evm_client=evm or FakeChainClient(0),
        bitcoin_client=btc or FakeChainClient(0),
        solana_client=sol or FakeChainClient(0),
        ton_client=ton or FakeChainClient("0"),
    )
    return PortfolioAggregator(price_service, adapters, clock=lambda: NOW)


def test_mask_address():
    assert mask_address(EVM_ADDRESS) == "0xab…abab"
    assert mask_address("short") == "short"


def test_value_balance_without_price_leaves_fiat_unknown():
    balance = CanonicalBalance(chain="ton", symbol="TON", amount=Decimal("2"))
    snapshot = PriceSnapshot(prices={"TON": None}, fetched_at=NOW, ttl_seconds=60)

    assert value_balance(balance, snapshot).fiat is None


def test_value_balance_is_exact_for_large_amounts():
    balance = CanonicalBalance(chain="evm", symbol="ETH", amount=Decimal("123456789012.345678901234567891"))
    snapshot = PriceSnapshot(prices={"ETH": Decimal("3200.5")}, fetched_at=NOW, ttl_seconds=60)

    assert value_balance(balance, snapshot).fiat == Decimal("395123453234012.3453234012345351455")


def test_sum_present():
    assert sum_present([]) is None
    assert sum_present([None, None]) is None
    assert sum_present([Decimal("1.5"), None, Decimal("2")]) == Decimal("3.5")


@pytest.mark.asyncio
async def test_build_portfolio_values_balance():
    aggregator = _aggregator(FakePriceService({"ETH": Decimal("3000")}), evm=FakeChainClient(1500000000000000000))

    portfolio = await aggregator.build_portfolio("evm", EVM_ADDRESS)

    assert portfolio.chain == "evm"
    assert portfolio.address_masked == "0xab…abab"
    assert portfolio.assets[0].amount == Decimal("1.5")
    assert portfolio.assets[0].fiat == Decimal("4500")
    assert portfolio.total_fiat == Decimal("4500")
    assert portfolio.updated_at == NOW


@pytest.mark.asyncio
async def test_build_portfolio_with_unknown_price_has_no_total():
    aggregator = _aggregator(FakePriceService({"ETH": Decimal("3000"), "TON": None}), ton=FakeChainClient("2000000000"))

    portfolio = await aggregator.build_portfolio("ton", TON_ADDRESS)

    assert portfolio.assets[0].amount == Decimal("2")
    assert portfolio.assets[0].fiat is None
    assert portfolio.total_fiat is None


@pytest.mark.asyncio
async def test_build_portfolio_propagates_provider_error_instead_of_zero_balance():
    btc = FakeChainClient(error=ProviderError("esplora", "GET failed", 500))
    aggregator = _aggregator(FakePriceService({"BTC": Decimal("65000")}), btc=btc)

    with pytest.raises(BalanceProviderError) as excinfo:
        await aggregator.build_portfolio("btc", BTC_ADDRESS)
    assert excinfo.value.chain == "btc"


@pytest.mark.asyncio
async def test_build_portfolio_validates_before_fetching_prices():
    price_service = FakePriceService({"ETH": Decimal("3000")})
    evm = FakeChainClient(1)
    aggregator = _aggregator(price_service, evm=evm)

    with pytest.raises(ValidationError):
        await aggregator.build_portfolio("evm", "0xnot-an-address")
    with pytest.raises(ValidationError):
        await aggregator.build_portfolio("doge", EVM_ADDRESS)
    assert price_service.calls == 0
    assert evm.calls == 0


@pytest.mark.asyncio
async def test_build_portfolios_isolates_failures_and_sums_present_totals():
    price_service = FakePriceService({"ETH": Decimal("3000"), "SOL": Decimal("150"), "TON": None})
    aggregator = _aggregator(
        price_service,
        evm=FakeChainClient(10 ** 18),
        btc=FakeChainClient(error=ProviderError("esplora", "GET failed", 503)),
        sol=FakeChainClient(2000000000),
        ton=FakeChainClient("5000000000"),
    )

    summary = await aggregator.build_portfolios([
        ("evm", EVM_ADDRESS),
        ("btc", BTC_ADDRESS),
        ("sol", SOL_ADDRESS),
        ("ton", TON_ADDRESS),
        ("evm", "0xbad"),
    ])

    assert [p.chain for p in summary.portfolios] == ["evm", "sol", "ton"]
    assert summary.total_fiat == Decimal("3300")
    assert [f.chain for f in summary.failures] == ["btc", "evm"]
    assert isinstance(summary.failures[0].error, BalanceProviderError)
    assert isinstance(summary.failures[1].error, ValidationError)
    assert price_service.calls == 1
    assert summary.updated_at == NOW


@pytest.mark.asyncio
async def test_build_portfolios_total_is_zero_when_nothing_is_priced():
    aggregator = _aggregator(FakePriceService({"TON": None}), ton=FakeChainClient("5000000000"))

    summary = await aggregator.build_portfolios([("ton", TON_ADDRESS)])

    assert summary.total_fiat == Decimal(0)
    assert summary.portfolios[0].total_fiat is None


@pytest.mark.asyncio
async def test_build_portfolios_fails_whole_call_on_price_error():
    aggregator = _aggregator(FakePriceService(error=ProviderError("coingecko", "down", 503)))

    with pytest.raises(ProviderError):
        await aggregator.build_portfolios([("evm", EVM_ADDRESS)])
