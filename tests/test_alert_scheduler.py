import asyncio
import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from alert_scheduler import AlertScheduler, TickReport
from analysis.models import Alert, Opportunity, PriceSnapshot
from errors import ProviderError
from storage import SQLiteRepository

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self):
        self.now = START

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeRepository:
    def __init__(self, alerts):
        self.alerts = {alert.id: alert for alert in alerts}
        self.marked = []
        self.fail_mark_for = set()

    async def list_enabled_with_target(self):
        return [replace(alert) for alert in self.alerts.values() if alert.enabled]

    async def get_alert(self, alert_id):
        alert = self.alerts.get(alert_id)
        return replace(alert) if alert is not None else None

    async def mark_alert_triggered(self, alert_id, triggered_at):
        if alert_id in self.fail_mark_for:
            raise RuntimeError("database is locked")
        self.marked.append((alert_id, triggered_at))
        self.alerts[alert_id].last_triggered_at = triggered_at
        return True


class FakePriceService:
    def __init__(self, prices, error=None):
        self.prices = prices
        self.error = error
        self.calls = 0

    @property
    def tracked_symbols(self):
        return frozenset(self.prices)

    async def get_prices_usd(self):
        self.calls += 1
        if self.error:
            raise self.error
        return PriceSnapshot(prices=self.prices, fetched_at=START, ttl_seconds=60)


class FakeCatalog:
    def __init__(self, items=(), error=None):
        self.items = list(items)
        self.error = error
        self.calls = 0

    def index_by_asset_chain(self):
        self.calls += 1
        if self.error:
            raise self.error
        return {(item.asset, item.chain): item for item in self.items}


class FakeNotifier:
    def __init__(self, result=True):
        self.result = result
        self.sent = []

    async def send(self, target, text):
        self.sent.append((target, text))
        return self.result


def _price_alert(**overrides):
    values = dict(
        id=1,
        owner="42",
        type="price",
        chain="evm",
        asset="ETH",
        condition="above",
        threshold=3000,
        cooldown_minutes=60,
        target="1001",
    )
    values.update(overrides)
    return Alert(**values)


def _apy_alert(**overrides):
    values = dict(
        id=2,
        owner="42",
        type="apy",
        chain="evm",
        asset="USDC",
        condition="below",
        threshold=5,
        cooldown_minutes=60,
        target="1001",
    )
    values.update(overrides)
    return Alert(**values)


def _scheduler(repository, prices=None, catalog=None, notifier=None, clock=None, price_error=None):
    price_service = FakePriceService(prices if prices is not None else {"ETH": Decimal("3200")}, error=price_error)
    return AlertScheduler(
        repository,
        price_service,
        catalog if catalog is not None else FakeCatalog(),
        notifier or FakeNotifier(),
        interval_seconds=0,
        clock=clock or FakeClock(),
    )


@pytest.mark.asyncio
async def test_price_alert_fires_once_then_respects_cooldown():
    clock = FakeClock()
    repository = FakeRepository([_price_alert()])
    notifier = FakeNotifier()
    scheduler = _scheduler(repository, notifier=notifier, clock=clock)

    first = await scheduler.run_tick()
    clock.advance(minutes=5)
    second = await scheduler.run_tick()

    assert notifier.sent == [("1001", "🔔 Price alert: ETH is above 3000 (now ~3200)")]
    assert repository.marked == [(1, START)]
    assert (first.fired, first.delivered) == (1, 1)
    assert (second.fired, second.skipped) == (0, 1)


@pytest.mark.asyncio
async def test_alert_fires_again_once_cooldown_has_elapsed():
    clock = FakeClock()
    repository = FakeRepository([_price_alert()])
    notifier = FakeNotifier()
    scheduler = _scheduler(repository, notifier=notifier, clock=clock)

    await scheduler.run_tick()
    clock.advance(minutes=60)
    await scheduler.run_tick()

    assert len(notifier.sent) == 2


@pytest.mark.asyncio
async def test_apy_alert_without_catalog_entry_never_fires():
    repository = FakeRepository([_apy_alert()])
    notifier = FakeNotifier()
    catalog = FakeCatalog([Opportunity(id="usdc-sol", title="USDC", chain="sol", asset="USDC", apy=1.0)])
    clock = FakeClock()
    scheduler = _scheduler(repository, catalog=catalog, notifier=notifier, clock=clock)

    for _ in range(5):
        await scheduler.run_tick()
        clock.advance(hours=2)

    assert notifier.sent == []
    assert repository.marked == []
    assert catalog.calls == 5


@pytest.mark.asyncio
async def test_apy_alert_fires_from_catalog_and_skips_price_lookup():
    repository = FakeRepository([_apy_alert()])
    notifier = FakeNotifier()
    catalog = FakeCatalog([Opportunity(id="usdc-aave", title="Aave USDC", chain="evm", asset="USDC", apy=4.2)])
    scheduler = _scheduler(repository, catalog=catalog, notifier=notifier)

    await scheduler.run_tick()

    assert notifier.sent == [("1001", "🔔 APY alert: USDC (evm) APY is below 5% (now ~4.2%)")]
    assert scheduler.price_service.calls == 0


@pytest.mark.asyncio
async def test_failed_dispatch_does_not_persist_and_retries_next_tick():
    repository = FakeRepository([_price_alert()])
    notifier = FakeNotifier(result=False)
    clock = FakeClock()
    scheduler = _scheduler(repository, notifier=notifier, clock=clock)

    report = await scheduler.run_tick()
    assert (report.fired, report.failed, report.delivered) == (1, 1, 0)
    assert repository.marked == []

    notifier.result = True
    clock.advance(minutes=2)
    await scheduler.run_tick()

    assert len(notifier.sent) == 2
    assert repository.marked == [(1, clock.now)]


@pytest.mark.asyncio
async def test_error_in_one_alert_does_not_abort_the_tick():
    repository = FakeRepository([_price_alert(id=1), _price_alert(id=3, target="2002")])
    repository.fail_mark_for.add(1)
    notifier = FakeNotifier()
    scheduler = _scheduler(repository, notifier=notifier)

    report = await scheduler.run_tick()

    assert report.errored == 1
    assert report.delivered == 1
    assert [target for target, _ in notifier.sent] == ["1001", "2002"]
    assert [alert_id for alert_id, _ in repository.marked] == [3]


@pytest.mark.asyncio
async def test_price_provider_error_is_contained():
    repository = FakeRepository([_price_alert(), _apy_alert()])
    catalog = FakeCatalog([Opportunity(id="usdc-aave", title="Aave USDC", chain="evm", asset="USDC", apy=4.2)])
    notifier = FakeNotifier()
    scheduler = _scheduler(
        repository,
        catalog=catalog,
        notifier=notifier,
        price_error=ProviderError("coingecko", "simple/price failed", 503),
    )

    report = await scheduler.run_tick()

    assert report.price_error is not None
    assert [text for _, text in notifier.sent] == ["🔔 APY alert: USDC (evm) APY is below 5% (now ~4.2%)"]


@pytest.mark.asyncio
async def test_catalog_error_is_contained():
    repository = FakeRepository([_price_alert(), _apy_alert()])
    notifier = FakeNotifier()
    scheduler = _scheduler(
        repository,
        catalog=FakeCatalog(error=ProviderError("opportunity catalog", "cannot read")),
        notifier=notifier,
    )

    report = await scheduler.run_tick()

    assert report.catalog_error is not None
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_untargeted_alert_is_skipped():
    repository = FakeRepository([_price_alert(target=None)])
    notifier = FakeNotifier()
    scheduler = _scheduler(repository, notifier=notifier)

    report = await scheduler.run_tick()

    assert report.skipped == 1
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_non_finite_threshold_is_skipped_and_logged_once(caplog):
    repository = FakeRepository([_price_alert(threshold=math.nan)])
    notifier = FakeNotifier()
    clock = FakeClock()
    scheduler = _scheduler(repository, notifier=notifier, clock=clock)

    with caplog.at_level(logging.ERROR, logger="alert_scheduler"):
        await scheduler.run_tick()
        clock.advance(hours=2)
        await scheduler.run_tick()

    assert notifier.sent == []
    assert sum("misconfigured" in record.getMessage() for record in caplog.records) == 1


@pytest.mark.asyncio
async def test_untracked_price_symbol_never_fires_and_warns_once(caplog):
    repository = FakeRepository([_price_alert(asset="DOGE", threshold=0)])
    notifier = FakeNotifier()
    clock = FakeClock()
    scheduler = _scheduler(repository, notifier=notifier, clock=clock)

    with caplog.at_level(logging.WARNING, logger="alert_scheduler"):
        await scheduler.run_tick()
        clock.advance(hours=2)
        await scheduler.run_tick()

    assert notifier.sent == []
    assert sum("DOGE" in record.getMessage() for record in caplog.records) == 1


@pytest.mark.asyncio
async def test_overlapping_ticks_never_evaluate_the_same_alert_twice():
    repository = FakeRepository([_price_alert()])
    release = asyncio.Event()
    entered = asyncio.Event()

    class BlockingNotifier(FakeNotifier):
        async def send(self, target, text):
            self.sent.append((target, text))
            entered.set()
            await release.wait()
            return True

    notifier = BlockingNotifier()
    scheduler = _scheduler(repository, notifier=notifier)

    first = asyncio.create_task(scheduler.run_tick())
    await entered.wait()
    second = await scheduler.run_tick()
    release.set()
    first_report = await first

    assert len(notifier.sent) == 1
    assert second.skipped == 1
    assert first_report.delivered == 1


@pytest.mark.asyncio
async def test_start_keeps_ticking_after_a_failed_tick():
    scheduler = _scheduler(FakeRepository([]))
    scheduler.run_tick = AsyncMock(side_effect=[
        RuntimeError("boom"),
        TickReport(started_at=START),
        asyncio.CancelledError(),
    ])

    with pytest.raises(asyncio.CancelledError):
        await scheduler.start()

    assert scheduler.run_tick.await_count == 3
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_overlapping_tick_rereads_alert_fired_by_the_other_tick(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "radar.db")
    await repository.set_chat_id("42", "1001")
    for _ in range(2):
        await repository.create_alert(
            owner="42",
            alert_type="price",
            chain="evm",
            asset="ETH",
            condition="above",
            threshold=3000,
        )

    release = asyncio.Event()
    entered = asyncio.Event()

    class FirstSendBlocks(FakeNotifier):
        async def send(self, target, text):
            self.sent.append((target, text))
            if len(self.sent) == 1:
                entered.set()
                await release.wait()
            return True

    notifier = FirstSendBlocks()
    scheduler = _scheduler(repository, notifier=notifier)

    first = asyncio.create_task(scheduler.run_tick())
    await entered.wait()
    second = await scheduler.run_tick()
    release.set()
    first_report = await first

    assert len(notifier.sent) == 2
    assert (second.skipped, second.delivered) == (1, 1)
    assert (first_report.delivered, first_report.skipped) == (1, 1)

    await repository.close()


@pytest.mark.asyncio
async def test_alert_disabled_after_listing_is_not_sent():
    repository = FakeRepository([_price_alert()])
    notifier = FakeNotifier()
    scheduler = _scheduler(repository, notifier=notifier)

    original_list = repository.list_enabled_with_target

    async def list_then_disable():
        alerts = await original_list()
        repository.alerts[1].enabled = False
        return alerts

    repository.list_enabled_with_target = list_then_disable
    report = await scheduler.run_tick()

    assert notifier.sent == []
    assert report.skipped == 1


@pytest.mark.asyncio
async def test_trigger_time_is_taken_after_delivery():
    clock = FakeClock()
    repository = FakeRepository([_price_alert()])

    class SlowNotifier(FakeNotifier):
        async def send(self, target, text):
            clock.advance(seconds=12)
            return await super().send(target, text)

    scheduler = _scheduler(repository, notifier=SlowNotifier(), clock=clock)

    report = await scheduler.run_tick()

    assert report.started_at == START
    assert repository.marked == [(1, START + timedelta(seconds=12))]


@pytest.mark.asyncio
async def test_start_keeps_a_fixed_period_regardless_of_tick_duration(monkeypatch):
    ticker = {"now": 100.0}
    durations = [3, 15, 3]
    delays = []

    async def timed_tick():
        ticker["now"] += durations.pop(0)
        return TickReport(started_at=START)

    async def fake_sleep(delay):
        delays.append(delay)
        if len(delays) == 3:
            raise asyncio.CancelledError()
        ticker["now"] += delay

    scheduler = _scheduler(FakeRepository([]))
    scheduler.interval_seconds = 10
    scheduler.run_tick = timed_tick
    monkeypatch.setattr("alert_scheduler.monotonic", lambda: ticker["now"])
    monkeypatch.setattr("alert_scheduler.asyncio.sleep", fake_sleep)

    with pytest.raises(asyncio.CancelledError):
        await scheduler.start()

    assert delays == [7, 0, 7]
