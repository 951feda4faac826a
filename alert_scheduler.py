# alert_scheduler.py
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import monotonic
from typing import Callable, Collection, Dict, Mapping, Optional, Set, Tuple

from analysis.alert_rules import (
    cooldown_elapsed,
    format_alert_message,
    parse_threshold,
    resolve_current,
    should_trigger,
)
from analysis.models import Alert, Opportunity, PriceSnapshot
from constants import DEFAULT_ALERT_INTERVAL
from errors import ConfigurationError
from services.opportunity_catalog import OpportunityCatalog
from services.price_cache import PriceService
from services.telegram_notifier import TelegramNotifier
from storage import SQLiteRepository

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """What happened to the enabled alerts during one evaluation pass."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    considered: int = 0
    skipped: int = 0
    fired: int = 0
    delivered: int = 0
    failed: int = 0
    errored: int = 0
    price_error: Optional[str] = None
    catalog_error: Optional[str] = None
    fired_ids: list = field(default_factory=list)


class AlertScheduler:
    def __init__(
        self,
        repository: SQLiteRepository,
        price_service: PriceService,
        catalog: Optional[OpportunityCatalog],
        notifier: TelegramNotifier,
        interval_seconds: float = DEFAULT_ALERT_INTERVAL,
        clock: Optional[Callable[[], datetime]] = None,
        tracked_symbols: Optional[Collection[str]] = None,
    ):
        self.repository = repository
        self.price_service = price_service
        self.catalog = catalog
        self.notifier = notifier
        self.interval_seconds = interval_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        if tracked_symbols is None:
            tracked_symbols = price_service.tracked_symbols
        self.tracked_symbols = frozenset(symbol.upper() for symbol in tracked_symbols)
        self.running = False
        self.last_report: Optional[TickReport] = None
        self._in_flight: Set[int] = set()
        self._warned_symbols: Set[str] = set()
        self._misconfigured: Set[int] = set()

    async def start(self):
        """
        Runs a tick every ``interval_seconds`` until cancelled.

        Ticks start on a fixed schedule measured from the first one. A tick that
        overruns its slot is followed immediately by the next and the schedule
        restarts from there.
        """
        self.running = True
        logger.info("Alert scheduler started, evaluating every %s seconds", self.interval_seconds)
        next_run = monotonic()
        try:
            while True:
                try:
                    report = await self.run_tick()
                    logger.info(
                        "Alert tick finished: %d considered, %d fired, %d delivered, %d failed, %d errored",
                        report.considered,
                        report.fired,
                        report.delivered,
                        report.failed,
                        report.errored,
                    )
                except Exception:
                    logger.exception("Alert tick failed")
                next_run += self.interval_seconds
                delay = next_run - monotonic()
                if delay < 0:
                    logger.warning("Alert tick overran the %s second interval", self.interval_seconds)
                    next_run = monotonic()
                    delay = 0
                await asyncio.sleep(delay)
        finally:
            self.running = False

    async def run_tick(self) -> TickReport:
        now = self._clock()
        report = TickReport(started_at=now)

        alerts = await self.repository.list_enabled_with_target()
        snapshot = await self._load_snapshot(alerts, report)
        catalog_index = self._load_catalog(alerts, report)

        for alert in alerts:
            report.considered += 1
            if alert.id in self._in_flight:
                logger.debug("Alert %s is already being evaluated; skipping", alert.id)
                report.skipped += 1
                continue
            self._in_flight.add(alert.id)
            try:
                # Rows listed at tick start may be stale if an overlapping tick fired them.
                current = await self.repository.get_alert(alert.id)
                if current is None or not current.enabled:
                    report.skipped += 1
                    continue
                await self._evaluate(current, now, snapshot, catalog_index, report)
            except Exception:
                logger.exception("Error while evaluating alert %s", alert.id)
                report.errored += 1
            finally:
                self._in_flight.discard(alert.id)

        report.finished_at = self._clock()
        self.last_report = report
        return report

    async def _load_snapshot(self, alerts, report: TickReport) -> Optional[PriceSnapshot]:
        if not any(alert.type == 'price' for alert in alerts):
            return None
        try:
            return await self.price_service.get_prices_usd()
        except Exception as exc:
            logger.error("Price lookup failed; price alerts are unresolved this tick: %s", exc)
            report.price_error = str(exc)
            return None

    def _load_catalog(self, alerts, report: TickReport) -> Optional[Mapping[Tuple[str, str], Opportunity]]:
        if self.catalog is None or not any(alert.type == 'apy' for alert in alerts):
            return None
        try:
            return self.catalog.index_by_asset_chain()
        except Exception as exc:
            logger.error("Opportunity catalog unavailable; APY alerts are unresolved this tick: %s", exc)
            report.catalog_error = str(exc)
            return None

    async def _evaluate(
        self,
        alert: Alert,
        now: datetime,
        snapshot: Optional[PriceSnapshot],
        catalog_index: Optional[Dict[Tuple[str, str], Opportunity]],
        report: TickReport,
    ) -> None:
        if not alert.target:
            report.skipped += 1
            return

        if not cooldown_elapsed(alert.last_triggered_at, alert.cooldown, now):
            report.skipped += 1
            return

        if alert.type == 'price' and alert.asset.upper() not in self.tracked_symbols:
            symbol = alert.asset.upper()
            if symbol not in self._warned_symbols:
                self._warned_symbols.add(symbol)
                logger.warning("No price source configured for %s; alert %s cannot fire", symbol, alert.id)

        try:
            threshold = parse_threshold(alert.threshold)
        except ConfigurationError as exc:
            if alert.id not in self._misconfigured:
                self._misconfigured.add(alert.id)
                logger.error("Alert %s is misconfigured: %s", alert.id, exc)
            report.skipped += 1
            return

        current = resolve_current(alert, snapshot, catalog_index, self.tracked_symbols)
        if not should_trigger(alert.condition, current, threshold):
            report.skipped += 1
            return

        report.fired += 1
        report.fired_ids.append(alert.id)
        text = format_alert_message(alert, current, threshold)
        if not await self.notifier.send(alert.target, text):
            logger.warning("Alert %s was not delivered to %s; it stays eligible", alert.id, alert.target)
            report.failed += 1
            return

        await self.repository.mark_alert_triggered(alert.id, self._clock())
        report.delivered += 1
        logger.info("Alert %s delivered to %s", alert.id, alert.target)
