#!/usr/bin/env python3
"""Pure decision rules for threshold alerts: cooldown, condition and message text."""
import math
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Collection, Mapping, Optional, Tuple, Union

from analysis.models import Alert, Opportunity, PriceSnapshot
from errors import ConfigurationError

Number = Union[int, float, Decimal]


def cooldown_elapsed(last_triggered_at: Optional[datetime], cooldown, now: datetime) -> bool:
    """True when an alert may fire again. A never-triggered alert is always eligible."""
    if last_triggered_at is None:
        return True
    return now - last_triggered_at >= cooldown


def should_trigger(condition: str, current: Optional[Number], threshold: Number) -> bool:
    if current is None:
        return False
    if condition == 'above':
        return current > threshold
    if condition == 'below':
        return current < threshold
    return False


def parse_threshold(value) -> float:
    """Parses a stored threshold, raising ConfigurationError unless it is a finite real."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Threshold {value!r} is not a number")
    try:
        threshold = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Threshold {value!r} is not a number") from None
    if not math.isfinite(threshold):
        raise ConfigurationError(f"Threshold {value!r} is not finite")
    return threshold


def is_tracked_asset(alert: Alert, tracked_symbols: Collection[str]) -> bool:
    return alert.type != 'price' or alert.asset.upper() in tracked_symbols


def catalog_key(asset: str, chain: str) -> Tuple[str, str]:
    return (asset.upper(), chain.lower())


def resolve_current(
    alert: Alert,
    snapshot: Optional[PriceSnapshot],
    catalog_index: Optional[Mapping[Tuple[str, str], Opportunity]],
    tracked_symbols: Collection[str],
) -> Optional[Number]:
    """Looks up the metric an alert is compared against; None when it is unknown."""
    if alert.type == 'price':
        if snapshot is None or alert.asset.upper() not in tracked_symbols:
            return None
        return snapshot.get(alert.asset)
    if alert.type == 'apy':
        if catalog_index is None:
            return None
        opportunity = catalog_index.get(catalog_key(alert.asset, alert.chain))
        return opportunity.apy if opportunity else None
    return None


def format_number(value: Number) -> str:
    """Renders a number without exponent or trailing zeros (3000.0 -> '3000')."""
    try:
        normalized = Decimal(str(value)).normalize()
    except InvalidOperation:
        return str(value)
    return format(normalized, 'f')


def format_alert_message(alert: Alert, current: Number, threshold: Number) -> str:
    if alert.type == 'price':
        return (
            f"🔔 Price alert: {alert.asset} is {alert.condition} {format_number(threshold)} "
            f"(now ~{format_number(current)})"
        )
    return (
        f"🔔 APY alert: {alert.asset} ({alert.chain}) APY is {alert.condition} "
        f"{format_number(threshold)}% (now ~{format_number(current)}%)"
    )
