#!/usr/bin/env python3
"""Read-only yield opportunity catalog backed by a local JSON document."""
from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from analysis.alert_rules import catalog_key
from analysis.models import Opportunity
from errors import ProviderError

def _parse_apy(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        apy = float(value)
    except (TypeError, ValueError):
        return None
    return apy if math.isfinite(apy) else None

def _parse_lockup(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        days = int(value)
    except (TypeError, ValueError):
        return 0
    return max(days, 0)

def _parse_item(item: Dict[str, Any]) -> Opportunity:
    return Opportunity(
        id=str(item.get("id", "")),
        title=str(item.get("title", "")),
        chain=str(item.get("chain", "")).lower(),
        asset=str(item.get("asset", "")).upper(),
        apy=_parse_apy(item.get("apy")),
        risk=item.get("risk"),
        lockup_days=_parse_lockup(item.get("lockupDays")),
        why_risk=item.get("whyRisk"),
        action_url=item.get("actionUrl"),
    )


class OpportunityCatalog:
    """Loads the catalog from disk on every read; nothing is cached."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> List[Opportunity]:
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw)
        except (OSError, ValueError) as exc:
            raise ProviderError("opportunity catalog", f"cannot read {self.path}: {exc}") from exc

        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ProviderError("opportunity catalog", f"{self.path} has no 'items' list")
        return [_parse_item(item) for item in items if isinstance(item, dict)]

    def index_by_asset_chain(self) -> Dict[Tuple[str, str], Opportunity]:
        """Maps (ASSET, chain) to its opportunity; a later entry overrides an earlier one."""
        index: Dict[Tuple[str, str], Opportunity] = {}
        for opportunity in self.load():
            index[catalog_key(opportunity.asset, opportunity.chain)] = opportunity
        return index

    def find_apy(self, asset: str, chain: str) -> Optional[float]:
        opportunity = self.index_by_asset_chain().get(catalog_key(asset, chain))
        return opportunity.apy if opportunity else None
