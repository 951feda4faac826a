import json

import pytest

from errors import ProviderError
from services.opportunity_catalog import OpportunityCatalog


def _write_catalog(path, items):
    path.write_text(json.dumps({"updatedAt": "2024-01-01T00:00:00Z", "items": items}), encoding="utf-8")


def test_load_parses_items(tmp_path):
    path = tmp_path / "opportunities.json"
    _write_catalog(path, [
        {
            "id": "usdc-aave",
            "title": "Aave USDC",
            "chain": "EVM",
            "asset": "usdc",
            "apy": 4.6,
            "risk": "medium",
            "lockupDays": 7,
            "whyRisk": "Lending market",
            "actionUrl": "https://app.aave.com/",
        },
        {"id": "broken", "title": "No APY", "chain": "sol", "asset": "SOL", "apy": "n/a"},
        "not-an-object",
    ])

    items = OpportunityCatalog(path).load()

    assert len(items) == 2
    assert items[0].key == ("USDC", "evm")
    assert items[0].apy == 4.6
    assert items[0].lockup_days == 7
    assert items[0].action_url == "https://app.aave.com/"
    assert items[1].apy is None


def test_catalog_is_reloaded_on_every_read(tmp_path):
    path = tmp_path / "opportunities.json"
    _write_catalog(path, [{"id": "a", "title": "A", "chain": "evm", "asset": "USDC", "apy": 4.0}])
    catalog = OpportunityCatalog(path)
    assert catalog.find_apy("USDC", "evm") == 4.0

    _write_catalog(path, [{"id": "a", "title": "A", "chain": "evm", "asset": "USDC", "apy": 3.5}])
    assert catalog.find_apy("usdc", "EVM") == 3.5
    assert catalog.find_apy("USDC", "sol") is None


def test_later_entry_overrides_earlier_for_same_asset_and_chain(tmp_path):
    path = tmp_path / "opportunities.json"
    _write_catalog(path, [
        {"id": "first", "title": "First", "chain": "evm", "asset": "USDC", "apy": 4.0},
        {"id": "second", "title": "Second", "chain": "evm", "asset": "USDC", "apy": 6.0},
    ])

    index = OpportunityCatalog(path).index_by_asset_chain()

    assert index[("USDC", "evm")].id == "second"


@pytest.mark.parametrize("content", ["{not json", "[]", '{"items": {}}'])
def test_unreadable_catalog_is_a_provider_error(tmp_path, content):
    path = tmp_path / "opportunities.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ProviderError):
        OpportunityCatalog(path).load()


def test_missing_catalog_file_is_a_provider_error(tmp_path):
    with pytest.raises(ProviderError):
        OpportunityCatalog(tmp_path / "missing.json").index_by_asset_chain()
