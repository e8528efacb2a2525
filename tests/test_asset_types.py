"""Tests for asset type inference and keyword generation."""

import pytest

from marketbrief.relevance.asset_types import (
    generate_asset_keywords,
    get_asset_metrics,
    infer_asset_type,
    is_mutual_fund,
)


@pytest.mark.parametrize("symbol,expected", [
    ("^GSPC", "index"),
    (".DJI", "index"),
    ("BTC-USD", "crypto"),
    ("eth", "crypto"),
    ("FXAIX", "mutual_fund"),
    ("VFIAX", "mutual_fund"),
    ("SPY", "etf"),
    ("XLK", "etf"),
    ("AAPL", "stock"),
])
def test_infer_asset_type_from_symbol(symbol, expected):
    assert infer_asset_type(symbol) == expected


def test_metadata_hint_beats_loose_fund_family_pattern():
    # IBM looks like an iShares ticker; vendor metadata says otherwise
    assert infer_asset_type("IBM") == "etf"
    assert infer_asset_type("IBM", {"type": "Common Stock"}) == "stock"
    assert infer_asset_type("ARKK", {"type": "ETF"}) == "etf"


def test_known_patterns_ignore_metadata():
    assert infer_asset_type("SPY", {"type": "Common Stock"}) == "etf"


def test_is_mutual_fund():
    assert is_mutual_fund("FXAIX")
    assert is_mutual_fund("ABC", asset_type="mutual_fund")
    assert is_mutual_fund("ABC", asset_type="Mutual Fund")
    assert not is_mutual_fund("AAPL")


def test_stock_keywords_include_clean_name():
    keywords = generate_asset_keywords("AAPL", "Apple Inc.")
    assert keywords == ["AAPL", "Apple Inc.", "Apple"]


def test_stock_keywords_without_suffix_are_deduplicated():
    assert generate_asset_keywords("TSLA", "Tesla") == ["TSLA", "Tesla"]


def test_mutual_fund_keywords_include_family_and_strategy():
    keywords = generate_asset_keywords("FCNTX", "Fidelity Contrafund")
    assert keywords[0] == "FCNTX"
    assert "Fidelity Contrafund" in keywords
    assert "Fidelity" in keywords
    assert "Fidelity's" in keywords
    assert "Contrafund" in keywords
    assert keywords[-2:] == ["fund", "mutual fund"]


def test_asset_metrics_for_fund_and_stock():
    fund = get_asset_metrics("VFIAX")
    assert fund["price_label"] == "NAV"
    assert fund["show_earnings"] is False

    stock = get_asset_metrics("MSFT")
    assert stock["price_label"] == "Price"
    assert stock["show_ev_ebitda"] is True
