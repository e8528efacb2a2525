"""Tests for yfinance price lookups and stale-data refresh."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, Mock, patch

import pandas as pd
import pytest

from marketbrief.data.price_service import (
    MARKET_INDICES,
    PriceService,
    PriceSync,
    Quote,
    is_52_week_suspicious,
    is_data_missing,
)

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _ticker(fast_info, closes):
    ticker = MagicMock()
    ticker.fast_info = fast_info
    ticker.history.return_value = pd.DataFrame({"Close": closes})
    return ticker


@patch("marketbrief.data.price_service.yf.Ticker")
def test_get_quote_from_fast_info(mock_ticker):
    mock_ticker.return_value = _ticker(
        {"lastPrice": 110.0, "previousClose": 100.0, "yearHigh": 150.0, "yearLow": 80.0}, [99.0, 100.0]
    )
    service = PriceService()

    quote = service.get_quote("AAPL")

    assert quote.price == 110.0
    assert quote.change == pytest.approx(10.0)
    assert quote.change_pct == pytest.approx(10.0)
    assert quote.week_52_high == 150.0
    assert service.metrics.summary()["yfinance"]["successes"] == 1


@patch("marketbrief.data.price_service.yf.Ticker")
def test_get_quote_falls_back_to_history(mock_ticker):
    mock_ticker.return_value = _ticker({}, [98.0, 99.0, 101.0])

    quote = PriceService().get_quote("FXAIX")

    assert quote.price == 101.0
    assert quote.previous_close == 99.0


@patch("marketbrief.data.price_service.yf.Ticker")
def test_get_quote_without_price(mock_ticker):
    mock_ticker.return_value = _ticker({}, [])
    service = PriceService()

    assert service.get_quote("NOPE") is None
    assert service.metrics.summary()["yfinance"]["failures"] == 1


@patch("marketbrief.data.price_service.yf.Ticker")
def test_get_quote_swallows_provider_errors(mock_ticker):
    mock_ticker.side_effect = RuntimeError("rate limited")
    assert PriceService().get_quote("AAPL") is None
    assert PriceService().get_quote("") is None


def test_month_year_changes():
    service = PriceService()
    closes = pd.DataFrame({"Close": [float(v) for v in range(100, 130)]})
    with patch.object(service, "get_price_history", return_value=closes):
        changes = service.get_month_year_changes("AAPL", 130.0)

    # 21 trading days back from the last close
    assert changes["month_change"] == pytest.approx(21.0)
    assert changes["month_change_pct"] == pytest.approx(21.0 / 109.0 * 100)
    assert changes["year_change"] == pytest.approx(30.0)
    assert changes["year_change_pct"] == pytest.approx(30.0)


def test_month_year_changes_short_history():
    service = PriceService()
    closes = pd.DataFrame({"Close": [50.0, 55.0, 60.0]})
    with patch.object(service, "get_price_history", return_value=closes):
        changes = service.get_month_year_changes("NEW", 60.0)
    assert changes["month_change"] == pytest.approx(10.0)
    assert changes["year_change"] == pytest.approx(10.0)

    with patch.object(service, "get_price_history", return_value=pd.DataFrame()):
        assert service.get_month_year_changes("NEW", 60.0) is None


def test_is_data_missing():
    asset = {"current_price": 0.0, "week_52_high": 200.0, "week_52_low": 0}
    assert is_data_missing(asset, ["current_price"]) is False
    assert is_data_missing(asset, ["week_52_low"]) is True
    assert is_data_missing(asset, ["month_change"]) is True


@pytest.mark.parametrize("high, low, price, expected", [
    (200.0, 120.0, 150.0, False),
    (200.0, 198.0, 199.0, True),   # daily range saved as 52-week range
    (200.0, 120.0, 220.0, True),   # above the high
    (200.0, 120.0, 100.0, True),   # below the low
    (None, 120.0, 150.0, True),
])
def test_is_52_week_suspicious(high, low, price, expected):
    asset = {"week_52_high": high, "week_52_low": low, "current_price": price}
    assert is_52_week_suspicious(asset) is expected


def test_sync_skips_fresh_assets():
    stored_now = NOW.replace(tzinfo=None)
    asset = {
        "id": 1, "symbol": "AAPL", "asset_type": "stock",
        "current_price": 150.0, "week_52_high": 200.0, "week_52_low": 120.0,
        "month_change": 3.0, "year_change": 12.0,
        "ev_ebitda": 20.0, "next_earnings_date": "2026-04-30",
        "prices_updated_at": stored_now - timedelta(minutes=10),
        "history_updated_at": stored_now - timedelta(hours=2),
        "fundamentals_updated_at": stored_now - timedelta(days=1),
    }
    db, prices = Mock(), Mock()

    counts = PriceSync(db, prices).sync_assets([asset], now=NOW)

    assert counts == {"prices": 0, "history": 0, "fundamentals": 0, "total_assets": 1}
    prices.get_quote.assert_not_called()
    db.update_asset_prices.assert_not_called()


def test_sync_refreshes_stale_assets(db):
    db.track_asset(db.add_user("jane@example.com"), "AAPL", "Apple Inc.")
    db.track_asset(db.add_user("sam@example.com"), "SPY", "SPDR S&P 500 ETF Trust")

    prices = Mock()
    prices.get_quote.side_effect = lambda symbol: Quote(
        symbol=symbol, price=190.0, previous_close=188.0, change=2.0, change_pct=1.06,
        week_52_high=200.0, week_52_low=150.0,
    )
    prices.get_month_year_changes.return_value = {
        "month_change": 5.0, "month_change_pct": 2.7, "year_change": 20.0, "year_change_pct": 11.8,
    }
    prices.get_fundamentals.return_value = {"ev_ebitda": 22.5, "next_earnings_date": "2026-04-30"}

    counts = PriceSync(db, prices).sync_assets(db.get_active_assets(), now=NOW)

    assert counts == {"prices": 2, "history": 2, "fundamentals": 1, "total_assets": 2}
    prices.get_fundamentals.assert_called_once_with("AAPL")

    apple = db.get_asset_by_symbol("AAPL")
    assert apple["current_price"] == 190.0
    assert apple["price_change_pct_24h"] == 1.06
    assert apple["year_change_pct"] == 11.8
    assert apple["ev_ebitda"] == 22.5
    assert apple["prices_updated_at"] == NOW.replace(tzinfo=None)

    spy = db.get_asset_by_symbol("SPY")
    assert spy["asset_type"] == "etf"
    assert spy["ev_ebitda"] is None


def test_ensure_market_indices(db):
    ids = PriceSync(db, Mock()).ensure_market_indices()

    assert len(ids) == len(MARKET_INDICES)
    assert db.get_asset_by_symbol("^GSPC")["asset_type"] == "index"
    # Idempotent
    assert PriceSync(db, Mock()).ensure_market_indices() == ids
