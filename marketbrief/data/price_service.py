"""Market data for tracked assets via yfinance.

``PriceService`` wraps yfinance calls and returns plain values or ``None``;
``PriceSync`` decides which stored asset fields are stale and refreshes them.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import yfinance as yf

from ..observability.provider_metrics import ProviderMetrics

logger = logging.getLogger(__name__)

PRICE_STALE = timedelta(hours=1)
HISTORY_STALE = timedelta(hours=24)
FUNDAMENTALS_STALE = timedelta(days=7)

TRADING_DAYS_PER_MONTH = 21

# Stored as ordinary assets so the briefing can report the day's index moves
MARKET_INDICES = {
    "^GSPC": "S&P 500",
    "^IXIC": "NASDAQ Composite",
    "^DJI": "Dow Jones Industrial Average",
}


@dataclass
class Quote:
    symbol: str
    price: float
    previous_close: Optional[float] = None
    change: Optional[float] = None
    change_pct: Optional[float] = None
    day_high: Optional[float] = None
    day_low: Optional[float] = None
    week_52_high: Optional[float] = None
    week_52_low: Optional[float] = None
    volume: Optional[float] = None
    market_cap: Optional[float] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _float(value: Any) -> Optional[float]:
    try:
        if value is None or pd.isna(value):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


class PriceService:
    """Fetches quotes, historical changes and fundamentals from yfinance only."""

    def __init__(self, metrics: Optional[ProviderMetrics] = None):
        self.metrics = metrics or ProviderMetrics()

    def get_quote(self, symbol: str) -> Optional[Quote]:
        """Latest quote for ``symbol``, or ``None`` when yfinance has no price."""
        if not symbol:
            return None

        started = perf_counter()
        try:
            stock = yf.Ticker(symbol)
            fast_info = getattr(stock, "fast_info", None) or {}
            price = _float(fast_info.get("lastPrice") or fast_info.get("last_price"))

            hist = stock.history(period="5d")
            if (price is None or price <= 0) and hist is not None and not hist.empty:
                price = _float(hist["Close"].dropna().iloc[-1])
            if price is None or price <= 0:
                self.metrics.timed_call("yfinance", False, started, error="no price")
                logger.warning(f"No price available for {symbol}")
                return None

            previous_close = _float(fast_info.get("previousClose") or fast_info.get("previous_close"))
            if previous_close is None and hist is not None and len(hist) >= 2:
                previous_close = _float(hist["Close"].dropna().iloc[-2])

            change = change_pct = None
            if previous_close:
                change = price - previous_close
                change_pct = change / previous_close * 100

            quote = Quote(
                symbol=symbol,
                price=price,
                previous_close=previous_close,
                change=change,
                change_pct=change_pct,
                day_high=_float(fast_info.get("dayHigh") or fast_info.get("day_high")),
                day_low=_float(fast_info.get("dayLow") or fast_info.get("day_low")),
                week_52_high=_float(fast_info.get("yearHigh") or fast_info.get("year_high")),
                week_52_low=_float(fast_info.get("yearLow") or fast_info.get("year_low")),
                volume=_float(fast_info.get("lastVolume") or fast_info.get("last_volume")),
                market_cap=_float(fast_info.get("marketCap") or fast_info.get("market_cap")),
            )
            self.metrics.timed_call("yfinance", True, started)
            return quote
        except Exception as exc:
            self.metrics.timed_call("yfinance", False, started, error=str(exc))
            logger.warning(f"PriceService failed to fetch quote for {symbol}: {exc}")
            return None

    def get_price_history(self, symbol: str, period: str = "1y", interval: str = "1d") -> pd.DataFrame:
        if not symbol:
            return pd.DataFrame()
        try:
            return yf.Ticker(symbol).history(period=period, interval=interval)
        except Exception as exc:
            logger.warning(f"PriceService failed historical fetch for {symbol}: {exc}")
            return pd.DataFrame()

    def get_month_year_changes(self, symbol: str, current_price: float) -> Optional[Dict[str, float]]:
        """One-month and one-year absolute and percent changes from daily closes."""
        hist = self.get_price_history(symbol, period="1y")
        if hist is None or hist.empty or "Close" not in hist:
            return None

        closes = hist["Close"].dropna()
        if closes.empty:
            return None

        month_base = float(closes.iloc[-TRADING_DAYS_PER_MONTH]) if len(closes) > TRADING_DAYS_PER_MONTH else float(closes.iloc[0])
        year_base = float(closes.iloc[0])

        changes = {}
        for key, base in (("month", month_base), ("year", year_base)):
            if base:
                changes[f"{key}_change"] = current_price - base
                changes[f"{key}_change_pct"] = (current_price - base) / base * 100
        return changes or None

    def get_fundamentals(self, symbol: str) -> Dict[str, Any]:
        """EV/EBITDA and next earnings date where yfinance provides them."""
        result: Dict[str, Any] = {}
        try:
            stock = yf.Ticker(symbol)
            info = stock.info or {}
            ev_ebitda = _float(info.get("enterpriseToEbitda"))
            if ev_ebitda is not None:
                result["ev_ebitda"] = ev_ebitda

            calendar = stock.calendar
            dates = calendar.get("Earnings Date") if isinstance(calendar, dict) else None
            if dates:
                result["next_earnings_date"] = str(min(dates))
        except Exception as exc:
            logger.warning(f"PriceService failed fundamentals fetch for {symbol}: {exc}")
        return result


def is_data_missing(asset: Dict[str, Any], fields: Iterable[str]) -> bool:
    """True when any field is empty; a zero 52-week bound also counts as missing."""
    for name in fields:
        value = asset.get(name)
        if value is None:
            return True
        if value == 0 and name in ("week_52_high", "week_52_low"):
            return True
    return False


def is_52_week_suspicious(asset: Dict[str, Any]) -> bool:
    """Detect a daily range saved as the 52-week range, or a stale range."""
    high = asset.get("week_52_high")
    low = asset.get("week_52_low")
    price = asset.get("current_price")
    if not high or not low or not price:
        return True

    range_pct = (high - low) / low * 100
    if range_pct < 5:
        logger.info(f"52-week range looks suspicious (only {range_pct:.1f}% range)")
        return True

    if price > high * 1.05 or price < low * 0.95:
        logger.info(f"Price {price} outside 52-week range ({low} - {high})")
        return True

    return False


def _is_stale(updated_at: Optional[datetime], max_age: timedelta, now: datetime) -> bool:
    if updated_at is None:
        return True
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return now - updated_at > max_age


class PriceSync:
    """Refresh stale price, history and fundamentals columns on stored assets."""

    def __init__(self, db, price_service: PriceService):
        self.db = db
        self.price_service = price_service

    def ensure_market_indices(self) -> List[int]:
        return [self.db.ensure_asset(symbol, name, "index") for symbol, name in MARKET_INDICES.items()]

    def sync_assets(self, assets: Iterable[Dict[str, Any]], force: bool = False, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or datetime.now(timezone.utc)
        stored_now = now.astimezone(timezone.utc).replace(tzinfo=None)
        results = {"prices": 0, "history": 0, "fundamentals": 0, "total_assets": 0}

        for asset in assets:
            results["total_assets"] += 1
            symbol = asset["symbol"]
            updates: Dict[str, Any] = {}

            prices_stale = (
                force
                or _is_stale(asset.get("prices_updated_at"), PRICE_STALE, now)
                or is_data_missing(asset, ["current_price", "week_52_high", "week_52_low"])
                or is_52_week_suspicious(asset)
            )
            history_stale = (
                force
                or _is_stale(asset.get("history_updated_at"), HISTORY_STALE, now)
                or is_data_missing(asset, ["month_change", "year_change"])
            )
            fundamentals_stale = (
                force
                or _is_stale(asset.get("fundamentals_updated_at"), FUNDAMENTALS_STALE, now)
                or is_data_missing(asset, ["ev_ebitda", "next_earnings_date"])
            )

            if prices_stale:
                quote = self.price_service.get_quote(symbol)
                if quote:
                    updates.update({
                        "current_price": quote.price,
                        "previous_close": quote.previous_close,
                        "price_change_24h": quote.change,
                        "price_change_pct_24h": quote.change_pct,
                        "day_high": quote.day_high,
                        "day_low": quote.day_low,
                        "week_52_high": quote.week_52_high,
                        "week_52_low": quote.week_52_low,
                        "volume": quote.volume,
                        "market_cap": quote.market_cap,
                        "prices_updated_at": stored_now,
                    })
                    results["prices"] += 1

            if history_stale:
                current_price = updates.get("current_price") or asset.get("current_price")
                if current_price:
                    changes = self.price_service.get_month_year_changes(symbol, current_price)
                    if changes:
                        updates.update(changes)
                        updates["history_updated_at"] = stored_now
                        results["history"] += 1

            if fundamentals_stale and asset.get("asset_type") in (None, "stock"):
                updates.update(self.price_service.get_fundamentals(symbol))
                updates["fundamentals_updated_at"] = stored_now
                results["fundamentals"] += 1

            if updates:
                try:
                    self.db.update_asset_prices(asset["id"], updates)
                    logger.info(f"{symbol}: saved {len(updates)} fields")
                except Exception as exc:
                    logger.error(f"{symbol}: update failed: {exc}")

        return results
