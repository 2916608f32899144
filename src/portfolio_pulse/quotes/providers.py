"""Quote provider strategies and the fallback adapter."""

import functools
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..config import Config
from ..errors import AllSourcesFailed, ProviderError
from ..storage.models import AssetType, PriceRecord
from .client import RETRYABLE, QuoteClient, retry

logger = logging.getLogger(__name__)

YAHOO_CHART_URL = (
    "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}?interval={interval}&range={range}"
)
YAHOO_QUOTE_SUMMARY_URL = (
    "https://query1.finance.yahoo.com/v10/finance/quoteSummary/{symbol}?modules=price,summaryDetail"
)
NSE_QUOTE_URL = "https://www.nseindia.com/api/quote-equity?symbol={symbol}"
MF_NAV_URL = "https://api.mfapi.in/mf/{code}"

# (symbol) -> PriceRecord, raising on failure
PriceStrategy = Callable[[str], Awaitable[PriceRecord]]


@dataclass
class PricePoint:
    """One dated close in a price history."""

    date: str  # ISO date
    price: float


def base_symbol(symbol: str) -> str:
    """Strip exchange suffixes: 'RELIANCE.NS' -> 'RELIANCE'."""
    return symbol.strip().upper().replace(".NS", "").replace(".BO", "")


def to_nse_symbol(symbol: str) -> str:
    """All equities are treated as NSE listings."""
    return f"{base_symbol(symbol)}.NS"


def _as_price(value: Any) -> float | None:
    """Coerce a raw provider value to a usable positive price."""
    if isinstance(value, dict):
        value = value.get("raw")
    if value is None or value == "":
        return None
    try:
        price = float(str(value).replace(",", ""))
    except ValueError:
        return None
    if math.isnan(price) or price <= 0:
        return None
    return price


def malformed_payload(parse: Callable[[str, Any], PriceRecord]) -> Callable[[str, Any], PriceRecord]:
    """Report unexpected response shapes as provider failures."""

    @functools.wraps(parse)
    def wrapper(symbol: str, data: Any) -> PriceRecord:
        try:
            return parse(symbol, data)
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            raise ProviderError(f"{parse.__name__}: malformed payload for {symbol}: {e!r}") from e

    return wrapper


def normalize_quote(
    symbol: str,
    current: Any,
    previous: Any,
    source: str,
    currency: str | None = None,
    market_state: str | None = None,
) -> PriceRecord:
    """
    Build a PriceRecord from raw current/previous prices.

    Raises:
        ProviderError: If either price is missing or not positive
    """
    current_price = _as_price(current)
    previous_close = _as_price(previous)
    if current_price is None or previous_close is None:
        raise ProviderError(f"{source}: missing price data for {symbol}")

    change = current_price - previous_close
    change_percent = change / previous_close * 100
    return PriceRecord(
        symbol=symbol,
        current_price=round(current_price, 2),
        previous_close=round(previous_close, 2),
        change=round(change, 2),
        change_percent=round(change_percent, 2),
        source=source,
        currency=currency or "INR",
        market_state=market_state or "CLOSED",
    )


@malformed_payload
def parse_chart(symbol: str, data: dict) -> PriceRecord:
    """Parse a Yahoo v8 chart response."""
    results = (data.get("chart") or {}).get("result") or []
    if not results:
        raise ProviderError("yahoo_chart: no chart data in response")
    result = results[0]
    meta = result.get("meta") or {}

    current = meta.get("regularMarketPrice")
    if not current:
        quotes = (result.get("indicators") or {}).get("quote") or [{}]
        closes = [c for c in (quotes[0].get("close") or []) if c is not None]
        current = closes[-1] if closes else None
    previous = meta.get("previousClose") or meta.get("chartPreviousClose")

    return normalize_quote(
        symbol, current, previous, "yahoo_chart", meta.get("currency"), meta.get("marketState")
    )


@malformed_payload
def parse_quote_summary(symbol: str, data: dict) -> PriceRecord:
    """Parse a Yahoo v10 quoteSummary response."""
    results = (data.get("quoteSummary") or {}).get("result") or []
    price = results[0].get("price") if results else None
    if not price:
        raise ProviderError("yahoo_quote_summary: no price data in response")

    current = _as_price(price.get("regularMarketPrice")) or _as_price(price.get("postMarketPrice"))
    previous = price.get("regularMarketPreviousClose")
    return normalize_quote(
        symbol,
        current,
        previous,
        "yahoo_quote_summary",
        price.get("currency"),
        price.get("marketState"),
    )


@malformed_payload
def parse_nse_quote(symbol: str, data: dict) -> PriceRecord:
    """Parse an NSE quote-equity response."""
    info = data.get("priceInfo") if isinstance(data, dict) else None
    if not info:
        raise ProviderError("nse: invalid response format")
    previous = info.get("previousClose") or info.get("close")
    return normalize_quote(symbol, info.get("lastPrice"), previous, "nse")


@malformed_payload
def parse_nav(code: str, data: dict) -> PriceRecord:
    """Parse an mfapi scheme response; data[0] is the latest NAV, data[1] the one before."""
    if not isinstance(data, dict) or data.get("status") != "SUCCESS" or not data.get("data"):
        raise ProviderError("mfapi: invalid response format")
    navs = data["data"]

    current = navs[0].get("nav")
    previous = navs[1].get("nav") if len(navs) > 1 else current
    return normalize_quote(code, current, previous, "mfapi")


def _nav_date_to_iso(value: str) -> str:
    """mfapi dates are DD-MM-YYYY."""
    try:
        return datetime.strptime(value, "%d-%m-%Y").date().isoformat()
    except ValueError:
        return value


async def first_success(strategies: list[tuple[str, PriceStrategy]], symbol: str) -> PriceRecord:
    """
    Try each strategy in order and return the first record produced.

    Raises:
        AllSourcesFailed: With every strategy's error, once all have failed
    """
    errors: list[tuple[str, Exception]] = []
    for name, strategy in strategies:
        try:
            record = await strategy(symbol)
        except RETRYABLE as e:
            logger.debug("%s failed for %s: %s", name, symbol, e)
            errors.append((name, e))
            continue
        logger.info("Got %s via %s: %.2f", symbol, name, record.current_price)
        return record
    raise AllSourcesFailed(symbol, errors)


class PriceSourceAdapter:
    """Fetches normalized quotes for stocks and mutual funds."""

    def __init__(self, client: QuoteClient, config: Config) -> None:
        self.client = client
        self.config = config

    # Equity strategies

    async def yahoo_chart(self, symbol: str) -> PriceRecord:
        full = to_nse_symbol(symbol)
        url = YAHOO_CHART_URL.format(symbol=full, interval="1d", range="1d")
        data = await self.client.get_json_via_relays(url, self.config.yahoo_timeout_seconds)
        return parse_chart(full, data)

    async def yahoo_quote_summary(self, symbol: str) -> PriceRecord:
        full = to_nse_symbol(symbol)
        url = YAHOO_QUOTE_SUMMARY_URL.format(symbol=full)
        data = await self.client.get_json_via_relays(url, self.config.yahoo_timeout_seconds)
        return parse_quote_summary(full, data)

    async def nse_direct(self, symbol: str) -> PriceRecord:
        url = NSE_QUOTE_URL.format(symbol=base_symbol(symbol))
        data = await self.client.get_json(url, self.config.nse_timeout_seconds)
        return parse_nse_quote(to_nse_symbol(symbol), data)

    def equity_strategies(self) -> list[tuple[str, PriceStrategy]]:
        """Equity sources, fastest first."""
        return [
            ("yahoo_chart", self.yahoo_chart),
            ("yahoo_quote_summary", self.yahoo_quote_summary),
            ("nse", self.nse_direct),
        ]

    # Mutual fund strategy

    async def mutual_fund_nav(self, code: str) -> PriceRecord:
        url = MF_NAV_URL.format(code=code)

        async def attempt() -> PriceRecord:
            data = await self.client.get_json(url, self.config.mf_timeout_seconds)
            return parse_nav(code, data)

        return await retry(
            attempt,
            attempts=self.config.mf_attempts,
            backoff=self.config.retry_backoff_seconds,
            label=f"mfapi {code}",
        )

    async def fetch_price(self, symbol: str, asset_type: AssetType) -> PriceRecord:
        """
        Fetch a fresh quote for a holding.

        Args:
            symbol: Stored holding symbol (equity symbol or scheme code)
            asset_type: Which provider chain to use

        Returns:
            PriceRecord keyed by the symbol passed in

        Raises:
            AllSourcesFailed: If no provider produced a usable quote
        """
        if asset_type == AssetType.MUTUAL_FUND:
            strategies = [("mfapi", self.mutual_fund_nav)]
        else:
            strategies = self.equity_strategies()

        record = await first_success(strategies, symbol)
        record.symbol = symbol
        return record

    async def fetch_history(
        self,
        symbol: str,
        asset_type: AssetType,
        range_: str = "1mo",
        interval: str = "1d",
    ) -> list[PricePoint]:
        """Fetch dated closes, oldest first."""
        if asset_type == AssetType.MUTUAL_FUND:
            data = await self.client.get_json(
                MF_NAV_URL.format(code=symbol), self.config.mf_timeout_seconds
            )
            if not isinstance(data, dict) or data.get("status") != "SUCCESS" or not data.get("data"):
                raise ProviderError(f"mfapi: invalid mutual fund code {symbol}")
            recent = data["data"][: self.config.history_days]
            return [
                PricePoint(date=_nav_date_to_iso(item["date"]), price=float(item["nav"]))
                for item in reversed(recent)
            ]

        url = YAHOO_CHART_URL.format(symbol=to_nse_symbol(symbol), interval=interval, range=range_)
        data = await self.client.get_json_via_relays(url, self.config.yahoo_timeout_seconds)
        results = (data.get("chart") or {}).get("result") or [] if isinstance(data, dict) else []
        if not results:
            raise ProviderError("yahoo_chart: invalid response structure")
        timestamps = results[0].get("timestamp") or []
        quotes = ((results[0].get("indicators") or {}).get("quote") or [{}])[0]
        closes = quotes.get("close") or []
        if not timestamps:
            raise ProviderError(f"yahoo_chart: no historical data for {symbol}")

        points = []
        for ts, close in zip(timestamps, closes):
            if close is None:
                continue
            day = datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()
            points.append(PricePoint(date=day, price=round(float(close), 2)))
        return points
