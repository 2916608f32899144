"""Durable last-known-price cache."""

import logging
from collections.abc import Iterable

from .database import Database
from .models import PriceRecord

logger = logging.getLogger(__name__)


class PriceCache:
    """Symbol -> last known quote, backed by the price_cache table.

    Reads always come back tagged ``is_cached=True``; the stored row is only
    ever replaced by a successful fetch, so a failed refresh never erases a
    price that was seen before.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, symbol: str) -> PriceRecord | None:
        return self.db.get_price(symbol)

    def put(self, record: PriceRecord) -> None:
        """Upsert by symbol."""
        self.db.upsert_price(record)

    def load(self, symbols: Iterable[str]) -> dict[str, PriceRecord]:
        """Bulk read cached prices for the given symbols."""
        symbols = [s for s in symbols if s]
        prices = self.db.get_prices(symbols)
        logger.info("Loaded %d cached price(s) for %d symbol(s)", len(prices), len(symbols))
        if prices:
            logger.debug(
                "Oldest cached price: %s", min(p.last_updated for p in prices.values())
            )
        return prices

    def seed(self, symbol: str, price: float, source: str = "import") -> None:
        """Store a flat quote (no change) for a symbol, e.g. a NAV read from a statement."""
        self.put(
            PriceRecord(
                symbol=symbol,
                current_price=round(price, 4),
                previous_close=round(price, 4),
                change=0.0,
                change_percent=0.0,
                source=source,
            )
        )
