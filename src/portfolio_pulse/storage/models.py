"""Data models for storage."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AssetType(str, Enum):
    STOCK = "stock"
    MUTUAL_FUND = "mutual_fund"


@dataclass
class Holding:
    """A consolidated position stored in the database."""

    id: int | None
    symbol: str  # "RELIANCE.NS" for stocks, AMFI scheme code for funds
    asset_type: AssetType
    name: str
    quantity: float
    average_cost: float
    purchase_date: str  # ISO date of the first buy
    sector: str | None = None
    exchange: str | None = None
    code_pending: bool = False  # fund whose scheme code still needs resolving
    created_at: str = field(default_factory=utc_now)

    @property
    def invested(self) -> float:
        return self.quantity * self.average_cost


@dataclass
class PriceRecord:
    """A normalized quote, either freshly fetched or read from the cache."""

    symbol: str
    current_price: float
    previous_close: float
    change: float
    change_percent: float
    last_updated: str = field(default_factory=utc_now)
    is_cached: bool = False
    source: str = ""
    currency: str = "INR"
    market_state: str = "CLOSED"


@dataclass
class PortfolioSnapshot:
    """Point-in-time portfolio totals, appended after each refresh."""

    id: int | None
    total_invested: float
    total_value: float
    gain_loss: float
    gain_loss_percent: float
    recorded_at: str = field(default_factory=utc_now)


@dataclass
class PriceAlert:
    """A large single-cycle price move on a holding."""

    id: int | None
    holding_id: int
    change_percent: float
    message: str
    is_read: bool = False
    alert_type: str = "price_change"
    created_at: str = field(default_factory=utc_now)
