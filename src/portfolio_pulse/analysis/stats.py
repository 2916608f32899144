"""Portfolio totals, allocations and per-holding valuation."""

from dataclasses import dataclass, field

from ..storage.models import Holding, PriceRecord

DEFAULT_SECTOR = "Others"


@dataclass
class HoldingValuation:
    """One holding valued at its latest known price."""

    symbol: str
    name: str
    asset_type: str
    quantity: float
    average_cost: float
    invested: float
    current_price: float | None  # None when no price has ever been seen
    current_value: float
    gain_loss: float
    gain_loss_percent: float
    day_change_percent: float | None
    is_cached: bool
    code_pending: bool


@dataclass
class PortfolioStats:
    """Aggregate view of a portfolio."""

    total_invested: float = 0.0
    total_current: float = 0.0
    gain_loss: float = 0.0
    gain_loss_percent: float = 0.0
    sector_allocation: dict[str, float] = field(default_factory=dict)  # current value by sector
    asset_allocation: dict[str, float] = field(default_factory=dict)  # current value by asset type
    holdings: list[HoldingValuation] = field(default_factory=list)


def _gain_percent(gain: float, invested: float) -> float:
    if invested <= 0:
        return 0.0
    return round(gain / invested * 100, 2)


def value_holding(holding: Holding, price: PriceRecord | None) -> HoldingValuation:
    """Value a holding; with no price it is carried at cost."""
    invested = holding.invested
    current = holding.quantity * price.current_price if price else invested
    gain = current - invested
    return HoldingValuation(
        symbol=holding.symbol,
        name=holding.name,
        asset_type=holding.asset_type.value,
        quantity=holding.quantity,
        average_cost=holding.average_cost,
        invested=invested,
        current_price=price.current_price if price else None,
        current_value=current,
        gain_loss=gain,
        gain_loss_percent=_gain_percent(gain, invested),
        day_change_percent=price.change_percent if price else None,
        is_cached=price.is_cached if price else False,
        code_pending=holding.code_pending,
    )


def aggregate(holdings: list[Holding], prices: dict[str, PriceRecord]) -> PortfolioStats:
    """
    Compute portfolio totals from holdings and the latest known prices.

    Args:
        holdings: Current holdings
        prices: Symbol -> latest PriceRecord (cached or live)

    Returns:
        PortfolioStats; all zeros for an empty portfolio
    """
    stats = PortfolioStats()

    for holding in holdings:
        valuation = value_holding(holding, prices.get(holding.symbol))
        stats.holdings.append(valuation)
        stats.total_invested += valuation.invested
        stats.total_current += valuation.current_value

        sector = holding.sector or DEFAULT_SECTOR
        stats.sector_allocation[sector] = (
            stats.sector_allocation.get(sector, 0.0) + valuation.current_value
        )
        asset = holding.asset_type.value
        stats.asset_allocation[asset] = (
            stats.asset_allocation.get(asset, 0.0) + valuation.current_value
        )

    stats.gain_loss = stats.total_current - stats.total_invested
    stats.gain_loss_percent = _gain_percent(stats.gain_loss, stats.total_invested)
    return stats
