"""Tests for portfolio statistics."""

from portfolio_pulse.analysis.stats import aggregate
from portfolio_pulse.storage.models import AssetType, Holding, PriceRecord


def make_holding(symbol, quantity, cost, sector=None, asset_type=AssetType.STOCK):
    return Holding(
        id=1,
        symbol=symbol,
        asset_type=asset_type,
        name=symbol,
        quantity=quantity,
        average_cost=cost,
        purchase_date="2025-01-01",
        sector=sector,
    )


def make_price(symbol, price, change_percent=0.0, is_cached=False):
    return PriceRecord(
        symbol=symbol,
        current_price=price,
        previous_close=price,
        change=0.0,
        change_percent=change_percent,
        is_cached=is_cached,
    )


class TestAggregate:
    def test_empty(self):
        stats = aggregate([], {})
        assert stats.total_invested == 0
        assert stats.total_current == 0
        assert stats.gain_loss == 0
        assert stats.gain_loss_percent == 0
        assert stats.sector_allocation == {}

    def test_totals(self):
        holdings = [
            make_holding("RELIANCE.NS", 20, 2100, sector="Energy"),
            make_holding("TCS.NS", 5, 3000, sector="IT"),
        ]
        prices = {
            "RELIANCE.NS": make_price("RELIANCE.NS", 2200),
            "TCS.NS": make_price("TCS.NS", 2900),
        }
        stats = aggregate(holdings, prices)
        assert stats.total_invested == 57000
        assert stats.total_current == 58500
        assert stats.gain_loss == 1500
        assert stats.gain_loss_percent == 2.63
        assert stats.sector_allocation == {"Energy": 44000, "IT": 14500}

    def test_missing_price_valued_at_cost(self):
        stats = aggregate([make_holding("INFY.NS", 3, 1500)], {})
        assert stats.total_current == 4500
        assert stats.gain_loss == 0
        valuation = stats.holdings[0]
        assert valuation.current_price is None
        assert valuation.is_cached is False

    def test_default_sector_and_asset_allocation(self):
        holdings = [
            make_holding("120465", 10, 50, asset_type=AssetType.MUTUAL_FUND),
            make_holding("INFY.NS", 1, 1500),
        ]
        prices = {"120465": make_price("120465", 55, change_percent=1.5, is_cached=True)}
        stats = aggregate(holdings, prices)
        assert stats.sector_allocation == {"Others": 2050}
        assert stats.asset_allocation == {"mutual_fund": 550, "stock": 1500}

        fund = stats.holdings[0]
        assert fund.gain_loss == 50
        assert fund.gain_loss_percent == 10.0
        assert fund.day_change_percent == 1.5
        assert fund.is_cached is True
