"""Portfolio statistics."""

from .stats import HoldingValuation, PortfolioStats, aggregate

__all__ = ["HoldingValuation", "PortfolioStats", "aggregate"]
