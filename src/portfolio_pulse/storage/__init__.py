"""SQLite storage, price cache and export."""

from .database import Database
from .exports import export_to_csv
from .models import AssetType, Holding, PortfolioSnapshot, PriceAlert, PriceRecord
from .price_cache import PriceCache

__all__ = [
    "Database",
    "export_to_csv",
    "AssetType",
    "Holding",
    "PortfolioSnapshot",
    "PriceAlert",
    "PriceRecord",
    "PriceCache",
]
