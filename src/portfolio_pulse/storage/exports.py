"""Export holdings to CSV."""

from pathlib import Path

import pandas as pd

from .models import Holding

# Re-importable as a generic statement
EXPORT_COLUMNS = [
    "Asset Type",
    "Symbol",
    "Name",
    "Quantity",
    "Purchase Price",
    "Purchase Date",
    "Sector",
    "Exchange",
]


def holdings_to_dataframe(holdings: list[Holding]) -> pd.DataFrame:
    """Convert holdings to a DataFrame in export column order."""
    return pd.DataFrame(
        [
            {
                "Asset Type": h.asset_type.value,
                "Symbol": h.symbol,
                "Name": h.name,
                "Quantity": h.quantity,
                "Purchase Price": h.average_cost,
                "Purchase Date": h.purchase_date,
                "Sector": h.sector or "",
                "Exchange": h.exchange or "",
            }
            for h in holdings
        ],
        columns=EXPORT_COLUMNS,
    )


def export_to_csv(holdings: list[Holding], output_path: Path) -> Path:
    """
    Export holdings to a CSV file.

    Args:
        holdings: Holdings to write
        output_path: Target file, or a directory to write portfolio.csv into

    Returns:
        Path to the created CSV file
    """
    output_path = Path(output_path)
    if output_path.is_dir() or not output_path.suffix:
        output_path.mkdir(parents=True, exist_ok=True)
        output_path = output_path / "portfolio.csv"
    else:
        output_path.parent.mkdir(parents=True, exist_ok=True)

    df = holdings_to_dataframe(holdings)
    df.to_csv(output_path, index=False)
    return output_path
