"""Header detection for broker and fund-house statements."""

import math
from dataclasses import dataclass
from enum import Enum

# Statements often open with account banners; the header is within these rows
HEADER_SCAN_ROWS = 20


class SheetFormat(str, Enum):
    STOCK = "stock"
    MUTUAL_FUND = "mutual_fund"
    GENERIC = "generic"


# Date layouts, by name; see parser.parse_date
DMY_NUMERIC = "dd-mm-yyyy"
DMY_ABBR_DASH = "dd-mmm-yyyy"
DMY_ABBR_SPACE = "dd mmm yyyy"
ISO = "yyyy-mm-dd"


@dataclass(frozen=True)
class FormatSpec:
    """How to recognise one statement layout and where its columns are."""

    format: SheetFormat
    keywords: tuple[str, ...]  # every one must appear in the header row
    columns: dict[str, tuple[str, ...]]  # field -> accepted header labels
    date_layouts: tuple[str, ...]
    whole_cell: bool = False  # keywords must equal a cell, not just appear in the row

    def matches(self, cells: list[str]) -> bool:
        if self.whole_cell:
            return all(k in cells for k in self.keywords)
        joined = "|".join(cells)
        return all(k in joined for k in self.keywords)

    def column_index(self, headers: list[str]) -> dict[str, int]:
        """Map each known field to its column position in this header row."""
        index = {}
        for field, labels in self.columns.items():
            for i, header in enumerate(headers):
                if header in labels:
                    index[field] = i
                    break
        return index


STOCK_FORMAT = FormatSpec(
    format=SheetFormat.STOCK,
    keywords=("stock name",),
    columns={
        "name": ("stock name",),
        "symbol": ("symbol",),
        "isin": ("isin",),
        "type": ("type",),
        "quantity": ("quantity",),
        "value": ("value",),
        "exchange": ("exchange",),
        "date": ("execution date and time",),
        "status": ("order status",),
    },
    date_layouts=(DMY_NUMERIC, DMY_ABBR_DASH, ISO),
)

MUTUAL_FUND_FORMAT = FormatSpec(
    format=SheetFormat.MUTUAL_FUND,
    keywords=("scheme name",),
    columns={
        "name": ("scheme name",),
        "type": ("transaction type",),
        "units": ("units",),
        "nav": ("nav",),
        "amount": ("amount",),
        "date": ("date",),
    },
    date_layouts=(DMY_ABBR_SPACE, DMY_ABBR_DASH, DMY_NUMERIC, ISO),
)

GENERIC_FORMAT = FormatSpec(
    format=SheetFormat.GENERIC,
    keywords=("symbol", "quantity"),
    columns={
        "asset_type": ("asset type", "asset_type"),
        "symbol": ("symbol",),
        "name": ("name",),
        "quantity": ("quantity",),
        "price": ("purchase price", "purchase_price"),
        "date": ("purchase date", "purchase_date"),
        "sector": ("sector",),
        "exchange": ("exchange",),
    },
    date_layouts=(ISO, DMY_NUMERIC, DMY_ABBR_DASH, DMY_ABBR_SPACE),
    whole_cell=True,
)

# Tried in this order against each candidate row
FORMATS = (STOCK_FORMAT, MUTUAL_FUND_FORMAT, GENERIC_FORMAT)


def cell_text(value) -> str:
    """Render a raw cell as stripped text; blanks and NaN become ""."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def find_header(rows: list[list]) -> tuple[int, FormatSpec] | None:
    """
    Locate the header row among the first HEADER_SCAN_ROWS rows.

    Returns:
        Tuple of (row index, matching FormatSpec), or None
    """
    for i, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        cells = [cell_text(c).lower() for c in row]
        if not any(cells):
            continue
        for spec in FORMATS:
            if spec.matches(cells):
                return i, spec
    return None
