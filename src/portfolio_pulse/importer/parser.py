"""Parse CSV and Excel statements into import rows."""

import csv
import io
import logging
import math
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path

import pandas as pd
import xlrd

from ..errors import FormatNotRecognized
from ..quotes.providers import to_nse_symbol
from ..quotes.schemes import extract_scheme_code
from ..storage.models import AssetType
from .detect import (
    DMY_ABBR_DASH,
    DMY_ABBR_SPACE,
    DMY_NUMERIC,
    ISO,
    FormatSpec,
    SheetFormat,
    cell_text,
    find_header,
)

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "xlsx", "xls")

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# Each layout captures (day, month, year) or, for ISO, (year, month, day)
DATE_PATTERNS = {
    DMY_NUMERIC: re.compile(r"(\d{1,2})-(\d{1,2})-(\d{4})"),
    DMY_ABBR_DASH: re.compile(r"(\d{1,2})-([A-Za-z]{3})[A-Za-z]*-(\d{4})"),
    DMY_ABBR_SPACE: re.compile(r"(\d{1,2})\s+([A-Za-z]{3})[A-Za-z]*\s+(\d{4})"),
    ISO: re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"),
}

ASSET_TYPE_ALIASES = {
    "stock": AssetType.STOCK,
    "equity": AssetType.STOCK,
    "mutual_fund": AssetType.MUTUAL_FUND,
    "mutual fund": AssetType.MUTUAL_FUND,
    "mf": AssetType.MUTUAL_FUND,
}


@dataclass
class ImportRow:
    """One buy or sell read from a statement."""

    name: str
    symbol: str
    transaction_type: str  # "BUY", "SELL", or the raw label if neither
    quantity: float
    price: float
    date: str | None  # ISO date, None when the cell could not be read
    asset_type: AssetType
    status: str | None = None  # order status, equity ledgers only
    sector: str | None = None
    exchange: str | None = None
    code_pending: bool = False


@dataclass
class ParsedSheet:
    """Rows read from one file, in sheet order."""

    format: SheetFormat
    rows: list[ImportRow] = field(default_factory=list)
    skipped: int = 0  # rows dropped for a missing name/symbol or unknown asset type
    header_row: int = 0


def _to_float(value) -> float:
    """Numeric cell to float; anything unreadable becomes NaN."""
    if value is None:
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace(",", "").replace("₹", "").strip()
    if not text:
        return math.nan
    try:
        return float(text)
    except ValueError:
        return math.nan


def _build_date(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_date(value, layouts: tuple[str, ...] = (ISO, DMY_NUMERIC, DMY_ABBR_DASH, DMY_ABBR_SPACE)) -> str | None:
    """
    Read a statement date into an ISO date string.

    Spreadsheet date cells arrive as datetime/Timestamp objects; text is
    matched against the given layouts in order. Times after the date
    ("18-03-2025 11:43 AM") are ignored.

    Returns:
        "YYYY-MM-DD", or None if the value is not a recognisable date
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")

    text = cell_text(value)
    if not text:
        return None

    for layout in layouts:
        match = DATE_PATTERNS[layout].search(text)
        if not match:
            continue
        a, b, c = match.groups()
        if layout == ISO:
            return _build_date(int(a), int(b), int(c))
        if layout == DMY_NUMERIC:
            return _build_date(int(c), int(b), int(a))
        month = MONTHS.get(b.lower())
        if month:
            return _build_date(int(c), month, int(a))
    return None


def file_format_for(path: str | Path) -> str:
    """File extension as an import format name."""
    return Path(path).suffix.lower().lstrip(".")


def read_rows(data: bytes, file_format: str) -> list[list]:
    """Read the first sheet of a file as a list of raw rows."""
    if file_format not in SUPPORTED_FORMATS:
        raise FormatNotRecognized(
            f"Unsupported file type '{file_format}'; expected one of {', '.join(SUPPORTED_FORMATS)}"
        )

    if file_format == "csv":
        text = data.decode("utf-8-sig", errors="replace")
        return [row for row in csv.reader(io.StringIO(text))]

    engine = "openpyxl" if file_format == "xlsx" else "xlrd"
    try:
        df = pd.read_excel(io.BytesIO(data), header=None, dtype=object, engine=engine)
    except (ValueError, zipfile.BadZipFile, xlrd.XLRDError) as e:
        raise FormatNotRecognized(f"Could not read {file_format} file: {e}") from e

    df = df.astype(object).where(pd.notna(df), None)
    return df.values.tolist()


def _get(row: list, index: dict[str, int], name: str):
    i = index.get(name)
    if i is None or i >= len(row):
        return None
    return row[i]


def _stock_row(row: list, index: dict[str, int], spec: FormatSpec) -> ImportRow | None:
    name = cell_text(_get(row, index, "name"))
    symbol = cell_text(_get(row, index, "symbol"))
    if not name or not symbol:
        return None

    quantity = _to_float(_get(row, index, "quantity"))
    value = _to_float(_get(row, index, "value"))
    # Broker ledgers carry the order value, not the fill price
    price = value / quantity if quantity > 0 else math.nan

    trade = cell_text(_get(row, index, "type")).upper()
    return ImportRow(
        name=name,
        symbol=to_nse_symbol(symbol),
        transaction_type="BUY" if trade == "BUY" else "SELL" if trade == "SELL" else trade,
        quantity=quantity,
        price=price,
        date=parse_date(_get(row, index, "date"), spec.date_layouts),
        asset_type=AssetType.STOCK,
        status=cell_text(_get(row, index, "status")).lower(),
        exchange="NSE",
    )


def _mutual_fund_row(row: list, index: dict[str, int], spec: FormatSpec) -> ImportRow | None:
    raw_name = cell_text(_get(row, index, "name"))
    if not raw_name:
        return None
    code, name = extract_scheme_code(raw_name)

    units = _to_float(_get(row, index, "units"))
    nav = _to_float(_get(row, index, "nav"))
    if math.isnan(nav) and units > 0:
        nav = _to_float(_get(row, index, "amount")) / units

    label = cell_text(_get(row, index, "type")).upper()
    if "PURCHASE" in label or "BUY" in label:
        kind = "BUY"
    elif "REDEEM" in label or "REDEMPTION" in label or "SELL" in label:
        kind = "SELL"
    else:
        kind = label

    return ImportRow(
        name=name,
        symbol=code or name,
        transaction_type=kind,
        quantity=units,
        price=nav,
        date=parse_date(_get(row, index, "date"), spec.date_layouts),
        asset_type=AssetType.MUTUAL_FUND,
        code_pending=code is None,
    )


def _generic_row(row: list, index: dict[str, int], spec: FormatSpec) -> ImportRow | None:
    symbol = cell_text(_get(row, index, "symbol"))
    if not symbol:
        return None
    name = cell_text(_get(row, index, "name")) or symbol

    label = cell_text(_get(row, index, "asset_type")).lower()
    if not label:
        asset_type = AssetType.MUTUAL_FUND if "fund" in name.lower() else AssetType.STOCK
    elif label in ASSET_TYPE_ALIASES:
        asset_type = ASSET_TYPE_ALIASES[label]
    else:
        logger.debug("Skipping %s: unknown asset type %r", symbol, label)
        return None

    if asset_type == AssetType.STOCK:
        symbol = to_nse_symbol(symbol)
        code_pending = False
    else:
        code_pending = not symbol.isdigit()

    return ImportRow(
        name=name,
        symbol=symbol,
        transaction_type="BUY",
        quantity=_to_float(_get(row, index, "quantity")),
        price=_to_float(_get(row, index, "price")),
        date=parse_date(_get(row, index, "date"), spec.date_layouts),
        asset_type=asset_type,
        sector=cell_text(_get(row, index, "sector")) or None,
        exchange=cell_text(_get(row, index, "exchange")) or None,
        code_pending=code_pending,
    )


ROW_READERS = {
    SheetFormat.STOCK: _stock_row,
    SheetFormat.MUTUAL_FUND: _mutual_fund_row,
    SheetFormat.GENERIC: _generic_row,
}


def parse_rows(rows: list[list]) -> ParsedSheet:
    """
    Turn raw sheet rows into ImportRows.

    Raises:
        FormatNotRecognized: If no known header appears near the top
    """
    found = find_header(rows)
    if found is None:
        raise FormatNotRecognized(
            'Could not find a "Stock name", "Scheme Name" or "Symbol"/"Quantity" header row'
        )
    header_index, spec = found
    headers = [cell_text(c).lower() for c in rows[header_index]]
    index = spec.column_index(headers)
    logger.info(
        "Detected %s statement, header at row %d: %s",
        spec.format.value,
        header_index + 1,
        [h for h in headers if h],
    )

    sheet = ParsedSheet(format=spec.format, header_row=header_index)
    reader = ROW_READERS[spec.format]
    for row in rows[header_index + 1 :]:
        if not any(cell_text(c) for c in row):
            continue
        parsed = reader(row, index, spec)
        if parsed is None:
            sheet.skipped += 1
            continue
        sheet.rows.append(parsed)

    logger.info("Read %d row(s), skipped %d", len(sheet.rows), sheet.skipped)
    return sheet


def parse(data: bytes, file_format: str) -> ParsedSheet:
    """Parse a statement file's bytes; file_format is "csv", "xlsx" or "xls"."""
    return parse_rows(read_rows(data, file_format.lower().lstrip(".")))
