"""Fold buy/sell rows into consolidated holdings."""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from ..storage.models import AssetType, Holding
from .detect import SheetFormat
from .parser import ImportRow

logger = logging.getLogger(__name__)

# A position at or below this quantity after a sell is closed
LIQUIDATION_EPSILON = {
    AssetType.STOCK: 0.0,
    AssetType.MUTUAL_FUND: 0.01,  # fund units carry rounding dust
}


@dataclass
class ReconcileResult:
    """Outcome of folding one statement."""

    new_holdings: list[Holding] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)  # already stored, not re-inserted
    skipped: int = 0
    unmatched_sells: list[str] = field(default_factory=list)
    sold_out: list[str] = field(default_factory=list)
    latest_price: dict[str, float] = field(default_factory=dict)  # fund NAV of the latest buy


def _is_usable(value: float) -> bool:
    return not math.isnan(value) and value > 0


def fold(
    existing_symbols: Iterable[str],
    rows: list[ImportRow],
    sheet_format: SheetFormat,
    today: str | None = None,
) -> ReconcileResult:
    """
    Reconcile statement rows into holdings using weighted-average cost.

    Fund statements list the newest transaction first, so they are folded
    bottom-to-top; broker and generic ledgers are folded in sheet order.
    Symbols already in storage still take part in the fold but are returned
    as duplicates rather than new holdings.

    Args:
        existing_symbols: Symbols the user already holds
        rows: Parsed rows in sheet order
        sheet_format: Layout the rows came from
        today: ISO date used for rows without a readable date

    Returns:
        ReconcileResult with holdings of positive quantity only
    """
    stored = set(existing_symbols)
    today = today or date.today().isoformat()
    result = ReconcileResult()
    working: dict[str, Holding] = {}

    ordered = list(reversed(rows)) if sheet_format == SheetFormat.MUTUAL_FUND else rows

    for row in ordered:
        # "not executed" and "unexecuted" must not count as fills
        if row.status is not None and not row.status.startswith("executed"):
            result.skipped += 1
            continue
        if not _is_usable(row.quantity) or not _is_usable(row.price):
            logger.debug("Skipping %s: quantity=%s price=%s", row.symbol, row.quantity, row.price)
            result.skipped += 1
            continue

        holding = working.get(row.symbol)

        if row.transaction_type == "BUY":
            if holding is None:
                working[row.symbol] = Holding(
                    id=None,
                    symbol=row.symbol,
                    asset_type=row.asset_type,
                    name=row.name,
                    quantity=row.quantity,
                    average_cost=row.price,
                    purchase_date=row.date or today,
                    sector=row.sector,
                    exchange=row.exchange,
                    code_pending=row.code_pending,
                )
                if row.symbol in result.sold_out:
                    result.sold_out.remove(row.symbol)
            else:
                total = holding.quantity + row.quantity
                holding.average_cost = (
                    holding.quantity * holding.average_cost + row.quantity * row.price
                ) / total
                holding.quantity = total
            if row.asset_type == AssetType.MUTUAL_FUND:
                result.latest_price[row.symbol] = row.price

        elif row.transaction_type == "SELL":
            if holding is None:
                logger.warning("Sell of %s with no prior buy in this statement", row.symbol)
                result.unmatched_sells.append(row.symbol)
                continue
            holding.quantity -= row.quantity
            if holding.quantity <= LIQUIDATION_EPSILON[holding.asset_type]:
                logger.debug("%s fully sold", row.symbol)
                del working[row.symbol]
                result.sold_out.append(row.symbol)

        else:
            result.skipped += 1

    for symbol, holding in working.items():
        if holding.quantity <= 0:
            continue
        if symbol in stored:
            result.duplicates.append(symbol)
        else:
            result.new_holdings.append(holding)

    logger.info(
        "Folded %d row(s): %d new, %d duplicate, %d sold out, %d skipped",
        len(rows),
        len(result.new_holdings),
        len(result.duplicates),
        len(result.sold_out),
        result.skipped,
    )
    return result
