"""Portfolio service: refresh cycles, alerts, snapshots and imports."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .analysis.stats import PortfolioStats, aggregate
from .config import Config
from .errors import AllSourcesFailed, EmptyImport, PortfolioError
from .importer.parser import ImportRow, file_format_for, parse
from .importer.reconcile import fold
from .quotes.client import QuoteClient
from .quotes.providers import PricePoint, PriceSourceAdapter, to_nse_symbol
from .quotes.schemes import SchemeDirectory
from .scheduler import RefreshScheduler, should_fetch_live, to_ist
from .storage.database import Database
from .storage.exports import export_to_csv
from .storage.models import (
    AssetType,
    Holding,
    PortfolioSnapshot,
    PriceAlert,
    PriceRecord,
)
from .storage.price_cache import PriceCache

logger = logging.getLogger(__name__)


@dataclass
class RefreshSummary:
    """Outcome of one pass over the holdings."""

    forced: bool = False
    market_closed: bool = False  # pass skipped, cached prices stand
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    alerts: list[PriceAlert] = field(default_factory=list)
    snapshot: PortfolioSnapshot | None = None

    @property
    def should_notify(self) -> bool:
        """Only a pass where every holding failed is worth telling the user about."""
        return bool(self.failed) and not self.succeeded


@dataclass
class ImportSummary:
    """Outcome of importing one statement file."""

    path: str
    sheet_format: str
    imported: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    skipped_rows: int = 0
    sold_out: list[str] = field(default_factory=list)
    unmatched_sells: list[str] = field(default_factory=list)
    pending_codes: list[str] = field(default_factory=list)  # fund names needing a manual code
    prices: RefreshSummary | None = None


def alert_message(name: str, change_percent: float) -> str:
    return f"{name} has changed by {change_percent:+g}% today!"


class PortfolioService:
    """Coordinates storage, price sources and the import pipeline for one user."""

    def __init__(
        self,
        config: Config,
        db: Database,
        client: QuoteClient,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.db = db
        self.client = client
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.sleep = sleep
        self.cache = PriceCache(db)
        self.adapter = PriceSourceAdapter(client, config)
        self.prices: dict[str, PriceRecord] = {}
        # One refresh cycle at a time, whoever starts it
        self._refresh_lock = asyncio.Lock()

    # Prices

    def holdings(self) -> list[Holding]:
        return self.db.get_holdings()

    def load_cached_prices(self) -> dict[str, PriceRecord]:
        """Fill the in-memory price map from the cache for current holdings."""
        cached = self.cache.load(h.symbol for h in self.holdings())
        for symbol, record in cached.items():
            self.prices.setdefault(symbol, record)
        return cached

    def current_prices(self) -> dict[str, PriceRecord]:
        """Cached prices overlaid with anything fetched live in this session."""
        prices = self.cache.load(h.symbol for h in self.holdings())
        prices.update(self.prices)
        return prices

    def stats(self) -> PortfolioStats:
        return aggregate(self.holdings(), self.current_prices())

    async def refresh_prices(
        self, forced: bool = False, holdings: list[Holding] | None = None
    ) -> RefreshSummary:
        """
        Run one refresh pass, gated on market hours unless forced.

        Holdings are fetched one at a time with a short pause between them.
        A holding whose sources all fail keeps its cached price.
        """
        async with self._refresh_lock:
            return await self._refresh(forced, holdings)

    async def manual_refresh(self) -> list[RefreshSummary]:
        """Two forced passes; the second catches sources that were slow to warm up."""
        return await self._double_pass(self.config.manual_refresh_gap_seconds)

    async def daily_refresh(self) -> list[RefreshSummary]:
        """Market-close refresh, run by the scheduler."""
        return await self._double_pass(self.config.daily_refresh_gap_seconds)

    async def _double_pass(self, gap: float) -> list[RefreshSummary]:
        async with self._refresh_lock:
            first = await self._refresh(forced=True)
            await self.sleep(gap)
            second = await self._refresh(forced=True)
        return [first, second]

    async def _refresh(
        self,
        forced: bool,
        holdings: list[Holding] | None = None,
        snapshot: bool = True,
    ) -> RefreshSummary:
        summary = RefreshSummary(forced=forced)
        now = self.clock()
        if not should_fetch_live(now, forced):
            logger.info(
                "Market closed (%s IST), using cached prices",
                to_ist(now).strftime("%a %H:%M"),
            )
            summary.market_closed = True
            return summary

        holdings = self.holdings() if holdings is None else holdings
        logger.info("Fetching prices for %d holding(s)", len(holdings))

        for i, holding in enumerate(holdings):
            if holding.code_pending:
                logger.warning("Skipping %s: scheme code not set", holding.name)
                summary.failed.append(holding.symbol)
                continue

            logger.debug("[%d/%d] %s (%s)", i + 1, len(holdings), holding.symbol, holding.asset_type.value)
            try:
                record = await self.adapter.fetch_price(holding.symbol, holding.asset_type)
            except AllSourcesFailed as e:
                logger.warning("%s", e)
                summary.failed.append(holding.symbol)
            else:
                self.cache.put(record)
                self.prices[holding.symbol] = record
                summary.succeeded.append(holding.symbol)
                alert = self._check_alert(holding, record)
                if alert:
                    summary.alerts.append(alert)

            if i < len(holdings) - 1:
                await self.sleep(self.config.request_delay_seconds)

        logger.info(
            "Price fetch complete: %d successful, %d failed",
            len(summary.succeeded),
            len(summary.failed),
        )
        if summary.succeeded and snapshot:
            summary.snapshot = self._save_snapshot()
        return summary

    def _check_alert(self, holding: Holding, record: PriceRecord) -> PriceAlert | None:
        if holding.id is None or abs(record.change_percent) < self.config.alert_threshold_percent:
            return None
        alert = PriceAlert(
            id=None,
            holding_id=holding.id,
            change_percent=record.change_percent,
            message=alert_message(holding.name, record.change_percent),
        )
        self.db.insert_alert(alert)
        logger.info("Alert: %s", alert.message)
        return alert

    def _save_snapshot(self) -> PortfolioSnapshot:
        stats = self.stats()
        snapshot = PortfolioSnapshot(
            id=None,
            total_invested=round(stats.total_invested, 2),
            total_value=round(stats.total_current, 2),
            gain_loss=round(stats.gain_loss, 2),
            gain_loss_percent=stats.gain_loss_percent,
        )
        self.db.insert_snapshot(snapshot)
        logger.debug("Saved snapshot: value %.2f", snapshot.total_value)
        return snapshot

    async def history(self, symbol: str, range_: str = "1mo") -> list[PricePoint]:
        """Daily closes for a held symbol, or for an NSE equity symbol."""
        holding = self.db.get_holding(symbol) or self.db.get_holding(to_nse_symbol(symbol))
        asset_type = holding.asset_type if holding else AssetType.STOCK
        target = holding.symbol if holding else symbol
        return await self.adapter.fetch_history(target, asset_type, range_=range_)

    # Import and export

    async def _resolve_scheme_codes(self, rows: list[ImportRow]) -> None:
        """Fill in scheme codes for fund rows that only carry a name."""
        pending = sorted({r.name for r in rows if r.code_pending})
        if not pending:
            return

        directory = SchemeDirectory(self.client, self.config)
        codes = {name: await directory.resolve(name) for name in pending}
        for row in rows:
            code = codes.get(row.name) if row.code_pending else None
            if code:
                row.symbol = code
                row.code_pending = False

    async def import_file(self, path: str | Path, fetch_prices: bool = True) -> ImportSummary:
        """
        Import a broker or fund statement.

        Raises:
            FormatNotRecognized: If the file layout is unknown
            EmptyImport: If nothing in the file amounts to a current holding
        """
        path = Path(path)
        sheet = parse(path.read_bytes(), file_format_for(path))
        await self._resolve_scheme_codes(sheet.rows)

        result = fold(self.db.get_holding_symbols(), sheet.rows, sheet.format)
        summary = ImportSummary(
            path=str(path),
            sheet_format=sheet.format.value,
            duplicates=list(result.duplicates),
            skipped_rows=sheet.skipped + result.skipped,
            sold_out=result.sold_out,
            unmatched_sells=result.unmatched_sells,
        )
        if not result.new_holdings and not result.duplicates:
            raise EmptyImport(
                f"No holdings found in {path.name}: positions may be fully sold, "
                f"or {summary.skipped_rows} row(s) could not be read"
            )

        inserted: list[Holding] = []
        for holding in result.new_holdings:
            if self.db.insert_holding(holding) is None:
                summary.duplicates.append(holding.symbol)
                continue
            inserted.append(holding)
            summary.imported.append(holding.symbol)
            if holding.code_pending:
                summary.pending_codes.append(holding.name)
            elif holding.symbol in result.latest_price and self.cache.get(holding.symbol) is None:
                self.cache.seed(holding.symbol, result.latest_price[holding.symbol], source="statement")

        logger.info(
            "Imported %d holding(s) from %s (%d duplicate)",
            len(inserted),
            path.name,
            len(summary.duplicates),
        )

        if inserted and fetch_prices:
            async with self._refresh_lock:
                summary.prices = await self._refresh(forced=True, holdings=inserted, snapshot=False)
        return summary

    def export_csv(self, path: str | Path | None = None) -> Path:
        """Write holdings as a CSV that can be imported again."""
        return export_to_csv(self.holdings(), Path(path) if path else self.config.exports_dir)

    def set_scheme_code(self, symbol: str, code: str) -> Holding:
        """Give a fund imported without a scheme code its real one."""
        code = code.strip()
        if not code.isdigit():
            raise PortfolioError(f"Scheme codes are numeric, got {code!r}")
        holding = self.db.get_holding(symbol)
        if holding is None:
            raise PortfolioError(f"No holding {symbol!r}")
        if holding.asset_type != AssetType.MUTUAL_FUND:
            raise PortfolioError(f"{symbol} is not a mutual fund")
        if self.db.get_holding(code) is not None:
            raise PortfolioError(f"Scheme {code} is already held")

        self.db.update_holding_symbol(symbol, code)
        self.prices.pop(symbol, None)
        logger.info("Set scheme code for %s: %s", holding.name, code)
        return self.db.get_holding(code)

    # Alerts and history

    def alerts(self, unread_only: bool = True, limit: int = 10) -> list[PriceAlert]:
        return self.db.get_alerts(unread_only=unread_only, limit=limit)

    def mark_alert_read(self, alert_id: int) -> bool:
        return self.db.mark_alert_read(alert_id)

    def snapshots(self, limit: int | None = None) -> list[PortfolioSnapshot]:
        return self.db.get_snapshots(limit)

    async def watch(self, stop: asyncio.Event | None = None) -> None:
        """
        Keep prices current until cancelled (or until `stop` is set).

        Loads cached prices, runs one market-hours-gated refresh, then
        refreshes at every market close.
        """
        self.load_cached_prices()
        await self.refresh_prices()

        scheduler = RefreshScheduler(self.daily_refresh, clock=self.clock)
        scheduler.schedule()
        try:
            await (stop or asyncio.Event()).wait()
        finally:
            scheduler.cancel()
