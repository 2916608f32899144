"""SQLite database management."""

import sqlite3
from collections.abc import Iterable

from ..config import Config
from .models import AssetType, Holding, PortfolioSnapshot, PriceAlert, PriceRecord

SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Consolidated holdings, one row per (user, symbol)
CREATE TABLE IF NOT EXISTS holdings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    asset_type TEXT NOT NULL,
    name TEXT NOT NULL,
    quantity REAL NOT NULL CHECK (quantity > 0),
    average_cost REAL NOT NULL,
    purchase_date TEXT NOT NULL,
    sector TEXT,
    exchange TEXT,
    code_pending INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE(user_id, symbol)
);

-- Last known quote per symbol, shared across users
CREATE TABLE IF NOT EXISTS price_cache (
    symbol TEXT PRIMARY KEY,
    current_price REAL NOT NULL,
    previous_close REAL NOT NULL,
    change REAL NOT NULL,
    change_percent REAL NOT NULL,
    source TEXT,
    currency TEXT,
    market_state TEXT,
    last_updated TEXT NOT NULL
);

-- Append-only portfolio value history
CREATE TABLE IF NOT EXISTS portfolio_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    total_invested REAL NOT NULL,
    total_value REAL NOT NULL,
    gain_loss REAL NOT NULL,
    gain_loss_percent REAL NOT NULL,
    recorded_at TEXT NOT NULL
);

-- Price movement alerts
CREATE TABLE IF NOT EXISTS price_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    holding_id INTEGER NOT NULL,
    alert_type TEXT NOT NULL,
    change_percent REAL NOT NULL,
    message TEXT NOT NULL,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_holdings_user ON holdings(user_id);
CREATE INDEX IF NOT EXISTS idx_snapshots_user ON portfolio_snapshots(user_id, recorded_at);
CREATE INDEX IF NOT EXISTS idx_alerts_user ON price_alerts(user_id, is_read);
"""


def _row_to_holding(row: sqlite3.Row) -> Holding:
    return Holding(
        id=row["id"],
        symbol=row["symbol"],
        asset_type=AssetType(row["asset_type"]),
        name=row["name"],
        quantity=row["quantity"],
        average_cost=row["average_cost"],
        purchase_date=row["purchase_date"],
        sector=row["sector"],
        exchange=row["exchange"],
        code_pending=bool(row["code_pending"]),
        created_at=row["created_at"],
    )


def _row_to_price(row: sqlite3.Row) -> PriceRecord:
    return PriceRecord(
        symbol=row["symbol"],
        current_price=row["current_price"],
        previous_close=row["previous_close"],
        change=row["change"],
        change_percent=row["change_percent"],
        last_updated=row["last_updated"],
        is_cached=True,
        source=row["source"] or "",
        currency=row["currency"] or "INR",
        market_state=row["market_state"] or "CLOSED",
    )


class Database:
    """SQLite database manager."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.db_path = config.db_path
        self.user_id = config.user_id
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._migrate()

    def _migrate(self) -> None:
        """Create the schema on a fresh database."""
        cursor = self._conn.cursor()

        cursor.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if not cursor.fetchone():
            cursor.executescript(SCHEMA)
            cursor.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            self._conn.commit()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # Holding operations

    def get_holdings(self) -> list[Holding]:
        """Get all holdings for the current user, newest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM holdings WHERE user_id = ? ORDER BY created_at DESC, id DESC",
            (self.user_id,),
        )
        return [_row_to_holding(row) for row in cursor.fetchall()]

    def get_holding(self, symbol: str) -> Holding | None:
        """Get a holding by symbol."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM holdings WHERE user_id = ? AND symbol = ?",
            (self.user_id, symbol),
        )
        row = cursor.fetchone()
        return _row_to_holding(row) if row else None

    def get_holding_symbols(self) -> set[str]:
        """Symbols the current user already holds."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT symbol FROM holdings WHERE user_id = ?", (self.user_id,))
        return {str(row["symbol"]).strip() for row in cursor.fetchall()}

    def insert_holding(self, holding: Holding) -> int | None:
        """Insert a holding, returning its ID, or None if the symbol is already held."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO holdings (
                user_id, symbol, asset_type, name, quantity, average_cost,
                purchase_date, sector, exchange, code_pending, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, symbol) DO NOTHING
            RETURNING id
            """,
            (
                self.user_id,
                holding.symbol,
                holding.asset_type.value,
                holding.name,
                holding.quantity,
                holding.average_cost,
                holding.purchase_date,
                holding.sector,
                holding.exchange,
                int(holding.code_pending),
                holding.created_at,
            ),
        )
        row = cursor.fetchone()
        self.conn.commit()
        if row is None:
            return None
        holding.id = row[0]
        return holding.id

    def update_holding_symbol(self, old_symbol: str, new_symbol: str) -> bool:
        """Replace a holding's symbol and clear its pending-code flag."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            UPDATE holdings SET symbol = ?, code_pending = 0
            WHERE user_id = ? AND symbol = ?
            """,
            (new_symbol, self.user_id, old_symbol),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def delete_holding(self, symbol: str) -> bool:
        """Delete a holding by symbol."""
        cursor = self.conn.cursor()
        cursor.execute(
            "DELETE FROM holdings WHERE user_id = ? AND symbol = ?", (self.user_id, symbol)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    # Price cache operations

    def get_price(self, symbol: str) -> PriceRecord | None:
        """Get the cached quote for a symbol."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM price_cache WHERE symbol = ?", (symbol,))
        row = cursor.fetchone()
        return _row_to_price(row) if row else None

    def get_prices(self, symbols: Iterable[str]) -> dict[str, PriceRecord]:
        """Bulk read cached quotes for a set of symbols."""
        symbols = list(dict.fromkeys(symbols))
        if not symbols:
            return {}
        placeholders = ",".join("?" for _ in symbols)
        cursor = self.conn.cursor()
        cursor.execute(
            f"SELECT * FROM price_cache WHERE symbol IN ({placeholders})", tuple(symbols)
        )
        return {row["symbol"]: _row_to_price(row) for row in cursor.fetchall()}

    def upsert_price(self, record: PriceRecord) -> None:
        """Insert or update the cached quote for a symbol."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO price_cache (
                symbol, current_price, previous_close, change, change_percent,
                source, currency, market_state, last_updated
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(symbol) DO UPDATE SET
                current_price = excluded.current_price,
                previous_close = excluded.previous_close,
                change = excluded.change,
                change_percent = excluded.change_percent,
                source = excluded.source,
                currency = excluded.currency,
                market_state = excluded.market_state,
                last_updated = excluded.last_updated
            """,
            (
                record.symbol,
                record.current_price,
                record.previous_close,
                record.change,
                record.change_percent,
                record.source,
                record.currency,
                record.market_state,
                record.last_updated,
            ),
        )
        self.conn.commit()

    def count_prices(self) -> int:
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM price_cache")
        return cursor.fetchone()[0]

    # Snapshot operations

    def insert_snapshot(self, snapshot: PortfolioSnapshot) -> int:
        """Append a portfolio snapshot, returning its ID."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO portfolio_snapshots (
                user_id, total_invested, total_value, gain_loss, gain_loss_percent, recorded_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                self.user_id,
                snapshot.total_invested,
                snapshot.total_value,
                snapshot.gain_loss,
                snapshot.gain_loss_percent,
                snapshot.recorded_at,
            ),
        )
        snapshot.id = cursor.fetchone()[0]
        self.conn.commit()
        return snapshot.id

    def get_snapshots(self, limit: int | None = None) -> list[PortfolioSnapshot]:
        """Get snapshots, oldest first (the most recent `limit` if given)."""
        cursor = self.conn.cursor()
        query = """
            SELECT * FROM portfolio_snapshots
            WHERE user_id = ?
            ORDER BY recorded_at DESC, id DESC
        """
        if limit:
            query += " LIMIT ?"
            cursor.execute(query, (self.user_id, int(limit)))
        else:
            cursor.execute(query, (self.user_id,))
        snapshots = [
            PortfolioSnapshot(
                id=row["id"],
                total_invested=row["total_invested"],
                total_value=row["total_value"],
                gain_loss=row["gain_loss"],
                gain_loss_percent=row["gain_loss_percent"],
                recorded_at=row["recorded_at"],
            )
            for row in cursor.fetchall()
        ]
        snapshots.reverse()
        return snapshots

    # Alert operations

    def insert_alert(self, alert: PriceAlert) -> int:
        """Create a price alert, returning its ID."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO price_alerts (
                user_id, holding_id, alert_type, change_percent, message, is_read, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                self.user_id,
                alert.holding_id,
                alert.alert_type,
                alert.change_percent,
                alert.message,
                int(alert.is_read),
                alert.created_at,
            ),
        )
        alert.id = cursor.fetchone()[0]
        self.conn.commit()
        return alert.id

    def get_alerts(self, unread_only: bool = True, limit: int = 10) -> list[PriceAlert]:
        """Get alerts, newest first."""
        cursor = self.conn.cursor()
        query = "SELECT * FROM price_alerts WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        cursor.execute(query, (self.user_id, int(limit)))
        return [
            PriceAlert(
                id=row["id"],
                holding_id=row["holding_id"],
                change_percent=row["change_percent"],
                message=row["message"],
                is_read=bool(row["is_read"]),
                alert_type=row["alert_type"],
                created_at=row["created_at"],
            )
            for row in cursor.fetchall()
        ]

    def mark_alert_read(self, alert_id: int) -> bool:
        """Mark an alert as read."""
        cursor = self.conn.cursor()
        cursor.execute(
            "UPDATE price_alerts SET is_read = 1 WHERE id = ? AND user_id = ?",
            (alert_id, self.user_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0
