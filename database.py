"""SQLite storage for users, tracked wallets and journal trades."""
import functools
import json
import logging
import sqlite3
import threading
from datetime import date as date_type, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

from models import MAX_CONTRACT_ADDRESS_LENGTH, SwapDirection, TrackedWallet, Trade, TradeCandidate, TradeSource
from utils import validate_wallet_address

MAX_USERNAME_LENGTH = 64
logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Columns a manual edit may change; ownership, signature and source are fixed
EDITABLE_TRADE_FIELDS = (
    "contract_address",
    "token_name",
    "token_symbol",
    "token_image",
    "buy_amount",
    "sell_amount",
    "token_amount",
    "setup",
    "emotion",
    "mistakes",
    "date",
    "notes",
    "is_shared",
)


class StorageError(Exception):
    """Raised when the store cannot be read or written."""
    pass


class DuplicateTradeError(StorageError):
    """Raised when (user_id, transaction_signature) is already stored."""
    pass


class DuplicateWalletError(StorageError):
    """Raised when a user already tracks the given address."""
    pass


def _storage_call(func: F) -> F:
    """Translate sqlite3 failures into StorageError."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except StorageError:
            raise
        except sqlite3.Error as e:
            raise StorageError(f"{func.__name__} failed: {e}") from e

    return wrapper  # type: ignore[return-value]


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _validate_contract_address(contract_address: str) -> str:
    if not contract_address or len(contract_address) > MAX_CONTRACT_ADDRESS_LENGTH:
        raise ValueError(
            f"Invalid contract address: length must be 1-{MAX_CONTRACT_ADDRESS_LENGTH}"
        )
    return contract_address


def _row_to_trade(row: sqlite3.Row) -> Trade:
    return Trade(
        id=row["id"],
        user_id=row["user_id"],
        contract_address=row["contract_address"],
        token_name=row["token_name"],
        token_symbol=row["token_symbol"],
        token_image=row["token_image"],
        buy_amount=Decimal(row["buy_amount"]),
        sell_amount=Decimal(row["sell_amount"]),
        token_amount=Decimal(row["token_amount"]),
        setup=json.loads(row["setup"] or "[]"),
        emotion=json.loads(row["emotion"] or "[]"),
        mistakes=json.loads(row["mistakes"] or "[]"),
        date=_from_iso(row["date"]),
        notes=row["notes"],
        is_shared=bool(row["is_shared"]),
        transaction_signature=row["transaction_signature"],
        source=TradeSource(row["source"]),
        side=SwapDirection(row["side"]) if row["side"] else None,
    )


def _row_to_wallet(row: sqlite3.Row) -> TrackedWallet:
    return TrackedWallet(
        id=row["id"],
        user_id=row["user_id"],
        address=row["address"],
        created_at=_from_iso(row["created_at"]),
    )


class Database:
    """Thread-safe SQLite store for the trade journal."""

    def __init__(self, db_path: str = "journal.db"):
        self.db_path = db_path
        self._local = threading.local()
        self._lock = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, 'conn') or self._local.conn is None:
            conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.conn = conn
        return self._local.conn

    @_storage_call
    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS tracked_wallets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                address TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (user_id, address)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS trades (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                contract_address TEXT NOT NULL,
                token_name TEXT,
                token_symbol TEXT,
                token_image TEXT,
                buy_amount TEXT NOT NULL DEFAULT '0',
                sell_amount TEXT NOT NULL DEFAULT '0',
                token_amount TEXT NOT NULL DEFAULT '0',
                setup TEXT NOT NULL DEFAULT '[]',
                emotion TEXT NOT NULL DEFAULT '[]',
                mistakes TEXT NOT NULL DEFAULT '[]',
                date TEXT NOT NULL,
                notes TEXT,
                is_shared INTEGER NOT NULL DEFAULT 0,
                transaction_signature TEXT,
                source TEXT NOT NULL DEFAULT 'manual'
                    CHECK (source IN ('manual', 'ingested', 'summary')),
                side TEXT CHECK (side IN ('buy', 'sell'))
            )
        """)

        # Stores created before trades carried their swap side
        try:
            conn.execute("ALTER TABLE trades ADD COLUMN side TEXT CHECK (side IN ('buy', 'sell'))")
        except sqlite3.OperationalError:
            pass  # Column already exists

        # Authoritative dedup guard; manual trades with NULL signature are exempt
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_trades_user_signature "
            "ON trades(user_id, transaction_signature) "
            "WHERE transaction_signature IS NOT NULL"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_user_contract ON trades(user_id, contract_address)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_user_date ON trades(user_id, date)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_tracked_wallets_address ON tracked_wallets(address)")
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if hasattr(self._local, 'conn') and self._local.conn is not None:
                self._local.conn.close()
                self._local.conn = None

    # Users

    @_storage_call
    def create_user(self, username: str) -> int:
        """Create a user and return its id.

        Raises:
            ValueError: If the username is empty, too long or already taken
        """
        username = (username or "").strip()
        if not username or len(username) > MAX_USERNAME_LENGTH:
            raise ValueError(f"Invalid username: length must be 1-{MAX_USERNAME_LENGTH}")

        with self._lock:
            conn = self._get_conn()
            try:
                cursor = conn.execute(
                    "INSERT INTO users (username, created_at) VALUES (?, ?)",
                    (username, _to_iso(datetime.now(timezone.utc))),
                )
            except sqlite3.IntegrityError:
                conn.rollback()
                raise ValueError(f"Username already exists: {username}")
            conn.commit()
            return cursor.lastrowid

    @_storage_call
    def get_users(self) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT id, username, created_at FROM users ORDER BY id")
        return [dict(row) for row in cursor.fetchall()]

    # Tracked wallets

    @_storage_call
    def track_wallet(self, user_id: int, address: str) -> TrackedWallet:
        """Start tracking an address for a user.

        Raises:
            InvalidWalletAddressError: If the address is not a Solana address
            DuplicateWalletError: If the user already tracks this address
        """
        address = validate_wallet_address(address)
        with self._lock:
            conn = self._get_conn()
            try:
                cursor = conn.execute(
                    "INSERT INTO tracked_wallets (user_id, address, created_at) VALUES (?, ?, ?)",
                    (user_id, address, _to_iso(datetime.now(timezone.utc))),
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "UNIQUE" in str(e):
                    raise DuplicateWalletError(
                        f"User {user_id} already tracks {address}"
                    ) from e
                if "FOREIGN KEY" in str(e):
                    raise ValueError(f"Unknown user: {user_id}") from e
                raise
            conn.commit()
            row = conn.execute(
                "SELECT * FROM tracked_wallets WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return _row_to_wallet(row)

    @_storage_call
    def untrack_wallet(self, user_id: int, address: str) -> bool:
        """Stop tracking an address. Returns False if it was not tracked."""
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute(
                "DELETE FROM tracked_wallets WHERE user_id = ? AND address = ?",
                (user_id, address.strip()),
            )
            conn.commit()
            return cursor.rowcount > 0

    @_storage_call
    def get_tracked_wallets_by_user(self, user_id: int) -> List[TrackedWallet]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM tracked_wallets WHERE user_id = ? ORDER BY id", (user_id,)
        )
        return [_row_to_wallet(row) for row in cursor.fetchall()]

    @_storage_call
    def get_tracked_wallet_by_address(self, user_id: int, address: str) -> Optional[TrackedWallet]:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM tracked_wallets WHERE user_id = ? AND address = ?",
            (user_id, address.strip()),
        ).fetchone()
        return _row_to_wallet(row) if row else None

    # Trades

    @_storage_call
    def trade_exists_by_signature(self, user_id: int, signature: str) -> bool:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT 1 FROM trades WHERE user_id = ? AND transaction_signature = ? LIMIT 1",
            (user_id, signature),
        ).fetchone()
        return row is not None

    @_storage_call
    def create_trade(self, candidate: TradeCandidate) -> Trade:
        """Insert a trade and return the stored row.

        Raises:
            DuplicateTradeError: If the user already has a trade with the
                same transaction signature
            ValueError: If amounts are negative or the contract address is
                invalid
        """
        contract_address = _validate_contract_address(candidate.contract_address)
        for name in ("buy_amount", "sell_amount", "token_amount"):
            if getattr(candidate, name) < 0:
                raise ValueError(f"{name} must be non-negative")

        with self._lock:
            conn = self._get_conn()
            try:
                cursor = conn.execute(
                    """INSERT INTO trades
                       (user_id, contract_address, token_name, token_symbol, token_image,
                        buy_amount, sell_amount, token_amount, setup, emotion, mistakes,
                        date, notes, is_shared, transaction_signature, source, side)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        candidate.user_id,
                        contract_address,
                        candidate.token_name,
                        candidate.token_symbol,
                        candidate.token_image,
                        str(candidate.buy_amount),
                        str(candidate.sell_amount),
                        str(candidate.token_amount),
                        json.dumps(list(candidate.setup)),
                        json.dumps(list(candidate.emotion)),
                        json.dumps(list(candidate.mistakes)),
                        _to_iso(candidate.date),
                        candidate.notes,
                        int(candidate.is_shared),
                        candidate.transaction_signature,
                        TradeSource(candidate.source).value,
                        SwapDirection(candidate.side).value if candidate.side else None,
                    ),
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "UNIQUE" in str(e):
                    raise DuplicateTradeError(
                        f"Trade {candidate.transaction_signature} already stored for user {candidate.user_id}"
                    ) from e
                if "FOREIGN KEY" in str(e):
                    raise ValueError(f"Unknown user: {candidate.user_id}") from e
                raise
            conn.commit()
            row = conn.execute("SELECT * FROM trades WHERE id = ?", (cursor.lastrowid,)).fetchone()
            return _row_to_trade(row)

    @_storage_call
    def get_trade(self, trade_id: int) -> Optional[Trade]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM trades WHERE id = ?", (trade_id,)).fetchone()
        return _row_to_trade(row) if row else None

    @_storage_call
    def update_trade(self, trade_id: int, **changes: Any) -> Optional[Trade]:
        """Apply a manual edit to a trade.

        Only journal-editable fields may change; the owning user, the
        transaction signature and the source are immutable.

        Returns:
            The updated trade, or None if it does not exist
        """
        unknown = set(changes) - set(EDITABLE_TRADE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
        if not changes:
            return self.get_trade(trade_id)

        values: Dict[str, Any] = {}
        for name, value in changes.items():
            if name in ("buy_amount", "sell_amount", "token_amount"):
                value = Decimal(value)
                if value < 0:
                    raise ValueError(f"{name} must be non-negative")
                value = str(value)
            elif name in ("setup", "emotion", "mistakes"):
                value = json.dumps(list(value or []))
            elif name == "date":
                value = _to_iso(value)
            elif name == "is_shared":
                value = int(bool(value))
            elif name == "contract_address":
                value = _validate_contract_address(value)
            values[name] = value

        assignments = ", ".join(f"{name} = ?" for name in values)
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute(
                f"UPDATE trades SET {assignments} WHERE id = ?",
                (*values.values(), trade_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
        return self.get_trade(trade_id)

    @_storage_call
    def delete_trade(self, trade_id: int) -> bool:
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute("DELETE FROM trades WHERE id = ?", (trade_id,))
            conn.commit()
            return cursor.rowcount > 0

    @_storage_call
    def get_trades_by_user(self, user_id: int) -> List[Trade]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM trades WHERE user_id = ? ORDER BY date, id", (user_id,)
        )
        return [_row_to_trade(row) for row in cursor.fetchall()]

    @_storage_call
    def get_trades_by_date(self, user_id: int, day: date_type) -> List[Trade]:
        """Trades whose UTC calendar date is ``day``."""
        if isinstance(day, datetime):
            day = day.astimezone(timezone.utc).date() if day.tzinfo else day.date()
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM trades WHERE user_id = ? AND substr(date, 1, 10) = ? ORDER BY date, id",
            (user_id, day.isoformat()),
        )
        return [_row_to_trade(row) for row in cursor.fetchall()]

    @_storage_call
    def count_trades(self, user_id: Optional[int] = None, source: Optional[TradeSource] = None) -> int:
        query = "SELECT COUNT(*) FROM trades WHERE 1 = 1"
        params: List[Any] = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if source is not None:
            query += " AND source = ?"
            params.append(TradeSource(source).value)
        conn = self._get_conn()
        return conn.execute(query, params).fetchone()[0]
