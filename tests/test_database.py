"""Tests for database module."""
import sqlite3
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from database import Database, DuplicateTradeError, DuplicateWalletError, StorageError
from models import SwapDirection, TradeSource
from utils import InvalidWalletAddressError
from tests.fixtures.solana_tracker_responses import TOKEN_X, TOKEN_Y, WALLET_A, WALLET_B


class TestUsers:
    """Test user management."""

    def test_create_user(self, temp_db):
        user_id = temp_db.create_user("alice")

        users = temp_db.get_users()
        assert len(users) == 1
        assert users[0]["id"] == user_id
        assert users[0]["username"] == "alice"

    def test_duplicate_username(self, temp_db):
        temp_db.create_user("alice")
        with pytest.raises(ValueError, match="already exists"):
            temp_db.create_user("alice")

    def test_empty_username(self, temp_db):
        with pytest.raises(ValueError, match="Invalid username"):
            temp_db.create_user("   ")


class TestTrackedWallets:
    """Test tracked wallet management."""

    def test_track_wallet(self, temp_db, user_id):
        wallet = temp_db.track_wallet(user_id, WALLET_A)

        assert wallet.user_id == user_id
        assert wallet.address == WALLET_A
        assert temp_db.get_tracked_wallets_by_user(user_id) == [wallet]

    def test_address_case_preserved(self, temp_db, user_id):
        wallet = temp_db.track_wallet(user_id, f" {WALLET_A} ")
        assert wallet.address == WALLET_A

    def test_duplicate_wallet_for_same_user(self, temp_db, user_id):
        temp_db.track_wallet(user_id, WALLET_A)
        with pytest.raises(DuplicateWalletError):
            temp_db.track_wallet(user_id, WALLET_A)

    def test_same_address_for_two_users(self, temp_db):
        alice = temp_db.create_user("alice")
        bob = temp_db.create_user("bob")

        temp_db.track_wallet(alice, WALLET_A)
        temp_db.track_wallet(bob, WALLET_A)

        assert temp_db.get_tracked_wallet_by_address(alice, WALLET_A) is not None
        assert temp_db.get_tracked_wallet_by_address(bob, WALLET_A) is not None

    def test_invalid_address_rejected(self, temp_db, user_id):
        with pytest.raises(InvalidWalletAddressError):
            temp_db.track_wallet(user_id, "not-a-wallet")

    def test_unknown_user_rejected(self, temp_db):
        with pytest.raises(ValueError, match="Unknown user"):
            temp_db.track_wallet(999, WALLET_A)

    def test_untrack_wallet(self, temp_db, user_id):
        temp_db.track_wallet(user_id, WALLET_A)
        temp_db.track_wallet(user_id, WALLET_B)

        assert temp_db.untrack_wallet(user_id, WALLET_A) is True
        assert temp_db.untrack_wallet(user_id, WALLET_A) is False
        assert [w.address for w in temp_db.get_tracked_wallets_by_user(user_id)] == [WALLET_B]


class TestTrades:
    """Test trade persistence."""

    def test_create_trade_round_trips_decimals(self, temp_db, user_id, make_candidate):
        trade = temp_db.create_trade(make_candidate(
            user_id,
            buy_amount=Decimal("2.500000001"),
            token_amount=Decimal("123456789.123456789"),
            setup=["breakout"],
            emotion=["fomo"],
        ))

        stored = temp_db.get_trade(trade.id)
        assert stored.buy_amount == Decimal("2.500000001")
        assert stored.token_amount == Decimal("123456789.123456789")
        assert stored.setup == ["breakout"]
        assert stored.emotion == ["fomo"]
        assert stored.mistakes == []
        assert stored.source is TradeSource.MANUAL
        assert stored.date == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_naive_date_stored_as_utc(self, temp_db, user_id, make_candidate):
        trade = temp_db.create_trade(make_candidate(user_id, date=datetime(2024, 3, 1, 8, 30)))
        assert trade.date.tzinfo is not None
        assert trade.date.hour == 8

    def test_duplicate_signature_rejected(self, temp_db, user_id, make_candidate):
        temp_db.create_trade(make_candidate(user_id, transaction_signature="sig1", source=TradeSource.INGESTED))

        with pytest.raises(DuplicateTradeError):
            temp_db.create_trade(make_candidate(user_id, transaction_signature="sig1", source=TradeSource.INGESTED))

        assert temp_db.count_trades(user_id) == 1

    def test_same_signature_for_different_users(self, temp_db, make_candidate):
        alice = temp_db.create_user("alice")
        bob = temp_db.create_user("bob")

        temp_db.create_trade(make_candidate(alice, transaction_signature="sig1"))
        temp_db.create_trade(make_candidate(bob, transaction_signature="sig1"))

        assert temp_db.trade_exists_by_signature(alice, "sig1")
        assert temp_db.trade_exists_by_signature(bob, "sig1")

    def test_manual_trades_without_signature(self, temp_db, user_id, make_candidate):
        """Test NULL signatures never collide."""
        temp_db.create_trade(make_candidate(user_id))
        temp_db.create_trade(make_candidate(user_id))

        assert temp_db.count_trades(user_id) == 2

    def test_negative_amount_rejected(self, temp_db, user_id, make_candidate):
        with pytest.raises(ValueError, match="non-negative"):
            temp_db.create_trade(make_candidate(user_id, sell_amount=Decimal("-1")))

    def test_unknown_user_rejected(self, temp_db, make_candidate):
        with pytest.raises(ValueError, match="Unknown user"):
            temp_db.create_trade(make_candidate(42))

    def test_update_trade(self, temp_db, user_id, make_candidate):
        trade = temp_db.create_trade(make_candidate(user_id))

        updated = temp_db.update_trade(
            trade.id,
            token_amount=Decimal("250"),
            notes="scaled in",
            mistakes=["late entry"],
        )

        assert updated.token_amount == Decimal("250")
        assert updated.notes == "scaled in"
        assert updated.mistakes == ["late entry"]
        assert updated.buy_amount == trade.buy_amount

    def test_update_immutable_field_rejected(self, temp_db, user_id, make_candidate):
        trade = temp_db.create_trade(make_candidate(user_id))

        with pytest.raises(ValueError, match="not editable"):
            temp_db.update_trade(trade.id, transaction_signature="other")

    def test_update_missing_trade(self, temp_db):
        assert temp_db.update_trade(999, notes="x") is None

    def test_delete_trade(self, temp_db, user_id, make_candidate):
        trade = temp_db.create_trade(make_candidate(user_id))

        assert temp_db.delete_trade(trade.id) is True
        assert temp_db.get_trade(trade.id) is None
        assert temp_db.delete_trade(trade.id) is False

    def test_get_trades_by_user_ordered_by_date(self, temp_db, user_id, make_candidate):
        later = temp_db.create_trade(make_candidate(user_id, date=datetime(2024, 3, 2, tzinfo=timezone.utc)))
        earlier = temp_db.create_trade(make_candidate(user_id, date=datetime(2024, 3, 1, tzinfo=timezone.utc)))

        assert [t.id for t in temp_db.get_trades_by_user(user_id)] == [earlier.id, later.id]

    def test_get_trades_by_date(self, temp_db, user_id, make_candidate):
        temp_db.create_trade(make_candidate(user_id, contract_address=TOKEN_X,
                                            date=datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc)))
        temp_db.create_trade(make_candidate(user_id, contract_address=TOKEN_Y,
                                            date=datetime(2024, 3, 2, 0, 1, tzinfo=timezone.utc)))

        trades = temp_db.get_trades_by_date(user_id, date(2024, 3, 1))

        assert [t.contract_address for t in trades] == [TOKEN_X]

    def test_count_trades_by_source(self, temp_db, user_id, make_candidate):
        temp_db.create_trade(make_candidate(user_id))
        temp_db.create_trade(make_candidate(user_id, source=TradeSource.INGESTED, transaction_signature="s1"))

        assert temp_db.count_trades(user_id, TradeSource.INGESTED) == 1
        assert temp_db.count_trades(user_id, TradeSource.MANUAL) == 1
        assert temp_db.count_trades() == 2

    def test_side_round_trips(self, temp_db, user_id, make_candidate):
        sell = temp_db.create_trade(make_candidate(
            user_id,
            buy_amount=Decimal("0"),
            sell_amount=Decimal("0"),
            source=TradeSource.INGESTED,
            transaction_signature="rug",
            side=SwapDirection.SELL,
        ))
        manual = temp_db.create_trade(make_candidate(user_id))

        assert temp_db.get_trade(sell.id).side is SwapDirection.SELL
        assert temp_db.get_trade(manual.id).side is None

    def test_store_without_side_column_is_migrated(self, tmp_path):
        path = str(tmp_path / "legacy.db")
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, username TEXT NOT NULL UNIQUE, created_at TEXT NOT NULL)")
        conn.execute("""
            CREATE TABLE trades (
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
            )
        """)
        conn.execute("INSERT INTO users (username, created_at) VALUES ('alice', '2024-03-01T00:00:00+00:00')")
        conn.execute(
            "INSERT INTO trades (user_id, contract_address, buy_amount, token_amount, date) "
            "VALUES (1, ?, '1', '100', '2024-03-01T12:00:00+00:00')",
            (TOKEN_X,),
        )
        conn.commit()
        conn.close()

        db = Database(path)
        try:
            [legacy] = db.get_trades_by_user(1)
            assert legacy.side is None
            assert legacy.buy_amount == Decimal("1")
        finally:
            db.close()


class TestStorageErrors:
    """Test sqlite failures surface as StorageError."""

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(StorageError):
            Database(str(tmp_path / "missing" / "journal.db"))

    def test_duplicate_is_storage_error(self):
        assert issubclass(DuplicateTradeError, StorageError)
