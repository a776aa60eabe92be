"""Shared test fixtures for the Solana trade journal."""
import logging
import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from database import Database
from models import TradeCandidate, TradeSource
from utils import LOGGER_NAME

from tests.fixtures.solana_tracker_responses import TOKEN_X, WALLET_A


@pytest.fixture(autouse=True)
def reset_journal_logger():
    """Undo setup_logging between tests so caplog sees our records."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    yield
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    db = Database(db_path)
    yield db

    # Cleanup
    db.close()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def user_id(temp_db):
    """A single journal user."""
    return temp_db.create_user("alice")


@pytest.fixture
def tracked_wallet(temp_db, user_id):
    """WALLET_A tracked by the default user."""
    return temp_db.track_wallet(user_id, WALLET_A)


@pytest.fixture
def make_candidate():
    """Factory for trade candidates with sensible defaults."""

    def _make(user_id, **overrides):
        values = dict(
            user_id=user_id,
            contract_address=TOKEN_X,
            buy_amount=Decimal("1"),
            sell_amount=Decimal("0"),
            token_amount=Decimal("100"),
            date=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
            source=TradeSource.MANUAL,
        )
        values.update(overrides)
        return TradeCandidate(**values)

    return _make


@pytest.fixture
def sample_config():
    """Sample configuration for testing."""
    return {
        "solana_tracker": {
            "base_url": "https://data.solanatracker.io",
            "api_key": "test-key",
            "timeout": 15,
            "max_retries": 1,
            "min_wait": 0,
            "max_wait": 0,
            "max_rate_limit_wait": 60.0,
        },
        "ingestion": {
            "interval_seconds": 1800,
            "max_pages": 10,
            "page_delay": 0,
            "wallet_delay": 0,
            "run_on_startup": True,
        },
        "database": {
            "path": ":memory:",
        },
        "reporting": {
            "log_level": "INFO",
        },
        "health": {
            "port": 8080,
        },
    }


@pytest.fixture
def valid_wallet_address():
    """A valid Solana wallet address."""
    return WALLET_A


@pytest.fixture
def invalid_wallet_addresses():
    """List of invalid wallet addresses for testing validation."""
    return [
        "",  # Empty
        "   ",  # Whitespace only
        "0x1234567890abcdef1234567890abcdef12345678",  # Hex, contains 0
        "7xKXtg2CW87d97TX",  # Too short
        WALLET_A + "abcdefgh",  # Too long
        "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsl",  # 'l' is not base58
        "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgA-U",  # Punctuation
    ]
