"""Exactly-once persistence of ingested trades."""
import logging
from typing import Optional

from database import Database, DuplicateTradeError
from models import Trade, TradeCandidate
from utils import log_with_context

logger = logging.getLogger("trade_journal")


class IngestionGate:
    """Dedup check and insert keyed on (user_id, transaction_signature).

    The pre-check only avoids noisy constraint violations; the unique index
    in storage is what actually guarantees a signature is stored once per
    user when two cycles race between check and insert.
    """

    def __init__(self, db: Database):
        self._db = db

    def exists_by_signature(self, user_id: int, signature: str) -> bool:
        return self._db.trade_exists_by_signature(user_id, signature)

    def persist(self, candidate: TradeCandidate) -> Optional[Trade]:
        """Store a candidate trade.

        Returns:
            The stored trade, or None when it was already recorded

        Raises:
            StorageError: If the store is unavailable
        """
        try:
            trade = self._db.create_trade(candidate)
        except DuplicateTradeError:
            log_with_context(
                logger,
                logging.DEBUG,
                f"Trade {candidate.transaction_signature} already stored for user {candidate.user_id}",
                user_id=candidate.user_id,
                signature=candidate.transaction_signature,
            )
            return None
        logger.debug(
            "Stored trade %s (%s) for user %s",
            trade.id,
            candidate.transaction_signature,
            candidate.user_id,
        )
        return trade
