"""
Position aggregation and realized P&L.
Single source of truth for all position math in the journal.

Positions are never stored. They are recomputed from the full trade log on
every read, so they cannot drift from manual edits or newly ingested rows.
The model is a running total: no lot matching, and realized P&L is simply
SOL received minus SOL spent.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models import SwapDirection, Trade, TradeSource

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class Position:
    """Running totals for one user and one traded token."""

    contract_address: str
    total_token_bought: Decimal = ZERO
    total_token_sold: Decimal = ZERO
    total_sol_spent: Decimal = ZERO
    total_sol_received: Decimal = ZERO
    last_activity_date: Optional[datetime] = None
    token_name: Optional[str] = None
    token_symbol: Optional[str] = None
    token_image: Optional[str] = None
    trade_count: int = 0

    @property
    def remaining_token_amount(self) -> Decimal:
        # May go negative when tokens were bought from an untracked wallet
        return self.total_token_bought - self.total_token_sold

    @property
    def avg_buy_price_sol(self) -> Optional[Decimal]:
        if self.total_token_bought <= 0:
            return None
        return self.total_sol_spent / self.total_token_bought

    @property
    def realized_pnl_sol(self) -> Decimal:
        return self.total_sol_received - self.total_sol_spent

    @property
    def is_open(self) -> bool:
        return self.remaining_token_amount > 0

    def to_dict(self) -> Dict[str, Any]:
        avg = self.avg_buy_price_sol
        return {
            "contractAddress": self.contract_address,
            "tokenName": self.token_name,
            "tokenSymbol": self.token_symbol,
            "tokenImage": self.token_image,
            "totalTokenBought": str(self.total_token_bought),
            "totalTokenSold": str(self.total_token_sold),
            "remainingTokenAmount": str(self.remaining_token_amount),
            "totalSolSpent": str(self.total_sol_spent),
            "totalSolReceived": str(self.total_sol_received),
            "avgBuyPriceSol": str(avg) if avg is not None else None,
            "realizedPnlSol": str(self.realized_pnl_sol),
            "lastActivityDate": self.last_activity_date.isoformat() if self.last_activity_date else None,
            "tradeCount": self.trade_count,
        }


def token_delta(trade: Trade) -> Tuple[Decimal, Decimal]:
    """
    Split a trade's token amount into (bought, sold).

    Follows ``Trade.direction``: ingested trades fold on their swap side, so
    a sell that received no SOL still removes tokens. A manual round-trip
    row carrying both SOL amounts counts its tokens as both bought and sold.

    Args:
        trade: Stored trade

    Returns:
        Tokens bought, tokens sold
    """
    direction = trade.direction
    if direction is None:
        return trade.token_amount, trade.token_amount
    if direction is SwapDirection.SELL:
        return ZERO, trade.token_amount
    return trade.token_amount, ZERO


def apply_trade(position: Position, trade: Trade) -> Position:
    """Fold one trade into a position (in place) and return it."""
    bought, sold = token_delta(trade)
    position.total_token_bought += bought
    position.total_token_sold += sold
    position.total_sol_spent += trade.buy_amount
    position.total_sol_received += trade.sell_amount
    position.trade_count += 1

    if position.last_activity_date is None or trade.date >= position.last_activity_date:
        position.last_activity_date = trade.date
        # Latest known metadata wins, but never overwrite with blanks
        position.token_name = trade.token_name or position.token_name
        position.token_symbol = trade.token_symbol or position.token_symbol
        position.token_image = trade.token_image or position.token_image
    else:
        position.token_name = position.token_name or trade.token_name
        position.token_symbol = position.token_symbol or trade.token_symbol
        position.token_image = position.token_image or trade.token_image
    return position


def aggregate_positions(
    trades: Iterable[Trade],
    contract_address: Optional[str] = None,
) -> List[Position]:
    """
    Group trades by token and fold them into positions.

    Summary rows are journal annotations without amounts and are ignored.

    Args:
        trades: One user's trades
        contract_address: Restrict to a single token, or None for all

    Returns:
        Positions ordered by most recent activity first
    """
    positions: Dict[str, Position] = {}
    for trade in trades:
        if trade.source == TradeSource.SUMMARY:
            continue
        if contract_address is not None and trade.contract_address != contract_address:
            continue
        position = positions.get(trade.contract_address)
        if position is None:
            position = positions[trade.contract_address] = Position(contract_address=trade.contract_address)
        apply_trade(position, trade)

    for position in positions.values():
        if position.remaining_token_amount < 0:
            logger.debug(
                "Position %s is oversold by %s tokens",
                position.contract_address,
                -position.remaining_token_amount,
            )

    return sorted(
        positions.values(),
        key=lambda p: (p.last_activity_date is not None, p.last_activity_date or datetime.min),
        reverse=True,
    )


def summarize_positions(positions: Iterable[Position]) -> Dict[str, Any]:
    """Totals across positions, e.g. for a dashboard header."""
    positions = list(positions)
    spent = sum((p.total_sol_spent for p in positions), ZERO)
    received = sum((p.total_sol_received for p in positions), ZERO)
    return {
        "position_count": len(positions),
        "open_positions": sum(1 for p in positions if p.is_open),
        "total_sol_spent": spent,
        "total_sol_received": received,
        "realized_pnl_sol": received - spent,
    }


class PositionAggregator:
    """Reads a user's trades from storage and aggregates them on demand.

    Stateless: every call recomputes from storage, so results always reflect
    the store at call time.
    """

    def __init__(self, db):
        self._db = db

    def aggregate(self, user_id: int, contract_address: Optional[str] = None) -> List[Position]:
        return aggregate_positions(self._db.get_trades_by_user(user_id), contract_address)

    def active_positions(self, user_id: int) -> List[Position]:
        """Positions still holding tokens."""
        return [p for p in self.aggregate(user_id) if p.is_open]
