"""Tests for position aggregation and realized P&L."""
from datetime import datetime, timezone
from decimal import Decimal

from models import SwapDirection, Trade, TradeSource
from pnl import (
    Position,
    PositionAggregator,
    aggregate_positions,
    summarize_positions,
    token_delta,
)
from tests.fixtures.solana_tracker_responses import TOKEN_X, TOKEN_Y

_ids = iter(range(1, 10_000))


def make_trade(
    buy="0",
    sell="0",
    tokens="0",
    contract=TOKEN_X,
    day=1,
    source=TradeSource.INGESTED,
    symbol=None,
    side=None,
):
    return Trade(
        id=next(_ids),
        user_id=1,
        contract_address=contract,
        buy_amount=Decimal(buy),
        sell_amount=Decimal(sell),
        token_amount=Decimal(tokens),
        date=datetime(2024, 3, day, 12, 0, tzinfo=timezone.utc),
        source=source,
        token_symbol=symbol,
        side=side,
    )


class TestTokenDelta:
    """Test how a trade's tokens count toward a position."""

    def test_buy(self):
        assert token_delta(make_trade(buy="1", tokens="10")) == (Decimal("10"), Decimal("0"))

    def test_sell(self):
        assert token_delta(make_trade(sell="1", tokens="10")) == (Decimal("0"), Decimal("10"))

    def test_round_trip_counts_both(self):
        assert token_delta(make_trade(buy="1", sell="2", tokens="10")) == (Decimal("10"), Decimal("10"))

    def test_zero_cost_counts_as_buy(self):
        assert token_delta(make_trade(tokens="10")) == (Decimal("10"), Decimal("0"))

    def test_sell_for_no_sol_removes_tokens(self):
        trade = make_trade(tokens="10", side=SwapDirection.SELL)
        assert token_delta(trade) == (Decimal("0"), Decimal("10"))

    def test_stored_side_overrides_amounts(self):
        trade = make_trade(buy="1", sell="2", tokens="10", side=SwapDirection.BUY)
        assert token_delta(trade) == (Decimal("10"), Decimal("0"))


class TestAggregatePositions:
    """Test folding trades into per-token positions."""

    def test_buy_then_partial_sell(self):
        positions = aggregate_positions([
            make_trade(buy="2.5", tokens="1000", day=1),
            make_trade(sell="1.3", tokens="400", day=2),
        ])

        assert len(positions) == 1
        p = positions[0]
        assert p.total_token_bought == Decimal("1000")
        assert p.total_token_sold == Decimal("400")
        assert p.remaining_token_amount == Decimal("600")
        assert p.total_sol_spent == Decimal("2.5")
        assert p.total_sol_received == Decimal("1.3")
        assert p.realized_pnl_sol == Decimal("-1.2")
        assert p.avg_buy_price_sol == Decimal("0.0025")
        assert p.is_open
        assert p.trade_count == 2

    def test_decimal_sums_are_exact(self):
        positions = aggregate_positions([
            make_trade(buy="0.1", tokens="1"),
            make_trade(buy="0.2", tokens="1"),
        ])

        assert positions[0].total_sol_spent == Decimal("0.3")

    def test_worthless_exit_closes_position(self):
        [position] = aggregate_positions([
            make_trade(buy="1", tokens="1000", day=1, side=SwapDirection.BUY),
            make_trade(tokens="1000", day=2, side=SwapDirection.SELL),
        ])

        assert position.remaining_token_amount == Decimal("0")
        assert position.realized_pnl_sol == Decimal("-1")
        assert not position.is_open

    def test_oversold_position_goes_negative(self):
        """Test selling tokens bought from an untracked wallet."""
        positions = aggregate_positions([
            make_trade(buy="1", tokens="100", day=1),
            make_trade(sell="3", tokens="250", day=2),
        ])

        p = positions[0]
        assert p.remaining_token_amount == Decimal("-150")
        assert not p.is_open
        assert p.realized_pnl_sol == Decimal("2")

    def test_sell_only_has_no_average(self):
        positions = aggregate_positions([make_trade(sell="1", tokens="10")])

        assert positions[0].avg_buy_price_sol is None
        assert positions[0].realized_pnl_sol == Decimal("1")

    def test_summary_rows_ignored(self):
        positions = aggregate_positions([
            make_trade(buy="1", tokens="10"),
            make_trade(buy="5", tokens="50", source=TradeSource.SUMMARY),
        ])

        assert positions[0].total_sol_spent == Decimal("1")
        assert positions[0].trade_count == 1

    def test_manual_and_ingested_combine(self):
        positions = aggregate_positions([
            make_trade(buy="1", tokens="100", source=TradeSource.MANUAL),
            make_trade(buy="1", tokens="100", source=TradeSource.INGESTED),
        ])

        assert positions[0].total_token_bought == Decimal("200")

    def test_filter_by_contract(self):
        trades = [
            make_trade(buy="1", tokens="10", contract=TOKEN_X),
            make_trade(buy="2", tokens="20", contract=TOKEN_Y),
        ]

        positions = aggregate_positions(trades, contract_address=TOKEN_Y)

        assert [p.contract_address for p in positions] == [TOKEN_Y]

    def test_ordered_by_latest_activity(self):
        positions = aggregate_positions([
            make_trade(buy="1", tokens="10", contract=TOKEN_X, day=5),
            make_trade(buy="1", tokens="10", contract=TOKEN_Y, day=9),
        ])

        assert [p.contract_address for p in positions] == [TOKEN_Y, TOKEN_X]

    def test_latest_metadata_wins(self):
        positions = aggregate_positions([
            make_trade(buy="1", tokens="10", day=3, symbol="NEW"),
            make_trade(buy="1", tokens="10", day=1, symbol="OLD"),
            make_trade(buy="1", tokens="10", day=4, symbol=None),
        ])

        assert positions[0].token_symbol == "NEW"
        assert positions[0].last_activity_date.day == 4

    def test_empty(self):
        assert aggregate_positions([]) == []


class TestPositionHelpers:
    """Test serialization and totals."""

    def test_to_dict(self):
        p = Position(
            contract_address=TOKEN_X,
            total_token_bought=Decimal("1000"),
            total_token_sold=Decimal("400"),
            total_sol_spent=Decimal("2.5"),
            total_sol_received=Decimal("1.3"),
        )

        data = p.to_dict()

        assert data["remainingTokenAmount"] == "600"
        assert data["realizedPnlSol"] == "-1.2"
        assert data["avgBuyPriceSol"] == "0.0025"
        assert data["lastActivityDate"] is None

    def test_summarize_positions(self):
        positions = aggregate_positions([
            make_trade(buy="2", tokens="10", contract=TOKEN_X),
            make_trade(sell="3", tokens="10", contract=TOKEN_X, day=2),
            make_trade(buy="1", tokens="5", contract=TOKEN_Y),
        ])

        totals = summarize_positions(positions)

        assert totals["position_count"] == 2
        assert totals["open_positions"] == 1
        assert totals["total_sol_spent"] == Decimal("3")
        assert totals["total_sol_received"] == Decimal("3")
        assert totals["realized_pnl_sol"] == Decimal("0")


class TestPositionAggregator:
    """Test aggregation read from storage."""

    def test_reflects_store_on_every_call(self, temp_db, user_id, make_candidate):
        aggregator = PositionAggregator(temp_db)
        temp_db.create_trade(make_candidate(user_id, buy_amount=Decimal("2.5"), token_amount=Decimal("1000")))

        assert aggregator.aggregate(user_id)[0].remaining_token_amount == Decimal("1000")

        sell = temp_db.create_trade(make_candidate(
            user_id,
            buy_amount=Decimal("0"),
            sell_amount=Decimal("1.3"),
            token_amount=Decimal("400"),
            source=TradeSource.INGESTED,
            transaction_signature="sig-sell",
        ))
        assert aggregator.aggregate(user_id)[0].remaining_token_amount == Decimal("600")

        temp_db.update_trade(sell.id, token_amount=Decimal("1000"))
        assert aggregator.active_positions(user_id) == []

    def test_other_users_excluded(self, temp_db, make_candidate):
        alice = temp_db.create_user("alice")
        bob = temp_db.create_user("bob")
        temp_db.create_trade(make_candidate(alice))

        assert PositionAggregator(temp_db).aggregate(bob) == []
