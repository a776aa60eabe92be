"""Fetches swaps for tracked wallets and turns them into journal trades."""
import logging
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from api_client import APIError, SolanaTrackerClient
from ingestion_gate import IngestionGate
from models import (
    LegInfo,
    MalformedSwapError,
    RawSwapRecord,
    SwapDirection,
    TrackedWallet,
    TradeCandidate,
    TradeSource,
)
from utils import InvalidAmountError, log_with_context, parse_amount, truncate_address

logger = logging.getLogger("trade_journal")

MAX_PAGES = 10
PAGE_DELAY_SECONDS = 0.5


@dataclass(frozen=True)
class ClassifiedSwap:
    direction: SwapDirection
    token_leg: LegInfo
    sol_leg: LegInfo


def classify_swap(record: RawSwapRecord) -> Optional[ClassifiedSwap]:
    """Classify a swap as a buy or sell of a token against SOL.

    Only SOL<->token swaps are modelled. SOL->SOL and token->token swaps
    return None.
    """
    from_sol = record.from_leg.is_sol
    to_sol = record.to_leg.is_sol
    if from_sol and not to_sol:
        return ClassifiedSwap(SwapDirection.BUY, token_leg=record.to_leg, sol_leg=record.from_leg)
    if to_sol and not from_sol:
        return ClassifiedSwap(SwapDirection.SELL, token_leg=record.from_leg, sol_leg=record.to_leg)
    return None


def build_candidate(user_id: int, record: RawSwapRecord, swap: ClassifiedSwap) -> TradeCandidate:
    """Build the insert candidate for one owner of the wallet.

    Raises:
        InvalidAmountError: If either leg amount is not a non-negative decimal
    """
    sol_amount = parse_amount(swap.sol_leg.amount)
    token_amount = parse_amount(swap.token_leg.amount)
    meta = swap.token_leg.asset_meta
    is_buy = swap.direction is SwapDirection.BUY
    return TradeCandidate(
        user_id=user_id,
        contract_address=swap.token_leg.asset_address,
        token_name=meta.name if meta else None,
        token_symbol=meta.symbol if meta else None,
        token_image=meta.image if meta else None,
        buy_amount=sol_amount if is_buy else Decimal("0"),
        sell_amount=Decimal("0") if is_buy else sol_amount,
        token_amount=token_amount,
        date=record.timestamp,
        source=TradeSource.INGESTED,
        setup=[],
        emotion=[],
        mistakes=[],
        notes=None,
        is_shared=False,
        transaction_signature=record.signature,
        side=swap.direction,
    )


class WalletTradeFetcher:
    """Pages through a wallet's swaps and persists new trades."""

    def __init__(
        self,
        client: SolanaTrackerClient,
        gate: IngestionGate,
        max_pages: int = MAX_PAGES,
        page_delay: float = PAGE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        self._client = client
        self._gate = gate
        self.max_pages = max_pages
        self.page_delay = page_delay
        self._sleep = sleep

    @property
    def client(self) -> SolanaTrackerClient:
        return self._client

    def fetch_trades_for_wallet(self, wallet: TrackedWallet) -> int:
        """Fetch and store trades for one tracked wallet.

        Returns:
            Number of newly persisted trades
        """
        return self.fetch_trades_for_address(wallet.address, [wallet])

    def fetch_trades_for_address(self, address: str, owners: Sequence[TrackedWallet]) -> int:
        """Fetch an address once and persist its trades for every owner.

        Each owner is deduplicated and stored under its own user id. A
        transport failure stops pagination but keeps the trades already
        stored. StorageError propagates to the caller.

        Returns:
            Number of newly persisted trades across all owners
        """
        user_ids = sorted({w.user_id for w in owners})
        logger.info(
            "Fetching trades for wallet %s (users: %s)",
            truncate_address(address),
            ", ".join(str(u) for u in user_ids),
        )

        new_trades = 0
        cursor: Optional[str] = None
        has_next_page = True
        page = 0

        while has_next_page and page < self.max_pages:
            page += 1
            try:
                result = self._client.get_wallet_trades(address, cursor)
            except APIError as e:
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Stopping fetch for {truncate_address(address)} at page {page}: {e}",
                    wallet=address,
                    page=page,
                    status_code=e.status_code,
                    new_trades=new_trades,
                )
                break

            logger.debug(
                "Received %d trades for %s on page %d",
                len(result.trades),
                truncate_address(address),
                page,
            )
            for raw in result.trades:
                new_trades += self._ingest_record(raw, owners)

            cursor = result.next_cursor
            has_next_page = result.has_next_page and cursor is not None
            if has_next_page:
                if page >= self.max_pages:
                    logger.info(
                        "Reached max page limit (%d) for wallet %s",
                        self.max_pages,
                        truncate_address(address),
                    )
                    break
                self._sleep(self.page_delay)

        log_with_context(
            logger,
            logging.INFO,
            f"Finished fetching {truncate_address(address)}: {new_trades} new trades over {page} pages",
            wallet=address,
            pages=page,
            new_trades=new_trades,
        )
        return new_trades

    def _ingest_record(self, raw: object, owners: Sequence[TrackedWallet]) -> int:
        try:
            record = RawSwapRecord.from_api(raw)
        except MalformedSwapError as e:
            logger.info("Skipping trade with %s", e)
            return 0

        pending: List[TrackedWallet] = [
            w for w in owners
            if not self._gate.exists_by_signature(w.user_id, record.signature)
        ]
        if not pending:
            logger.debug("Trade %s already recorded for all owners. Skipping.", record.signature)
            return 0

        swap = classify_swap(record)
        if swap is None:
            log_with_context(
                logger,
                logging.INFO,
                f"Skipping non SOL<->token swap {record.signature}",
                signature=record.signature,
                from_asset=record.from_leg.asset_address,
                to_asset=record.to_leg.asset_address,
            )
            return 0

        # Amounts are parsed once; each owner gets a copy under its own user id
        try:
            template = build_candidate(pending[0].user_id, record, swap)
        except InvalidAmountError as e:
            logger.info("Skipping trade %s with invalid amount: %s", record.signature, e)
            return 0

        stored = 0
        for wallet in pending:
            candidate = replace(template, user_id=wallet.user_id)
            try:
                persisted = self._gate.persist(candidate)
            except ValueError as e:
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Skipping trade {record.signature} rejected by the store: {e}",
                    signature=record.signature,
                    user_id=wallet.user_id,
                )
                continue
            if persisted is not None:
                stored += 1
        return stored
