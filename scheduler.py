"""Recurring ingestion across every tracked wallet."""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from database import Database, StorageError
from health_server import HealthStatus
from models import TrackedWallet
from trade_fetcher import WalletTradeFetcher
from utils import log_with_context, truncate_address

logger = logging.getLogger("trade_journal")

INGESTION_INTERVAL_SECONDS = 30 * 60
WALLET_DELAY_SECONDS = 1.0
MAX_RATE_LIMIT_WAIT_SECONDS = 60.0


@dataclass
class CycleSummary:
    """Outcome of one ingestion cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    new_trades: int = 0
    addresses_fetched: int = 0
    wallets_processed: int = 0
    wallets_failed: int = 0
    aborted: bool = False
    error: Optional[str] = None
    failed_addresses: List[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


class IngestionScheduler:
    """Runs ingestion cycles on a fixed interval.

    Cycles are serialized by a run-lock: a trigger that arrives while a cycle
    is running waits for it to finish instead of starting a second one.
    """

    def __init__(
        self,
        db: Database,
        fetcher: WalletTradeFetcher,
        interval_seconds: float = INGESTION_INTERVAL_SECONDS,
        wallet_delay: float = WALLET_DELAY_SECONDS,
        max_rate_limit_wait: float = MAX_RATE_LIMIT_WAIT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        health_status: Optional[HealthStatus] = None,
    ):
        self._db = db
        self._fetcher = fetcher
        self.interval_seconds = interval_seconds
        self.wallet_delay = wallet_delay
        self.max_rate_limit_wait = max_rate_limit_wait
        self._sleep = sleep
        self._health = health_status
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_summary: Optional[CycleSummary] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def cycle_in_progress(self) -> bool:
        return self._run_lock.locked()

    def _group_wallets_by_address(self) -> "OrderedDict[str, List[TrackedWallet]]":
        grouped: "OrderedDict[str, List[TrackedWallet]]" = OrderedDict()
        for user in self._db.get_users():
            for wallet in self._db.get_tracked_wallets_by_user(user["id"]):
                grouped.setdefault(wallet.address, []).append(wallet)
        return grouped

    def _delay_after_wallet(self) -> None:
        delay = self.wallet_delay
        rate_limit_wait = min(self._fetcher.client.rate_limit_wait(), self.max_rate_limit_wait)
        if rate_limit_wait > delay:
            logger.info("Upstream rate limit active; waiting %.1fs before next wallet", rate_limit_wait)
            delay = rate_limit_wait
        if delay > 0:
            self._sleep(delay)

    def run_ingestion_cycle(self) -> CycleSummary:
        """Fetch every tracked wallet once and store new trades.

        A failing wallet is logged and skipped. A storage failure ends the
        cycle early; the next scheduled cycle retries.
        """
        with self._run_lock:
            summary = CycleSummary(started_at=datetime.now(timezone.utc))
            logger.info("Starting ingestion cycle")
            try:
                wallets_by_address = self._group_wallets_by_address()
                for address, owners in wallets_by_address.items():
                    try:
                        summary.new_trades += self._fetcher.fetch_trades_for_address(address, owners)
                        summary.wallets_processed += len(owners)
                    except StorageError:
                        raise
                    except Exception as e:
                        summary.wallets_failed += len(owners)
                        summary.failed_addresses.append(address)
                        logger.exception("Error fetching trades for wallet %s: %s", truncate_address(address), e)
                    summary.addresses_fetched += 1
                    self._delay_after_wallet()
            except StorageError as e:
                summary.aborted = True
                summary.error = str(e)
                logger.error("Storage unavailable, ending ingestion cycle early: %s", e)

            summary.finished_at = datetime.now(timezone.utc)
            self.last_summary = summary
            if self._health is not None:
                self._health.record_cycle(summary)
            log_with_context(
                logger,
                logging.INFO,
                f"Ingestion cycle finished. Total new trades added: {summary.new_trades}",
                new_trades=summary.new_trades,
                addresses=summary.addresses_fetched,
                wallets_failed=summary.wallets_failed,
                aborted=summary.aborted,
                duration_seconds=summary.duration_seconds,
            )
            return summary

    def _run_safely(self) -> None:
        try:
            self.run_ingestion_cycle()
        except Exception as e:
            logger.exception("Ingestion cycle crashed: %s", e)
            if self._health is not None:
                self._health.update(error=str(e))

    def _loop(self, run_immediately: bool) -> None:
        if run_immediately:
            logger.info("Running initial trade fetch on startup...")
            self._run_safely()
        while not self._stop_event.wait(self.interval_seconds):
            logger.info("Running scheduled trade fetcher job...")
            self._run_safely()

    def start(self, run_immediately: bool = True) -> None:
        """Start the background timer thread."""
        if self.is_running:
            logger.warning("Ingestion scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            args=(run_immediately,),
            name="ingestion-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("Scheduled trade fetcher every %ss", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the timer; a cycle already running is allowed to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Ingestion scheduler did not stop within %ss", timeout)
            else:
                self._thread = None
        logger.info("Ingestion scheduler stopped")

    def wait_for_cycle(self, timeout: Optional[float] = None) -> bool:
        """Block until no cycle is running. Returns False on timeout."""
        acquired = self._run_lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._run_lock.release()
        return acquired
