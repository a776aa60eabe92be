"""HTTP client for the SolanaTracker data API."""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger("trade_journal")

SOLANA_TRACKER_BASE = "https://data.solanatracker.io"

DEFAULT_TIMEOUT = 15  # seconds per page
# One attempt per page; failed wallets are retried by the next ingestion cycle
DEFAULT_MAX_RETRIES = 1
DEFAULT_MIN_WAIT = 1  # seconds
DEFAULT_MAX_WAIT = 30  # seconds

RATE_LIMIT_HEADERS = (
    "x-ratelimit-limit",
    "x-ratelimit-remaining",
    "x-ratelimit-reset",
    "retry-after",
)

# Reset values above this are epoch seconds, below it a delta in seconds
_EPOCH_THRESHOLD = 1_000_000_000


class APIError(Exception):
    """Raised when an upstream request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(APIError):
    """Raised on HTTP 429; ``retry_after`` is seconds until the window resets."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class MalformedResponseError(APIError):
    """Raised when a response body is not the expected JSON shape."""
    pass


@dataclass
class WalletTradesPage:
    trades: List[Any] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_next_page: bool = False

    @classmethod
    def from_api(cls, data: Any) -> "WalletTradesPage":
        if not isinstance(data, dict):
            raise MalformedResponseError("Response body is not a JSON object")
        trades = data.get("trades")
        if not isinstance(trades, list):
            raise MalformedResponseError("Response is missing the 'trades' array")
        has_next = data.get("hasNextPage")
        if not isinstance(has_next, bool):
            raise MalformedResponseError("Response is missing 'hasNextPage'")
        cursor = data.get("nextCursor")
        return cls(
            trades=trades,
            next_cursor=str(cursor) if cursor not in (None, "") else None,
            has_next_page=has_next,
        )


class SolanaTrackerClient:
    """Client for the wallet-trades endpoint with rate-limit bookkeeping."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = SOLANA_TRACKER_BASE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        min_wait: float = DEFAULT_MIN_WAIT,
        max_wait: float = DEFAULT_MAX_WAIT,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, int(max_retries))
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.timeout = timeout
        self._clock = clock
        self._session: Optional[requests.Session] = None
        self._rate_limited_until: Optional[float] = None

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                "Accept": "application/json",
                "User-Agent": "SolanaTradeJournal/1.0",
            })
            if self.api_key:
                self._session.headers["x-api-key"] = self.api_key
        return self._session

    def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            self._session.close()
            self._session = None

    def rate_limit_wait(self) -> float:
        """Seconds left before the last reported rate-limit window resets."""
        if self._rate_limited_until is None:
            return 0.0
        remaining = self._rate_limited_until - self._clock()
        if remaining <= 0:
            self._rate_limited_until = None
            return 0.0
        return remaining

    def _parse_reset(self, headers: Dict[str, str]) -> Optional[float]:
        raw = headers.get("x-ratelimit-reset") or headers.get("retry-after")
        if raw is None:
            return None
        try:
            value = float(raw)
        except (TypeError, ValueError):
            logger.debug("Unparseable rate-limit reset header: %r", raw)
            return None
        if value > _EPOCH_THRESHOLD:
            # Some deployments report milliseconds since epoch
            if value > _EPOCH_THRESHOLD * 1000:
                value /= 1000
            return max(value - self._clock(), 0.0)
        return max(value, 0.0)

    def _handle_rate_limit(self, resp: requests.Response, url: str) -> RateLimitError:
        limits = {name: resp.headers[name] for name in RATE_LIMIT_HEADERS if name in resp.headers}
        retry_after = self._parse_reset(resp.headers)
        if retry_after is not None:
            self._rate_limited_until = self._clock() + retry_after
        logger.warning(
            "Rate limited by upstream for %s (headers=%s, retry_after=%s)",
            url,
            limits,
            retry_after,
        )
        return RateLimitError(f"HTTP 429: rate limited for {url}", retry_after=retry_after)

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make an HTTP request, retrying only connection failures."""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        @retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(
                multiplier=1, min=self.min_wait, max=self.max_wait
            ),
            retry=retry_if_exception_type(
                (requests.ConnectionError, requests.Timeout)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def do_request() -> requests.Response:
            return self.session.request(
                method=method,
                url=url,
                params=params,
                timeout=self.timeout,
            )

        try:
            resp = do_request()
        except requests.Timeout as e:
            raise APIError(f"Request to {url} timed out after {self.timeout}s: {e}")
        except requests.RequestException as e:
            raise APIError(f"Request to {url} failed: {e}")

        if resp.status_code == 429:
            raise self._handle_rate_limit(resp, url)
        if not resp.ok:
            raise APIError(
                f"HTTP {resp.status_code} {resp.reason or ''}".strip() + f" for {url}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from {url}: {e}", status_code=resp.status_code)

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Make a GET request."""
        return self._make_request("GET", endpoint, params=params)

    def get_wallet_trades(self, wallet_address: str, cursor: Optional[str] = None) -> WalletTradesPage:
        """Fetch one page of swaps for a wallet.

        Args:
            wallet_address: Base58 wallet address (case-sensitive)
            cursor: Cursor returned by the previous page, if any

        Raises:
            APIError: On transport failure, non-2xx status or malformed body
        """
        params = {"cursor": cursor} if cursor else None
        data = self.get(f"/wallet/{wallet_address}/trades", params=params)
        return WalletTradesPage.from_api(data)
