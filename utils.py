"""Utility functions for the Solana trade journal."""
import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from rich.console import Console
from rich.logging import RichHandler

console = Console()

LOGGER_NAME = "trade_journal"

# Base58 alphabet excludes 0, O, I and l
SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class StructuredLogFormatter(logging.Formatter):
    """JSON formatter for Cloud Logging compatibility."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON for Cloud Logging."""
        log_entry: Dict[str, Any] = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "logging.googleapis.com/sourceLocation": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


def is_cloud_environment() -> bool:
    """Check if running in a cloud environment (Cloud Run, GKE, etc.)."""
    return bool(
        os.getenv("K_SERVICE")
        or os.getenv("KUBERNETES_SERVICE_HOST")
        or os.getenv("CLOUD_RUN_JOB")
    )


class InvalidWalletAddressError(ValueError):
    """Raised when a wallet address is invalid."""
    pass


class InvalidAmountError(ValueError):
    """Raised when a swap amount is not a finite non-negative decimal."""
    pass


def validate_wallet_address(address: str) -> str:
    """Validate a Solana wallet address.

    Solana addresses are base58 and case-sensitive, so unlike hex addresses
    they are returned unchanged apart from surrounding whitespace.

    Args:
        address: The wallet address to validate

    Returns:
        The validated address

    Raises:
        InvalidWalletAddressError: If the address is invalid
    """
    if not address or not address.strip():
        raise InvalidWalletAddressError("Wallet address cannot be empty")

    address = address.strip()
    if not 32 <= len(address) <= 44:
        raise InvalidWalletAddressError(
            f"Wallet address must be 32-44 characters, got {len(address)}"
        )

    if not SOLANA_ADDRESS_RE.match(address):
        raise InvalidWalletAddressError(
            f"Wallet address contains invalid characters: {address}"
        )

    return address


def parse_amount(value: Any) -> Decimal:
    """Parse an upstream amount (number or string) into a Decimal.

    Floats go through ``str`` first so ``2.5`` becomes ``Decimal("2.5")``
    rather than its binary expansion.

    Raises:
        InvalidAmountError: If the value is missing, not numeric, not finite
            or negative.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(f"Amount must be numeric, got {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(f"Amount is not a decimal: {value!r}")
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount must be finite, got {value!r}")
    if amount < 0:
        raise InvalidAmountError(f"Amount must be non-negative, got {value!r}")
    return amount


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Set up logging with environment-appropriate handler.

    In cloud environments (Cloud Run, GKE), uses JSON structured logging.
    In local environments, uses Rich console logging.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    logger.handlers.clear()

    if is_cloud_environment():
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler = RichHandler(console=console)
        handler.setFormatter(logging.Formatter("%(message)s"))

    logger.addHandler(handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **extra_fields: Any,
) -> None:
    """Log a message with additional structured context fields.

    Args:
        logger: The logger to use
        level: Log level (e.g., logging.INFO)
        message: The log message
        **extra_fields: Additional fields to include in structured logs
    """
    if not logger.isEnabledFor(level):
        return
    record = logger.makeRecord(
        logger.name,
        level,
        "(unknown)",
        0,
        message,
        (),
        None,
    )
    record.extra_fields = extra_fields
    logger.handle(record)


def format_sol(value: Optional[Decimal], places: int = 4) -> str:
    if value is None:
        return "-"
    quantum = Decimal(1).scaleb(-places)
    return f"{value.quantize(quantum):,} SOL"


def format_decimal(value: Optional[Decimal]) -> str:
    """Render a Decimal without exponent notation or trailing zeros."""
    if value is None:
        return "-"
    text = format(value.normalize(), "f")
    return text if text != "-0" else "0"


def truncate_address(address: str, chars: int = 6) -> str:
    if len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_time_ago(ts: datetime, now: Optional[datetime] = None) -> str:
    if now is None:
        now = datetime.now(ts.tzinfo) if ts.tzinfo else datetime.now()
    seconds = (now - ts).total_seconds()
    if seconds < 60:
        return f"{int(seconds)}s ago"
    elif seconds < 3600:
        return f"{int(seconds / 60)}m ago"
    elif seconds < 86400:
        return f"{int(seconds / 3600)}h ago"
    return f"{int(seconds / 86400)}d ago"
