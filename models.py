"""Data model for tracked wallets, upstream swaps and journal trades."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# Wrapped SOL mint; the reference asset for buy/sell classification
SOL_MINT = "So11111111111111111111111111111111111111112"

# Longest asset address the journal stores
MAX_CONTRACT_ADDRESS_LENGTH = 64

# 9999-12-31T23:59:59.999Z, the last instant datetime can represent
MAX_TIMESTAMP_MS = 253402300799999
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TradeSource(str, Enum):
    """Where a trade row came from."""

    MANUAL = "manual"
    INGESTED = "ingested"
    SUMMARY = "summary"


class SwapDirection(str, Enum):
    BUY = "buy"
    SELL = "sell"


class MalformedSwapError(ValueError):
    """Raised when an upstream swap record lacks required fields."""
    pass


@dataclass(frozen=True)
class TrackedWallet:
    id: int
    user_id: int
    address: str
    created_at: datetime


class AssetMeta(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: Optional[str] = None
    symbol: Optional[str] = None
    image: Optional[str] = None
    decimals: Optional[int] = None

    @field_validator("name", "symbol", "image", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) and value else None

    @field_validator("decimals", mode="before")
    @classmethod
    def _int_or_none(cls, value: Any) -> Optional[int]:
        return value if isinstance(value, int) and not isinstance(value, bool) else None

    @classmethod
    def from_api(cls, data: Any) -> Optional["AssetMeta"]:
        if not isinstance(data, dict):
            return None
        return cls.model_validate(data)


class LegInfo(BaseModel):
    """One side of a two-asset swap.

    ``amount`` is kept as received (number or string); it is parsed only
    once the record has been classified.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    asset_address: str = Field(alias="address", min_length=1, max_length=MAX_CONTRACT_ADDRESS_LENGTH)
    amount: Any = None
    asset_meta: Optional[AssetMeta] = Field(default=None, alias="token")

    @field_validator("asset_meta", mode="before")
    @classmethod
    def _meta_object_only(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, AssetMeta)) else None

    @property
    def is_sol(self) -> bool:
        return self.asset_address == SOL_MINT

    @classmethod
    def from_api(cls, data: Any, side: str) -> "LegInfo":
        if not isinstance(data, dict) or not data:
            raise MalformedSwapError(f"missing '{side}' leg")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedSwapError(f"invalid '{side}' leg: {_describe(e)}") from e


class RawSwapRecord(BaseModel):
    """A validated swap entry from the upstream wallet-trades endpoint."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    signature: str = Field(alias="tx", min_length=1)
    timestamp_ms: int = Field(alias="time", gt=0, le=MAX_TIMESTAMP_MS)
    from_leg: LegInfo = Field(alias="from")
    to_leg: LegInfo = Field(alias="to")
    wallet_address: str = Field(alias="wallet", min_length=1)
    venue: Optional[str] = Field(default=None, alias="program")

    @field_validator("timestamp_ms", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("timestamp must be a number")
        return value

    @field_validator("venue", mode="before")
    @classmethod
    def _venue_str(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) and value else None

    @property
    def timestamp(self) -> datetime:
        return EPOCH + timedelta(milliseconds=self.timestamp_ms)

    @classmethod
    def from_api(cls, data: Any) -> "RawSwapRecord":
        """Parse one upstream record.

        Raises:
            MalformedSwapError: If signature, timestamp, either leg or the
                wallet address is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise MalformedSwapError(f"record is not an object: {type(data).__name__}")

        missing = [
            key for key in ("tx", "time", "from", "to", "wallet")
            if not data.get(key)
        ]
        if missing:
            raise MalformedSwapError(f"missing core fields: {', '.join(missing)}")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedSwapError(f"invalid record: {_describe(e)}") from e


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in error.errors()
    )


@dataclass
class TradeCandidate:
    """A trade ready to be inserted (no id yet)."""

    user_id: int
    contract_address: str
    buy_amount: Decimal
    sell_amount: Decimal
    token_amount: Decimal
    date: datetime
    source: TradeSource = TradeSource.MANUAL
    token_name: Optional[str] = None
    token_symbol: Optional[str] = None
    token_image: Optional[str] = None
    setup: List[str] = field(default_factory=list)
    emotion: List[str] = field(default_factory=list)
    mistakes: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    is_shared: bool = False
    transaction_signature: Optional[str] = None
    side: Optional[SwapDirection] = None


@dataclass
class Trade:
    id: int
    user_id: int
    contract_address: str
    buy_amount: Decimal
    sell_amount: Decimal
    token_amount: Decimal
    date: datetime
    source: TradeSource
    token_name: Optional[str] = None
    token_symbol: Optional[str] = None
    token_image: Optional[str] = None
    setup: List[str] = field(default_factory=list)
    emotion: List[str] = field(default_factory=list)
    mistakes: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    is_shared: bool = False
    transaction_signature: Optional[str] = None
    side: Optional[SwapDirection] = None

    @property
    def direction(self) -> Optional[SwapDirection]:
        """Buy or sell side of the trade, None for a manual round trip.

        Ingested trades carry the side of the swap. Manual rows imply it from
        the SOL amounts: SOL in is a sell, SOL out or no SOL at all is a buy.
        """
        if self.side is not None:
            return self.side
        has_buy = self.buy_amount > 0
        has_sell = self.sell_amount > 0
        if has_buy and has_sell:
            return None
        return SwapDirection.SELL if has_sell else SwapDirection.BUY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "contractAddress": self.contract_address,
            "tokenName": self.token_name,
            "tokenSymbol": self.token_symbol,
            "tokenImage": self.token_image,
            "buyAmount": str(self.buy_amount),
            "sellAmount": str(self.sell_amount),
            "tokenAmount": str(self.token_amount),
            "setup": list(self.setup),
            "emotion": list(self.emotion),
            "mistakes": list(self.mistakes),
            "date": self.date.isoformat(),
            "notes": self.notes,
            "isShared": self.is_shared,
            "transactionSignature": self.transaction_signature,
            "side": self.side.value if self.side else None,
            "source": self.source.value,
        }
