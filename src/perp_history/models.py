"""Data model for extracted payloads and decoded events."""

import base64
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union


class EventKind(str, Enum):
    """Closed set of decoded event shapes."""
    FILL = "Fill"
    FEE = "Fee"
    ORDER_MANAGEMENT = "OrderManagement"
    UNRECOGNIZED = "Unrecognized"


class Side(str, Enum):
    LONG = "long"
    SHORT = "short"
    NOT_APPLICABLE = "n/a"

    @property
    def order_side(self) -> str:
        return {Side.LONG: "bid", Side.SHORT: "ask"}.get(self, "n/a")

    @property
    def trade_action(self) -> str:
        return {Side.LONG: "buy", Side.SHORT: "sell"}.get(self, "n/a")


class Role(str, Enum):
    TAKER = "taker"
    MAKER = "maker"
    NOT_APPLICABLE = "n/a"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class SkipReason(str, Enum):
    """Why a payload produced no event."""
    TOO_SHORT = "too_short"
    UNRECOGNIZED = "unrecognized"
    ZERO_BASE = "zero_base"
    IMPLAUSIBLE_PRICE = "implausible_price"


class PayloadCategory(str, Enum):
    """Coarse classification used when no structural decode is needed."""
    TRADE = "trade"
    FEE = "fee"
    TRANSFER = "transfer"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RawLogPayload:
    """One binary payload pulled out of a transaction log line."""
    data: bytes
    block_time: int
    signature: str
    encoded: str = ""

    @property
    def discriminator(self) -> Optional[int]:
        return self.data[0] if self.data else None

    @property
    def original_log(self) -> str:
        return self.encoded or base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class Skip:
    """Typed outcome for a payload that was not turned into an event."""
    reason: SkipReason
    detail: str = ""


def _fmt(value: Optional[Decimal]) -> Optional[str]:
    # Fixed-point notation only; str() would emit exponents for tiny values
    return None if value is None else format(value, "f")


def _int_str(value: Optional[int]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class DecodedEvent:
    """Fields shared by every decoded event."""
    kind: EventKind
    instrument: str
    signature: str
    timestamp: int
    raw_payload: bytes

    @property
    def original_log(self) -> str:
        return base64.b64encode(self.raw_payload).decode("ascii")

    def to_record(self) -> Dict[str, Any]:
        """Serializable form: large numbers as decimal strings."""
        return {
            "type": self.kind.value,
            "instrument": self.instrument,
            "signature": self.signature,
            "timestamp": int(self.timestamp),
        }


@dataclass(frozen=True)
class FillEvent(DecodedEvent):
    """Executed trade."""
    discriminator: int
    order_id: int
    side: Side
    role: Role
    order_type: OrderType
    base_amount: Decimal
    quote_amount: Decimal
    price: Decimal
    raw_base: int
    raw_quote: int

    @property
    def order_side(self) -> str:
        return self.side.order_side

    @property
    def trade_action(self) -> str:
        return self.side.trade_action

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record.update({
            "discriminator": f"0x{self.discriminator:02x}",
            "order_id": _int_str(self.order_id),
            "side": self.side.value,
            "order_side": self.order_side,
            "role": self.role.value,
            "trade_action": self.trade_action,
            "order_type": self.order_type.value,
            "base_amount": _fmt(self.base_amount),
            "quote_amount": _fmt(self.quote_amount),
            "price": _fmt(self.price),
            "raw_base": _int_str(self.raw_base),
            "raw_quote": _int_str(self.raw_quote),
            "original_log": self.original_log,
        })
        return record


@dataclass(frozen=True)
class FeeEvent(DecodedEvent):
    """Fee payment; carries no side, role or trade legs."""
    fee_amount: Decimal
    raw_fee: int

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record.update({
            "side": Side.NOT_APPLICABLE.value,
            "role": Role.NOT_APPLICABLE.value,
            "fee_amount": _fmt(self.fee_amount),
            "raw_fee": _int_str(self.raw_fee),
            "original_log": self.original_log,
        })
        return record


@dataclass(frozen=True)
class OrderManagementEvent(DecodedEvent):
    """Order placement or cancellation."""
    discriminator: int
    sub_type: str
    side: Side
    order_id: Optional[int] = None
    base_amount: Optional[Decimal] = None
    quote_amount: Optional[Decimal] = None
    price: Optional[Decimal] = None

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record.update({
            "discriminator": f"0x{self.discriminator:02x}",
            "sub_type": self.sub_type,
            "side": self.side.value,
            "order_side": self.side.order_side,
            "order_id": _int_str(self.order_id),
            "base_amount": _fmt(self.base_amount),
            "quote_amount": _fmt(self.quote_amount),
            "price": _fmt(self.price),
            "original_log": self.original_log,
        })
        return record


DecodeResult = Union[DecodedEvent, Skip]
