"""Table-driven decoder for exchange log payloads."""

import logging
from dataclasses import dataclass
from decimal import Context, Decimal
from typing import Dict, Mapping, Optional, Protocol

from ..models import (
    DecodedEvent,
    DecodeResult,
    EventKind,
    FeeEvent,
    FillEvent,
    OrderManagementEvent,
    OrderType,
    PayloadCategory,
    RawLogPayload,
    Skip,
    SkipReason,
)
from .layouts import (
    FIELD_DECIMALS,
    MIN_PAYLOAD_LENGTH,
    PRICE_DECIMALS,
    TIMESTAMP_WINDOW,
    EventLayout,
    FieldSpec,
    LayoutTable,
)

logger = logging.getLogger(__name__)

_PRICE_QUANTUM = Decimal(1).scaleb(-PRICE_DECIMALS)

# Wide enough for u64 / u64 ratios quantized to PRICE_DECIMALS
_PRICE_CONTEXT = Context(prec=60)

# Payloads this short carry a single amount and no trade legs
TRANSFER_MAX_LENGTH = 24

REQUIRED_FIELDS = {
    EventKind.FEE: ("fee_amount",),
    EventKind.FILL: ("order_id", "base_amount", "quote_amount"),
    EventKind.ORDER_MANAGEMENT: (),
}


class DecodeStrategy(Protocol):
    """Anything that turns a payload into an event or a typed skip.

    A schema-backed decoder for the same discriminator space can be passed to
    the fetcher in place of :class:`EventDecoder`.
    """

    def decode(self, payload: RawLogPayload) -> DecodeResult:
        ...


@dataclass(frozen=True)
class PriceBand:
    """Exclusive bounds for an acceptable unit price."""
    lower: Decimal = Decimal("1")
    upper: Decimal = Decimal("5000")

    def contains(self, price: Decimal) -> bool:
        return self.lower < price < self.upper


def scale(raw: int, field_name: str) -> Decimal:
    """Apply the fixed-point scaling of a semantic field."""
    return Decimal(raw).scaleb(-FIELD_DECIMALS[field_name])


def unit_price(quote_amount: Decimal, base_amount: Decimal) -> Decimal:
    return _PRICE_CONTEXT.divide(quote_amount, base_amount).quantize(
        _PRICE_QUANTUM, context=_PRICE_CONTEXT
    )


def resolve_timestamp(data: bytes, block_time: int) -> int:
    """Embedded timestamp at the payload tail, or ``block_time`` if implausible."""
    if len(data) >= 48:
        embedded = FieldSpec(len(data) - 8, 8, signed=True).read(data)
    else:
        embedded = FieldSpec(len(data) - 4, 4).read(data)

    low, high = TIMESTAMP_WINDOW
    if low < embedded < high:
        return embedded
    return block_time


class EventDecoder:
    """
    Decode payloads by looking up their discriminator in a :class:`LayoutTable`.

    Pure: the result depends only on the payload bytes and its block time.
    Every failure is reported as a :class:`Skip`, never raised.
    """

    def __init__(
        self,
        instrument: str = "SOL/USDC",
        table: Optional[LayoutTable] = None,
        price_band: Optional[PriceBand] = None,
        instrument_bands: Optional[Mapping[str, PriceBand]] = None,
    ):
        self.instrument = instrument
        self.table = table if table is not None else LayoutTable()
        self.price_band = price_band or PriceBand()
        self.instrument_bands: Dict[str, PriceBand] = dict(instrument_bands or {})

    @classmethod
    def from_config(cls, config) -> "EventDecoder":
        """Build from a ``DecoderConfig``."""
        bands = {
            name: PriceBand(Decimal(str(b.lower)), Decimal(str(b.upper)))
            for name, b in config.instrument_bands.items()
        }
        return cls(
            instrument=config.instrument,
            table=LayoutTable().with_overrides(config.layouts),
            price_band=PriceBand(Decimal(str(config.price_lower)), Decimal(str(config.price_upper))),
            instrument_bands=bands,
        )

    def band_for(self, instrument: str) -> PriceBand:
        return self.instrument_bands.get(instrument, self.price_band)

    def decode(self, payload: RawLogPayload) -> DecodeResult:
        data = payload.data
        if len(data) < MIN_PAYLOAD_LENGTH:
            return Skip(SkipReason.TOO_SHORT, f"{len(data)} bytes")

        layout = self.table.get(data[0])
        if layout is None:
            return Skip(SkipReason.UNRECOGNIZED, f"discriminator 0x{data[0]:02x}")
        if len(data) < layout.min_length:
            return Skip(
                SkipReason.UNRECOGNIZED,
                f"0x{data[0]:02x} needs {layout.min_length} bytes, got {len(data)}",
            )
        missing = [name for name in REQUIRED_FIELDS.get(layout.kind, ()) if name not in layout.fields]
        if missing:
            return Skip(SkipReason.UNRECOGNIZED, f"layout lacks fields: {', '.join(missing)}")
        missing = [name for name, spec in layout.fields.items() if not spec.fits(data)]
        if missing:
            return Skip(SkipReason.UNRECOGNIZED, f"fields out of range: {', '.join(missing)}")

        handler = self._handlers.get(layout.kind)
        if handler is None:
            return Skip(SkipReason.UNRECOGNIZED, f"no handler for {layout.kind.value}")
        return handler(self, payload, layout)

    def decode_bytes(self, data: bytes, block_time: int, signature: str = "") -> DecodeResult:
        return self.decode(RawLogPayload(data=bytes(data), block_time=block_time, signature=signature))

    def classify(self, data: bytes) -> PayloadCategory:
        """Coarse category without a structural decode."""
        if len(data) < MIN_PAYLOAD_LENGTH:
            return PayloadCategory.UNKNOWN
        layout = self.table.get(data[0])
        if layout is not None and layout.kind is EventKind.FEE:
            return PayloadCategory.FEE
        if layout is not None and layout.kind is EventKind.FILL and len(data) >= layout.min_length:
            return PayloadCategory.TRADE
        if len(data) <= TRANSFER_MAX_LENGTH:
            return PayloadCategory.TRANSFER
        return PayloadCategory.UNKNOWN

    def _decode_fee(self, payload: RawLogPayload, layout: EventLayout) -> DecodeResult:
        raw_fee = layout.fields["fee_amount"].read(payload.data)
        return FeeEvent(
            kind=EventKind.FEE,
            instrument=self.instrument,
            signature=payload.signature,
            timestamp=payload.block_time,
            raw_payload=payload.data,
            fee_amount=scale(raw_fee, "fee_amount"),
            raw_fee=raw_fee,
        )

    def _decode_fill(self, payload: RawLogPayload, layout: EventLayout) -> DecodeResult:
        data = payload.data
        raw_base = layout.fields["base_amount"].read(data)
        raw_quote = layout.fields["quote_amount"].read(data)
        if raw_base == 0:
            return Skip(SkipReason.ZERO_BASE, f"order {layout.fields['order_id'].read(data)}")

        base_amount = scale(raw_base, "base_amount")
        quote_amount = scale(raw_quote, "quote_amount")
        price = unit_price(quote_amount, base_amount)

        band = self.band_for(self.instrument)
        if not band.contains(price):
            return Skip(
                SkipReason.IMPLAUSIBLE_PRICE,
                f"{price} outside ({band.lower}, {band.upper})",
            )

        order_type = OrderType.LIMIT
        if "order_type" in layout.fields and layout.fields["order_type"].read(data) == 1:
            order_type = OrderType.MARKET

        timestamp = payload.block_time
        if layout.embedded_timestamp:
            timestamp = resolve_timestamp(data, payload.block_time)

        return FillEvent(
            kind=EventKind.FILL,
            instrument=self.instrument,
            signature=payload.signature,
            timestamp=timestamp,
            raw_payload=data,
            discriminator=layout.discriminator,
            order_id=layout.fields["order_id"].read(data),
            side=layout.side,
            role=layout.role,
            order_type=order_type,
            base_amount=base_amount,
            quote_amount=quote_amount,
            price=price,
            raw_base=raw_base,
            raw_quote=raw_quote,
        )

    def _decode_order_management(self, payload: RawLogPayload, layout: EventLayout) -> DecodeResult:
        data = payload.data
        values = {name: spec.read(data) for name, spec in layout.fields.items()}

        base_amount = scale(values["base_amount"], "base_amount") if "base_amount" in values else None
        quote_amount = scale(values["quote_amount"], "quote_amount") if "quote_amount" in values else None
        price = None
        if base_amount and quote_amount is not None:
            price = unit_price(quote_amount, base_amount)

        timestamp = payload.block_time
        if layout.embedded_timestamp:
            timestamp = resolve_timestamp(data, payload.block_time)

        return OrderManagementEvent(
            kind=EventKind.ORDER_MANAGEMENT,
            instrument=self.instrument,
            signature=payload.signature,
            timestamp=timestamp,
            raw_payload=data,
            discriminator=layout.discriminator,
            sub_type=layout.sub_type or "unknown",
            side=layout.side,
            order_id=values.get("order_id"),
            base_amount=base_amount,
            quote_amount=quote_amount,
            price=price,
        )

    _handlers = {
        EventKind.FEE: _decode_fee,
        EventKind.FILL: _decode_fill,
        EventKind.ORDER_MANAGEMENT: _decode_order_management,
    }


def is_event(result: DecodeResult) -> bool:
    return isinstance(result, DecodedEvent)
