"""
Discriminator lookup table for exchange log payloads.

The byte layouts below were reconstructed by comparing decoded logs against
the exchange UI, not from a published schema. Offsets have been reinterpreted
before (sequence number vs. size vs. price at the same position), so all of
that knowledge lives here as data. Corrections go into this table or into the
``decoder.layouts`` section of the config file; the decoder itself never
branches on a discriminator value.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, Mapping, Optional

from ..exceptions import ConfigurationError
from ..models import EventKind, Role, Side

logger = logging.getLogger(__name__)


# Decimal places per semantic field; independent of which layout produced it
FIELD_DECIMALS: Dict[str, int] = {
    "base_amount": 9,
    "quote_amount": 6,
    "fee_amount": 6,
}

MIN_PAYLOAD_LENGTH = 16
PRICE_DECIMALS = 6

# Embedded timestamps outside (2020-01-01, 2030-01-01) are treated as noise
TIMESTAMP_WINDOW = (1577836800, 1893456000)


@dataclass(frozen=True)
class FieldSpec:
    """Little-endian integer at a fixed offset."""
    offset: int
    size: int = 8
    signed: bool = False

    def read(self, data: bytes) -> int:
        return int.from_bytes(
            data[self.offset:self.offset + self.size], "little", signed=self.signed
        )

    def fits(self, data: bytes) -> bool:
        return self.offset >= 0 and self.offset + self.size <= len(data)


@dataclass(frozen=True)
class EventLayout:
    """How to read one discriminator's payload."""
    discriminator: int
    kind: EventKind
    min_length: int
    fields: Mapping[str, FieldSpec] = field(default_factory=dict)
    side: Side = Side.NOT_APPLICABLE
    role: Role = Role.NOT_APPLICABLE
    sub_type: Optional[str] = None
    embedded_timestamp: bool = False


_FILL_FIELDS = {
    "order_type": FieldSpec(4, 1),
    "order_id": FieldSpec(8),
    "base_amount": FieldSpec(16),
    "quote_amount": FieldSpec(24),
}


def _fill(discriminator: int, side: Side, role: Role) -> EventLayout:
    return EventLayout(
        discriminator=discriminator,
        kind=EventKind.FILL,
        min_length=40,
        fields=dict(_FILL_FIELDS),
        side=side,
        role=role,
        embedded_timestamp=True,
    )


DEFAULT_LAYOUTS = (
    EventLayout(
        discriminator=0x17,
        kind=EventKind.FEE,
        min_length=16,
        fields={"fee_amount": FieldSpec(8)},
    ),
    _fill(0x12, Side.LONG, Role.TAKER),
    _fill(0x13, Side.SHORT, Role.TAKER),
    _fill(0x0A, Side.LONG, Role.MAKER),
    _fill(0x0B, Side.SHORT, Role.MAKER),
)


class LayoutTable:
    """Mapping of discriminator byte to :class:`EventLayout`."""

    def __init__(self, layouts=DEFAULT_LAYOUTS):
        self._layouts: Dict[int, EventLayout] = {}
        for layout in layouts:
            self._layouts[layout.discriminator] = layout

    def get(self, discriminator: int) -> Optional[EventLayout]:
        return self._layouts.get(discriminator)

    def __contains__(self, discriminator: int) -> bool:
        return discriminator in self._layouts

    def __iter__(self) -> Iterator[EventLayout]:
        return iter(sorted(self._layouts.values(), key=lambda l: l.discriminator))

    def __len__(self) -> int:
        return len(self._layouts)

    def discriminators(self, kind: EventKind):
        return frozenset(d for d, l in self._layouts.items() if l.kind is kind)

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "LayoutTable":
        """Return a new table with config entries merged over this one.

        Keys are discriminators (``"0x12"`` or ``"18"``). An entry of ``None``
        removes the discriminator; a mapping replaces or creates it. Fields
        missing from a mapping keep the values of the entry being replaced.
        """
        if not overrides:
            return self

        merged = dict(self._layouts)
        for key, entry in overrides.items():
            discriminator = _parse_discriminator(key)
            if entry is None:
                merged.pop(discriminator, None)
                logger.info(f"Layout 0x{discriminator:02x} removed by config")
                continue
            merged[discriminator] = _layout_from_mapping(
                discriminator, entry, merged.get(discriminator)
            )
            logger.info(f"Layout 0x{discriminator:02x} set from config: {entry}")

        return LayoutTable(merged.values())


def _parse_discriminator(key: Any) -> int:
    try:
        value = int(key, 0) if isinstance(key, str) else int(key)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid discriminator key: {key!r}")
    if not 0 <= value <= 0xFF:
        raise ConfigurationError(f"Discriminator out of byte range: {key!r}")
    return value


def _parse_field(name: str, spec: Any) -> FieldSpec:
    if isinstance(spec, int):
        return FieldSpec(spec)
    if isinstance(spec, Mapping):
        try:
            return FieldSpec(
                offset=int(spec["offset"]),
                size=int(spec.get("size", 8)),
                signed=bool(spec.get("signed", False)),
            )
        except (KeyError, TypeError, ValueError):
            pass
    raise ConfigurationError(f"Invalid field spec for {name!r}: {spec!r}")


def _layout_from_mapping(
    discriminator: int,
    entry: Mapping[str, Any],
    base: Optional[EventLayout],
) -> EventLayout:
    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"Layout 0x{discriminator:02x} must be a mapping")

    try:
        kind = EventKind(entry["kind"]) if "kind" in entry else (base.kind if base else None)
        side = Side(entry["side"]) if "side" in entry else None
        role = Role(entry["role"]) if "role" in entry else None
    except ValueError as e:
        raise ConfigurationError(f"Layout 0x{discriminator:02x}: {e}")

    if kind is None:
        raise ConfigurationError(f"Layout 0x{discriminator:02x} needs a kind")

    fields = None
    if "fields" in entry:
        fields = {name: _parse_field(name, spec) for name, spec in entry["fields"].items()}

    if base is None or base.kind is not kind:
        base = EventLayout(discriminator=discriminator, kind=kind, min_length=MIN_PAYLOAD_LENGTH)

    changes: Dict[str, Any] = {}
    if fields is not None:
        changes["fields"] = fields
    if side is not None:
        changes["side"] = side
    if role is not None:
        changes["role"] = role
    if "min_length" in entry:
        changes["min_length"] = max(int(entry["min_length"]), MIN_PAYLOAD_LENGTH)
    if "sub_type" in entry:
        changes["sub_type"] = entry["sub_type"]
    if "embedded_timestamp" in entry:
        changes["embedded_timestamp"] = bool(entry["embedded_timestamp"])

    return replace(base, **changes)
