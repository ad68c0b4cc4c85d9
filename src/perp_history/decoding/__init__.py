"""Log payload extraction and decoding."""

from .event_decoder import DecodeStrategy, EventDecoder, PriceBand
from .layouts import DEFAULT_LAYOUTS, EventLayout, FieldSpec, LayoutTable
from .log_extractor import LogExtractor

__all__ = [
    "DecodeStrategy",
    "EventDecoder",
    "PriceBand",
    "DEFAULT_LAYOUTS",
    "EventLayout",
    "FieldSpec",
    "LayoutTable",
    "LogExtractor",
]
