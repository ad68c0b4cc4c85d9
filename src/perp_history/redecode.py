"""Re-run the decoder over a previously saved history file.

Saved records keep the original base64 payload, so a corrected layout table
can be applied without touching the network again.
"""

import base64
import binascii
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from .decoding.event_decoder import DecodeStrategy, EventDecoder, is_event
from .exceptions import PipelineError
from .models import RawLogPayload
from .sink import ResultSink

logger = logging.getLogger(__name__)


@dataclass
class RedecodeStats:
    total: int = 0
    decoded: int = 0
    skipped: Counter = field(default_factory=Counter)

    def as_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "decoded": self.decoded, "skipped": dict(self.skipped)}


def _payload_from_record(record: Dict[str, Any]) -> Optional[RawLogPayload]:
    encoded = record.get("original_log") or record.get("originalLog")
    if not encoded:
        return None
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None
    return RawLogPayload(
        data=data,
        block_time=int(record.get("timestamp") or 0),
        signature=record.get("signature", ""),
        encoded=encoded,
    )


def redecode_records(
    records: Iterable[Dict[str, Any]],
    decoder: Optional[DecodeStrategy] = None,
) -> Tuple[ResultSink, RedecodeStats]:
    """Decode saved records again, keeping their order.

    The stored ``timestamp`` stands in for block time. Fills carrying a valid
    embedded timestamp ignore it, and fees stored it from block time in the
    first place, so re-decoding an unchanged file reproduces it.
    """
    decoder = decoder or EventDecoder()
    sink = ResultSink()
    stats = RedecodeStats()

    for record in records:
        stats.total += 1
        payload = _payload_from_record(record)
        if payload is None:
            stats.skipped["missing_payload"] += 1
            continue

        result = decoder.decode(payload)
        if is_event(result):
            sink.append(result)
            stats.decoded += 1
        else:
            stats.skipped[result.reason.value] += 1

    logger.info(f"Re-decoded {stats.decoded}/{stats.total} records: {stats.as_dict()}")
    return sink, stats


def redecode_file(
    input_path: str,
    output_path: str,
    decoder: Optional[DecodeStrategy] = None,
) -> RedecodeStats:
    """Read a JSON array of saved events, decode again and write the result."""
    try:
        with open(input_path, 'r', encoding='utf-8') as f:
            records = json.load(f)
    except (OSError, ValueError) as e:
        raise PipelineError(f"Cannot read saved history {input_path}: {e}")

    if not isinstance(records, list):
        raise PipelineError(f"Saved history {input_path} must be a JSON array")

    sink, stats = redecode_records(records, decoder)
    sink.write_json(output_path)
    return stats
