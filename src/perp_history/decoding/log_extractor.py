"""Pull binary payloads out of transaction log lines."""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from ..models import RawLogPayload

logger = logging.getLogger(__name__)

PROGRAM_DATA_MARKER = "Program data: "


@dataclass(frozen=True)
class DroppedLine:
    """A marker line whose payload could not be recovered."""
    line: str
    reason: str


@dataclass
class ExtractionResult:
    payloads: List[RawLogPayload] = field(default_factory=list)
    dropped: List[DroppedLine] = field(default_factory=list)


class LogExtractor:
    """Collect base64 payloads from ``Program data:`` lines in order."""

    def __init__(self, marker: str = PROGRAM_DATA_MARKER):
        self.marker = marker

    def extract(self, log_lines: Iterable[str], signature: str, block_time: int) -> ExtractionResult:
        result = ExtractionResult()

        for line in log_lines or ():
            if not isinstance(line, str) or not line.startswith(self.marker):
                continue

            encoded = line[len(self.marker):].strip()
            try:
                data = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as e:
                logger.debug(f"Dropping undecodable log line in {signature}: {e}")
                result.dropped.append(DroppedLine(line, "invalid_encoding"))
                continue

            if not data:
                result.dropped.append(DroppedLine(line, "empty_payload"))
                continue

            result.payloads.append(
                RawLogPayload(data=data, block_time=block_time, signature=signature, encoded=encoded)
            )

        return result
