"""Ordered collection of decoded events and its JSON form."""

import json
import logging
import os
from typing import Any, Dict, Iterable, Iterator, List

from .models import DecodedEvent

logger = logging.getLogger(__name__)


class ResultSink:
    """
    Holds decoded events in discovery order.

    The fetcher produces newest-first order; :meth:`sorted_by_time` is the only
    reordering and returns a new list rather than touching the sink.
    """

    def __init__(self):
        self._events: List[DecodedEvent] = []

    def append(self, event: DecodedEvent) -> None:
        self._events.append(event)

    def extend(self, events: Iterable[DecodedEvent]) -> None:
        for event in events:
            self.append(event)

    def all(self) -> List[DecodedEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[DecodedEvent]:
        return iter(list(self._events))

    def sorted_by_time(self, newest_first: bool = False) -> List[DecodedEvent]:
        # Stable sort keeps discovery order within one timestamp
        return sorted(self._events, key=lambda e: e.timestamp, reverse=newest_first)

    def to_records(self) -> List[Dict[str, Any]]:
        return [event.to_record() for event in self._events]

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_records(), indent=indent)

    def write_json(self, path: str) -> str:
        """Write all events as one JSON array; returns the path written."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as f:
            f.write(self.to_json())

        logger.info(f"Saved {len(self)} events to {path}")
        return path
