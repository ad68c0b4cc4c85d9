"""Deduplication of signatures seen during pagination."""

import logging
from collections import deque
from typing import Deque, Dict, Set

logger = logging.getLogger(__name__)


class SignatureDeduplicator:
    """
    Track signatures already handed out by the iterator.

    A history that shifts between page requests can return the same signature
    on two pages; the second sighting is reported as a duplicate. Memory is
    bounded: once ``max_signatures`` are tracked the oldest are forgotten.
    """

    def __init__(self, max_signatures: int = 1_000_000):
        self.max_signatures = max_signatures
        self._seen: Set[str] = set()
        self._insertion_order: Deque[str] = deque()

        self.stats = {
            'total_checks': 0,
            'duplicates_found': 0,
            'unique_signatures': 0,
            'evicted': 0,
        }

    def is_unique(self, signature: str) -> bool:
        """Record ``signature`` and return False if it was already seen."""
        self.stats['total_checks'] += 1

        if signature in self._seen:
            self.stats['duplicates_found'] += 1
            logger.debug(f"Duplicate signature: {signature}")
            return False

        self._seen.add(signature)
        self._insertion_order.append(signature)
        self.stats['unique_signatures'] += 1

        while len(self._insertion_order) > self.max_signatures:
            self._seen.discard(self._insertion_order.popleft())
            self.stats['evicted'] += 1

        return True

    def __contains__(self, signature: str) -> bool:
        return signature in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats, tracked=len(self._seen))
