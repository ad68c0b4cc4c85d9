"""Pytest configuration and shared fixtures."""

import base64
import struct
from typing import Any, Dict, List, Optional

import pytest

from perp_history.config.settings import BackfillSettings, FetchConfig, RetryConfig, RPCConfig
from perp_history.exceptions import RateLimitError


def build_fill(
    discriminator: int = 0x12,
    order_id: int = 6272033,
    raw_base: int = 100_000_000,
    raw_quote: int = 338_461_479,
    timestamp: int = 1770346835,
    length: int = 48,
    order_type: int = 0,
) -> bytes:
    """Fill payload in the 40/48-byte layout."""
    head = struct.pack('<B3xB3xQQQ', discriminator, order_type, order_id, raw_base, raw_quote)
    if length >= 48:
        return head + bytes(length - 8 - len(head)) + struct.pack('<q', timestamp)
    return head + bytes(length - 4 - len(head)) + struct.pack('<I', timestamp)


def build_fee(raw_fee: int = 3897, length: int = 24, discriminator: int = 0x17) -> bytes:
    return struct.pack('<B7xQ', discriminator, raw_fee) + bytes(length - 16)


def program_data(payload: bytes) -> str:
    return "Program data: " + base64.b64encode(payload).decode("ascii")


class FakeRPCClient:
    """
    In-memory stand-in for the JSON-RPC client.

    ``history`` is newest-first; ``before`` cursors are honoured the way the
    real node does. ``transaction_errors`` maps a signature to a list of
    exceptions raised on successive lookups.
    """

    def __init__(self, history: List[Dict[str, Any]], transactions: Dict[str, Any]):
        self.history = history
        self.transactions = transactions
        self.transaction_errors: Dict[str, List[Exception]] = {}
        self.page_errors: List[Exception] = []
        self.page_calls: List[Optional[str]] = []
        self.transaction_calls: List[str] = []

    async def get_signatures_for_address(self, address, before=None, limit=20):
        self.page_calls.append(before)
        if self.page_errors:
            raise self.page_errors.pop(0)

        start = 0
        if before is not None:
            index = [s["signature"] for s in self.history].index(before)
            start = index + 1
        return [dict(s) for s in self.history[start:start + limit]]

    async def get_transaction(self, signature):
        self.transaction_calls.append(signature)
        errors = self.transaction_errors.get(signature)
        if errors:
            raise errors.pop(0)
        return self.transactions.get(signature)


def make_history(count: int, block_time: int = 1770340000):
    """``count`` signatures, each with one fill and one fee log."""
    history = []
    transactions = {}
    for i in range(count):
        signature = f"sig{i:03d}"
        history.append({"signature": signature, "blockTime": block_time - i, "err": None})
        transactions[signature] = {
            "blockTime": block_time - i,
            "meta": {
                "logMessages": [
                    "Program dRVSs1Bn invoke [1]",
                    program_data(build_fill(order_id=1000 + i, timestamp=block_time - i)),
                    program_data(build_fee(raw_fee=100 + i)),
                    "Program dRVSs1Bn success",
                ]
            },
        }
    return history, transactions


@pytest.fixture
def fill_payload():
    return build_fill


@pytest.fixture
def fee_payload():
    return build_fee


@pytest.fixture
def fake_client_factory():
    def _factory(count: int = 5):
        history, transactions = make_history(count)
        return FakeRPCClient(history, transactions)
    return _factory


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    class _Recorder:
        def __init__(self):
            self.calls: List[float] = []

        async def __call__(self, delay: float):
            self.calls.append(delay)

    return _Recorder()


@pytest.fixture
def rate_limit_error():
    return RateLimitError("429 Too Many Requests")


@pytest.fixture
def test_settings() -> BackfillSettings:
    """Create test configuration."""
    return BackfillSettings(
        service_name="test-perp-history",
        environment="local",
        rpc=RPCConfig(url="http://localhost:8899", account="Wallet111"),
        fetch=FetchConfig(page_size=2, request_delay_seconds=0.5, page_delay_seconds=1.0),
        retry=RetryConfig(max_attempts=3, initial_backoff_seconds=0.1, max_backoff_seconds=1.0),
    )


@pytest.fixture
def log_line():
    return program_data
