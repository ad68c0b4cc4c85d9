"""Solana JSON-RPC client for account history backfill."""

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..config.settings import RPCConfig
from ..exceptions import RateLimitError, RPCError

logger = logging.getLogger(__name__)

# JSON-RPC error codes some providers use for throttling
RATE_LIMIT_CODES = frozenset([429, -32429, -32005])


def _is_rate_limit_message(message: str) -> bool:
    lowered = message.lower()
    return "429" in lowered or "too many requests" in lowered or "rate limit" in lowered


class SolanaRPCClient:
    """
    Minimal read-only JSON-RPC client.

    Exposes the two calls the backfill needs. Rate limiting surfaces as
    :class:`RateLimitError`; every other failure as :class:`RPCError`. Retrying
    is left to the caller.
    """

    def __init__(self, config: RPCConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    async def __aenter__(self):
        """Async context manager entry."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
                connector=aiohttp.TCPConnector(limit=10, limit_per_host=4)
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    async def _call(self, method: str, params: List[Any]) -> Any:
        if not self.session:
            raise RuntimeError("Client not initialized. Use async context manager.")

        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        logger.debug(f"RPC {method}: {params}")

        try:
            async with self.session.post(self.config.url, json=payload) as response:
                if response.status == 429:
                    retry_after = response.headers.get('Retry-After')
                    raise RateLimitError(
                        f"{method}: HTTP 429 Too Many Requests",
                        retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    )
                if response.status >= 400:
                    text = await response.text()
                    if _is_rate_limit_message(text):
                        raise RateLimitError(f"{method}: HTTP {response.status}: {text[:200]}")
                    raise RPCError(f"{method}: HTTP {response.status}: {text[:200]}", code=response.status)

                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise RPCError(f"{method}: transport error: {e}")

        if not isinstance(body, dict):
            raise RPCError(f"{method}: malformed response: {body!r}"[:300])

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            if code in RATE_LIMIT_CODES or _is_rate_limit_message(message):
                raise RateLimitError(f"{method}: {message}", code=code)
            raise RPCError(f"{method}: {message}", code=code)

        return body.get("result")

    async def get_signatures_for_address(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Signatures for ``address``, newest first, strictly older than ``before``."""
        options: Dict[str, Any] = {"limit": limit, "commitment": self.config.commitment}
        if before:
            options["before"] = before

        result = await self._call("getSignaturesForAddress", [address, options])
        signatures = result or []
        logger.debug(f"Retrieved {len(signatures)} signatures for {address} before {before}")
        return signatures

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Transaction detail including ``meta.logMessages``; None if unknown."""
        return await self._call(
            "getTransaction",
            [signature, {
                "encoding": "json",
                "commitment": self.config.commitment,
                "maxSupportedTransactionVersion": 0,
            }],
        )
