"""Paginated history walk: signatures -> transactions -> decoded events."""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from .config.settings import BackfillSettings, FetchConfig
from .decoding.event_decoder import DecodeStrategy, EventDecoder
from .decoding.log_extractor import LogExtractor
from .exceptions import FatalFetchError
from .models import DecodedEvent, DecodeResult, RawLogPayload, Skip
from .sink import ResultSink
from .utils.deduplication import SignatureDeduplicator
from .utils.logging import log_with_context
from .utils.retry import RetryScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchFailure:
    """A unit of work that could not be completed."""
    stage: str            # "page" or "transaction"
    key: str              # signature, or the cursor a page was requested with
    error: str
    attempts: int
    exhausted: bool


@dataclass
class FetchReport:
    """Outcome of one backfill run."""
    events: List[DecodedEvent] = field(default_factory=list)
    pages_fetched: int = 0
    signatures_processed: int = 0
    duplicate_signatures: int = 0
    failures: List[FetchFailure] = field(default_factory=list)
    skip_counts: Counter = field(default_factory=Counter)
    complete: bool = True

    def summary(self) -> Dict[str, Any]:
        kinds = Counter(event.kind.value for event in self.events)
        return {
            "events": len(self.events),
            "events_by_type": dict(kinds),
            "pages_fetched": self.pages_fetched,
            "signatures_processed": self.signatures_processed,
            "duplicate_signatures": self.duplicate_signatures,
            "failures": len(self.failures),
            "failures_by_stage": dict(Counter(f.stage for f in self.failures)),
            "skips": dict(self.skip_counts),
            "complete": self.complete,
        }


class HistoryFetcher:
    """
    Walk an account's signature history backward and decode every log payload.

    Transactions are resolved strictly one at a time with a pause between
    lookups, because public RPC tiers throttle per caller. Only the first page
    of signatures is required; any later failure is recorded in the report and
    the walk carries on (or, for a page, stops early).
    """

    def __init__(
        self,
        client,
        account: str,
        fetch_config: Optional[FetchConfig] = None,
        decoder: Optional[DecodeStrategy] = None,
        extractor: Optional[LogExtractor] = None,
        retry: Optional[RetryScheduler] = None,
        sink: Optional[ResultSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if not account:
            raise ValueError("account is required")

        config = fetch_config or FetchConfig()
        self.client = client
        self.account = account
        self.page_size = config.page_size
        self.request_delay = config.request_delay_seconds
        self.page_delay = config.page_delay_seconds

        self.decoder = decoder or EventDecoder()
        self.extractor = extractor or LogExtractor()
        self.retry = retry or RetryScheduler(sleep=sleep)
        self.sink = sink if sink is not None else ResultSink()
        self.deduplicator = SignatureDeduplicator(config.max_tracked_signatures)
        self._sleep = sleep

        self.cursor: Optional[str] = None
        self._used_cursors: Set[str] = set()
        self._resolved_any = False
        self.report = FetchReport()

    @classmethod
    def from_settings(
        cls,
        client,
        settings: BackfillSettings,
        decoder: Optional[DecodeStrategy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "HistoryFetcher":
        return cls(
            client=client,
            account=settings.rpc.account,
            fetch_config=settings.fetch,
            decoder=decoder or EventDecoder.from_config(settings.decoder),
            extractor=LogExtractor(settings.decoder.log_marker),
            retry=RetryScheduler.from_config(settings.retry, sleep=sleep),
            sleep=sleep,
        )

    async def iter_signatures(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield signature records newest first until the history is exhausted."""
        first_page = True

        while True:
            before = self.cursor
            outcome = await self.retry.run(
                lambda: self.client.get_signatures_for_address(self.account, before=before, limit=self.page_size),
                description=f"getSignaturesForAddress(before={before})",
            )

            if not outcome.success:
                if first_page:
                    raise FatalFetchError(
                        f"Cannot fetch first signature page for {self.account}: {outcome.error}"
                    ) from outcome.error
                self.report.failures.append(FetchFailure(
                    stage="page",
                    key=before or "",
                    error=f"{type(outcome.error).__name__}: {outcome.error}",
                    attempts=outcome.attempts,
                    exhausted=outcome.exhausted,
                ))
                self.report.complete = False
                logger.error(f"Stopping pagination at cursor {before}: {outcome.error}")
                return

            first_page = False
            page = outcome.value or []
            self.report.pages_fetched += 1

            if not page:
                logger.info(f"Reached end of history after {self.report.pages_fetched} pages")
                return

            logger.info(f"Page {self.report.pages_fetched}: {len(page)} signatures (before={before})")

            for info in page:
                signature = info.get("signature")
                if not signature:
                    self.report.skip_counts["missing_signature"] += 1
                    continue
                if not self.deduplicator.is_unique(signature):
                    self.report.duplicate_signatures += 1
                    continue
                yield info

            oldest = page[-1].get("signature")
            if not oldest or oldest in self._used_cursors:
                logger.warning(f"Cursor did not advance past {oldest}; stopping pagination")
                self.report.complete = False
                return

            self._used_cursors.add(oldest)
            self.cursor = oldest
            await self._sleep(self.page_delay)

    async def process_signature(self, info: Dict[str, Any]) -> int:
        """Resolve one signature and sink its events; returns the event count."""
        signature = info["signature"]
        outcome = await self.retry.run(
            lambda: self.client.get_transaction(signature),
            description=f"getTransaction({signature})",
        )
        self.report.signatures_processed += 1

        if not outcome.success:
            self.report.failures.append(FetchFailure(
                stage="transaction",
                key=signature,
                error=f"{type(outcome.error).__name__}: {outcome.error}",
                attempts=outcome.attempts,
                exhausted=outcome.exhausted,
            ))
            log_with_context(
                logger, logging.WARNING,
                f"Skipping transaction {signature}: {outcome.error}",
                signature=signature, attempts=outcome.attempts, exhausted=outcome.exhausted,
            )
            return 0

        tx = outcome.value
        if not isinstance(tx, dict) or not tx:
            self.report.skip_counts["missing_transaction"] += 1
            return 0

        log_lines = (tx.get("meta") or {}).get("logMessages")
        if not log_lines:
            self.report.skip_counts["no_logs"] += 1
            return 0

        block_time = tx.get("blockTime") or info.get("blockTime") or 0
        extraction = self.extractor.extract(log_lines, signature, block_time)
        for dropped in extraction.dropped:
            self.report.skip_counts[dropped.reason] += 1

        count = 0
        for payload in extraction.payloads:
            result = self.decode_payload(payload)
            if result is None:
                continue
            if isinstance(result, Skip):
                self.report.skip_counts[result.reason.value] += 1
                logger.debug(f"Skipped payload in {signature}: {result.reason.value} {result.detail}")
                continue
            self.sink.append(result)
            count += 1

        return count

    def decode_payload(self, payload: RawLogPayload) -> Optional[DecodeResult]:
        """Decode one payload; None if the strategy raised."""
        try:
            return self.decoder.decode(payload)
        except Exception as e:
            # Substituted strategies may raise; one payload must not end the run
            logger.error(f"Decoder raised on {payload.signature}: {e}", exc_info=True)
            self.report.skip_counts["decoder_error"] += 1
            return None

    async def run(self) -> FetchReport:
        """Walk the whole history. Raises :class:`FatalFetchError` only for page one."""
        self.report = FetchReport()
        self.cursor = None
        self._used_cursors.clear()
        self._resolved_any = False
        self.deduplicator = SignatureDeduplicator(self.deduplicator.max_signatures)
        self.sink.clear()
        logger.info(f"Starting history backfill for {self.account} (page size {self.page_size})")

        async for info in self.iter_signatures():
            if self._resolved_any:
                await self._sleep(self.request_delay)
            self._resolved_any = True
            await self.process_signature(info)

        self.report.events = self.sink.all()
        logger.info(f"Backfill finished for {self.account}: {self.report.summary()}")
        return self.report
