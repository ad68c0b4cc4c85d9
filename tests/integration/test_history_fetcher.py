"""Full pipeline tests over an in-memory RPC node."""

import pytest

from perp_history.config.settings import FetchConfig
from perp_history.exceptions import FatalFetchError, RateLimitError, RPCError
from perp_history.fetcher import HistoryFetcher
from perp_history.models import EventKind, Skip, SkipReason
from perp_history.utils.retry import RetryScheduler


def make_fetcher(client, sleep, page_size=2, max_attempts=3, **kwargs):
    return HistoryFetcher(
        client=client,
        account="Wallet111",
        fetch_config=FetchConfig(page_size=page_size, request_delay_seconds=0.5, page_delay_seconds=1.0),
        retry=RetryScheduler(max_attempts=max_attempts, initial_delay=0.1, max_delay=1.0, sleep=sleep),
        sleep=sleep,
        **kwargs,
    )


@pytest.mark.integration
class TestHistoryFetcher:

    @pytest.mark.asyncio
    async def test_walks_full_history(self, fake_client_factory, no_sleep):
        client = fake_client_factory(5)
        fetcher = make_fetcher(client, no_sleep)

        report = await fetcher.run()

        assert client.transaction_calls == ["sig000", "sig001", "sig002", "sig003", "sig004"]
        assert report.signatures_processed == 5
        assert len(report.events) == 10
        assert [e.kind for e in report.events[:2]] == [EventKind.FILL, EventKind.FEE]
        assert [e.signature for e in report.events[::2]] == client.transaction_calls
        assert report.complete is True
        assert report.failures == []

    @pytest.mark.asyncio
    async def test_cursor_advances_and_never_repeats(self, fake_client_factory, no_sleep):
        client = fake_client_factory(5)

        await make_fetcher(client, no_sleep).run()

        # pages of 2: [0,1] [2,3] [4] then empty
        assert client.page_calls == [None, "sig001", "sig003", "sig004"]
        assert len(set(client.page_calls)) == len(client.page_calls)

    @pytest.mark.asyncio
    async def test_empty_history_makes_one_call(self, fake_client_factory, no_sleep):
        client = fake_client_factory(0)

        report = await make_fetcher(client, no_sleep).run()

        assert client.page_calls == [None]
        assert client.transaction_calls == []
        assert report.events == []
        assert report.pages_fetched == 1

    @pytest.mark.asyncio
    async def test_empty_page_stops_with_accumulated_events(self, fake_client_factory, no_sleep):
        client = fake_client_factory(2)

        report = await make_fetcher(client, no_sleep, page_size=2).run()

        assert client.page_calls == [None, "sig001"]
        assert len(report.events) == 4

    @pytest.mark.asyncio
    async def test_pacing_between_requests_and_pages(self, fake_client_factory, no_sleep):
        client = fake_client_factory(3)

        await make_fetcher(client, no_sleep, page_size=2).run()

        # sig000 | 0.5 sig001 | page 1.0 | 0.5 sig002 | page 1.0 | empty page
        assert no_sleep.calls == [0.5, 1.0, 0.5, 1.0]

    @pytest.mark.asyncio
    async def test_terminal_failure_is_isolated(self, fake_client_factory, no_sleep):
        client = fake_client_factory(5)
        client.transaction_errors["sig001"] = [RPCError("Transaction version (1) is not supported")]

        report = await make_fetcher(client, no_sleep).run()

        assert report.signatures_processed == 5
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert failure.stage == "transaction"
        assert failure.key == "sig001"
        assert failure.exhausted is False
        assert {e.signature for e in report.events} == {"sig000", "sig002", "sig003", "sig004"}
        assert report.summary()["failures"] == 1

    @pytest.mark.asyncio
    async def test_retry_exhaustion_is_isolated(self, fake_client_factory, no_sleep):
        client = fake_client_factory(4)
        client.transaction_errors["sig002"] = [RateLimitError()] * 3

        report = await make_fetcher(client, no_sleep, max_attempts=3).run()

        assert report.failures[0].exhausted is True
        assert report.failures[0].attempts == 3
        assert client.transaction_calls.count("sig002") == 3
        assert "sig003" in {e.signature for e in report.events}

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, fake_client_factory, no_sleep):
        client = fake_client_factory(1)
        client.transaction_errors["sig000"] = [RateLimitError(), RateLimitError()]

        report = await make_fetcher(client, no_sleep).run()

        assert report.failures == []
        assert len(report.events) == 2
        assert no_sleep.calls[:2] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_first_page_failure_is_fatal(self, fake_client_factory, no_sleep):
        client = fake_client_factory(3)
        client.page_errors = [RPCError("Invalid param: WrongSize")]

        with pytest.raises(FatalFetchError):
            await make_fetcher(client, no_sleep).run()

        assert client.transaction_calls == []

    @pytest.mark.asyncio
    async def test_first_page_rate_limited_then_recovers(self, fake_client_factory, no_sleep):
        client = fake_client_factory(1)
        client.page_errors = [RateLimitError()]

        report = await make_fetcher(client, no_sleep).run()

        assert len(report.events) == 2

    @pytest.mark.asyncio
    async def test_later_page_failure_ends_walk_incomplete(self, fake_client_factory, no_sleep):
        client = fake_client_factory(4)
        fetcher = make_fetcher(client, no_sleep)
        original = client.get_signatures_for_address

        async def flaky(address, before=None, limit=20):
            if before is not None:
                raise RPCError("node unavailable")
            return await original(address, before=before, limit=limit)

        client.get_signatures_for_address = flaky

        report = await fetcher.run()

        assert report.complete is False
        assert report.failures[0].stage == "page"
        assert report.failures[0].key == "sig001"
        assert len(report.events) == 4

    @pytest.mark.asyncio
    async def test_repeated_signatures_are_processed_once(self, fake_client_factory, no_sleep):
        client = fake_client_factory(3)
        original = client.get_signatures_for_address

        async def overlapping(address, before=None, limit=20):
            page = await original(address, before=before, limit=limit)
            if before == "sig001":
                # History shifted: an already-seen signature shows up again
                page.insert(0, {"signature": "sig001", "blockTime": 0})
            return page

        client.get_signatures_for_address = overlapping

        report = await make_fetcher(client, no_sleep).run()

        assert client.transaction_calls == ["sig000", "sig001", "sig002"]
        assert report.duplicate_signatures == 1

    @pytest.mark.asyncio
    async def test_stuck_cursor_stops(self, fake_client_factory, no_sleep):
        client = fake_client_factory(2)

        async def stuck(address, before=None, limit=20):
            client.page_calls.append(before)
            return [{"signature": "sig000"}, {"signature": "sig001"}]

        client.get_signatures_for_address = stuck

        report = await make_fetcher(client, no_sleep).run()

        assert client.page_calls == [None, "sig001"]
        assert report.complete is False

    @pytest.mark.asyncio
    async def test_missing_transactions_and_logs_are_counted(self, fake_client_factory, no_sleep, log_line):
        client = fake_client_factory(3)
        client.transactions["sig000"] = None
        client.transactions["sig001"] = {"blockTime": 5, "meta": {"logMessages": []}}
        client.transactions["sig002"]["meta"]["logMessages"] = [
            "Program data: ???",
            log_line(bytes([0x42]) + bytes(47)),
            log_line(b"\x12" * 8),
        ]

        report = await make_fetcher(client, no_sleep).run()

        assert report.events == []
        assert report.skip_counts == {
            "missing_transaction": 1,
            "no_logs": 1,
            "invalid_encoding": 1,
            "unrecognized": 1,
            "too_short": 1,
        }

    @pytest.mark.asyncio
    async def test_block_time_falls_back_to_signature_record(self, fake_client_factory, no_sleep):
        client = fake_client_factory(1)
        del client.transactions["sig000"]["blockTime"]

        report = await make_fetcher(client, no_sleep).run()

        fee = [e for e in report.events if e.kind is EventKind.FEE][0]
        assert fee.timestamp == client.history[0]["blockTime"]

    @pytest.mark.asyncio
    async def test_rerun_is_identical(self, fake_client_factory, no_sleep):
        client = fake_client_factory(5)

        first = await make_fetcher(client, no_sleep).run()
        second = await make_fetcher(client, no_sleep).run()

        assert [e.to_record() for e in first.events] == [e.to_record() for e in second.events]

    @pytest.mark.asyncio
    async def test_same_fetcher_rerun_is_identical(self, fake_client_factory, no_sleep):
        client = fake_client_factory(3)
        fetcher = make_fetcher(client, no_sleep)

        first = [e.to_record() for e in (await fetcher.run()).events]
        report = await fetcher.run()

        assert [e.to_record() for e in report.events] == first
        assert len(fetcher.sink) == 6
        assert report.summary()["events"] == 6

    @pytest.mark.asyncio
    async def test_non_object_transaction_is_counted(self, fake_client_factory, no_sleep):
        client = fake_client_factory(3)
        client.transactions["sig001"] = ["not", "a", "transaction"]

        report = await make_fetcher(client, no_sleep).run()

        assert report.skip_counts["missing_transaction"] == 1
        assert {e.signature for e in report.events} == {"sig000", "sig002"}

    @pytest.mark.asyncio
    async def test_substituted_decoder(self, fake_client_factory, no_sleep):
        class RejectAll:
            def __init__(self):
                self.seen = []

            def decode(self, payload):
                self.seen.append(payload.discriminator)
                return Skip(SkipReason.UNRECOGNIZED, "schema decoder disagrees")

        client = fake_client_factory(2)
        decoder = RejectAll()

        report = await make_fetcher(client, no_sleep, decoder=decoder).run()

        assert decoder.seen == [0x12, 0x17, 0x12, 0x17]
        assert report.events == []
        assert report.skip_counts["unrecognized"] == 4

    @pytest.mark.asyncio
    async def test_raising_decoder_does_not_stop_run(self, fake_client_factory, no_sleep):
        class Broken:
            def decode(self, payload):
                raise ValueError("bad schema")

        client = fake_client_factory(2)

        report = await make_fetcher(client, no_sleep, decoder=Broken()).run()

        assert report.signatures_processed == 2
        assert report.skip_counts["decoder_error"] == 4

    @pytest.mark.asyncio
    async def test_from_settings(self, fake_client_factory, no_sleep, test_settings):
        client = fake_client_factory(3)

        fetcher = HistoryFetcher.from_settings(client, test_settings, sleep=no_sleep)
        report = await fetcher.run()

        assert fetcher.page_size == 2
        assert fetcher.retry.max_attempts == 3
        assert len(report.events) == 6
