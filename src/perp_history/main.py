"""Backfill service - fetch an account's full history and write decoded events."""

import asyncio
import logging
import os
import sys
from typing import Optional

from .clients.solana_rpc import SolanaRPCClient
from .config.settings import BackfillSettings, load_config
from .decoding.event_decoder import EventDecoder
from .exceptions import PipelineError
from .fetcher import FetchReport, HistoryFetcher
from .redecode import RedecodeStats, redecode_file
from .utils.logging import log_error_with_context, setup_logging


logger = logging.getLogger(__name__)


class HistoryBackfillService:
    """Wires config, client, fetcher and output together for one run."""

    def __init__(self, config_file: str = "config/local.yaml", settings: Optional[BackfillSettings] = None):
        self.config = settings or load_config(config_file)

        setup_logging(self.config.logging, self.config.service_name)
        logger.info(f"Backfill service initialized (environment={self.config.environment})")

    async def fetch(self) -> FetchReport:
        """Fetch, decode and save the configured account's history."""
        if not self.config.rpc.account:
            raise PipelineError("rpc.account is not configured")

        async with SolanaRPCClient(self.config.rpc) as client:
            fetcher = HistoryFetcher.from_settings(client, self.config)
            report = await fetcher.run()

        fetcher.sink.write_json(self.config.output.path)

        summary = report.summary()
        logger.info(f"Run summary: {summary}")
        for failure in report.failures:
            logger.warning(f"Unprocessed {failure.stage} {failure.key}: {failure.error}")
        return report

    def redecode(self) -> RedecodeStats:
        """Re-decode the saved history with the current decoder config."""
        decoder = EventDecoder.from_config(self.config.decoder)
        return redecode_file(
            self.config.output.redecode_input,
            self.config.output.redecode_output,
            decoder,
        )


async def main(argv=None):
    """Main entry point: ``python -m perp_history.main [fetch|redecode]``."""
    args = sys.argv[1:] if argv is None else argv
    command = args[0] if args else "fetch"
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")

    try:
        service = HistoryBackfillService(config_file)
        if command == "fetch":
            await service.fetch()
        elif command == "redecode":
            service.redecode()
        else:
            logger.error(f"Unknown command {command!r}; expected 'fetch' or 'redecode'")
            sys.exit(2)
    except PipelineError as e:
        log_error_with_context(logger, e, f"backfill {command}", config_file=config_file)
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
