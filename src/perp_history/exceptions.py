"""Exception hierarchy for the backfill pipeline."""

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(PipelineError):
    """Configuration file missing or invalid."""


class RPCError(PipelineError):
    """Non-transient failure reported by the remote node."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class RateLimitError(RPCError):
    """The remote node rejected the call because of rate limiting."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None, code: Optional[int] = 429):
        super().__init__(message, code=code)
        self.retry_after = retry_after


class FatalFetchError(PipelineError):
    """Nothing can be processed (first signature page unobtainable)."""
