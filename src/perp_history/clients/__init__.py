"""Remote node clients."""

from .solana_rpc import SolanaRPCClient

__all__ = ["SolanaRPCClient"]
