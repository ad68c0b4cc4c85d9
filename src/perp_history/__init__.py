"""
Perp History Pipeline - Full-history backfill of decoded perp trading events.

This package walks a Solana account's transaction history, extracts the binary
event payloads the exchange program writes to its logs, and decodes them into
normalized fill, fee and order-management records.
"""

__version__ = "1.0.0"
__author__ = "Perp History Team"
