"""Shared utilities: retry, deduplication and logging."""
