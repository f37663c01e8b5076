"""Custom exceptions for the DEX event indexer."""

from __future__ import annotations


class IndexerError(Exception):
    """Base exception for indexer errors."""


class ConfigurationError(IndexerError):
    """Raised when required configuration is missing or invalid."""


class FetchError(IndexerError):
    """Raised when the RPC provider fails to answer a request."""


class SyncHaltedError(IndexerError):
    """Raised when a block range keeps failing past the retry budget."""

    def __init__(self, from_block: int, to_block: int, attempts: int) -> None:
        self.from_block = from_block
        self.to_block = to_block
        self.attempts = attempts
        super().__init__(
            f"Blocks {from_block}-{to_block} failed {attempts} times, halting sync",
        )
