"""Blockchain client for Ethereum JSON-RPC log queries."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

from beartype import beartype
from web3 import Web3
from web3.types import FilterParams

from dex_indexer.utils.config import (
    BLOCKCHAIN_BATCH_SIZE,
    BLOCKCHAIN_RPC_RATE_LIMIT,
    BLOCKCHAIN_RPC_TIMEOUT,
)
from dex_indexer.utils.errors import FetchError
from dex_indexer.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Substrings of provider errors worth switching endpoints for
TRANSIENT_ERROR_MARKERS = (
    "connection",
    "timeout",
    "timed out",
    "network",
    "refused",
    "rate limit",
    "too many requests",
    "429",
)


@beartype
def event_topic(event_signature: str) -> str:
    """
    Compute the topic0 hash of an event signature.

    Args:
        event_signature: Canonical signature, e.g. "Trade(address,uint256,address,uint256,address,address)"

    Returns:
        0x-prefixed lower-case keccak256 hex digest
    """
    return Web3.to_hex(Web3.keccak(text=event_signature)).lower()


class EthereumBlockchainClient:
    """Client for reading exchange logs from an Ethereum node via RPC."""

    def __init__(
        self,
        rpc_endpoints: Sequence[str],
        rate_limit: float = BLOCKCHAIN_RPC_RATE_LIMIT,
        timeout: float = BLOCKCHAIN_RPC_TIMEOUT,
        max_block_range: int = BLOCKCHAIN_BATCH_SIZE,
        web3: Web3 | None = None,
    ) -> None:
        """
        Initialize Ethereum blockchain client.

        Args:
            rpc_endpoints: RPC endpoints, tried in order on connection failure
            rate_limit: Maximum requests per second
            timeout: Per-request timeout in seconds
            max_block_range: Widest block range accepted by get_events
            web3: Pre-built Web3 instance (skips connecting when given)
        """
        if not rpc_endpoints:
            raise ValueError("At least one RPC endpoint is required")
        self.rpc_endpoints = list(rpc_endpoints)
        self.rate_limit = rate_limit
        self.timeout = timeout
        self.max_block_range = max_block_range
        self.current_endpoint_index = 0
        self.last_request_time = 0.0
        self.web3: Web3 | None = web3
        if self.web3 is None:
            self._connect()

    def _build_web3(self) -> Web3:
        endpoint = self.rpc_endpoints[self.current_endpoint_index]
        return Web3(Web3.HTTPProvider(endpoint, request_kwargs={"timeout": self.timeout}))

    def _rotate_endpoint(self) -> None:
        self.current_endpoint_index = (self.current_endpoint_index + 1) % len(self.rpc_endpoints)
        self.web3 = self._build_web3()

    def _connect(self) -> None:
        """Connect to the first endpoint that answers eth_blockNumber."""
        failures: list[str] = []
        for _ in self.rpc_endpoints:
            endpoint = _redact(self.rpc_endpoints[self.current_endpoint_index])
            logger.info(f"Connecting to Ethereum RPC: {endpoint}")
            self.web3 = self._build_web3()
            try:
                head = self.web3.eth.block_number
            except Exception as e:
                logger.warning(f"Endpoint {endpoint} unavailable: {e}")
                failures.append(f"{endpoint}: {e}")
                self.current_endpoint_index = (self.current_endpoint_index + 1) % len(
                    self.rpc_endpoints,
                )
                continue
            logger.info(f"Connected to {endpoint} at block {head}")
            return

        raise FetchError("No Ethereum RPC endpoint reachable (" + "; ".join(failures) + ")")

    def _throttle(self) -> None:
        """Space requests at least 1/rate_limit seconds apart."""
        wait = self.last_request_time + 1.0 / self.rate_limit - time.monotonic()
        if wait > 0:
            time.sleep(wait)
        self.last_request_time = time.monotonic()

    def _request(self, description: str, func: Callable[[], T]) -> T:
        """
        Execute a single rate-limited request.

        Failures are raised as FetchError; retrying is left to the caller.
        Connection and rate-limit failures also rotate to the next endpoint
        so that the caller's retry hits a different provider.
        """
        if not self.web3:
            raise RuntimeError("Not connected to RPC")

        self._throttle()
        try:
            return func()
        except Exception as e:
            if _is_transient(e) and len(self.rpc_endpoints) > 1:
                self._rotate_endpoint()
                logger.warning(
                    f"RPC error during {description}: {e}. Switched to "
                    f"{_redact(self.rpc_endpoints[self.current_endpoint_index])}",
                )
            raise FetchError(f"RPC request failed ({description}): {e}") from e

    @beartype
    def get_current_block_number(self) -> int:
        """
        Get the current chain head block number.

        Returns:
            Current block number
        """
        return int(self._request("eth_blockNumber", lambda: self.web3.eth.block_number))

    @beartype
    def get_block_timestamp(self, block_number: int) -> int:
        """
        Get timestamp of a specific block.

        Args:
            block_number: Block number

        Returns:
            Unix timestamp

        Raises:
            FetchError: If the block cannot be fetched or has no timestamp
        """
        block = self._request(
            f"eth_getBlockByNumber({block_number})",
            lambda: self.web3.eth.get_block(block_number),
        )
        timestamp = block.get("timestamp") if block else None
        if timestamp is None:
            raise FetchError(f"Block {block_number} has no timestamp")
        return int(timestamp)

    @beartype
    def get_events(
        self,
        contract_address: str,
        event_signatures: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[Mapping[str, Any]]:
        """
        Get logs emitted by a contract for any of the given events.

        Args:
            contract_address: Contract address
            event_signatures: Event signatures, e.g. ["Order(address,uint256,...)"]
            from_block: Starting block number
            to_block: Ending block number (inclusive)

        Returns:
            Raw event logs as returned by the node

        Raises:
            ValueError: If the block range is empty or too wide
            FetchError: If the provider request fails
        """
        if from_block > to_block:
            raise ValueError(f"Invalid block range {from_block}-{to_block}")
        if to_block - from_block > self.max_block_range:
            raise ValueError(
                f"Block range {from_block}-{to_block} exceeds maximum of {self.max_block_range} blocks",
            )

        filter_params: FilterParams = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": Web3.to_checksum_address(contract_address),
            "topics": [[event_topic(signature) for signature in event_signatures]],
        }

        logs = self._request(
            f"eth_getLogs({from_block}-{to_block})",
            lambda: self.web3.eth.get_logs(filter_params),
        )
        if logs is None:
            raise FetchError(f"Malformed eth_getLogs response for blocks {from_block}-{to_block}")
        logger.debug(f"Retrieved {len(logs)} logs from blocks {from_block}-{to_block}")
        return list(logs)

    def close(self) -> None:
        """Drop the provider; HTTP connections need no explicit teardown."""
        logger.debug("Blockchain client closed")
        self.web3 = None

    def __enter__(self) -> EthereumBlockchainClient:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()


def _is_transient(error: Exception) -> bool:
    """Whether an RPC failure looks like a connectivity or throttling problem."""
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


def _redact(endpoint: str) -> str:
    """Hide API keys embedded in the last path segment of an RPC URL."""
    head, sep, tail = endpoint.rpartition("/")
    if sep and len(tail) >= 16:
        return f"{head}/{tail[:4]}..."
    return endpoint
