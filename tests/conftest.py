"""Shared fixtures for indexer tests."""

from __future__ import annotations

from collections.abc import Iterator
from sqlite3 import Connection
from unittest.mock import MagicMock

import pytest

from dex_indexer.database.connection import get_connection, initialize_database
from dex_indexer.parser.blockchain_client import EthereumBlockchainClient
from dex_indexer.parser.exchange_event_parser import ExchangeEventParser
from dex_indexer.parser.models import TokenRegistry, TrackedPair
from dex_indexer.utils.config import ETH_ADDRESS, IndexerConfig
from helpers import BASE, BLOCK_TIMESTAMP


@pytest.fixture
def conn(tmp_path) -> Iterator[Connection]:
    """Initialized SQLite database in a temporary directory."""
    connection = get_connection(tmp_path / "indexer.db")
    initialize_database(connection)
    yield connection
    connection.close()


@pytest.fixture
def pair() -> TrackedPair:
    return TrackedPair(base_token=BASE, quote_token=ETH_ADDRESS)


@pytest.fixture
def token_registry(pair: TrackedPair) -> TokenRegistry:
    return TokenRegistry(decimals={BASE: 18, ETH_ADDRESS: 18}, pairs=[pair])


@pytest.fixture
def blockchain_client() -> MagicMock:
    """Fake RPC client returning no logs and a fixed block timestamp."""
    client = MagicMock(spec=EthereumBlockchainClient)
    client.get_events.return_value = []
    client.get_block_timestamp.return_value = BLOCK_TIMESTAMP
    client.get_current_block_number.return_value = 0
    return client


@pytest.fixture
def event_parser(blockchain_client: MagicMock, token_registry: TokenRegistry) -> ExchangeEventParser:
    return ExchangeEventParser(blockchain_client, token_registry)


@pytest.fixture
def config(tmp_path, pair: TrackedPair) -> IndexerConfig:
    """Settings for a small range with no delays."""
    return IndexerConfig(
        rpc_endpoints=["http://localhost:8545"],
        db_path=tmp_path / "indexer.db",
        start_block=100,
        end_block=109,
        batch_size=10,
        batch_delay=0.0,
        retry_delay=0.0,
        token_decimals={BASE: 18, ETH_ADDRESS: 18},
        tracked_pairs=[pair],
    )
