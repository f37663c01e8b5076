"""Tests for environment-driven indexer settings."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from dex_indexer.parser.models import TrackedPair
from dex_indexer.utils.config import (
    DB_PATH,
    ETH_ADDRESS,
    EXCHANGE_CONTRACT_ADDRESS,
    EXCHANGE_START_BLOCK,
    TOKEN_DECIMALS,
    load_config,
    parse_token_decimals,
    parse_tracked_pairs,
)
from dex_indexer.utils.errors import ConfigurationError
from helpers import BASE, MAKER, OTHER


def test_defaults() -> None:
    """Test an empty environment falls back to module defaults."""
    config = load_config({})

    assert config.rpc_endpoints == []
    assert config.db_path == DB_PATH
    assert config.contract_address == EXCHANGE_CONTRACT_ADDRESS
    assert config.start_block == EXCHANGE_START_BLOCK
    assert config.end_block is None
    assert config.max_retries is None
    assert config.follow is False


def test_default_pairs_cover_every_token_against_eth() -> None:
    """Test every registry token is tracked against ETH when no pairs are set."""
    config = load_config({})

    bases = {pair.base_token for pair in config.tracked_pairs}
    assert bases == set(TOKEN_DECIMALS) - {ETH_ADDRESS}
    assert {pair.quote_token for pair in config.tracked_pairs} == {ETH_ADDRESS}


def test_missing_rpc_endpoint_fails_validation() -> None:
    """Test validation rejects a config without an RPC endpoint."""
    with pytest.raises(ConfigurationError, match="RPC"):
        load_config({}).validate()


def test_alchemy_key_builds_endpoint() -> None:
    """Test ALCHEMY_API_KEY is used when no RPC URL is given."""
    config = load_config({"ALCHEMY_API_KEY": "secret"})
    assert config.rpc_endpoints == ["https://eth-mainnet.g.alchemy.com/v2/secret"]


def test_rpc_url_list() -> None:
    """Test a comma separated RPC URL list takes precedence over the Alchemy key."""
    config = load_config(
        {
            "DEX_INDEXER_RPC_URL": "http://a:8545, http://b:8545",
            "ALCHEMY_API_KEY": "secret",
        },
    )
    assert config.rpc_endpoints == ["http://a:8545", "http://b:8545"]


def test_environment_overrides() -> None:
    """Test numeric, boolean and path settings are read from the environment."""
    config = load_config(
        {
            "DEX_INDEXER_RPC_URL": "http://localhost:8545",
            "DEX_INDEXER_DB_PATH": "/tmp/indexer.db",
            "DEX_INDEXER_START_BLOCK": "100",
            "DEX_INDEXER_END_BLOCK": "200",
            "DEX_INDEXER_BATCH_SIZE": "50",
            "DEX_INDEXER_BATCH_DELAY": "0.5",
            "DEX_INDEXER_MAX_RETRIES": "3",
            "DEX_INDEXER_FOLLOW": "true",
            "DEX_INDEXER_PAIRS": f"{BASE}:{ETH_ADDRESS}",
        },
    )

    assert config.db_path == Path("/tmp/indexer.db")
    assert (config.start_block, config.end_block) == (100, 200)
    assert config.batch_size == 50
    assert config.batch_delay == 0.5
    assert config.max_retries == 3
    assert config.follow is True
    assert config.tracked_pairs == [TrackedPair(base_token=BASE, quote_token=ETH_ADDRESS)]
    config.validate()


def test_blank_db_path_fails_validation() -> None:
    """Test an explicitly blank database path is a configuration error."""
    config = load_config({"DEX_INDEXER_RPC_URL": "http://localhost:8545", "DEX_INDEXER_DB_PATH": ""})

    assert config.db_path is None
    with pytest.raises(ConfigurationError, match="database"):
        config.validate()


def test_invalid_integer_setting() -> None:
    """Test a non-numeric block number is rejected."""
    with pytest.raises(ConfigurationError, match="START_BLOCK"):
        load_config({"DEX_INDEXER_START_BLOCK": "soon"})


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"batch_size": 0}, "Batch size"),
        ({"start_block": -1}, "Start block"),
        ({"start_block": 200, "end_block": 100}, "before start block"),
        ({"max_retries": -1}, "Max retries"),
        ({"contract_address": "0x1234"}, "contract address"),
    ],
)
def test_validate_rejects_bad_values(overrides: dict[str, object], message: str) -> None:
    """Test validation of numeric ranges and addresses."""
    config = dataclasses.replace(load_config({"ALCHEMY_API_KEY": "secret"}), **overrides)
    with pytest.raises(ConfigurationError, match=message):
        config.validate()


def test_parse_token_decimals() -> None:
    """Test token entries are lower-cased and parsed."""
    entry = "0x" + MAKER[2:].upper() + ":6"
    assert parse_token_decimals([entry]) == {MAKER: 6}


def test_parse_token_decimals_rejects_malformed_entry() -> None:
    """Test token entries without decimals are rejected."""
    with pytest.raises(ConfigurationError):
        parse_token_decimals([BASE])


def test_parse_tracked_pairs() -> None:
    """Test pair entries become tracked pairs."""
    assert parse_tracked_pairs([f"{BASE}:{OTHER}"]) == [
        TrackedPair(base_token=BASE, quote_token=OTHER),
    ]


def test_parse_tracked_pairs_rejects_same_token() -> None:
    """Test a pair needs two different tokens."""
    with pytest.raises(ConfigurationError):
        parse_tracked_pairs([f"{BASE}:{BASE}"])
