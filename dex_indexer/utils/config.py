"""Configuration constants and runtime settings for the DEX event indexer."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from beartype import beartype
from web3 import Web3

from dex_indexer.parser.models import TrackedPair
from dex_indexer.utils.errors import ConfigurationError

# Database configuration
DB_DIR = Path(__file__).parent.parent.parent / "data"
DB_PATH = DB_DIR / "dex_indexer.db"

# Ethereum RPC configuration
ALCHEMY_RPC_URL_TEMPLATE = "https://eth-mainnet.g.alchemy.com/v2/{api_key}"
ETH_ADDRESS = "0x0000000000000000000000000000000000000000"

# AfroDex exchange contract and its active block range
EXCHANGE_CONTRACT_ADDRESS = "0xe8fff15bb5e14095bfdfa8bb85d83cc900c23c56"
EXCHANGE_START_BLOCK = 9100009  # Contract deployment

# Token decimals as deployed on mainnet (some differ from the usual 18)
DEFAULT_TOKEN_DECIMALS = 18
TOKEN_DECIMALS: dict[str, int] = {
    ETH_ADDRESS: 18,  # ETH
    "0x08130635368aa28b217a4dfb68e1bf8dc525621c": 4,  # AfroX
    "0xd8a8843b0a5aba6b030e92b3f4d669fad8a5be50": 4,  # AFDLT
    "0x6a8c66cab4f766e5e30b4e9445582094303cc322": 18,  # PFARM
    "0x2f141ce366a2462f02cea3d12cf93e4dca49e4fd": 18,  # FREE
    "0x60571e95e12c78cba5223042692908f0649435a5": 18,  # PLAAS
    "0xa03c34ee9fa0e8db36dd9bf8d46631bb25f66302": 8,  # LWBT
    "0xa7c71d444bf9af4bfed2ade75595d7512eb4dd39": 16,  # T1C
    "0x9ec251401eafb7e98f37a1d911c0aea02cb63a80": 18,  # BCT
}

# Blockchain batch processing settings
BLOCKCHAIN_BATCH_SIZE = 10000  # Blocks per eth_getLogs query (provider limit)
BLOCKCHAIN_BATCH_DELAY = 1.0  # Pause between batches (seconds)
BLOCKCHAIN_RETRY_DELAY = 5.0  # Pause before retrying a failed batch (seconds)
BLOCKCHAIN_RPC_TIMEOUT = 30.0  # Per-request timeout (seconds)
BLOCKCHAIN_RPC_RATE_LIMIT = 10.0  # Requests per second to RPC
BLOCKCHAIN_POLL_INTERVAL = 15.0  # Chain head polling interval in tail mode (seconds)

ENV_PREFIX = "DEX_INDEXER_"


@dataclass
class IndexerConfig:
    """Settings for one indexer process, passed explicitly into the syncer."""

    rpc_endpoints: list[str]
    db_path: Path | None = DB_PATH
    contract_address: str = EXCHANGE_CONTRACT_ADDRESS
    start_block: int = EXCHANGE_START_BLOCK
    end_block: int | None = None
    batch_size: int = BLOCKCHAIN_BATCH_SIZE
    batch_delay: float = BLOCKCHAIN_BATCH_DELAY
    retry_delay: float = BLOCKCHAIN_RETRY_DELAY
    max_retries: int | None = None
    rpc_timeout: float = BLOCKCHAIN_RPC_TIMEOUT
    rpc_rate_limit: float = BLOCKCHAIN_RPC_RATE_LIMIT
    quote_token: str = ETH_ADDRESS
    token_decimals: dict[str, int] = field(default_factory=lambda: dict(TOKEN_DECIMALS))
    tracked_pairs: list[TrackedPair] = field(default_factory=list)
    follow: bool = False
    poll_interval: float = BLOCKCHAIN_POLL_INTERVAL
    confirmations: int = 0
    pairs_defaulted: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.contract_address = self.contract_address.lower()
        self.quote_token = self.quote_token.lower()
        self.token_decimals = {
            address.lower(): decimals for address, decimals in self.token_decimals.items()
        }
        if not self.tracked_pairs:
            # Every known token against the quote token
            self.tracked_pairs = [
                TrackedPair(base_token=address, quote_token=self.quote_token)
                for address in self.token_decimals
                if address != self.quote_token
            ]
            self.pairs_defaulted = True

    def validate(self) -> None:
        """
        Check the settings before any network call is made.

        Raises:
            ConfigurationError: If a required setting is missing or invalid
        """
        if not self.rpc_endpoints:
            raise ConfigurationError(
                f"No RPC endpoint configured. Set {ENV_PREFIX}RPC_URL or ALCHEMY_API_KEY",
            )
        if self.db_path is None:
            raise ConfigurationError(f"No database path configured. Set {ENV_PREFIX}DB_PATH")
        if not Web3.is_address(self.contract_address):
            raise ConfigurationError(f"Invalid contract address: {self.contract_address}")
        if self.batch_size <= 0:
            raise ConfigurationError(f"Batch size must be positive, got {self.batch_size}")
        if self.start_block < 0:
            raise ConfigurationError(f"Start block must not be negative, got {self.start_block}")
        if self.end_block is not None and self.end_block < self.start_block:
            raise ConfigurationError(
                f"End block {self.end_block} is before start block {self.start_block}",
            )
        if self.max_retries is not None and self.max_retries < 0:
            raise ConfigurationError(f"Max retries must not be negative, got {self.max_retries}")
        if not self.tracked_pairs:
            raise ConfigurationError("No tracked trading pairs configured")
        for pair in self.tracked_pairs:
            for address in (pair.base_token, pair.quote_token):
                if not Web3.is_address(address):
                    raise ConfigurationError(f"Invalid token address in pair: {address}")


def _csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@beartype
def parse_token_decimals(entries: list[str]) -> dict[str, int]:
    """
    Parse ``address:decimals`` entries into a decimals mapping.

    Args:
        entries: Entries such as ``0xabc...:18``

    Returns:
        Mapping of lower-cased token address to decimals

    Raises:
        ConfigurationError: If an entry is malformed
    """
    decimals: dict[str, int] = {}
    for entry in entries:
        address, _, raw_decimals = entry.partition(":")
        address = address.strip().lower()
        if not Web3.is_address(address) or not raw_decimals.strip().isdigit():
            raise ConfigurationError(f"Invalid token entry (expected address:decimals): {entry}")
        decimals[address] = int(raw_decimals)
    return decimals


@beartype
def parse_tracked_pairs(entries: list[str]) -> list[TrackedPair]:
    """
    Parse ``base:quote`` entries into tracked pairs.

    Args:
        entries: Entries such as ``0xbase...:0xquote...``

    Returns:
        List of tracked pairs

    Raises:
        ConfigurationError: If an entry is malformed
    """
    pairs: list[TrackedPair] = []
    for entry in entries:
        base, _, quote = entry.partition(":")
        base, quote = base.strip().lower(), quote.strip().lower()
        if not Web3.is_address(base) or not Web3.is_address(quote):
            raise ConfigurationError(f"Invalid pair entry (expected base:quote): {entry}")
        if base == quote:
            raise ConfigurationError(f"Pair base and quote must differ: {entry}")
        pairs.append(TrackedPair(base_token=base, quote_token=quote))
    return pairs


def _int_env(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


def _path_env(env: Mapping[str, str], name: str, default: Path) -> Path | None:
    raw = env.get(ENV_PREFIX + name)
    if raw is None:
        return default
    # Explicitly blanked means "no database configured"
    return Path(raw.strip()) if raw.strip() else None


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from e


@beartype
def load_config(env: Mapping[str, str] | None = None) -> IndexerConfig:
    """
    Build indexer settings from environment variables.

    Args:
        env: Environment mapping (uses os.environ if None)

    Returns:
        IndexerConfig populated from the environment and module defaults
    """
    if env is None:
        env = os.environ

    rpc_endpoints = _csv(env.get(ENV_PREFIX + "RPC_URL"))
    alchemy_key = env.get("ALCHEMY_API_KEY", "").strip()
    if not rpc_endpoints and alchemy_key:
        rpc_endpoints = [ALCHEMY_RPC_URL_TEMPLATE.format(api_key=alchemy_key)]

    token_decimals = dict(TOKEN_DECIMALS)
    token_decimals.update(parse_token_decimals(_csv(env.get(ENV_PREFIX + "TOKENS"))))

    return IndexerConfig(
        rpc_endpoints=rpc_endpoints,
        db_path=_path_env(env, "DB_PATH", DB_PATH),
        contract_address=env.get(ENV_PREFIX + "CONTRACT_ADDRESS", "").strip()
        or EXCHANGE_CONTRACT_ADDRESS,
        start_block=_int_env(env, "START_BLOCK", EXCHANGE_START_BLOCK),
        end_block=_int_env(env, "END_BLOCK", None),
        batch_size=_int_env(env, "BATCH_SIZE", BLOCKCHAIN_BATCH_SIZE),
        batch_delay=_float_env(env, "BATCH_DELAY", BLOCKCHAIN_BATCH_DELAY),
        retry_delay=_float_env(env, "RETRY_DELAY", BLOCKCHAIN_RETRY_DELAY),
        max_retries=_int_env(env, "MAX_RETRIES", None),
        rpc_timeout=_float_env(env, "RPC_TIMEOUT", BLOCKCHAIN_RPC_TIMEOUT),
        rpc_rate_limit=_float_env(env, "RPC_RATE_LIMIT", BLOCKCHAIN_RPC_RATE_LIMIT),
        quote_token=env.get(ENV_PREFIX + "QUOTE_TOKEN", "").strip() or ETH_ADDRESS,
        token_decimals=token_decimals,
        tracked_pairs=parse_tracked_pairs(_csv(env.get(ENV_PREFIX + "PAIRS"))),
        follow=env.get(ENV_PREFIX + "FOLLOW", "").strip().lower() in {"1", "true", "yes"},
        poll_interval=_float_env(env, "POLL_INTERVAL", BLOCKCHAIN_POLL_INTERVAL),
        confirmations=_int_env(env, "CONFIRMATIONS", 0),
    )
