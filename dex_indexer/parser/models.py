"""Data models for exchange events and the records derived from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

BUY = "buy"
SELL = "sell"


@dataclass(frozen=True)
class TrackedPair:
    """A (base token, quote token) combination the indexer persists."""

    base_token: str
    quote_token: str

    @property
    def tokens(self) -> frozenset[str]:
        return frozenset((self.base_token, self.quote_token))


@dataclass
class TokenRegistry:
    """Static token metadata: decimals per address and the tracked pairs."""

    decimals: dict[str, int]
    pairs: list[TrackedPair]
    default_decimals: int = 18

    def decimals_for(self, address: str) -> int:
        return self.decimals.get(address.lower(), self.default_decimals)

    def pair_for(self, token_get: str, token_give: str) -> TrackedPair | None:
        """Return the tracked pair both tokens belong to, or None."""
        tokens = {token_get.lower(), token_give.lower()}
        for pair in self.pairs:
            if tokens <= pair.tokens:
                return pair
        return None


# Decoded on-chain events. Amounts are raw integer strings.


@dataclass(frozen=True)
class OrderEvent:
    token_get: str
    amount_get: str
    token_give: str
    amount_give: str
    expires: str
    nonce: str
    user: str
    block_number: int
    tx_hash: str
    log_index: int


@dataclass(frozen=True)
class TradeEvent:
    token_get: str
    amount_get: str
    token_give: str
    amount_give: str
    maker: str
    taker: str
    block_number: int
    tx_hash: str
    log_index: int


@dataclass(frozen=True)
class CancelEvent:
    token_get: str
    amount_get: str
    token_give: str
    amount_give: str
    expires: str
    nonce: str
    user: str
    block_number: int
    tx_hash: str
    log_index: int


# Normalized records ready for persistence.


@dataclass(frozen=True)
class OrderRecord:
    """Order priced against a tracked pair."""

    tx_hash: str
    log_index: int
    token_get: str
    amount_get: str
    token_give: str
    amount_give: str
    expires: str
    nonce: str
    user_address: str
    block_number: int
    base_token: str
    quote_token: str
    side: str
    price: Decimal
    base_amount: Decimal
    quote_amount: Decimal

    @property
    def natural_key(self) -> tuple[str, str, str, str]:
        return (self.token_get, self.token_give, self.nonce, self.user_address)


@dataclass(frozen=True)
class TradeRecord:
    """Executed trade priced against a tracked pair. Immutable once stored."""

    tx_hash: str
    log_index: int
    token_get: str
    amount_get: str
    token_give: str
    amount_give: str
    maker: str
    taker: str
    block_number: int
    block_timestamp: int
    timestamp_approximate: bool
    base_token: str
    quote_token: str
    side: str
    price: Decimal
    base_amount: Decimal
    quote_amount: Decimal

    @property
    def natural_key(self) -> tuple[str, str, str, str]:
        return (self.tx_hash, self.token_get, self.amount_get, self.maker)


@dataclass(frozen=True)
class CancelRecord:
    """Cancellation of an order identified by its natural key."""

    token_get: str
    token_give: str
    nonce: str
    user_address: str
    block_number: int
    tx_hash: str

    @property
    def natural_key(self) -> tuple[str, str, str, str]:
        return (self.token_get, self.token_give, self.nonce, self.user_address)


@dataclass
class ParsedBatch:
    """Records and counters produced from one block range."""

    orders: list[OrderRecord] = field(default_factory=list)
    trades: list[TradeRecord] = field(default_factory=list)
    cancels: list[CancelRecord] = field(default_factory=list)
    orders_seen: int = 0
    trades_seen: int = 0
    cancels_seen: int = 0
    anomalies: int = 0
