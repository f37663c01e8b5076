"""Event parser for the order-book exchange contract.

The exchange is an EtherDelta-style contract: makers publish orders (on-chain
via ``order()`` or signed off-chain), takers fill them with ``trade()``, and
makers can ``cancelOrder()``. Each action emits an event whose parameters are
all non-indexed, so everything is decoded from the log data.

Raw amounts are kept as integer strings until normalization, where each token's
decimals turn them into ``Decimal`` base/quote amounts and a price.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal, localcontext
from typing import Any

from beartype import beartype
from eth_abi import decode

from dex_indexer.parser.blockchain_client import EthereumBlockchainClient, event_topic
from dex_indexer.parser.models import (
    BUY,
    SELL,
    CancelEvent,
    CancelRecord,
    OrderEvent,
    OrderRecord,
    ParsedBatch,
    TokenRegistry,
    TrackedPair,
    TradeEvent,
    TradeRecord,
)
from dex_indexer.utils.errors import FetchError
from dex_indexer.utils.logger import get_logger

logger = get_logger(__name__)

ORDER_EVENT_SIGNATURE = "Order(address,uint256,address,uint256,uint256,uint256,address)"
TRADE_EVENT_SIGNATURE = "Trade(address,uint256,address,uint256,address,address)"
CANCEL_EVENT_SIGNATURE = (
    "Cancel(address,uint256,address,uint256,uint256,uint256,address,uint8,bytes32,bytes32)"
)
EXCHANGE_EVENT_SIGNATURES = [
    ORDER_EVENT_SIGNATURE,
    TRADE_EVENT_SIGNATURE,
    CANCEL_EVENT_SIGNATURE,
]

ORDER_EVENT_TYPES = ["address", "uint256", "address", "uint256", "uint256", "uint256", "address"]
TRADE_EVENT_TYPES = ["address", "uint256", "address", "uint256", "address", "address"]
CANCEL_EVENT_TYPES = ORDER_EVENT_TYPES + ["uint8", "bytes32", "bytes32"]

ORDER_TOPIC = event_topic(ORDER_EVENT_SIGNATURE)
TRADE_TOPIC = event_topic(TRADE_EVENT_SIGNATURE)
CANCEL_TOPIC = event_topic(CANCEL_EVENT_SIGNATURE)

# Enough digits for any uint256 amount
DECIMAL_PRECISION = 78


def _to_bytes(value: object) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return bytes(value)


def _to_hex(value: object) -> str:
    return "0x" + _to_bytes(value).hex()


def _to_int(value: object) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


@beartype
def to_decimal_amount(raw_amount: str, decimals: int) -> Decimal:
    """
    Convert a raw integer token amount into whole-token units.

    Args:
        raw_amount: Integer amount as a string (smallest token unit)
        decimals: Token decimals

    Returns:
        Exact decimal amount
    """
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return Decimal(int(raw_amount)).scaleb(-decimals)


@beartype
def compute_price(quote_amount: Decimal, base_amount: Decimal) -> Decimal:
    """
    Price of one base token in quote tokens.

    A zero base amount yields 0 (unpriced) instead of raising.
    """
    if base_amount == 0:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return quote_amount / base_amount


class ExchangeEventParser:
    """Decodes exchange logs and normalizes them into pair-priced records."""

    def __init__(
        self,
        blockchain_client: EthereumBlockchainClient,
        token_registry: TokenRegistry,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize exchange event parser.

        Args:
            blockchain_client: Client used for block timestamp lookups
            token_registry: Token decimals and tracked pairs
            clock: Wall-clock source used when a block timestamp is unavailable
        """
        self.blockchain_client = blockchain_client
        self.token_registry = token_registry
        self.clock = clock

    @beartype
    def decode_log(self, log: Mapping[str, Any]) -> OrderEvent | TradeEvent | CancelEvent | None:
        """
        Decode a raw log into a typed exchange event.

        Args:
            log: Raw log from eth_getLogs

        Returns:
            Decoded event, or None for unknown topics and undecodable data
        """
        topics = log.get("topics") or []
        if not topics:
            logger.warning(f"Log without topics in tx {_to_hex(log.get('transactionHash', b''))}")
            return None

        topic = _to_hex(topics[0]).lower()
        block_number = _to_int(log["blockNumber"])
        tx_hash = _to_hex(log["transactionHash"]).lower()
        log_index = _to_int(log.get("logIndex") or 0)

        try:
            data = _to_bytes(log.get("data") or b"")
            if topic == ORDER_TOPIC:
                token_get, amount_get, token_give, amount_give, expires, nonce, user = decode(
                    ORDER_EVENT_TYPES, data,
                )
                return OrderEvent(
                    token_get=token_get.lower(),
                    amount_get=str(amount_get),
                    token_give=token_give.lower(),
                    amount_give=str(amount_give),
                    expires=str(expires),
                    nonce=str(nonce),
                    user=user.lower(),
                    block_number=block_number,
                    tx_hash=tx_hash,
                    log_index=log_index,
                )
            if topic == TRADE_TOPIC:
                token_get, amount_get, token_give, amount_give, maker, taker = decode(
                    TRADE_EVENT_TYPES, data,
                )
                return TradeEvent(
                    token_get=token_get.lower(),
                    amount_get=str(amount_get),
                    token_give=token_give.lower(),
                    amount_give=str(amount_give),
                    maker=maker.lower(),
                    taker=taker.lower(),
                    block_number=block_number,
                    tx_hash=tx_hash,
                    log_index=log_index,
                )
            if topic == CANCEL_TOPIC:
                token_get, amount_get, token_give, amount_give, expires, nonce, user, *_ = decode(
                    CANCEL_EVENT_TYPES, data,
                )
                return CancelEvent(
                    token_get=token_get.lower(),
                    amount_get=str(amount_get),
                    token_give=token_give.lower(),
                    amount_give=str(amount_give),
                    expires=str(expires),
                    nonce=str(nonce),
                    user=user.lower(),
                    block_number=block_number,
                    tx_hash=tx_hash,
                    log_index=log_index,
                )
        except Exception as e:
            logger.warning(f"Failed to decode log {tx_hash}:{log_index}: {e}")
            return None

        logger.warning(f"Unknown event topic {topic} in tx {tx_hash}")
        return None

    def _classify(
        self,
        token_get: str,
        token_give: str,
        context: str,
    ) -> tuple[TrackedPair | None, str | None]:
        """
        Match an event to a tracked pair and determine its side.

        Returns:
            (None, None) for untracked tokens, (pair, None) for an ambiguous
            side, otherwise (pair, "buy" | "sell")
        """
        pair = self.token_registry.pair_for(token_get, token_give)
        if pair is None:
            return None, None

        gets_base = token_get == pair.base_token
        gives_base = token_give == pair.base_token
        if gets_base == gives_base:
            logger.warning(
                f"Anomaly in {context}: tokenGet={token_get} tokenGive={token_give} "
                f"does not resolve to a single side of pair {pair.base_token}/{pair.quote_token}",
            )
            return pair, None
        return pair, BUY if gets_base else SELL

    def _amounts(
        self,
        event: OrderEvent | TradeEvent,
        pair: TrackedPair,
        side: str,
    ) -> tuple[Decimal, Decimal, Decimal]:
        """Return (price, base_amount, quote_amount) for a classified event."""
        if side == BUY:
            base_raw, quote_raw = event.amount_get, event.amount_give
        else:
            base_raw, quote_raw = event.amount_give, event.amount_get

        base_amount = to_decimal_amount(base_raw, self.token_registry.decimals_for(pair.base_token))
        quote_amount = to_decimal_amount(
            quote_raw, self.token_registry.decimals_for(pair.quote_token),
        )
        if base_amount == 0:
            logger.warning(
                f"Zero base amount in tx {event.tx_hash}:{event.log_index}, recording price 0",
            )
        return compute_price(quote_amount, base_amount), base_amount, quote_amount

    @beartype
    def normalize_order(self, event: OrderEvent) -> OrderRecord | None:
        """Price an order against its tracked pair, or None if excluded."""
        pair, side = self._classify(event.token_get, event.token_give, f"order {event.tx_hash}")
        if pair is None or side is None:
            return None

        price, base_amount, quote_amount = self._amounts(event, pair, side)
        return OrderRecord(
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            token_get=event.token_get,
            amount_get=event.amount_get,
            token_give=event.token_give,
            amount_give=event.amount_give,
            expires=event.expires,
            nonce=event.nonce,
            user_address=event.user,
            block_number=event.block_number,
            base_token=pair.base_token,
            quote_token=pair.quote_token,
            side=side,
            price=price,
            base_amount=base_amount,
            quote_amount=quote_amount,
        )

    @beartype
    def normalize_trade(
        self,
        event: TradeEvent,
        block_timestamp: int,
        timestamp_approximate: bool = False,
    ) -> TradeRecord | None:
        """Price a trade against its tracked pair, or None if excluded."""
        pair, side = self._classify(event.token_get, event.token_give, f"trade {event.tx_hash}")
        if pair is None or side is None:
            return None

        price, base_amount, quote_amount = self._amounts(event, pair, side)
        return TradeRecord(
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            token_get=event.token_get,
            amount_get=event.amount_get,
            token_give=event.token_give,
            amount_give=event.amount_give,
            maker=event.maker,
            taker=event.taker,
            block_number=event.block_number,
            block_timestamp=block_timestamp,
            timestamp_approximate=timestamp_approximate,
            base_token=pair.base_token,
            quote_token=pair.quote_token,
            side=side,
            price=price,
            base_amount=base_amount,
            quote_amount=quote_amount,
        )

    @beartype
    def normalize_cancel(self, event: CancelEvent) -> CancelRecord | None:
        """Turn a cancel into an order-key reference, or None if excluded."""
        pair, side = self._classify(event.token_get, event.token_give, f"cancel {event.tx_hash}")
        if pair is None or side is None:
            return None
        return CancelRecord(
            token_get=event.token_get,
            token_give=event.token_give,
            nonce=event.nonce,
            user_address=event.user,
            block_number=event.block_number,
            tx_hash=event.tx_hash,
        )

    def _block_timestamp(self, block_number: int, cache: dict[int, int]) -> tuple[int, bool]:
        """Resolve a block timestamp, falling back to wall-clock time."""
        if block_number in cache:
            return cache[block_number], False
        try:
            timestamp = self.blockchain_client.get_block_timestamp(block_number)
        except FetchError as e:
            fallback = int(self.clock())
            logger.warning(
                f"Block {block_number} timestamp lookup failed ({e}); "
                f"using wall-clock time {fallback}, trade timestamps are approximate",
            )
            return fallback, True
        cache[block_number] = timestamp
        return timestamp, False

    @beartype
    def parse_logs(self, logs: Sequence[Mapping[str, Any]]) -> ParsedBatch:
        """
        Decode, filter and normalize the logs of one block range.

        Logs are handled in (block, log index) order whatever order the
        provider returned them in.

        Args:
            logs: Raw logs from eth_getLogs

        Returns:
            ParsedBatch with pair records and seen/anomaly counters
        """
        batch = ParsedBatch()
        block_timestamps: dict[int, int] = {}  # Cache block timestamps

        ordered_logs = sorted(
            logs,
            key=lambda log: (_to_int(log["blockNumber"]), _to_int(log.get("logIndex") or 0)),
        )

        for log in ordered_logs:
            event = self.decode_log(log)
            if event is None:
                batch.anomalies += 1
                continue

            if isinstance(event, OrderEvent):
                batch.orders_seen += 1
                record = self.normalize_order(event)
                if record:
                    batch.orders.append(record)
            elif isinstance(event, TradeEvent):
                batch.trades_seen += 1
                # Timestamps are only looked up for trades on tracked pairs
                if self.token_registry.pair_for(event.token_get, event.token_give) is None:
                    continue
                timestamp, approximate = self._block_timestamp(event.block_number, block_timestamps)
                record = self.normalize_trade(event, timestamp, approximate)
                if record:
                    batch.trades.append(record)
            else:
                batch.cancels_seen += 1
                record = self.normalize_cancel(event)
                if record:
                    batch.cancels.append(record)

            if record is None and self.token_registry.pair_for(
                event.token_get, event.token_give,
            ):
                batch.anomalies += 1

        logger.debug(
            f"Parsed {len(batch.orders)}/{batch.orders_seen} orders, "
            f"{len(batch.trades)}/{batch.trades_seen} trades, "
            f"{len(batch.cancels)}/{batch.cancels_seen} cancels",
        )
        return batch
