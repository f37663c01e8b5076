"""Builders for synthetic exchange logs used across the test suite."""

from __future__ import annotations

from typing import Any

from eth_abi import encode

from dex_indexer.parser.exchange_event_parser import (
    CANCEL_EVENT_TYPES,
    CANCEL_TOPIC,
    ORDER_EVENT_TYPES,
    ORDER_TOPIC,
    TRADE_EVENT_TYPES,
    TRADE_TOPIC,
)
from dex_indexer.utils.config import ETH_ADDRESS, EXCHANGE_CONTRACT_ADDRESS

BASE = "0x" + "11" * 20
OTHER = "0x" + "22" * 20
MAKER = "0x" + "ab" * 20
TAKER = "0x" + "cd" * 20

ETHER = 10**18
BLOCK_TIMESTAMP = 1_600_000_000


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def _log(topic: str, data: bytes, block: int, log_index: int, tx: int) -> dict[str, Any]:
    return {
        "address": EXCHANGE_CONTRACT_ADDRESS,
        "topics": [topic],
        "data": data,
        "blockNumber": block,
        "transactionHash": tx_hash(tx),
        "logIndex": log_index,
    }


def order_log(
    block: int,
    token_get: str = BASE,
    amount_get: int = 1000 * ETHER,
    token_give: str = ETH_ADDRESS,
    amount_give: int = 5 * ETHER,
    expires: int = 10_000_000,
    nonce: int = 7,
    user: str = MAKER,
    log_index: int = 0,
    tx: int | None = None,
) -> dict[str, Any]:
    data = encode(
        ORDER_EVENT_TYPES,
        [token_get, amount_get, token_give, amount_give, expires, nonce, user],
    )
    return _log(ORDER_TOPIC, data, block, log_index, block if tx is None else tx)


def trade_log(
    block: int,
    token_get: str = BASE,
    amount_get: int = 1000 * ETHER,
    token_give: str = ETH_ADDRESS,
    amount_give: int = 5 * ETHER,
    maker: str = MAKER,
    taker: str = TAKER,
    log_index: int = 0,
    tx: int | None = None,
) -> dict[str, Any]:
    data = encode(
        TRADE_EVENT_TYPES,
        [token_get, amount_get, token_give, amount_give, maker, taker],
    )
    return _log(TRADE_TOPIC, data, block, log_index, block if tx is None else tx)


def cancel_log(
    block: int,
    token_get: str = BASE,
    amount_get: int = 1000 * ETHER,
    token_give: str = ETH_ADDRESS,
    amount_give: int = 5 * ETHER,
    expires: int = 10_000_000,
    nonce: int = 7,
    user: str = MAKER,
    log_index: int = 0,
    tx: int | None = None,
) -> dict[str, Any]:
    data = encode(
        CANCEL_EVENT_TYPES,
        [
            token_get,
            amount_get,
            token_give,
            amount_give,
            expires,
            nonce,
            user,
            27,
            b"\x01" * 32,
            b"\x02" * 32,
        ],
    )
    return _log(CANCEL_TOPIC, data, block, log_index, block if tx is None else tx)
