"""Tests for the order/trade sink and sync checkpoints."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from sqlite3 import Connection
from unittest.mock import patch

import pytest

from dex_indexer.database.repository import (
    ORDERS_STREAM,
    TRADES_STREAM,
    expire_orders,
    get_open_orders,
    get_order_count,
    get_sync_status,
    get_trade_count,
    get_trades_by_pair,
    persist_batch,
    read_checkpoint,
    upsert_orders,
    write_checkpoint,
)
from dex_indexer.parser.exchange_event_parser import ExchangeEventParser
from dex_indexer.utils.config import ETH_ADDRESS
from helpers import BASE, ETHER, MAKER, cancel_log, order_log, trade_log


def _order_row(conn: Connection, nonce: str = "7") -> dict[str, object]:
    row = conn.execute("SELECT * FROM orders WHERE nonce = ?", (nonce,)).fetchone()
    return dict(row)


def test_upsert_orders_ignores_existing_key(
    conn: Connection,
    event_parser: ExchangeEventParser,
) -> None:
    """Test re-inserting an order with the same natural key is a no-op."""
    batch = event_parser.parse_logs([order_log(100)])

    assert upsert_orders(batch.orders, conn) == 1
    assert upsert_orders(batch.orders, conn) == 0
    conn.commit()
    assert get_order_count(conn=conn) == 1


def test_first_order_write_wins(conn: Connection, event_parser: ExchangeEventParser) -> None:
    """Test a later order with the same key does not overwrite the stored one."""
    persist_batch(event_parser.parse_logs([order_log(100)]), conn)
    persist_batch(event_parser.parse_logs([order_log(150, amount_give=9 * ETHER)]), conn)

    row = _order_row(conn)
    assert row["block_number"] == 100
    assert row["amount_give"] == str(5 * ETHER)


def test_raw_amounts_stored_as_text(conn: Connection, event_parser: ExchangeEventParser) -> None:
    """Test raw uint256 amounts keep every digit."""
    huge = 2**200 + 1
    persist_batch(event_parser.parse_logs([order_log(100, amount_get=huge)]), conn)

    assert _order_row(conn)["amount_get"] == str(huge)


def test_persist_batch_is_idempotent(conn: Connection, event_parser: ExchangeEventParser) -> None:
    """Test persisting the same batch twice leaves the same rows."""
    batch = event_parser.parse_logs(
        [order_log(100), trade_log(105, amount_get=400 * ETHER, amount_give=2 * ETHER)],
    )

    first = persist_batch(batch, conn)
    second = persist_batch(batch, conn)

    assert (first.orders_inserted, first.trades_inserted, first.fills_applied) == (1, 1, 1)
    assert (second.orders_inserted, second.trades_inserted, second.fills_applied) == (0, 0, 0)
    assert get_order_count(conn=conn) == 1
    assert get_trade_count(conn=conn) == 1
    assert _order_row(conn)["amount_filled"] == str(400 * ETHER)


def test_failed_write_rolls_back_whole_batch(
    conn: Connection,
    event_parser: ExchangeEventParser,
) -> None:
    """Test a database error mid-batch leaves none of the batch's rows behind."""
    batch = event_parser.parse_logs([order_log(100), trade_log(105)])

    with patch(
        "dex_indexer.database.repository.insert_trades",
        side_effect=sqlite3.OperationalError("database is locked"),
    ):
        with pytest.raises(sqlite3.OperationalError):
            persist_batch(batch, conn)

    assert get_order_count(conn=conn) == 0
    assert get_trade_count(conn=conn) == 0

    result = persist_batch(batch, conn)
    assert (result.orders_inserted, result.trades_inserted) == (1, 1)


def test_non_database_error_rolls_back_batch(
    conn: Connection,
    event_parser: ExchangeEventParser,
) -> None:
    """Test any exception during persist rolls back rows already written."""
    batch = event_parser.parse_logs([order_log(100), trade_log(105), cancel_log(110)])

    with patch(
        "dex_indexer.database.repository.apply_cancels",
        side_effect=ValueError("invalid literal for int()"),
    ):
        with pytest.raises(ValueError):
            persist_batch(batch, conn)

    conn.commit()
    assert get_order_count(conn=conn) == 0
    assert get_trade_count(conn=conn) == 0


def test_trade_fills_matching_order(conn: Connection, event_parser: ExchangeEventParser) -> None:
    """Test trades fill the maker's order and deactivate it when complete."""
    persist_batch(event_parser.parse_logs([order_log(100)]), conn)

    persist_batch(
        event_parser.parse_logs([trade_log(101, amount_get=400 * ETHER, amount_give=2 * ETHER)]),
        conn,
    )
    row = _order_row(conn)
    assert row["amount_filled"] == str(400 * ETHER)
    assert row["is_active"] == 1

    persist_batch(
        event_parser.parse_logs([trade_log(102, amount_get=600 * ETHER, amount_give=3 * ETHER)]),
        conn,
    )
    row = _order_row(conn)
    assert row["amount_filled"] == str(1000 * ETHER)
    assert row["is_active"] == 0


def test_trade_without_matching_order_is_still_stored(
    conn: Connection,
    event_parser: ExchangeEventParser,
) -> None:
    """Test trades against unknown (off-chain) orders are recorded without a fill."""
    result = persist_batch(event_parser.parse_logs([trade_log(101)]), conn)

    assert result.trades_inserted == 1
    assert result.fills_applied == 0


def test_cancel_deactivates_order(conn: Connection, event_parser: ExchangeEventParser) -> None:
    """Test a cancel marks the order cancelled and inactive once."""
    persist_batch(event_parser.parse_logs([order_log(100)]), conn)

    first = persist_batch(event_parser.parse_logs([cancel_log(110)]), conn)
    second = persist_batch(event_parser.parse_logs([cancel_log(110)]), conn)

    row = _order_row(conn)
    assert (row["is_cancelled"], row["is_active"]) == (1, 0)
    assert first.cancels_applied == 1
    assert second.cancels_applied == 0


def test_cancel_and_order_in_same_batch(conn: Connection, event_parser: ExchangeEventParser) -> None:
    """Test a cancel finds an order inserted earlier in the same batch."""
    result = persist_batch(event_parser.parse_logs([cancel_log(101), order_log(100)]), conn)

    assert result.cancels_applied == 1
    assert _order_row(conn)["is_cancelled"] == 1


def test_expire_orders(conn: Connection, event_parser: ExchangeEventParser) -> None:
    """Test orders are deactivated once their expiry block is reached."""
    persist_batch(event_parser.parse_logs([order_log(100, expires=150)]), conn)

    assert expire_orders(149, conn) == 0
    assert expire_orders(150, conn) == 1
    assert _order_row(conn)["is_active"] == 0


def test_read_checkpoint_default(conn: Connection) -> None:
    """Test a missing checkpoint returns the default."""
    assert read_checkpoint(ORDERS_STREAM, 99, conn) == 99


def test_checkpoint_never_moves_backwards(conn: Connection) -> None:
    """Test an older block does not overwrite a newer checkpoint."""
    write_checkpoint(ORDERS_STREAM, 200, conn, new_events=3)
    write_checkpoint(ORDERS_STREAM, 150, conn, new_events=2)

    assert read_checkpoint(ORDERS_STREAM, 0, conn) == 200
    status = {row["event_type"]: row for row in get_sync_status(conn)}
    assert status[ORDERS_STREAM]["total_events"] == 5


def test_checkpoints_are_per_stream(conn: Connection) -> None:
    """Test each stream keeps its own checkpoint row."""
    sync_time = datetime(2024, 1, 1, tzinfo=timezone.utc)
    write_checkpoint(ORDERS_STREAM, 300, conn, sync_time=sync_time)
    write_checkpoint(TRADES_STREAM, 250, conn, sync_time=sync_time, status="complete")

    rows = {row["event_type"]: row for row in get_sync_status(conn)}
    assert rows[ORDERS_STREAM]["last_synced_block"] == 300
    assert rows[TRADES_STREAM]["last_synced_block"] == 250
    assert rows[TRADES_STREAM]["status"] == "complete"
    assert rows[TRADES_STREAM]["last_sync_time"] == sync_time.isoformat()


def test_get_trades_by_pair_newest_first(conn: Connection, event_parser: ExchangeEventParser) -> None:
    """Test pair trades are returned newest first and limited."""
    logs = [trade_log(100 + i, amount_get=(i + 1) * ETHER) for i in range(3)]
    persist_batch(event_parser.parse_logs(logs), conn)

    trades = get_trades_by_pair(BASE, ETH_ADDRESS, limit=2, conn=conn)

    assert [trade["block_number"] for trade in trades] == [102, 101]
    assert trades[0]["maker"] == MAKER


def test_get_open_orders_excludes_cancelled(
    conn: Connection,
    event_parser: ExchangeEventParser,
) -> None:
    """Test open orders exclude cancelled ones."""
    logs = [order_log(100, nonce=1), order_log(101, nonce=2), cancel_log(102, nonce=1)]
    persist_batch(event_parser.parse_logs(logs), conn)

    orders = get_open_orders(BASE, ETH_ADDRESS, conn=conn)

    assert [order["nonce"] for order in orders] == ["2"]
