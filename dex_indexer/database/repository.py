"""Data access layer for orders, trades and sync checkpoints."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from sqlite3 import Connection, Cursor

from beartype import beartype

from dex_indexer.database.connection import get_connection
from dex_indexer.parser.models import (
    CancelRecord,
    OrderRecord,
    ParsedBatch,
    TradeRecord,
)
from dex_indexer.utils.logger import get_logger

logger = get_logger(__name__)

ORDERS_STREAM = "orders"
TRADES_STREAM = "trades"
CANCELS_STREAM = "cancels"
SYNC_STREAMS = (ORDERS_STREAM, TRADES_STREAM, CANCELS_STREAM)


@dataclass
class PersistResult:
    """Row changes made while persisting one batch."""

    orders_inserted: int = 0
    trades_inserted: int = 0
    fills_applied: int = 0
    cancels_applied: int = 0


@beartype
def upsert_orders(orders: list[OrderRecord], conn: Connection) -> int:
    """
    Insert orders, ignoring any whose natural key already exists.

    The caller owns the transaction.

    Args:
        orders: Normalized order records
        conn: Database connection

    Returns:
        Number of orders newly inserted
    """
    if not orders:
        return 0

    before = conn.total_changes
    conn.executemany(
        """
        INSERT OR IGNORE INTO orders (
            tx_hash, log_index, token_get, amount_get, token_give, amount_give,
            expires, nonce, user_address, block_number, base_token, quote_token,
            side, price, base_amount, quote_amount
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                order.tx_hash,
                order.log_index,
                order.token_get,
                order.amount_get,
                order.token_give,
                order.amount_give,
                order.expires,
                order.nonce,
                order.user_address,
                order.block_number,
                order.base_token,
                order.quote_token,
                order.side,
                float(order.price),
                float(order.base_amount),
                float(order.quote_amount),
            )
            for order in orders
        ],
    )
    return conn.total_changes - before


def _apply_trade_fill(trade: TradeRecord, cursor: Cursor) -> bool:
    """
    Add a trade's filled amount to the maker order it executed against.

    The contract emits the filled amount of tokenGet and the matching
    amountGive computed as ``order.amountGive * amount // order.amountGet``,
    which identifies the order among the maker's orders on the same tokens.
    """
    cursor.execute(
        """
        SELECT id, amount_get, amount_give, amount_filled FROM orders
        WHERE token_get = ? AND token_give = ? AND user_address = ?
          AND is_active = 1 AND is_cancelled = 0
        ORDER BY block_number, id
        """,
        (trade.token_get, trade.token_give, trade.maker),
    )
    trade_get = int(trade.amount_get)
    trade_give = int(trade.amount_give)

    for row in cursor.fetchall():
        order_get = int(row["amount_get"])
        order_give = int(row["amount_give"])
        if order_get == 0 or order_give * trade_get // order_get != trade_give:
            continue

        filled = int(row["amount_filled"]) + trade_get
        cursor.execute(
            "UPDATE orders SET amount_filled = ?, is_active = ? WHERE id = ?",
            (str(filled), 1 if filled < order_get else 0, row["id"]),
        )
        return True

    return False


@beartype
def insert_trades(trades: list[TradeRecord], conn: Connection) -> tuple[int, int]:
    """
    Insert trades, ignoring duplicates, and apply new fills to their orders.

    A fill is only applied when its trade row is newly inserted, so
    re-delivering the same trade never double-counts. The caller owns the
    transaction.

    Args:
        trades: Normalized trade records
        conn: Database connection

    Returns:
        Tuple of (trades inserted, order fills applied)
    """
    cursor = conn.cursor()
    inserted = 0
    fills = 0

    for trade in trades:
        cursor.execute(
            """
            INSERT OR IGNORE INTO trades (
                tx_hash, log_index, token_get, amount_get, token_give, amount_give,
                maker, taker, block_number, block_timestamp, timestamp_approximate,
                base_token, quote_token, side, price, base_amount, quote_amount
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                trade.tx_hash,
                trade.log_index,
                trade.token_get,
                trade.amount_get,
                trade.token_give,
                trade.amount_give,
                trade.maker,
                trade.taker,
                trade.block_number,
                trade.block_timestamp,
                1 if trade.timestamp_approximate else 0,
                trade.base_token,
                trade.quote_token,
                trade.side,
                float(trade.price),
                float(trade.base_amount),
                float(trade.quote_amount),
            ),
        )
        if cursor.rowcount != 1:
            continue

        inserted += 1
        if _apply_trade_fill(trade, cursor):
            fills += 1

    return inserted, fills


@beartype
def apply_cancels(cancels: list[CancelRecord], conn: Connection) -> int:
    """
    Mark cancelled orders inactive. The caller owns the transaction.

    Returns:
        Number of orders newly cancelled
    """
    if not cancels:
        return 0

    before = conn.total_changes
    conn.executemany(
        """
        UPDATE orders SET is_cancelled = 1, is_active = 0
        WHERE token_get = ? AND token_give = ? AND nonce = ? AND user_address = ?
          AND is_cancelled = 0
        """,
        [cancel.natural_key for cancel in cancels],
    )
    return conn.total_changes - before


@beartype
def expire_orders(block_number: int, conn: Connection) -> int:
    """
    Deactivate active orders whose expiry block has been reached.

    Returns:
        Number of orders deactivated
    """
    cursor = conn.execute(
        "UPDATE orders SET is_active = 0 WHERE is_active = 1 AND CAST(expires AS INTEGER) <= ?",
        (block_number,),
    )
    conn.commit()
    return cursor.rowcount


@beartype
def persist_batch(batch: ParsedBatch, conn: Connection) -> PersistResult:
    """
    Persist all records of one batch in a single transaction.

    Orders go first so that trades and cancels in the same batch find them.
    Any exception rolls the whole batch back before it propagates.

    Args:
        batch: Parsed records of one block range
        conn: Database connection

    Returns:
        PersistResult with row change counts

    Raises:
        sqlite3.Error: If any write fails
    """
    result = PersistResult()
    try:
        result.orders_inserted = upsert_orders(batch.orders, conn)
        result.trades_inserted, result.fills_applied = insert_trades(batch.trades, conn)
        result.cancels_applied = apply_cancels(batch.cancels, conn)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return result


@beartype
def read_checkpoint(stream: str, default_block: int, conn: Connection) -> int:
    """
    Get the last synced block of an event stream.

    Args:
        stream: Stream name ("orders", "trades", "cancels")
        default_block: Value returned when the stream has no checkpoint
        conn: Database connection

    Returns:
        Last synced block number
    """
    row = conn.execute(
        "SELECT last_synced_block FROM sync_status WHERE event_type = ?",
        (stream,),
    ).fetchone()
    return int(row["last_synced_block"]) if row else default_block


@beartype
def write_checkpoint(
    stream: str,
    block_number: int,
    conn: Connection,
    sync_time: datetime | None = None,
    new_events: int = 0,
    status: str = "syncing",
) -> None:
    """
    Record sync progress for an event stream.

    The stored block never moves backwards.

    Args:
        stream: Stream name
        block_number: Last block whose events are durably stored
        conn: Database connection
        sync_time: Time of the sync (defaults to now, UTC)
        new_events: Events persisted since the previous checkpoint
        status: Stream status ("syncing", "complete")
    """
    sync_time = sync_time or datetime.now(timezone.utc)
    conn.execute(
        """
        INSERT INTO sync_status (event_type, last_synced_block, last_sync_time, total_events, status)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(event_type) DO UPDATE SET
            last_synced_block = MAX(sync_status.last_synced_block, excluded.last_synced_block),
            last_sync_time = excluded.last_sync_time,
            total_events = sync_status.total_events + excluded.total_events,
            status = excluded.status
        """,
        (stream, block_number, sync_time.isoformat(), new_events, status),
    )
    conn.commit()


@beartype
def get_sync_status(conn: Connection | None = None) -> list[dict[str, object]]:
    """
    List checkpoint rows of all event streams.

    Returns:
        List of dicts with keys: event_type, last_synced_block, last_sync_time, total_events, status
    """
    should_close = conn is None
    if conn is None:
        conn = get_connection()

    try:
        rows = conn.execute(
            """
            SELECT event_type, last_synced_block, last_sync_time, total_events, status
            FROM sync_status ORDER BY event_type
            """,
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        if should_close:
            conn.close()


@beartype
def get_order_count(base_token: str | None = None, conn: Connection | None = None) -> int:
    """
    Get the number of stored orders.

    Args:
        base_token: Optional base token to filter by
        conn: Optional database connection (creates new if None)

    Returns:
        Total number of orders
    """
    should_close = conn is None
    if conn is None:
        conn = get_connection()

    try:
        if base_token:
            row = conn.execute(
                "SELECT COUNT(*) FROM orders WHERE base_token = ?", (base_token.lower(),),
            ).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) FROM orders").fetchone()
        return row[0] if row else 0
    finally:
        if should_close:
            conn.close()


@beartype
def get_trade_count(base_token: str | None = None, conn: Connection | None = None) -> int:
    """
    Get the number of stored trades.

    Args:
        base_token: Optional base token to filter by
        conn: Optional database connection (creates new if None)

    Returns:
        Total number of trades
    """
    should_close = conn is None
    if conn is None:
        conn = get_connection()

    try:
        if base_token:
            row = conn.execute(
                "SELECT COUNT(*) FROM trades WHERE base_token = ?", (base_token.lower(),),
            ).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) FROM trades").fetchone()
        return row[0] if row else 0
    finally:
        if should_close:
            conn.close()


@beartype
def get_trades_by_pair(
    base_token: str,
    quote_token: str,
    limit: int | None = None,
    conn: Connection | None = None,
) -> list[dict[str, object]]:
    """
    Retrieve the most recent trades of a pair.

    Args:
        base_token: Base token address
        quote_token: Quote token address
        limit: Optional limit on number of trades to return
        conn: Optional database connection (creates new if None)

    Returns:
        List of trade dictionaries, newest block first
    """
    should_close = conn is None
    if conn is None:
        conn = get_connection()

    try:
        query = (
            "SELECT * FROM trades WHERE base_token = ? AND quote_token = ? "
            "ORDER BY block_number DESC, log_index DESC"
        )
        params: tuple[object, ...] = (base_token.lower(), quote_token.lower())
        if limit:
            query += " LIMIT ?"
            params += (limit,)
        return [dict(row) for row in conn.execute(query, params).fetchall()]
    finally:
        if should_close:
            conn.close()


@beartype
def get_open_orders(
    base_token: str,
    quote_token: str,
    conn: Connection | None = None,
) -> list[dict[str, object]]:
    """
    Retrieve active, uncancelled orders of a pair, best price first per side.

    Returns:
        List of order dictionaries
    """
    should_close = conn is None
    if conn is None:
        conn = get_connection()

    try:
        rows = conn.execute(
            """
            SELECT * FROM orders
            WHERE base_token = ? AND quote_token = ? AND is_active = 1 AND is_cancelled = 0
            ORDER BY side,
                     CASE WHEN side = 'buy' THEN -price ELSE price END,
                     block_number
            """,
            (base_token.lower(), quote_token.lower()),
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        if should_close:
            conn.close()
