"""Database schema definitions for exchange orders, trades and sync progress."""

from __future__ import annotations

# Raw on-chain amounts are TEXT so uint256 values never pass through floats.
# Derived price/amount columns are REAL for querying only.
ORDERS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL DEFAULT 0,
    token_get TEXT NOT NULL,
    amount_get TEXT NOT NULL,
    token_give TEXT NOT NULL,
    amount_give TEXT NOT NULL,
    expires TEXT NOT NULL,
    nonce TEXT NOT NULL,
    user_address TEXT NOT NULL,
    block_number INTEGER NOT NULL DEFAULT 0,
    base_token TEXT NOT NULL,
    quote_token TEXT NOT NULL,
    side TEXT NOT NULL CHECK (side IN ('buy', 'sell')),
    price REAL,
    base_amount REAL,
    quote_amount REAL,
    is_active INTEGER NOT NULL DEFAULT 1,
    amount_filled TEXT NOT NULL DEFAULT '0',
    is_cancelled INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (token_get, token_give, nonce, user_address)
)
"""

TRADES_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL DEFAULT 0,
    token_get TEXT NOT NULL,
    amount_get TEXT NOT NULL,
    token_give TEXT NOT NULL,
    amount_give TEXT NOT NULL,
    maker TEXT NOT NULL,
    taker TEXT NOT NULL,
    block_number INTEGER NOT NULL,
    block_timestamp INTEGER,
    timestamp_approximate INTEGER NOT NULL DEFAULT 0,
    base_token TEXT NOT NULL,
    quote_token TEXT NOT NULL,
    side TEXT NOT NULL CHECK (side IN ('buy', 'sell')),
    price REAL,
    base_amount REAL,
    quote_amount REAL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (tx_hash, token_get, amount_get, maker)
)
"""

SYNC_STATUS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_status (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL UNIQUE,
    last_synced_block INTEGER NOT NULL DEFAULT 0,
    last_sync_time TIMESTAMP,
    total_events INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'idle'
)
"""

TABLE_SCHEMAS = [ORDERS_TABLE_SCHEMA, TRADES_TABLE_SCHEMA, SYNC_STATUS_TABLE_SCHEMA]

# Indexes for the read paths of downstream consumers
INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_orders_pair ON orders(base_token, quote_token)",
    "CREATE INDEX IF NOT EXISTS idx_orders_active ON orders(is_active)",
    "CREATE INDEX IF NOT EXISTS idx_orders_block ON orders(block_number)",
    "CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_address)",
    "CREATE INDEX IF NOT EXISTS idx_trades_pair ON trades(base_token, quote_token)",
    "CREATE INDEX IF NOT EXISTS idx_trades_block ON trades(block_number)",
    "CREATE INDEX IF NOT EXISTS idx_trades_timestamp ON trades(block_timestamp)",
]
