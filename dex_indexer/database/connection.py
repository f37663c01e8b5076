"""Database connection management and initialization."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from sqlite3 import Connection

from beartype import beartype

from dex_indexer.database.models import INDEXES, TABLE_SCHEMAS
from dex_indexer.utils.config import DB_PATH


@beartype
def get_connection(db_path: Path | str = DB_PATH) -> Connection:
    """Create and return a database connection."""
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


@beartype
def initialize_database(conn: Connection | None = None, db_path: Path | str = DB_PATH) -> None:
    """
    Initialize the database with required tables and indexes.

    Args:
        conn: Optional database connection (opens db_path if None)
        db_path: Database file used when no connection is given
    """
    should_close = conn is None
    if conn is None:
        conn = get_connection(db_path)

    try:
        cursor = conn.cursor()

        for table_sql in TABLE_SCHEMAS:
            cursor.execute(table_sql)

        for index_sql in INDEXES:
            cursor.execute(index_sql)

        conn.commit()
    finally:
        if should_close:
            conn.close()


@beartype
def database_exists(db_path: Path | str = DB_PATH) -> bool:
    """Check if the database file exists."""
    return Path(db_path).exists()
