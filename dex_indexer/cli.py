"""Command line entry point for the DEX event indexer."""

from __future__ import annotations

import argparse
import dataclasses
import sys
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from dex_indexer.database.connection import (
    database_exists,
    get_connection,
    initialize_database,
)
from dex_indexer.database.repository import get_sync_status, get_trades_by_pair
from dex_indexer.parser.blockchain_client import EthereumBlockchainClient
from dex_indexer.parser.blockchain_syncer import BlockchainSyncer, SyncSummary
from dex_indexer.parser.exchange_event_parser import ExchangeEventParser
from dex_indexer.parser.models import TokenRegistry
from dex_indexer.utils.config import (
    DEFAULT_TOKEN_DECIMALS,
    ETH_ADDRESS,
    IndexerConfig,
    load_config,
    parse_token_decimals,
    parse_tracked_pairs,
)
from dex_indexer.utils.errors import ConfigurationError, FetchError, SyncHaltedError
from dex_indexer.utils.logger import configure_log_dir, get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_SYNC_HALTED = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="dex-indexer",
        description="Index Order/Trade/Cancel events of an order-book exchange contract",
    )
    parser.add_argument("--db-path", type=Path, help="SQLite database file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Backfill (and optionally follow) exchange events")
    sync.add_argument("--rpc-url", action="append", help="Ethereum RPC endpoint (repeatable)")
    sync.add_argument("--contract-address", help="Exchange contract address")
    sync.add_argument("--start-block", type=int, help="First block to index")
    sync.add_argument("--end-block", type=int, help="Last block to index (chain head if omitted)")
    sync.add_argument("--batch-size", type=int, help="Blocks per log query")
    sync.add_argument("--batch-delay", type=float, help="Seconds to wait between batches")
    sync.add_argument("--retry-delay", type=float, help="Seconds to wait before retrying a batch")
    sync.add_argument(
        "--max-retries",
        type=int,
        help="Halt after this many failed retries of one batch (unbounded if omitted)",
    )
    sync.add_argument(
        "--token",
        action="append",
        metavar="ADDRESS:DECIMALS",
        help="Token decimals (repeatable)",
    )
    sync.add_argument(
        "--pair",
        action="append",
        metavar="BASE:QUOTE",
        help="Tracked trading pair (repeatable; every known token vs ETH if omitted)",
    )
    sync.add_argument("--follow", action="store_true", help="Keep following new blocks")
    sync.add_argument("--poll-interval", type=float, help="Seconds between chain head polls")

    subparsers.add_parser("status", help="Show sync checkpoints")

    trades = subparsers.add_parser("trades", help="Show recent trades of a pair")
    trades.add_argument("base_token", help="Base token address")
    trades.add_argument("--quote", default=ETH_ADDRESS, help="Quote token address (default ETH)")
    trades.add_argument("--limit", type=int, default=20, help="Number of trades to show")

    return parser


def apply_overrides(config: IndexerConfig, args: argparse.Namespace) -> IndexerConfig:
    """
    Apply command line flags on top of environment settings.

    Args:
        config: Settings loaded from the environment
        args: Parsed command line arguments

    Returns:
        New IndexerConfig with the flags applied
    """
    overrides: dict[str, object] = {}
    simple_flags = {
        "db_path": "db_path",
        "contract_address": "contract_address",
        "start_block": "start_block",
        "end_block": "end_block",
        "batch_size": "batch_size",
        "batch_delay": "batch_delay",
        "retry_delay": "retry_delay",
        "max_retries": "max_retries",
        "poll_interval": "poll_interval",
    }
    for flag, field_name in simple_flags.items():
        value = getattr(args, flag, None)
        if value is not None:
            overrides[field_name] = value

    if getattr(args, "rpc_url", None):
        overrides["rpc_endpoints"] = list(args.rpc_url)
    if getattr(args, "token", None):
        overrides["token_decimals"] = {
            **config.token_decimals,
            **parse_token_decimals(list(args.token)),
        }
    if getattr(args, "pair", None):
        overrides["tracked_pairs"] = parse_tracked_pairs(list(args.pair))
    elif getattr(args, "token", None) and config.pairs_defaulted:
        # Rebuild the default pairs so that added tokens are tracked too
        overrides["tracked_pairs"] = []
    if getattr(args, "follow", False):
        overrides["follow"] = True

    return dataclasses.replace(config, **overrides)


def print_summary(summary: SyncSummary) -> None:
    """Print the final sync counts for the operator."""
    print("\n" + "=" * 50)
    print("Sync Summary")
    print("=" * 50)
    print(f"Blocks processed:   {summary.blocks_processed} in {summary.batches} batches")
    print(f"Last synced block:  {summary.last_synced_block}")
    print(f"Orders seen/saved:  {summary.orders_seen}/{summary.orders_saved}")
    print(f"Trades seen/saved:  {summary.trades_seen}/{summary.trades_saved}")
    print(f"Cancels seen/applied: {summary.cancels_seen}/{summary.cancels_applied}")
    print(f"Order fills applied: {summary.fills_applied}")
    print(f"Anomalies:          {summary.anomalies}")
    print(f"Retries:            {summary.retries}")


def run_sync(config: IndexerConfig) -> int:
    """
    Run the indexer with validated settings.

    Returns:
        Process exit code
    """
    conn = get_connection(config.db_path)
    try:
        initialize_database(conn)

        try:
            client = EthereumBlockchainClient(
                rpc_endpoints=config.rpc_endpoints,
                rate_limit=config.rpc_rate_limit,
                timeout=config.rpc_timeout,
                max_block_range=config.batch_size,
            )
        except FetchError as e:
            print(f"✗ Cannot connect to Ethereum: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR

        registry = TokenRegistry(
            decimals=config.token_decimals,
            pairs=config.tracked_pairs,
            default_decimals=DEFAULT_TOKEN_DECIMALS,
        )
        with client:
            syncer = BlockchainSyncer(
                config=config,
                blockchain_client=client,
                event_parser=ExchangeEventParser(client, registry),
                conn=conn,
            )
            try:
                summary = syncer.run()
            except SyncHaltedError as e:
                logger.error(str(e))
                print(f"\n✗ {e}", file=sys.stderr)
                print_summary(syncer.summary())
                return EXIT_SYNC_HALTED
            except KeyboardInterrupt:
                print("\nInterrupted, progress is saved up to the last checkpoint.")
                print_summary(syncer.summary())
                return EXIT_INTERRUPTED

        print_summary(summary)
        print("\n✓ Sync complete!")
        return EXIT_OK
    finally:
        conn.close()


def show_status(db_path: Path) -> int:
    """Print the checkpoint of every event stream."""
    if not database_exists(db_path):
        print(f"No database at {db_path}, nothing synced yet.")
        return EXIT_OK

    conn = get_connection(db_path)
    try:
        initialize_database(conn)
        rows = get_sync_status(conn)
    finally:
        conn.close()

    if not rows:
        print("No sync progress recorded yet.")
        return EXIT_OK

    print(f"{'Stream':<10} {'Last Block':<12} {'Events':<10} {'Status':<10} {'Last Sync':<32}")
    print("-" * 76)
    for row in rows:
        print(
            f"{row['event_type']:<10} {row['last_synced_block']:<12} "
            f"{row['total_events']:<10} {row['status']:<10} {row['last_sync_time'] or '':<32}",
        )
    return EXIT_OK


def show_trades(db_path: Path, base_token: str, quote_token: str, limit: int) -> int:
    """Print the most recent trades of a pair."""
    if not database_exists(db_path):
        print(f"No database at {db_path}, nothing synced yet.")
        return EXIT_OK

    conn = get_connection(db_path)
    try:
        initialize_database(conn)
        trades = get_trades_by_pair(base_token, quote_token, limit=limit, conn=conn)
    finally:
        conn.close()

    if not trades:
        print("No trades found.")
        return EXIT_OK

    print(f"{'Date':<20} {'Side':<5} {'Price':<16} {'Amount':<18} {'Block':<10}")
    print("-" * 72)
    for trade in trades:
        timestamp = trade["block_timestamp"]
        date_str = (
            datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            if timestamp is not None
            else "unknown"
        )
        if trade["timestamp_approximate"]:
            date_str += "~"
        print(
            f"{date_str:<20} {trade['side']:<5} {trade['price']:<16.10f} "
            f"{trade['base_amount']:<18.6f} {trade['block_number']:<10}",
        )
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """
    Run the command line interface.

    Args:
        argv: Arguments (uses sys.argv if None)

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    load_dotenv()
    configure_log_dir()

    try:
        config = apply_overrides(load_config(), args)
        if args.command == "sync":
            config.validate()
    except ConfigurationError as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if config.db_path is None:
        print("✗ Configuration error: no database path configured", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if args.command == "sync":
        return run_sync(config)
    if args.command == "status":
        return show_status(config.db_path)
    return show_trades(config.db_path, args.base_token, args.quote, args.limit)


if __name__ == "__main__":
    sys.exit(main())
