"""Resumable block-range sync of exchange events into the database."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlite3 import Connection

from beartype import beartype

from dex_indexer.database.repository import (
    CANCELS_STREAM,
    ORDERS_STREAM,
    SYNC_STREAMS,
    TRADES_STREAM,
    PersistResult,
    expire_orders,
    persist_batch,
    read_checkpoint,
    write_checkpoint,
)
from dex_indexer.parser.blockchain_client import EthereumBlockchainClient
from dex_indexer.parser.exchange_event_parser import (
    EXCHANGE_EVENT_SIGNATURES,
    ExchangeEventParser,
)
from dex_indexer.utils.config import IndexerConfig
from dex_indexer.utils.errors import FetchError, SyncHaltedError
from dex_indexer.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SyncSummary:
    """Totals of one indexer run."""

    batches: int
    blocks_processed: int
    orders_seen: int
    trades_seen: int
    cancels_seen: int
    orders_saved: int
    trades_saved: int
    fills_applied: int
    cancels_applied: int
    anomalies: int
    retries: int
    last_synced_block: int | None
    elapsed_seconds: float


class BlockchainSyncer:
    """
    Drives fetch -> parse -> persist -> checkpoint cycles over a block range.

    Blocks are processed strictly in order, one batch at a time. A batch only
    advances the checkpoints after its rows are committed; a failing batch is
    retried on the same range after ``retry_delay`` until it succeeds or the
    optional ``max_retries`` budget is spent.
    """

    def __init__(
        self,
        config: IndexerConfig,
        blockchain_client: EthereumBlockchainClient,
        event_parser: ExchangeEventParser,
        conn: Connection,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize blockchain syncer.

        Args:
            config: Indexer settings
            blockchain_client: Client used for log queries and chain head lookups
            event_parser: Parser turning logs into pair records
            conn: Database connection (single writer)
            sleep: Sleep function, replaceable in tests
        """
        self.config = config
        self.blockchain_client = blockchain_client
        self.event_parser = event_parser
        self.conn = conn
        self.sleep = sleep
        self._stopped = False
        self.last_synced_block: int | None = None

        # Statistics
        self.stats = {
            "batches": 0,
            "blocks_processed": 0,
            "orders_seen": 0,
            "trades_seen": 0,
            "cancels_seen": 0,
            "orders_saved": 0,
            "trades_saved": 0,
            "fills_applied": 0,
            "cancels_applied": 0,
            "anomalies": 0,
            "retries": 0,
        }
        self.start_time = time.time()

    @beartype
    def resume_block(self) -> int:
        """
        First block that still needs processing.

        The slowest stream decides, so every stream is complete up to the
        returned block minus one.
        """
        default = self.config.start_block - 1
        last_synced = min(
            read_checkpoint(stream, default, self.conn) for stream in SYNC_STREAMS
        )
        return max(last_synced + 1, self.config.start_block)

    @beartype
    def chain_head(self) -> int:
        """Latest block considered final enough to index."""
        return self.blockchain_client.get_current_block_number() - self.config.confirmations

    @beartype
    def process_batch(self, from_block: int, to_block: int) -> PersistResult:
        """
        Run one fetch -> parse -> persist -> checkpoint cycle.

        Args:
            from_block: First block of the batch
            to_block: Last block of the batch (inclusive)

        Returns:
            PersistResult of the batch

        Raises:
            Exception: Any fetch or persistence failure; checkpoints are untouched
        """
        logs = self.blockchain_client.get_events(
            contract_address=self.config.contract_address,
            event_signatures=EXCHANGE_EVENT_SIGNATURES,
            from_block=from_block,
            to_block=to_block,
        )
        batch = self.event_parser.parse_logs(logs)
        result = persist_batch(batch, self.conn)
        expired = expire_orders(to_block, self.conn)

        # Checkpoints only after the batch is committed
        sync_time = datetime.now(timezone.utc)
        write_checkpoint(ORDERS_STREAM, to_block, self.conn, sync_time, result.orders_inserted)
        write_checkpoint(TRADES_STREAM, to_block, self.conn, sync_time, result.trades_inserted)
        write_checkpoint(CANCELS_STREAM, to_block, self.conn, sync_time, result.cancels_applied)
        self.last_synced_block = to_block

        self.stats["batches"] += 1
        self.stats["blocks_processed"] += to_block - from_block + 1
        self.stats["orders_seen"] += batch.orders_seen
        self.stats["trades_seen"] += batch.trades_seen
        self.stats["cancels_seen"] += batch.cancels_seen
        self.stats["orders_saved"] += result.orders_inserted
        self.stats["trades_saved"] += result.trades_inserted
        self.stats["fills_applied"] += result.fills_applied
        self.stats["cancels_applied"] += result.cancels_applied
        self.stats["anomalies"] += batch.anomalies

        logger.info(
            f"Blocks {from_block}-{to_block}: found {batch.orders_seen} orders, "
            f"{batch.trades_seen} trades, {batch.cancels_seen} cancels; "
            f"saved {result.orders_inserted} orders, {result.trades_inserted} trades, "
            f"applied {result.fills_applied} fills, {result.cancels_applied} cancels"
            + (f", expired {expired} orders" if expired else ""),
        )
        return result

    def _process_with_retry(self, from_block: int, to_block: int) -> PersistResult:
        """Process a batch, retrying the same range until it succeeds."""
        failures = 0
        while True:
            try:
                return self.process_batch(from_block, to_block)
            except Exception as e:
                failures += 1
                self.stats["retries"] += 1
                logger.error(
                    f"Error processing blocks {from_block}-{to_block} "
                    f"(failure {failures}): {e}",
                )
                max_retries = self.config.max_retries
                if max_retries is not None and failures > max_retries:
                    raise SyncHaltedError(from_block, to_block, failures) from e
                logger.info(f"Retrying blocks {from_block}-{to_block} in {self.config.retry_delay}s")
                self.sleep(self.config.retry_delay)

    @beartype
    def sync_range(self, from_block: int, to_block: int) -> None:
        """
        Process an inclusive block range in batches of ``batch_size`` blocks.

        Args:
            from_block: First block to process
            to_block: Last block to process
        """
        current = from_block
        while current <= to_block and not self._stopped:
            batch_end = min(current + self.config.batch_size - 1, to_block)
            self._process_with_retry(current, batch_end)
            logger.log_progress(batch_end, from_block, to_block)
            current = batch_end + 1

            # Rate limit courtesy to the RPC provider
            self.sleep(self.config.batch_delay)

    @beartype
    def run_backfill(self, end_block: int | None = None) -> int:
        """
        Catch up from the resume point to the configured end block.

        Args:
            end_block: Last block to process (config end block or chain head if None)

        Returns:
            The end block of the backfill
        """
        if end_block is None:
            end_block = self.config.end_block
        if end_block is None:
            end_block = self.chain_head()
            logger.info(f"Using chain head as end block: {end_block}")

        start_block = self.resume_block()
        if start_block > end_block:
            logger.info(f"Already synced through block {start_block - 1}, nothing to backfill")
            return end_block

        logger.info(
            f"Backfilling blocks {start_block} to {end_block} "
            f"({end_block - start_block + 1} blocks, batch size {self.config.batch_size})",
        )
        self.sync_range(start_block, end_block)
        return end_block

    @beartype
    def run_tail(self, max_polls: int | None = None) -> None:
        """
        Follow the chain head, indexing new blocks as they appear.

        Args:
            max_polls: Stop after this many polls (runs until stop() if None)
        """
        polls = 0
        logger.info(f"Following chain head every {self.config.poll_interval}s")
        while not self._stopped:
            try:
                head = self.chain_head()
            except FetchError as e:
                logger.error(f"Failed to read chain head: {e}")
                self.sleep(self.config.retry_delay)
                continue

            start_block = self.resume_block()
            if head >= start_block:
                self.sync_range(start_block, head)
            else:
                logger.debug(f"No new blocks (head {head})")

            polls += 1
            if max_polls is not None and polls >= max_polls:
                break
            self.sleep(self.config.poll_interval)

    @beartype
    def run(self, max_polls: int | None = None) -> SyncSummary:
        """
        Backfill, then follow the chain head when configured to.

        Args:
            max_polls: Passed to run_tail in follow mode

        Returns:
            SyncSummary with totals of this run
        """
        logger.info("Starting exchange event sync")
        end_block = self.run_backfill()

        if self.config.follow:
            self.run_tail(max_polls=max_polls)
        elif not self._stopped:
            for stream in SYNC_STREAMS:
                write_checkpoint(stream, end_block, self.conn, status="complete")

        summary = self.summary()
        self._log_statistics(summary)
        return summary

    def stop(self) -> None:
        """Ask the syncer to stop after the current batch."""
        self._stopped = True

    def summary(self) -> SyncSummary:
        """Current totals as a SyncSummary."""
        return SyncSummary(
            **self.stats,
            last_synced_block=self.last_synced_block,
            elapsed_seconds=time.time() - self.start_time,
        )

    def _log_statistics(self, summary: SyncSummary) -> None:
        """
        Log sync statistics.

        Args:
            summary: Totals to log
        """
        logger.info("=== Sync Statistics ===")
        logger.info(f"Batches: {summary.batches}")
        logger.info(f"Blocks processed: {summary.blocks_processed}")
        logger.info(f"Orders seen: {summary.orders_seen}, saved: {summary.orders_saved}")
        logger.info(f"Trades seen: {summary.trades_seen}, saved: {summary.trades_saved}")
        logger.info(f"Cancels seen: {summary.cancels_seen}, applied: {summary.cancels_applied}")
        logger.info(f"Order fills applied: {summary.fills_applied}")
        logger.info(f"Anomalies: {summary.anomalies}")
        logger.info(f"Retries: {summary.retries}")
        logger.info(f"Total time: {summary.elapsed_seconds:.2f} seconds")

        if summary.elapsed_seconds > 0:
            blocks_per_sec = summary.blocks_processed / summary.elapsed_seconds
            logger.record_metric("blocks_per_second", blocks_per_sec)
            logger.info(f"Performance: {blocks_per_sec:.2f} blocks/sec")

        logger.info("=======================")
        logger.log_summary()
