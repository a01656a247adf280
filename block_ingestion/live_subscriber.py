"""
Block Ingestion - Live Head Subscriber.

============================================================
RESPONSIBILITY
============================================================
Follows the finalized head of the ledger.

STATE MACHINE:
    STARTING -> CATCHING_UP -> LIVE

- First head: launch a detached catch-up over
  [max(last processed - safety margin, floor), head - 1]
  and go LIVE without waiting for it
- Every head: process that exact height, retrying with a
  fixed backoff until it succeeds
- Every Nth head: launch a detached reconciliation sweep over
  the trailing window
- A head that skips heights (e.g. after a reconnect) launches
  a detached catch-up for the skipped range

============================================================
CONCURRENCY
============================================================
Heads are processed one at a time, in notification order.
Catch-ups and sweeps run as background tasks next to it; they
only share the store, and all writes are idempotent.

============================================================
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Optional, Set

from chain_client.base import ChainClient
from core.exceptions import DecodingError

from block_ingestion.block_processor import BlockProcessor
from block_ingestion.catch_up import CatchUpCoordinator, read_with_retry


logger = logging.getLogger(__name__)


class SubscriberState(Enum):
    """Live subscriber lifecycle."""
    STARTING = "starting"
    CATCHING_UP = "catching_up"
    LIVE = "live"


class LiveHeadSubscriber:
    """
    Drives the Block Processor from finalized-head notifications.

    Args:
        chain: Chain client providing the head subscription
        store: Provides find_max_height()
        processor: Block processor
        coordinator: Catch-up coordinator for backlog and sweeps
        floor: Lowest height ever caught up
        safety_margin: Heights below the last processed one that the
            first catch-up re-verifies
        retry_backoff_seconds: Wait between attempts on a head
        reconcile_every: Sweep when height % reconcile_every == 0
            (0 disables sweeps)
        reconcile_window: Number of trailing heights a sweep covers
        sweep_max_attempts: Batch attempts per sweep
        decoding_alert_threshold: Consecutive decoding failures of one
            head before alerting at CRITICAL
    """

    def __init__(
        self,
        chain: ChainClient,
        store: Any,
        processor: BlockProcessor,
        coordinator: CatchUpCoordinator,
        floor: int = 1,
        safety_margin: int = 0,
        retry_backoff_seconds: float = 5.0,
        reconcile_every: int = 5,
        reconcile_window: int = 20,
        sweep_max_attempts: Optional[int] = 3,
        decoding_alert_threshold: int = 10,
    ) -> None:
        self._chain = chain
        self._store = store
        self._processor = processor
        self._coordinator = coordinator
        self._floor = floor
        self._safety_margin = safety_margin
        self._retry_backoff_seconds = retry_backoff_seconds
        self._reconcile_every = reconcile_every
        self._reconcile_window = reconcile_window
        self._sweep_max_attempts = sweep_max_attempts
        self._decoding_alert_threshold = decoding_alert_threshold

        self._state = SubscriberState.STARTING
        self._last_head: Optional[int] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> SubscriberState:
        return self._state

    @property
    def last_head(self) -> Optional[int]:
        return self._last_head

    @property
    def pending_tasks(self) -> Set[asyncio.Task]:
        return set(self._tasks)

    async def run(self) -> None:
        """Process finalized heads forever."""
        logger.info("Listening for finalized heads")
        async for height in self._chain.subscribe_finalized_heads():
            await self.on_finalized_head(height)

    async def on_finalized_head(self, height: int) -> None:
        """Handle one finalized-head notification."""
        if self._state is SubscriberState.STARTING:
            await self._start_catch_up(height)
        elif self._last_head is not None and height > self._last_head + 1:
            lo, hi = self._last_head + 1, height - 1
            logger.warning(f"Finalized heads skipped [{lo}, {hi}], filling gap")
            self._launch(self._coordinator.catch_up(lo, hi), f"gap-fill-{lo}-{hi}")

        await self._process_with_retry(height)
        if self._last_head is None or height > self._last_head:
            self._last_head = height

        if self._reconcile_every and height % self._reconcile_every == 0:
            lo = max(height - self._reconcile_window, self._floor)
            self._launch(
                self._coordinator.catch_up(
                    lo,
                    height,
                    swallow_missing=True,
                    max_attempts=self._sweep_max_attempts,
                ),
                f"sweep-{lo}-{height}",
            )

    async def drain(self) -> None:
        """Wait for every background catch-up and sweep launched so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _start_catch_up(self, head: int) -> None:
        self._state = SubscriberState.CATCHING_UP
        last_processed = await read_with_retry(
            self._store.find_max_height,
            "Reading last processed height",
            self._retry_backoff_seconds,
        )
        lo = max(last_processed - self._safety_margin, self._floor)
        hi = head - 1
        if hi >= lo:
            logger.info(f"First finalized head {head}, catching up [{lo}, {hi}]")
            self._launch(self._coordinator.catch_up(lo, hi), f"catch-up-{lo}-{hi}")
        self._state = SubscriberState.LIVE
        logger.info("Switched to live mode")

    async def _process_with_retry(self, height: int) -> None:
        attempt = 0
        decoding_streak = 0
        while True:
            attempt += 1
            try:
                await self._processor.process(height)
                return
            except DecodingError as e:
                decoding_streak += 1
                log = (
                    logger.critical
                    if decoding_streak >= self._decoding_alert_threshold
                    else logger.error
                )
                log(f"Decoding failed for block {height} (attempt {attempt}): {e}")
            except Exception as e:
                decoding_streak = 0
                logger.warning(
                    f"Block {height} attempt {attempt} failed: "
                    f"{type(e).__name__}: {e}"
                )
            await asyncio.sleep(self._retry_backoff_seconds)

    def _launch(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {error}",
                exc_info=error,
            )
