"""
Block Ingestion - Catch-Up Coordinator.

============================================================
RESPONSIBILITY
============================================================
Makes sure every height in a range has a stored Block record.

1. Ask the store which heights in [lo, hi] are processed
2. The complement, ascending, is the work list
3. Split the work list into batches of at most `width`
4. Process each batch concurrently; if any member fails,
   back off and retry the WHOLE batch
5. Move on only once the batch fully succeeds

============================================================
RETRY POLICY
============================================================
- Catch-up: unbounded. A batch or gap query that keeps
  failing stalls catch-up instead of dropping heights.
- Reconciliation sweeps: bounded by max_attempts (per gap
  query and per batch); the next sweep covers the same
  window again.
- Decoding failures are logged at ERROR, and at CRITICAL once
  the same batch has failed to decode decoding_alert_threshold
  times in a row.

============================================================
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from core.exceptions import DecodingError

from block_ingestion.block_processor import BlockProcessor


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CatchUpResult:
    """Outcome of one catch-up run."""

    lo: int
    hi: int
    unprocessed: int = 0
    processed: int = 0
    skipped: int = 0
    batches: int = 0
    attempts: int = 0
    completed: bool = True
    duration_seconds: float = 0.0


def partition(heights: Sequence[int], width: int) -> List[List[int]]:
    """Split heights into consecutive batches of at most width members."""
    if width < 1:
        raise ValueError(f"Batch width must be positive, got {width}")
    return [list(heights[i:i + width]) for i in range(0, len(heights), width)]


async def read_with_retry(
    read: Callable[[], Awaitable[T]],
    description: str,
    backoff_seconds: float,
    max_attempts: Optional[int] = None,
) -> T:
    """
    Await read() until it succeeds, sleeping backoff_seconds between attempts.

    Args:
        read: Zero-argument coroutine function, e.g. store.find_max_height
        description: What is being read, for log lines
        backoff_seconds: Wait between attempts
        max_attempts: Re-raise the last error after this many attempts
            (None retries forever)
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await read()
        except Exception as e:
            if max_attempts is not None and attempt >= max_attempts:
                raise
            log = logger.error if isinstance(e, DecodingError) else logger.warning
            log(
                f"{description} attempt {attempt} failed: {type(e).__name__}: {e}; "
                f"retrying in {backoff_seconds}s"
            )
        await asyncio.sleep(backoff_seconds)


class CatchUpCoordinator:
    """
    Drives the Block Processor over unprocessed heights in batches.

    Args:
        store: Provides find_heights_in_range(lo, hi)
        processor: Block processor
        width: Maximum number of heights processed concurrently
        retry_backoff_seconds: Wait before retrying a failed batch
        decoding_alert_threshold: Consecutive decoding failures of one
            batch before alerting at CRITICAL
    """

    def __init__(
        self,
        store: Any,
        processor: BlockProcessor,
        width: int = 5000,
        retry_backoff_seconds: float = 5.0,
        decoding_alert_threshold: int = 10,
    ) -> None:
        if width < 1:
            raise ValueError(f"Batch width must be positive, got {width}")
        self._store = store
        self._processor = processor
        self._width = width
        self._retry_backoff_seconds = retry_backoff_seconds
        self._decoding_alert_threshold = decoding_alert_threshold

    @property
    def width(self) -> int:
        return self._width

    async def find_unprocessed_heights(self, lo: int, hi: int) -> List[int]:
        """Heights in [lo, hi] without a stored Block record, ascending."""
        if hi < lo:
            return []
        processed = await self._store.find_heights_in_range(lo, hi)
        return [height for height in range(lo, hi + 1) if height not in processed]

    async def catch_up(
        self,
        lo: int,
        hi: int,
        swallow_missing: bool = False,
        max_attempts: Optional[int] = None,
    ) -> CatchUpResult:
        """
        Process every unprocessed height in [lo, hi].

        Args:
            lo: First height (inclusive)
            hi: Last height (inclusive)
            swallow_missing: Treat not-yet-available heights as done
            max_attempts: Give up on a batch after this many attempts
                (None retries forever)

        Returns:
            CatchUpResult; completed is False only when max_attempts
            was exhausted
        """
        started = time.monotonic()
        result = CatchUpResult(lo=lo, hi=hi)

        try:
            heights = await read_with_retry(
                lambda: self.find_unprocessed_heights(lo, hi),
                f"Gap query [{lo}, {hi}]",
                self._retry_backoff_seconds,
                max_attempts,
            )
        except Exception as e:
            # Only reachable when max_attempts bounds the run
            logger.warning(
                f"Giving up on catch-up [{lo}, {hi}] after {max_attempts} gap queries: "
                f"{type(e).__name__}: {e}"
            )
            result.completed = False
            result.duration_seconds = time.monotonic() - started
            return result

        result.unprocessed = len(heights)
        if not heights:
            logger.debug(f"Nothing to catch up in [{lo}, {hi}]")
            return result

        logger.info(
            f"Catching up {len(heights)} blocks in [{lo}, {hi}] "
            f"(width={self._width})"
        )

        for batch in partition(heights, self._width):
            result.batches += 1
            done, attempts, skipped = await self._run_batch(
                batch, swallow_missing, max_attempts
            )
            result.attempts += attempts
            if not done:
                result.completed = False
                break
            result.processed += len(batch) - skipped
            result.skipped += skipped

        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"Catch-up [{lo}, {hi}] finished: processed={result.processed} "
            f"skipped={result.skipped} batches={result.batches} "
            f"completed={result.completed} in {result.duration_seconds:.2f}s"
        )
        return result

    async def _run_batch(
        self,
        batch: List[int],
        swallow_missing: bool,
        max_attempts: Optional[int],
    ) -> Tuple[bool, int, int]:
        """Returns (succeeded, attempts, heights skipped as missing)."""
        label = f"{batch[0]} - {batch[-1]}"
        attempt = 0
        decoding_streak = 0

        while True:
            attempt += 1
            started = time.monotonic()
            results = await asyncio.gather(
                *(self._processor.process(h, swallow_missing=swallow_missing) for h in batch),
                return_exceptions=True,
            )

            failures = []
            for height, outcome in zip(batch, results):
                if isinstance(outcome, Exception):
                    failures.append((height, outcome))
                elif isinstance(outcome, BaseException):
                    raise outcome

            if not failures:
                skipped = sum(1 for outcome in results if outcome is None)
                logger.info(
                    f"Processed blocks {label} in {time.monotonic() - started:.2f}s"
                )
                return True, attempt, skipped

            decoding_failures = [
                (h, e) for h, e in failures if isinstance(e, DecodingError)
            ]
            if decoding_failures:
                decoding_streak += 1
                height, error = decoding_failures[0]
                log = (
                    logger.critical
                    if decoding_streak >= self._decoding_alert_threshold
                    else logger.error
                )
                log(
                    f"Decoding failed for {len(decoding_failures)} blocks in {label} "
                    f"(first: {height}: {error}), streak={decoding_streak}"
                )
            else:
                decoding_streak = 0

            height, error = failures[0]
            logger.warning(
                f"Batch {label} attempt {attempt} failed for {len(failures)} blocks "
                f"(first: {height}: {type(error).__name__}: {error})"
            )

            if max_attempts is not None and attempt >= max_attempts:
                logger.warning(f"Giving up on batch {label} after {attempt} attempts")
                return False, attempt, 0

            logger.warning(f"Retrying batch {label} in {self._retry_backoff_seconds}s")
            await asyncio.sleep(self._retry_backoff_seconds)
