"""
Block Ingestion - Indexer Service.

============================================================
RESPONSIBILITY
============================================================
Wires the ingestion components together and owns the
process lifetime.

WORKFLOW
1. Read the last processed height and the finalized head
2. If the backlog is wider than one batch, catch up over
   [max(last - bootstrap margin, floor), head] first
3. Switch to live mode (LiveHeadSubscriber.run), forever

============================================================
"""

import logging
from typing import Any, Optional

from chain_client.base import ChainClient
from core.config import IndexerConfig

from block_ingestion.block_processor import BlockProcessor
from block_ingestion.catch_up import CatchUpCoordinator, CatchUpResult, read_with_retry
from block_ingestion.live_subscriber import LiveHeadSubscriber
from block_ingestion.normalizer import TypeNormalizer
from block_ingestion.records import BlockRecord


logger = logging.getLogger(__name__)


class IndexerService:
    """
    Bootstrap catch-up followed by live head following.

    Use from_config() to build the full component graph.
    """

    def __init__(
        self,
        chain: ChainClient,
        store: Any,
        processor: BlockProcessor,
        coordinator: CatchUpCoordinator,
        subscriber: LiveHeadSubscriber,
        floor: int = 1,
        bootstrap_margin: int = 0,
        retry_backoff_seconds: float = 5.0,
    ) -> None:
        self._chain = chain
        self._store = store
        self._processor = processor
        self._coordinator = coordinator
        self._subscriber = subscriber
        self._floor = floor
        self._bootstrap_margin = bootstrap_margin
        self._retry_backoff_seconds = retry_backoff_seconds

    @classmethod
    def from_config(cls, config: IndexerConfig, chain: ChainClient, store: Any) -> "IndexerService":
        """Build processor, coordinator and subscriber from configuration."""
        normalizer = TypeNormalizer(cid_aliases=config.cid_aliases)
        processor = BlockProcessor(
            chain,
            store,
            normalizer=normalizer,
            excluded_methods=config.excluded_methods,
        )
        coordinator = CatchUpCoordinator(
            store,
            processor,
            width=config.num_concurrent_jobs,
            retry_backoff_seconds=config.retry_backoff_seconds,
            decoding_alert_threshold=config.decoding_alert_threshold,
        )
        subscriber = LiveHeadSubscriber(
            chain,
            store,
            processor,
            coordinator,
            floor=config.start_block,
            safety_margin=config.live_safety_margin,
            retry_backoff_seconds=config.retry_backoff_seconds,
            reconcile_every=config.reconcile_every,
            reconcile_window=config.reconcile_window,
            sweep_max_attempts=config.sweep_max_attempts,
            decoding_alert_threshold=config.decoding_alert_threshold,
        )
        return cls(
            chain,
            store,
            processor,
            coordinator,
            subscriber,
            floor=config.start_block,
            bootstrap_margin=config.bootstrap_safety_margin,
            retry_backoff_seconds=config.retry_backoff_seconds,
        )

    @property
    def subscriber(self) -> LiveHeadSubscriber:
        return self._subscriber

    async def bootstrap(self) -> Optional[CatchUpResult]:
        """Catch up a wide backlog before going live."""
        last_processed = await read_with_retry(
            self._store.find_max_height,
            "Reading last processed height",
            self._retry_backoff_seconds,
        )
        head = await read_with_retry(
            self._chain.get_finalized_head_height,
            "Reading finalized head",
            self._retry_backoff_seconds,
        )
        logger.info(f"Last processed block {last_processed}, finalized head {head}")

        if head - last_processed <= self._coordinator.width:
            return None

        lo = max(last_processed - self._bootstrap_margin, self._floor)
        return await self._coordinator.catch_up(lo, head)

    async def run(self) -> None:
        """Bootstrap, then follow the finalized head forever."""
        await self.bootstrap()
        logger.info("Switching to live mode")
        await self._subscriber.run()

    async def catch_up(self, lo: int, hi: int) -> CatchUpResult:
        return await self._coordinator.catch_up(lo, hi)

    async def process(self, height: int) -> Optional[BlockRecord]:
        return await self._processor.process(height)
