"""
Block Ingestion Package.

The ingestion pipeline: ledger heights in, stored records out.

Components:
- normalizer: Type Normalizer for decoded values
- records: Block / Extrinsic / Event record types
- block_processor: One height -> stored records
- catch_up: Gap-aware batched catch-up with retry
- live_subscriber: Finalized-head following and sweeps
- service: Bootstrap + live wiring
"""

from block_ingestion.block_processor import BlockProcessor, correlate_events
from block_ingestion.catch_up import CatchUpCoordinator, CatchUpResult
from block_ingestion.live_subscriber import LiveHeadSubscriber, SubscriberState
from block_ingestion.normalizer import TypeNormalizer, normalize
from block_ingestion.records import (
    BLOCKS,
    COLLECTIONS,
    EVENTS,
    EXTRINSICS,
    BlockRecord,
    EventRecord,
    ExtrinsicRecord,
)
from block_ingestion.service import IndexerService


__all__ = [
    "BlockProcessor",
    "correlate_events",
    "CatchUpCoordinator",
    "CatchUpResult",
    "LiveHeadSubscriber",
    "SubscriberState",
    "TypeNormalizer",
    "normalize",
    "BLOCKS",
    "COLLECTIONS",
    "EVENTS",
    "EXTRINSICS",
    "BlockRecord",
    "EventRecord",
    "ExtrinsicRecord",
    "IndexerService",
]
