"""
Storage Package.

This package manages ledger persistence.
Every processed block is written here exactly once.

Modules:
- engine: Async engine construction
- block_store: Idempotent insert-or-skip store
- models/: ORM models for blocks, extrinsics, events
"""

from storage.block_store import BlockStore
from storage.engine import create_store_engine, dumps_document

__all__ = [
    "BlockStore",
    "create_store_engine",
    "dumps_document",
]
