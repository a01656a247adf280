"""
Block Ingestion - Record Types.

============================================================
PURPOSE
============================================================
The three record kinds written to the store, one per logical
collection.

IDENTITIES:
- Block:      ledger block hash (one per height)
- Extrinsic:  "<height>-<position>"
- Event:      "<extrinsic id>-<event index>"

A stored Block record is the completion marker for its height.
Records are written once and never mutated afterwards.

============================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


BLOCKS = "blocks"
EXTRINSICS = "extrinsics"
EVENTS = "events"

COLLECTIONS = (BLOCKS, EXTRINSICS, EVENTS)


def extrinsic_id(height: int, position: int) -> str:
    return f"{height}-{position}"


def event_id(owner_id: str, event_index: int) -> str:
    return f"{owner_id}-{event_index}"


@dataclass
class BlockRecord:
    """Block-level record and completion marker."""

    block_hash: str
    height: int
    timestamp: Optional[int] = None
    cindex: Optional[int] = None
    phase: Optional[str] = None
    next_phase_timestamp: Optional[int] = None
    reputation_lifetime: Optional[int] = None
    spec_version: Optional[int] = None
    author: Optional[str] = None

    @property
    def record_id(self) -> str:
        return self.block_hash

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.record_id,
            "height": self.height,
            "timestamp": self.timestamp,
            "cindex": self.cindex,
            "phase": self.phase,
            "next_phase_timestamp": self.next_phase_timestamp,
            "reputation_lifetime": self.reputation_lifetime,
            "spec_version": self.spec_version,
            "author": self.author,
        }


@dataclass
class ExtrinsicRecord:
    """A submitted action within a block, with normalized arguments."""

    record_id: str
    height: int
    block_hash: str
    index: int
    section: str
    method: str
    args: Dict[str, Any] = field(default_factory=dict)
    success: bool = False
    timestamp: Optional[int] = None
    signer: Optional[str] = None
    nonce: Optional[int] = None
    tip: Optional[int] = None
    extrinsic_hash: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.record_id,
            "block_number": self.height,
            "block_hash": self.block_hash,
            "index": self.index,
            "section": self.section,
            "method": self.method,
            "args": self.args,
            "success": self.success,
            "timestamp": self.timestamp,
            "signer": self.signer,
            "is_signed": self.signer is not None,
            "nonce": self.nonce,
            "tip": self.tip,
            "extrinsic_hash": self.extrinsic_hash,
        }


@dataclass
class EventRecord:
    """An event correlated to the extrinsic that emitted it."""

    record_id: str
    extrinsic_id: str
    height: int
    block_hash: str
    section: str
    method: str
    data: Any = None
    timestamp: Optional[int] = None
    topics: List[str] = field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.record_id,
            "extrinsic_id": self.extrinsic_id,
            "block_number": self.height,
            "block_hash": self.block_hash,
            "section": self.section,
            "method": self.method,
            "data": self.data,
            "timestamp": self.timestamp,
            "topics": self.topics,
        }
