"""
Chain Client - Type Definitions.

============================================================
PURPOSE
============================================================
Decoded, chain-agnostic shapes handed from the Chain Client to
the ingestion pipeline.

- Names follow the ledger's human-readable convention:
  sections in lowerCamelCase ("encointerCeremonies"),
  call methods in lowerCamelCase ("attestAttendees"),
  event methods in PascalCase ("ExtrinsicSuccess")
- Values are loosely typed trees (dict / list / scalars)
  and still need normalization

============================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class StorageField:
    """One storage item read as part of a batched state query."""

    pallet: str
    storage_function: str


@dataclass
class DecodedExtrinsic:
    """An extrinsic decoded to its human-readable form."""

    section: str
    method: str
    args: Dict[str, Any] = field(default_factory=dict)
    signer: Optional[str] = None
    nonce: Optional[int] = None
    tip: Optional[int] = None
    extrinsic_hash: Optional[str] = None

    @property
    def is_signed(self) -> bool:
        return self.signer is not None


@dataclass
class DecodedEvent:
    """
    An event record from the block's event list.

    phase_index is the position of the extrinsic the event was
    applied during, or None for initialization/finalization events.
    """

    section: str
    method: str
    data: Any = None
    phase_index: Optional[int] = None
    topics: List[str] = field(default_factory=list)

    def applied_during(self, extrinsic_index: int) -> bool:
        return self.phase_index is not None and self.phase_index == extrinsic_index
