"""
Chain Client - Abstract Interface.

============================================================
PURPOSE
============================================================
The boundary between the ingestion pipeline and the ledger.
The pipeline never talks to a node directly.

All clients MUST:
- Raise BlockNotYetAvailable for heights that do not exist yet
- Raise a TransientIOError subclass for connectivity failures
- Raise DecodingError for structures they cannot decode
- Return decoded values, never raw SCALE bytes

============================================================
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, List, Optional, Sequence

from .types import DecodedEvent, DecodedExtrinsic, StorageField


class ChainClient(ABC):
    """Abstract base class for ledger clients."""

    @abstractmethod
    async def resolve_hash(self, height: int) -> str:
        """
        Resolve a height to its block hash.

        Raises:
            BlockNotYetAvailable: If the height does not exist yet
        """

    @abstractmethod
    async def get_block_body(self, block_hash: str) -> List[DecodedExtrinsic]:
        """Return the block's extrinsics in position order."""

    @abstractmethod
    async def get_events_at(self, block_hash: str) -> List[DecodedEvent]:
        """Return every event emitted in the block."""

    @abstractmethod
    async def query_state_at(
        self,
        block_hash: str,
        fields: Sequence[StorageField],
    ) -> List[Any]:
        """
        Read several storage items as of the block in one round trip.

        Returns:
            Decoded values in the same order as fields
        """

    @abstractmethod
    async def get_spec_version(self, block_hash: str) -> int:
        """Return the runtime spec version active at the block."""

    @abstractmethod
    async def get_block_author(self, block_hash: str, height: int) -> Optional[str]:
        """Return the block author's address, or None when unknown."""

    @abstractmethod
    def subscribe_finalized_heads(self) -> AsyncIterator[int]:
        """Yield the height of every new finalized head, forever."""

    @abstractmethod
    async def get_finalized_head_height(self) -> int:
        """Return the current finalized head height."""

    async def close(self) -> None:
        """Release connections held by the client."""
