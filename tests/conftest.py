"""
Shared test fixtures.

============================================================
PURPOSE
============================================================
In-memory doubles for the two collaborators of the ingestion
pipeline:

- FakeChainClient: scripted ledger with injectable failures
- InMemoryStore: dict-backed store with the same insert-or-skip
  contract as storage.block_store.BlockStore

============================================================
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from block_ingestion.block_processor import BlockProcessor
from block_ingestion.catch_up import CatchUpCoordinator
from block_ingestion.normalizer import TypeNormalizer
from block_ingestion.records import BLOCKS, COLLECTIONS
from chain_client.base import ChainClient
from chain_client.types import DecodedEvent, DecodedExtrinsic, StorageField
from core.exceptions import BlockNotYetAvailable


def block_hash_for(height: int) -> str:
    return f"0x{height:064x}"


def standard_extrinsics() -> List[DecodedExtrinsic]:
    """setValidationData, timestamp.set, then one signed transfer."""
    return [
        DecodedExtrinsic(
            section="parachainSystem",
            method="setValidationData",
            args={"data": {"relay_parent_number": "1,000"}},
        ),
        DecodedExtrinsic(
            section="timestamp",
            method="set",
            args={"now": "1,716,415,200,000"},
        ),
        DecodedExtrinsic(
            section="encointerBalances",
            method="transfer",
            args={
                "dest": "CpjsLDC1JFyrhm3ftC9Gs4QoyrkHKhZKtK7YqGTRFtTafgp",
                "community_id": {"geohash": "u0qj9", "digest": "0x00"},
                "amount": {"bits": "18,446,744,073,709,551,616"},
            },
            signer="Dz1Bg6chHFcK4RNDeiVAiN5qNtxAbbnDgSkdUAGVcpqYLhn",
            nonce=3,
            tip=0,
            extrinsic_hash="0xabc",
        ),
    ]


def standard_events() -> List[DecodedEvent]:
    return [
        DecodedEvent("system", "ExtrinsicSuccess", {"weight": "1,000"}, phase_index=0),
        DecodedEvent("system", "ExtrinsicSuccess", {"weight": "1,000"}, phase_index=1),
        DecodedEvent(
            "encointerBalances",
            "Transferred",
            ["u0qj92QX9PQ", "Dz1B", "Cpjs", {"bits": "36,893,488,147,419,103,232"}],
            phase_index=2,
        ),
        DecodedEvent("system", "ExtrinsicSuccess", {"weight": "2,000"}, phase_index=2),
        DecodedEvent("parachainSystem", "Finalized", None, phase_index=None),
    ]


class FakeChainClient(ChainClient):
    """Scripted ChainClient; heights must be added before they exist."""

    def __init__(self) -> None:
        self.blocks: Dict[str, Dict[str, Any]] = {}
        self.heights: Dict[int, str] = {}
        self.failures: Dict[int, List[Exception]] = {}
        self.resolve_calls: List[int] = []
        self.spec_version_calls: List[str] = []
        self.heads: List[int] = []
        self.head_failures: List[Exception] = []
        self.finalized_height = 0
        self.closed = False

    def add_block(
        self,
        height: int,
        extrinsics: Optional[List[DecodedExtrinsic]] = None,
        events: Optional[List[DecodedEvent]] = None,
        state: Sequence[Any] = ("7", "Registering", "1,716,415,300,000", "5"),
        spec_version: int = 1000,
        author: Optional[str] = None,
        upgraded: bool = True,
    ) -> str:
        """upgraded=False leaves System.LastRuntimeUpgrade empty, as on a genesis runtime."""
        block_hash = block_hash_for(height)
        self.heights[height] = block_hash
        self.blocks[block_hash] = {
            "extrinsics": standard_extrinsics() if extrinsics is None else extrinsics,
            "events": standard_events() if events is None else events,
            "state": list(state),
            "spec_version": spec_version,
            "last_upgrade": (
                {"spec_version": spec_version, "spec_name": "encointer-parachain"}
                if upgraded else None
            ),
            "author": author,
        }
        self.finalized_height = max(self.finalized_height, height)
        return block_hash

    def add_blocks(self, heights: Sequence[int]) -> None:
        for height in heights:
            self.add_block(height)

    def fail_on(self, height: int, *errors: Exception) -> None:
        """Raise these errors, one per call, on the next resolves of height."""
        self.failures.setdefault(height, []).extend(errors)

    async def resolve_hash(self, height: int) -> str:
        self.resolve_calls.append(height)
        pending = self.failures.get(height)
        if pending:
            raise pending.pop(0)
        if height not in self.heights:
            raise BlockNotYetAvailable(height)
        return self.heights[height]

    async def get_block_body(self, block_hash: str) -> List[DecodedExtrinsic]:
        return list(self.blocks[block_hash]["extrinsics"])

    async def get_events_at(self, block_hash: str) -> List[DecodedEvent]:
        return list(self.blocks[block_hash]["events"])

    async def query_state_at(self, block_hash: str, fields: Sequence[StorageField]) -> List[Any]:
        block = self.blocks[block_hash]
        return (list(block["state"]) + [block["last_upgrade"]])[:len(fields)]

    async def get_spec_version(self, block_hash: str) -> int:
        self.spec_version_calls.append(block_hash)
        return self.blocks[block_hash]["spec_version"]

    async def get_block_author(self, block_hash: str, height: int) -> Optional[str]:
        return self.blocks[block_hash]["author"]

    async def subscribe_finalized_heads(self) -> AsyncIterator[int]:
        for height in self.heads:
            yield height

    async def get_finalized_head_height(self) -> int:
        if self.head_failures:
            raise self.head_failures.pop(0)
        return self.finalized_height

    async def close(self) -> None:
        self.closed = True


class InMemoryStore:
    """Dict-backed store with insert-or-skip semantics."""

    def __init__(self, start_height: int = 1) -> None:
        self.start_height = start_height
        self.collections: Dict[str, Dict[str, Any]] = {name: {} for name in COLLECTIONS}
        self.writes: List[Tuple[str, str]] = []
        self.skipped: List[Tuple[str, str]] = []
        self.read_failures: Dict[str, List[Exception]] = {}

    def fail_reads(self, method: str, *errors: Exception) -> None:
        """Raise these errors, one per call, on the next calls of a height query."""
        self.read_failures.setdefault(method, []).extend(errors)

    def _maybe_fail(self, method: str) -> None:
        pending = self.read_failures.get(method)
        if pending:
            raise pending.pop(0)

    async def insert_if_absent(self, collection: str, record: Any) -> bool:
        records = self.collections[collection]
        if record.record_id in records:
            self.skipped.append((collection, record.record_id))
            return False
        records[record.record_id] = record
        self.writes.append((collection, record.record_id))
        return True

    async def find_max_height(self) -> int:
        self._maybe_fail("find_max_height")
        heights = [block.height for block in self.collections[BLOCKS].values()]
        return max(heights) if heights else self.start_height

    async def find_heights_in_range(self, lo: int, hi: int) -> Set[int]:
        self._maybe_fail("find_heights_in_range")
        return {
            block.height
            for block in self.collections[BLOCKS].values()
            if lo <= block.height <= hi
        }

    def ids(self, collection: str) -> Set[str]:
        return set(self.collections[collection])

    def stored_heights(self) -> Set[int]:
        return {block.height for block in self.collections[BLOCKS].values()}


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def processor(chain, store) -> BlockProcessor:
    return BlockProcessor(chain, store, normalizer=TypeNormalizer())


@pytest.fixture
def coordinator(store, processor) -> CatchUpCoordinator:
    return CatchUpCoordinator(store, processor, width=3, retry_backoff_seconds=0)
