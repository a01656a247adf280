"""
Block Ingestion - Block Processor.

============================================================
RESPONSIBILITY
============================================================
Turns one ledger height into stored records.

- Resolves the height and fetches body, events and state
- Normalizes extrinsic arguments and event data
- Correlates events to the extrinsic they were applied during
- Writes events, then extrinsics, then the block

============================================================
ORDERING
============================================================
Every write for a height is awaited before the next one
starts. The Block record is written last: its presence marks
the height as complete, so a crash anywhere before it leaves
the height visibly unprocessed and it is simply replayed.

Replays are safe because every record has a deterministic
identity and the store skips identities it already holds.

============================================================
"""

import logging
from typing import Any, Iterable, List, Optional, Sequence

from chain_client.base import ChainClient
from chain_client.types import DecodedEvent, DecodedExtrinsic, StorageField
from core.config import DEFAULT_EXCLUDED_METHODS
from core.exceptions import BlockNotYetAvailable, DecodingError

from block_ingestion.normalizer import TypeNormalizer
from block_ingestion.records import (
    BLOCKS,
    EVENTS,
    EXTRINSICS,
    BlockRecord,
    EventRecord,
    ExtrinsicRecord,
    event_id,
    extrinsic_id,
)


logger = logging.getLogger(__name__)


BLOCK_STATE_FIELDS = (
    StorageField("EncointerScheduler", "CurrentCeremonyIndex"),
    StorageField("EncointerScheduler", "CurrentPhase"),
    StorageField("EncointerScheduler", "NextPhaseTimestamp"),
    StorageField("EncointerCeremonies", "ReputationLifetime"),
    StorageField("System", "LastRuntimeUpgrade"),
)

TIMESTAMP_SECTION = "timestamp"
TIMESTAMP_METHOD = "set"
SUCCESS_SECTION = "system"
SUCCESS_METHOD = "ExtrinsicSuccess"


def correlate_events(events: Iterable[DecodedEvent], extrinsic_index: int) -> List[DecodedEvent]:
    """Events applied during the extrinsic at extrinsic_index, in emission order."""
    return [e for e in events if e.applied_during(extrinsic_index)]


def is_success_marker(event: DecodedEvent) -> bool:
    return event.section == SUCCESS_SECTION and event.method == SUCCESS_METHOD


def _as_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).replace(",", ""))
    except ValueError as e:
        raise DecodingError(
            f"Expected an integer for {field_name}", value=value, cause=e
        ) from e


def _upgrade_spec_version(last_upgrade: Any) -> Optional[int]:
    """spec_version of System.LastRuntimeUpgrade, None on a never-upgraded chain."""
    if last_upgrade is None:
        return None
    if not isinstance(last_upgrade, dict) or "spec_version" not in last_upgrade:
        raise DecodingError("Unexpected LastRuntimeUpgrade shape", value=last_upgrade)
    return _as_int(last_upgrade["spec_version"], "spec_version")


class BlockProcessor:
    """
    Processes single heights into blocks, extrinsics and events.

    The store must provide insert_if_absent(collection, record).
    """

    def __init__(
        self,
        chain: ChainClient,
        store: Any,
        normalizer: Optional[TypeNormalizer] = None,
        excluded_methods: Sequence[str] = DEFAULT_EXCLUDED_METHODS,
    ) -> None:
        self._chain = chain
        self._store = store
        self._normalizer = normalizer or TypeNormalizer()
        self._excluded_methods = frozenset(excluded_methods)

    async def process(self, height: int, swallow_missing: bool = False) -> Optional[BlockRecord]:
        """
        Fetch, decode and store one height.

        Args:
            height: Ledger height
            swallow_missing: Return None instead of raising when the
                height does not exist yet

        Returns:
            The stored BlockRecord, or None if the height was missing
            and swallow_missing was set

        Raises:
            BlockNotYetAvailable: Height missing and swallow_missing unset
            TransientIOError: Chain or store connectivity failure
            DecodingError: Unexpected structure from the chain
            StoreError: Non-duplicate store failure
        """
        try:
            block_hash = await self._chain.resolve_hash(height)
        except BlockNotYetAvailable:
            if swallow_missing:
                logger.debug(f"Block {height} is not yet available, skipping")
                return None
            raise

        extrinsics = await self._chain.get_block_body(block_hash)
        events = await self._chain.get_events_at(block_hash)

        block = await self._read_block_state(block_hash, height)

        for position, extrinsic in enumerate(extrinsics):
            await self._handle_extrinsic(block, position, extrinsic, events)

        await self._store.insert_if_absent(BLOCKS, block)
        logger.info(f"Processed block {height}")
        return block

    async def _read_block_state(self, block_hash: str, height: int) -> BlockRecord:
        cindex, phase, next_phase_timestamp, reputation_lifetime, last_upgrade = (
            await self._chain.query_state_at(block_hash, BLOCK_STATE_FIELDS)
        )
        spec_version = _upgrade_spec_version(last_upgrade)
        if spec_version is None:
            spec_version = await self._chain.get_spec_version(block_hash)
        # Collators are keyed by account, so finding the one at this height is a map scan
        author = await self._chain.get_block_author(block_hash, height)

        return BlockRecord(
            block_hash=block_hash,
            height=height,
            cindex=_as_int(cindex, "cindex"),
            phase=None if phase is None else str(phase),
            next_phase_timestamp=_as_int(next_phase_timestamp, "next_phase_timestamp"),
            reputation_lifetime=_as_int(reputation_lifetime, "reputation_lifetime"),
            spec_version=spec_version,
            author=author,
        )

    async def _handle_extrinsic(
        self,
        block: BlockRecord,
        position: int,
        extrinsic: DecodedExtrinsic,
        events: Sequence[DecodedEvent],
    ) -> None:
        if extrinsic.method in self._excluded_methods:
            return

        args = {key: self._normalizer.normalize(value) for key, value in extrinsic.args.items()}

        if extrinsic.section == TIMESTAMP_SECTION and extrinsic.method == TIMESTAMP_METHOD:
            block.timestamp = _as_int(args.get("now"), "timestamp.set now")
            return

        record = ExtrinsicRecord(
            record_id=extrinsic_id(block.height, position),
            height=block.height,
            block_hash=block.block_hash,
            index=position,
            section=extrinsic.section,
            method=extrinsic.method,
            args=args,
            timestamp=block.timestamp,
            signer=extrinsic.signer,
            nonce=extrinsic.nonce,
            tip=extrinsic.tip,
            extrinsic_hash=extrinsic.extrinsic_hash,
        )

        for event_index, event in enumerate(correlate_events(events, position)):
            if is_success_marker(event):
                record.success = True
                continue

            await self._store.insert_if_absent(
                EVENTS,
                EventRecord(
                    record_id=event_id(record.record_id, event_index),
                    extrinsic_id=record.record_id,
                    height=block.height,
                    block_hash=block.block_hash,
                    section=event.section,
                    method=event.method,
                    data=self._normalizer.normalize(event.data),
                    timestamp=block.timestamp,
                    topics=list(event.topics),
                ),
            )

        await self._store.insert_if_absent(EXTRINSICS, record)
