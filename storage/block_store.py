"""
Storage - Block Store.

============================================================
PURPOSE
============================================================
Idempotent store for the three ledger collections.

- insert_if_absent: insert keyed by record identity; a
  conflicting identity means "already written" and is skipped
- find_max_height: last processed height (floor when empty)
- find_heights_in_range: processed heights for gap detection

============================================================
ERROR HANDLING
============================================================
- Duplicate identity  -> logged at DEBUG, returns False
- Connectivity        -> StoreConnectionError (retried upstream)
- Anything else       -> StoreError

No locks: concurrent writers of the same identity race
harmlessly on the primary key.

============================================================
"""

import logging
from typing import Any, Callable, Dict, Set, Union

from sqlalchemy import func, select
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from block_ingestion.records import (
    BLOCKS,
    EVENTS,
    EXTRINSICS,
    BlockRecord,
    EventRecord,
    ExtrinsicRecord,
)
from core.exceptions import StoreConnectionError, StoreError
from storage.models.base import Base
from storage.models.ledger import BlockModel, EventModel, ExtrinsicModel


logger = logging.getLogger(__name__)

Record = Union[BlockRecord, ExtrinsicRecord, EventRecord]

# Database unreachable, including pool checkout timeouts
CONNECTION_ERRORS = (OperationalError, PoolTimeoutError, OSError)


# ============================================================
# RECORD -> ROW MAPPING
# ============================================================

def _block_row(record: BlockRecord) -> BlockModel:
    return BlockModel(
        id=record.record_id,
        height=record.height,
        timestamp=record.timestamp,
        cindex=record.cindex,
        phase=record.phase,
        document=record.to_document(),
    )


def _extrinsic_row(record: ExtrinsicRecord) -> ExtrinsicModel:
    return ExtrinsicModel(
        id=record.record_id,
        block_height=record.height,
        section=record.section,
        method=record.method,
        success=record.success,
        timestamp=record.timestamp,
        document=record.to_document(),
    )


def _event_row(record: EventRecord) -> EventModel:
    return EventModel(
        id=record.record_id,
        extrinsic_id=record.extrinsic_id,
        block_height=record.height,
        section=record.section,
        method=record.method,
        timestamp=record.timestamp,
        document=record.to_document(),
    )


ROW_BUILDERS: Dict[str, Callable[[Any], Base]] = {
    BLOCKS: _block_row,
    EXTRINSICS: _extrinsic_row,
    EVENTS: _event_row,
}


MODELS: Dict[str, Any] = {
    BLOCKS: BlockModel,
    EXTRINSICS: ExtrinsicModel,
    EVENTS: EventModel,
}


def _is_duplicate(error: IntegrityError) -> bool:
    error_str = str(error).lower()
    return "duplicate" in error_str or "unique" in error_str


# ============================================================
# BLOCK STORE
# ============================================================

class BlockStore:
    """
    Insert-or-skip store over an async SQLAlchemy engine.

    Each operation uses its own short-lived session, so the
    store is safe to share between concurrent tasks.
    """

    def __init__(self, engine: AsyncEngine, start_height: int = 1) -> None:
        """
        Args:
            engine: Async engine (see storage.engine.create_store_engine)
            start_height: Height reported by find_max_height on an empty store
        """
        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self._start_height = start_height

    @property
    def start_height(self) -> int:
        return self._start_height

    async def initialize(self) -> None:
        """Create the collections if they do not exist."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except CONNECTION_ERRORS as e:
            raise StoreConnectionError(f"Cannot initialize store: {e}", cause=e) from e
        logger.info("Store collections ready: blocks, extrinsics, events")

    async def close(self) -> None:
        await self._engine.dispose()

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    async def insert_if_absent(self, collection: str, record: Record) -> bool:
        """
        Insert a record unless its identity is already stored.

        Returns:
            True if written, False if skipped as a duplicate
        """
        builder = ROW_BUILDERS.get(collection)
        if builder is None:
            raise StoreError(f"Unknown collection: {collection}", collection=collection)

        row = builder(record)
        async with self._session_factory() as session:
            try:
                session.add(row)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if _is_duplicate(e):
                    logger.debug(
                        f"Skipping dup key {record.record_id} in collection {collection}"
                    )
                    return False
                raise StoreError(
                    f"Integrity violation writing {record.record_id}: {e}",
                    collection=collection,
                    operation="insert",
                    cause=e,
                ) from e
            except CONNECTION_ERRORS as e:
                raise StoreConnectionError(
                    f"Store unavailable writing {record.record_id}: {e}",
                    context={"collection": collection},
                    cause=e,
                ) from e
            except DBAPIError as e:
                if e.connection_invalidated:
                    raise StoreConnectionError(
                        f"Store connection lost writing {record.record_id}: {e}",
                        context={"collection": collection},
                        cause=e,
                    ) from e
                raise StoreError(
                    f"Failed writing {record.record_id}: {e}",
                    collection=collection,
                    operation="insert",
                    cause=e,
                ) from e
        return True

    # --------------------------------------------------------
    # HEIGHT QUERIES
    # --------------------------------------------------------

    async def find_max_height(self) -> int:
        """Highest stored block height, or the start height when empty."""
        stmt = select(func.max(BlockModel.height))
        max_height = await self._scalar(stmt, "find_max_height")
        if max_height is None:
            return self._start_height
        return int(max_height)

    async def find_heights_in_range(self, lo: int, hi: int) -> Set[int]:
        """Stored block heights within [lo, hi]."""
        if hi < lo:
            return set()
        stmt = select(BlockModel.height).where(
            BlockModel.height >= lo,
            BlockModel.height <= hi,
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return {int(height) for height in result.scalars().all()}
        except CONNECTION_ERRORS as e:
            raise StoreConnectionError(f"Store unavailable: {e}", cause=e) from e
        except SQLAlchemyError as e:
            raise StoreError(
                f"Height range query failed: {e}",
                collection=BLOCKS,
                operation="find_heights_in_range",
                cause=e,
            ) from e

    async def count(self, collection: str) -> int:
        """Number of records in a collection."""
        model = MODELS.get(collection)
        if model is None:
            raise StoreError(f"Unknown collection: {collection}", collection=collection)
        count = await self._scalar(select(func.count()).select_from(model), "count")
        return int(count or 0)

    async def _scalar(self, stmt: Any, operation: str) -> Any:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar()
        except CONNECTION_ERRORS as e:
            raise StoreConnectionError(f"Store unavailable: {e}", cause=e) from e
        except SQLAlchemyError as e:
            raise StoreError(
                f"Query failed: {e}",
                operation=operation,
                cause=e,
            ) from e
