"""
Chain Client - Substrate Implementation.

============================================================
PURPOSE
============================================================
ChainClient backed by substrate-interface, which owns the
type-registry based SCALE decoding.

DESIGN:
- substrate-interface is synchronous and one connection
  serves one request at a time, so the client keeps a small
  pool of connections and runs every call in the default
  executor. Concurrency toward the node is bounded by the
  pool size, not by the caller.
- A connection that fails at the transport level is dropped
  and lazily reopened by the next caller.
- Finalized heads come from a separate aiohttp websocket
  stream (see head_stream.py).

============================================================
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence

from scalecodec.exceptions import (
    InvalidScaleTypeValueException,
    RemainingScaleBytesNotEmptyException,
)
from scalecodec.type_registry import load_type_registry_file
from substrateinterface import SubstrateInterface
from substrateinterface.exceptions import (
    StorageFunctionNotFound,
    SubstrateRequestException,
)
from websocket import WebSocketException

from core.exceptions import (
    BlockNotYetAvailable,
    ChainConnectionError,
    ChainRequestError,
    DecodingError,
)

from .base import ChainClient
from .head_stream import FinalizedHeadStream, HeadStreamConfig
from .types import DecodedEvent, DecodedExtrinsic, StorageField


logger = logging.getLogger(__name__)

# Node error texts meaning "this block does not exist yet"
NOT_AVAILABLE_MARKERS = (
    "Unable to retrieve header and parent from supplied hash",
    "Header was not found",
)

TRANSPORT_ERRORS = (ConnectionError, TimeoutError, OSError, WebSocketException)
DECODING_ERRORS = (
    KeyError,
    TypeError,
    ValueError,
    NotImplementedError,
    RemainingScaleBytesNotEmptyException,
    InvalidScaleTypeValueException,
)


# ============================================================
# NAME CONVERSION
# ============================================================

def section_name(module: str) -> str:
    """Pallet name to section name: EncointerCeremonies -> encointerCeremonies."""
    return module[:1].lower() + module[1:]


def call_name(function: str) -> str:
    """Call function to method name: set_validation_data -> setValidationData."""
    head, *rest = function.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


# ============================================================
# DECODING
# ============================================================

def decode_extrinsic(extrinsic: Any) -> DecodedExtrinsic:
    """Convert a substrate-interface GenericExtrinsic to a DecodedExtrinsic."""
    value = extrinsic.value
    call = value["call"]
    args = {arg["name"]: arg["value"] for arg in call.get("call_args") or []}

    return DecodedExtrinsic(
        section=section_name(call["call_module"]),
        method=call_name(call["call_function"]),
        args=args,
        signer=value.get("address"),
        nonce=value.get("nonce"),
        tip=value.get("tip"),
        extrinsic_hash=value.get("extrinsic_hash"),
    )


def _phase_index(value: dict) -> Optional[int]:
    phase = value.get("phase")
    if phase == "ApplyExtrinsic":
        return value.get("extrinsic_idx")
    if isinstance(phase, dict) and "ApplyExtrinsic" in phase:
        return phase["ApplyExtrinsic"]
    return None


def decode_event(record: Any) -> DecodedEvent:
    """Convert a substrate-interface EventRecord to a DecodedEvent."""
    value = record.value
    return DecodedEvent(
        section=section_name(value["module_id"]),
        method=value["event_id"],
        data=value.get("attributes"),
        phase_index=_phase_index(value),
        topics=list(value.get("topics") or []),
    )


def _is_not_available(error: Exception) -> bool:
    text = str(error)
    return any(marker in text for marker in NOT_AVAILABLE_MARKERS)


# ============================================================
# BLOCKING CALLS (run in executor)
# ============================================================

def _fetch_block_hash(substrate: SubstrateInterface, height: int) -> Optional[str]:
    return substrate.get_block_hash(height)


def _fetch_extrinsics(substrate: SubstrateInterface, block_hash: str) -> List[DecodedExtrinsic]:
    block = substrate.get_block(block_hash=block_hash)
    return [decode_extrinsic(ex) for ex in block["extrinsics"]]


def _fetch_events(substrate: SubstrateInterface, block_hash: str) -> List[DecodedEvent]:
    return [decode_event(record) for record in substrate.get_events(block_hash=block_hash)]


def _fetch_state(
    substrate: SubstrateInterface,
    block_hash: str,
    fields: Sequence[StorageField],
) -> List[Any]:
    keys = [
        substrate.create_storage_key(f.pallet, f.storage_function, block_hash=block_hash)
        for f in fields
    ]
    results = substrate.query_multi(keys, block_hash=block_hash)
    return [obj.value if obj is not None else None for _, obj in results]


def _fetch_spec_version(substrate: SubstrateInterface, block_hash: str) -> int:
    return int(substrate.get_block_runtime_version(block_hash)["specVersion"])


def _fetch_block_author(
    substrate: SubstrateInterface,
    block_hash: str,
    height: int,
) -> Optional[str]:
    try:
        entries = substrate.query_map(
            "CollatorSelection", "LastAuthoredBlock", block_hash=block_hash
        )
        for account, authored in entries:
            if authored.value == height:
                return account.value
    except (StorageFunctionNotFound, SubstrateRequestException, ValueError) as e:
        logger.debug(f"No author for block {height}: {e}")
    return None


def _fetch_finalized_height(substrate: SubstrateInterface) -> int:
    return substrate.get_block_number(substrate.get_chain_finalised_head())


# ============================================================
# SUBSTRATE CHAIN CLIENT
# ============================================================

class SubstrateChainClient(ChainClient):
    """
    ChainClient talking to a Substrate node.

    Each public method borrows one pooled connection for the
    duration of a single blocking call.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 8,
        ss58_format: int = 2,
        type_registry_path: Optional[str] = None,
        head_stream: Optional[FinalizedHeadStream] = None,
    ) -> None:
        self._url = url
        self._ss58_format = ss58_format
        self._type_registry = (
            load_type_registry_file(type_registry_path) if type_registry_path else None
        )
        self._head_stream = head_stream or FinalizedHeadStream(url, HeadStreamConfig())

        self._pool: asyncio.Queue = asyncio.Queue()
        for _ in range(pool_size):
            self._pool.put_nowait(None)

    # --------------------------------------------------------
    # CONNECTION POOL
    # --------------------------------------------------------

    def _open(self) -> SubstrateInterface:
        return SubstrateInterface(
            url=self._url,
            ss58_format=self._ss58_format,
            type_registry=self._type_registry,
        )

    @staticmethod
    def _discard(substrate: Optional[SubstrateInterface]) -> None:
        if substrate is None:
            return
        try:
            substrate.close()
        except TRANSPORT_ERRORS as e:
            logger.debug(f"Ignoring error while closing broken connection: {e}")

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[SubstrateInterface]:
        substrate = await self._pool.get()
        try:
            if substrate is None:
                loop = asyncio.get_running_loop()
                try:
                    substrate = await loop.run_in_executor(None, self._open)
                except TRANSPORT_ERRORS as e:
                    raise ChainConnectionError(
                        f"Cannot connect to {self._url}: {e}", cause=e
                    ) from e
                logger.debug(f"Opened substrate connection to {self._url}")
            yield substrate
        except ChainConnectionError:
            self._discard(substrate)
            substrate = None
            raise
        finally:
            self._pool.put_nowait(substrate)

    async def _run(
        self,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        height: Optional[int] = None,
    ) -> Any:
        """Run one blocking call on a pooled connection and map its errors."""
        async with self._connection() as substrate:
            loop = asyncio.get_running_loop()
            try:
                return await loop.run_in_executor(None, partial(func, substrate, *args))
            except SubstrateRequestException as e:
                if height is not None and _is_not_available(e):
                    raise BlockNotYetAvailable(height, cause=e) from e
                raise ChainRequestError(
                    f"{operation} failed: {e}", method=operation, cause=e
                ) from e
            except TRANSPORT_ERRORS as e:
                raise ChainConnectionError(
                    f"{operation} lost connection: {e}", cause=e
                ) from e
            except DECODING_ERRORS as e:
                raise DecodingError(
                    f"{operation} returned undecodable data: {e}", cause=e
                ) from e

    # --------------------------------------------------------
    # CHAIN CLIENT INTERFACE
    # --------------------------------------------------------

    async def resolve_hash(self, height: int) -> str:
        block_hash = await self._run("get_block_hash", _fetch_block_hash, height, height=height)
        if block_hash is None:
            raise BlockNotYetAvailable(height)
        return block_hash

    async def get_block_body(self, block_hash: str) -> List[DecodedExtrinsic]:
        return await self._run("get_block", _fetch_extrinsics, block_hash)

    async def get_events_at(self, block_hash: str) -> List[DecodedEvent]:
        return await self._run("get_events", _fetch_events, block_hash)

    async def query_state_at(
        self,
        block_hash: str,
        fields: Sequence[StorageField],
    ) -> List[Any]:
        return await self._run("query_multi", _fetch_state, block_hash, list(fields))

    async def get_spec_version(self, block_hash: str) -> int:
        return await self._run("get_runtime_version", _fetch_spec_version, block_hash)

    async def get_block_author(self, block_hash: str, height: int) -> Optional[str]:
        return await self._run("query_map", _fetch_block_author, block_hash, height)

    def subscribe_finalized_heads(self) -> AsyncIterator[int]:
        return self._head_stream.heads()

    async def get_finalized_head_height(self) -> int:
        return await self._run("get_finalised_head", _fetch_finalized_height)

    async def close(self) -> None:
        while not self._pool.empty():
            self._discard(self._pool.get_nowait())
