"""
Substrate Chain Client Tests.

============================================================
PURPOSE
============================================================
Tests for chain_client.substrate with SubstrateInterface
replaced by a mock.

TEST CATEGORIES:
- Name conversion and decoding
- ChainClient operations
- Error mapping
- Connection pool

============================================================
"""

from unittest.mock import MagicMock, patch

import pytest
from substrateinterface.exceptions import (
    StorageFunctionNotFound,
    SubstrateRequestException,
)

from chain_client.substrate import (
    SubstrateChainClient,
    call_name,
    decode_event,
    decode_extrinsic,
    section_name,
)
from chain_client.types import StorageField
from core.exceptions import (
    BlockNotYetAvailable,
    ChainConnectionError,
    ChainRequestError,
    DecodingError,
)


def scale(value):
    obj = MagicMock()
    obj.value = value
    return obj


def extrinsic_value(module, function, args, address=None):
    return scale({
        "extrinsic_hash": "0xfeed" if address else None,
        "address": address,
        "nonce": 1 if address else None,
        "tip": 0 if address else None,
        "call": {
            "call_index": "0x0000",
            "call_module": module,
            "call_function": function,
            "call_args": [{"name": k, "type": "Any", "value": v} for k, v in args.items()],
        },
    })


def event_value(module, event, attributes, extrinsic_idx=None):
    return scale({
        "phase": "ApplyExtrinsic" if extrinsic_idx is not None else "Finalization",
        "extrinsic_idx": extrinsic_idx,
        "module_id": module,
        "event_id": event,
        "attributes": attributes,
        "topics": [],
    })


@pytest.fixture
def substrate():
    with patch("chain_client.substrate.SubstrateInterface") as interface_cls:
        instance = MagicMock()
        interface_cls.return_value = instance
        instance.interface_cls = interface_cls
        yield instance


def make_client(**kwargs) -> SubstrateChainClient:
    return SubstrateChainClient("ws://localhost:9944", head_stream=MagicMock(), **kwargs)


# ============================================================
# DECODING TESTS
# ============================================================

class TestNameConversion:
    """Tests for section_name and call_name."""

    def test_section_name(self):
        """Test pallet names become lowerCamelCase sections."""
        assert section_name("EncointerCeremonies") == "encointerCeremonies"
        assert section_name("System") == "system"

    def test_call_name(self):
        """Test snake_case call functions become camelCase methods."""
        assert call_name("set_validation_data") == "setValidationData"
        assert call_name("set") == "set"
        assert call_name("attest_attendees") == "attestAttendees"


class TestDecoding:
    """Tests for decode_extrinsic and decode_event."""

    def test_unsigned_extrinsic(self):
        """Test an inherent decodes without a signer."""
        decoded = decode_extrinsic(extrinsic_value("Timestamp", "set", {"now": 1716415200000}))

        assert decoded.section == "timestamp"
        assert decoded.method == "set"
        assert decoded.args == {"now": 1716415200000}
        assert decoded.is_signed is False

    def test_signed_extrinsic(self):
        """Test signer fields are carried over."""
        decoded = decode_extrinsic(
            extrinsic_value("EncointerBalances", "transfer", {"dest": "Cpjs"}, address="Dz1B")
        )

        assert decoded.signer == "Dz1B"
        assert decoded.nonce == 1
        assert decoded.extrinsic_hash == "0xfeed"

    def test_apply_extrinsic_event(self):
        """Test ApplyExtrinsic phase maps to the extrinsic index."""
        decoded = decode_event(event_value("System", "ExtrinsicSuccess", {}, extrinsic_idx=2))

        assert decoded.section == "system"
        assert decoded.method == "ExtrinsicSuccess"
        assert decoded.phase_index == 2
        assert decoded.applied_during(2)

    def test_finalization_event(self):
        """Test events outside ApplyExtrinsic have no index."""
        decoded = decode_event(event_value("ParachainSystem", "Finalized", None))

        assert decoded.phase_index is None
        assert not decoded.applied_during(0)


# ============================================================
# OPERATION TESTS
# ============================================================

class TestSubstrateChainClient:
    """Tests for ChainClient operations."""

    @pytest.mark.asyncio
    async def test_resolve_hash(self, substrate):
        """Test a known height resolves to its hash."""
        substrate.get_block_hash.return_value = "0xabc"
        client = make_client()

        assert await client.resolve_hash(5) == "0xabc"
        substrate.get_block_hash.assert_called_once_with(5)

    @pytest.mark.asyncio
    async def test_resolve_unknown_height(self, substrate):
        """Test a null hash means the height is not available yet."""
        substrate.get_block_hash.return_value = None
        client = make_client()

        with pytest.raises(BlockNotYetAvailable):
            await client.resolve_hash(5)

    @pytest.mark.asyncio
    async def test_get_block_body(self, substrate):
        """Test extrinsics are decoded in order."""
        substrate.get_block.return_value = {
            "extrinsics": [
                extrinsic_value("Timestamp", "set", {"now": 1}),
                extrinsic_value("EncointerBalances", "transfer", {"dest": "Cpjs"}, address="Dz1B"),
            ]
        }
        client = make_client()

        body = await client.get_block_body("0xabc")

        assert [e.method for e in body] == ["set", "transfer"]
        substrate.get_block.assert_called_once_with(block_hash="0xabc")

    @pytest.mark.asyncio
    async def test_get_events_at(self, substrate):
        """Test events are decoded with their phase."""
        substrate.get_events.return_value = [
            event_value("System", "ExtrinsicSuccess", {}, extrinsic_idx=0),
        ]
        client = make_client()

        events = await client.get_events_at("0xabc")

        assert events[0].phase_index == 0

    @pytest.mark.asyncio
    async def test_query_state_at(self, substrate):
        """Test one batched read returns values in field order."""
        substrate.create_storage_key.side_effect = lambda p, s, block_hash: f"{p}.{s}"
        substrate.query_multi.return_value = [
            ("EncointerScheduler.CurrentCeremonyIndex", scale(7)),
            ("EncointerScheduler.CurrentPhase", scale("Registering")),
        ]
        client = make_client()

        values = await client.query_state_at("0xabc", [
            StorageField("EncointerScheduler", "CurrentCeremonyIndex"),
            StorageField("EncointerScheduler", "CurrentPhase"),
        ])

        assert values == [7, "Registering"]
        substrate.query_multi.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_spec_version(self, substrate):
        """Test the runtime spec version is read at the block."""
        substrate.get_block_runtime_version.return_value = {"specVersion": 1100}
        client = make_client()

        assert await client.get_spec_version("0xabc") == 1100

    @pytest.mark.asyncio
    async def test_block_author(self, substrate):
        """Test the collator whose last authored block is this height."""
        substrate.query_map.return_value = [
            (scale("CollatorA"), scale(9)),
            (scale("CollatorB"), scale(10)),
        ]
        client = make_client()

        assert await client.get_block_author("0xabc", 10) == "CollatorB"
        assert await client.get_block_author("0xabc", 11) is None

    @pytest.mark.asyncio
    async def test_block_author_without_pallet(self, substrate):
        """Test a chain without collator selection has no author."""
        substrate.query_map.side_effect = StorageFunctionNotFound("not found")
        client = make_client()

        assert await client.get_block_author("0xabc", 10) is None

    @pytest.mark.asyncio
    async def test_finalized_head_height(self, substrate):
        """Test the finalized head is resolved to its number."""
        substrate.get_chain_finalised_head.return_value = "0xhead"
        substrate.get_block_number.return_value = 1234
        client = make_client()

        assert await client.get_finalized_head_height() == 1234
        substrate.get_block_number.assert_called_once_with("0xhead")

    @pytest.mark.asyncio
    async def test_subscription_uses_head_stream(self, substrate):
        """Test finalized heads come from the websocket stream."""
        stream = MagicMock()
        client = SubstrateChainClient("ws://localhost:9944", head_stream=stream)

        assert client.subscribe_finalized_heads() is stream.heads.return_value


# ============================================================
# ERROR MAPPING TESTS
# ============================================================

class TestErrorMapping:
    """Tests for exception translation."""

    @pytest.mark.asyncio
    async def test_not_available_marker(self, substrate):
        """Test the node's missing-header error becomes BlockNotYetAvailable."""
        substrate.get_block_hash.side_effect = SubstrateRequestException(
            "Unable to retrieve header and parent from supplied hash"
        )
        client = make_client()

        with pytest.raises(BlockNotYetAvailable) as exc_info:
            await client.resolve_hash(7)

        assert exc_info.value.height == 7

    @pytest.mark.asyncio
    async def test_other_request_errors(self, substrate):
        """Test other node errors become ChainRequestError."""
        substrate.get_block.side_effect = SubstrateRequestException("Method not found")
        client = make_client()

        with pytest.raises(ChainRequestError):
            await client.get_block_body("0xabc")

    @pytest.mark.asyncio
    async def test_decoding_errors(self, substrate):
        """Test malformed structures become DecodingError."""
        substrate.get_block.return_value = {"extrinsics": [scale({"call": {}})]}
        client = make_client()

        with pytest.raises(DecodingError):
            await client.get_block_body("0xabc")

    @pytest.mark.asyncio
    async def test_connection_error_drops_connection(self, substrate):
        """Test a transport failure discards the connection and reopens it."""
        substrate.get_block_hash.side_effect = [ConnectionResetError("reset"), "0xabc"]
        client = make_client(pool_size=1)

        with pytest.raises(ChainConnectionError):
            await client.resolve_hash(1)
        assert await client.resolve_hash(1) == "0xabc"

        assert substrate.interface_cls.call_count == 2
        substrate.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_connection_reused(self, substrate):
        """Test a healthy connection is reused."""
        substrate.get_block_hash.return_value = "0xabc"
        client = make_client(pool_size=1)

        await client.resolve_hash(1)
        await client.resolve_hash(2)

        assert substrate.interface_cls.call_count == 1

    @pytest.mark.asyncio
    async def test_unreachable_node(self, substrate):
        """Test failing to open a connection raises ChainConnectionError."""
        substrate.interface_cls.side_effect = ConnectionRefusedError("refused")
        client = make_client()

        with pytest.raises(ChainConnectionError):
            await client.resolve_hash(1)

    @pytest.mark.asyncio
    async def test_close_releases_connections(self, substrate):
        """Test close() closes opened connections."""
        substrate.get_block_hash.return_value = "0xabc"
        client = make_client(pool_size=2)
        await client.resolve_hash(1)

        await client.close()

        substrate.close.assert_called_once()
