"""
Chain Client Package.

Boundary between the ingestion pipeline and the ledger node.

Modules:
- base: Abstract ChainClient interface
- types: Decoded extrinsic / event / storage field shapes
- substrate: substrate-interface backed implementation
- head_stream: Finalized head websocket subscription
"""

from chain_client.base import ChainClient
from chain_client.head_stream import (
    FinalizedHeadStream,
    HeadStreamConfig,
    parse_head_notification,
)
from chain_client.substrate import SubstrateChainClient
from chain_client.types import DecodedEvent, DecodedExtrinsic, StorageField


__all__ = [
    "ChainClient",
    "FinalizedHeadStream",
    "HeadStreamConfig",
    "parse_head_notification",
    "SubstrateChainClient",
    "DecodedEvent",
    "DecodedExtrinsic",
    "StorageField",
]
