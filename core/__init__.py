"""
Core Module Package.

Infrastructure shared by every other package.

Components:
- config: Environment-driven process configuration
- exceptions: Custom exception hierarchy
- logging_setup: Root logger wiring
"""

from .config import DEFAULT_CID_ALIASES, DEFAULT_EXCLUDED_METHODS, IndexerConfig
from .exceptions import (
    BlockNotYetAvailable,
    ChainConnectionError,
    ChainRequestError,
    ConfigurationError,
    DecodingError,
    IndexerException,
    Severity,
    StoreConnectionError,
    StoreError,
    TransientIOError,
)
from .logging_setup import setup_logging


__all__ = [
    "DEFAULT_CID_ALIASES",
    "DEFAULT_EXCLUDED_METHODS",
    "IndexerConfig",
    "BlockNotYetAvailable",
    "ChainConnectionError",
    "ChainRequestError",
    "ConfigurationError",
    "DecodingError",
    "IndexerException",
    "Severity",
    "StoreConnectionError",
    "StoreError",
    "TransientIOError",
    "setup_logging",
]
