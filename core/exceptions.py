"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the block indexer.

- Provides clear exception hierarchy
- Separates "retry later" conditions from fatal ones
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
IndexerException (base)
├── ConfigurationError
├── BlockNotYetAvailable
├── TransientIOError
│   ├── ChainConnectionError
│   ├── ChainRequestError
│   └── StoreConnectionError
├── DecodingError
└── StoreError

Duplicate identities on insert are NOT exceptions. The store
reports them as a skipped write.

============================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for logging."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# BASE EXCEPTION
# ============================================================

class IndexerException(Exception):
    """
    Base exception for all indexer errors.

    All exceptions carry:
    - severity: for log routing
    - context: for debugging
    - recoverable: whether a retry loop may absorb it
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(IndexerException):
    """Missing or invalid startup parameters. Always fatal."""

    default_severity = Severity.CRITICAL
    default_recoverable = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# CHAIN ERRORS
# ============================================================

class BlockNotYetAvailable(IndexerException):
    """The requested height is not finalized or not visible yet."""

    default_severity = Severity.LOW

    def __init__(self, height: int, **kwargs):
        context = kwargs.pop("context", {})
        context["height"] = height
        super().__init__(
            f"Block {height} is not yet available",
            context=context,
            **kwargs,
        )
        self.height = height


class TransientIOError(IndexerException):
    """Network or store connectivity failure. Retried with fixed backoff."""

    default_severity = Severity.MEDIUM


class ChainConnectionError(TransientIOError):
    """Connection to the ledger node failed or dropped."""


class ChainRequestError(TransientIOError):
    """The ledger node rejected or failed an RPC request."""

    def __init__(self, message: str, method: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if method:
            context["method"] = method
        super().__init__(message, context=context, **kwargs)


class StoreConnectionError(TransientIOError):
    """Connection to the document store failed."""


class DecodingError(IndexerException):
    """Malformed or unexpected structure coming from the ledger."""

    default_severity = Severity.HIGH

    def __init__(self, message: str, value: Optional[Any] = None, **kwargs):
        context = kwargs.pop("context", {})
        if value is not None:
            context["value"] = repr(value)[:200]
        super().__init__(message, context=context, **kwargs)


# ============================================================
# STORE ERRORS
# ============================================================

class StoreError(IndexerException):
    """Store failure other than a duplicate identity."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if collection:
            context["collection"] = collection
        if operation:
            context["operation"] = operation
        super().__init__(message, context=context, **kwargs)
