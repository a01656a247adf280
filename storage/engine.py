"""
Storage - Engine.

============================================================
RESPONSIBILITY
============================================================
Creates the SQLAlchemy async engine for the ledger store.

- Applies DB_NAME over the database in DB_URL
- Connection pooling for server databases
- TLS with certificate validation when DB_USE_SSL is set
- JSON serialization of normalized documents (Decimal aware)

============================================================
"""

import json
import logging
import ssl
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.config import IndexerConfig


logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        # integral decimals stay exact, fractional amounts become JSON numbers
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return "0x" + value.hex()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps_document(document: Any) -> str:
    """Serialize a normalized record document."""
    return json.dumps(document, default=_json_default)


def create_store_engine(config: IndexerConfig, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine described by the configuration.

    Args:
        config: Indexer configuration
        echo: Log SQL statements

    Returns:
        SQLAlchemy AsyncEngine
    """
    url = make_url(config.db_url)
    if config.db_name:
        url = url.set(database=config.db_name)

    kwargs: Dict[str, Any] = {
        "echo": echo,
        "json_serializer": dumps_document,
    }

    if url.get_backend_name() != "sqlite":
        kwargs.update(
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout,
            pool_recycle=1800,
            pool_pre_ping=True,
        )

    if config.db_use_ssl:
        kwargs["connect_args"] = {"ssl": ssl.create_default_context()}

    logger.info(f"Creating store engine for: {url.render_as_string(hide_password=True).split('@')[-1]}")

    engine = create_async_engine(url, **kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Store connection established")

    return engine
