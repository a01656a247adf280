"""
Base ORM Model and Mixins.

============================================================
PURPOSE
============================================================
Provides the declarative base and common mixins used by the
ledger collections.

============================================================
COMPONENTS
============================================================
- Base: SQLAlchemy declarative base for all models
- DocumentType: JSON column type (JSONB on PostgreSQL)
- IngestedAtMixin: Insert timestamp column

============================================================
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


DocumentType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class IngestedAtMixin:
    """
    Mixin providing the insert timestamp.

    Ledger records are written once, so there is no updated_at.
    """

    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the record was written (UTC)"
    )
