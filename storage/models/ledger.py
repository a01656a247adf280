"""
Ledger Domain ORM Models.

============================================================
PURPOSE
============================================================
One table per logical collection: blocks, extrinsics, events.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Mutability: IMMUTABLE (insert-once, never updated or deleted)
- Identity: deterministic primary key, so replays collide
  instead of duplicating
- Payload: the full normalized record in `document`, plus a
  few typed columns for range and filter queries

============================================================
"""

from typing import Any, Optional

from sqlalchemy import BigInteger, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, DocumentType, IngestedAtMixin


class BlockModel(Base, IngestedAtMixin):
    """
    Block record.

    Presence of a row is the completion marker for its height,
    hence the unique constraint on height.
    """

    __tablename__ = "blocks"

    id: Mapped[str] = mapped_column(
        String(80),
        primary_key=True,
        comment="Block hash"
    )

    height: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
        index=True,
        comment="Block number"
    )

    timestamp: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Block timestamp (ms) from the timestamp.set call"
    )

    cindex: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Ceremony index at this block"
    )

    phase: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="Ceremony phase at this block"
    )

    document: Mapped[Any] = mapped_column(
        DocumentType,
        nullable=False,
        comment="Full block record"
    )

    def __repr__(self) -> str:
        return f"<BlockModel(height={self.height}, id={self.id})>"


class ExtrinsicModel(Base, IngestedAtMixin):
    """Extrinsic record keyed by "<height>-<position>"."""

    __tablename__ = "extrinsics"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)

    block_height: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    section: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    method: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    document: Mapped[Any] = mapped_column(DocumentType, nullable=False)

    def __repr__(self) -> str:
        return f"<ExtrinsicModel(id={self.id}, {self.section}.{self.method})>"


class EventModel(Base, IngestedAtMixin):
    """Event record keyed by "<extrinsic id>-<event index>"."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(48), primary_key=True)

    extrinsic_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)

    block_height: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    section: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    method: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    document: Mapped[Any] = mapped_column(DocumentType, nullable=False)

    def __repr__(self) -> str:
        return f"<EventModel(id={self.id}, {self.section}.{self.method})>"
