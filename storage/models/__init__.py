"""
Storage Models Package.

ORM models for the ledger store, one table per logical
collection.

============================================================
MODEL ORGANIZATION
============================================================

Ledger (ledger.py)
- BlockModel
- ExtrinsicModel
- EventModel

============================================================
DESIGN PRINCIPLES
============================================================

- Primary keys are the deterministic record identities
- Rows are inserted once and never updated
- The normalized record is kept whole in a JSON document
- Typed columns only where range or filter queries need them

============================================================
"""

from storage.models.base import Base, DocumentType, IngestedAtMixin

from storage.models.ledger import (
    BlockModel,
    ExtrinsicModel,
    EventModel,
)

__all__ = [
    # Base
    "Base",
    "DocumentType",
    "IngestedAtMixin",
    # Ledger
    "BlockModel",
    "ExtrinsicModel",
    "EventModel",
]
