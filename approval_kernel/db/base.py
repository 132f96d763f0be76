"""
Module: approval_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models.  Provides the
    UUID primary key convention and the type annotation map so that every
    model stores identifiers, amounts and timestamps the same way.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  ALL model files import from here.  This module MUST NOT import
    from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys generated with uuid4, stored as String(36).
    - Decimal maps to Numeric(38, 9); floats are never used for amounts.
    - datetime maps to UTCDateTime, so values read back are timezone-aware
      UTC on every backend (SQLite drops tzinfo otherwise).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from approval_kernel.db.types import UTCDateTime


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Converts UUID -> str on bind and str -> UUID on load.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all approval models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to Numeric(38, 9).
        - datetime maps to UTCDateTime (timezone-aware, normalized to UTC).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


# Re-export UUID for convenience
UUID = PyUUID
