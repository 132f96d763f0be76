"""
Module: approval_kernel.db.types
Responsibility: Column types and annotated aliases shared by every model.
Architecture position: Kernel > DB.  May be imported by models/ and
    selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Amounts use Money (Numeric(38, 9)).  No floats.
    - Timestamps are stored and returned as timezone-aware UTC.  Naive
      datetimes are rejected on bind rather than guessed at.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """DateTime(timezone=True) that always round-trips as aware UTC.

    PostgreSQL keeps the offset natively; SQLite stores the value as text
    and drops tzinfo, so results are re-tagged with UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime {value!r} cannot be stored; use UTC-aware values")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Enum values, role names and user identifiers
ShortCode = Annotated[str, String(50)]

# Identifiers coming from collaborating services (user ids, request ids)
ExternalId = Annotated[str, String(100)]

# Long text for comments and reasons
LongText = Annotated[str, String(4000)]


def utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
