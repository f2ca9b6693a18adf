"""
procurement_kernel.db.base -- Declarative base for the procurement tables.

Column conventions shared by every model:

    UUID      -> String(36)       (portable between SQLite and PostgreSQL)
    Decimal   -> Numeric(18, 4)   (quantities and quote prices, never float)
    datetime  -> DateTime(timezone=True)

Nothing here may import from models/, domain/ or outer layers.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID bound as its 36-character string form and read back as UUID."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    """Every table gets a client-generated uuid4 ``id``."""

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Numeric(18, 4),
        datetime: DateTime(timezone=True),
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds database-maintained row timestamps.

    These record when the row was written, not when the basket was sent or
    received; those business instants are their own columns, set from the
    service clock.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(),
    )
