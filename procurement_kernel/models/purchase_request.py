"""
ORM models for purchase requests and stock item supplier references.

Invariants enforced
-------------------
* Enum fields are stored as String(50).
* ``(stock_item_id, supplier_id)`` is unique in ``stock_item_suppliers``.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import TrackedBase
from procurement_kernel.models._time import as_aware


class PurchaseRequestModel(TrackedBase):
    """
    An originating demand for a stock item.

    Maps to the ``PurchaseRequest`` DTO in
    ``procurement_kernel.domain.models``.  ``requested_at`` is the business
    creation time used for aging; ``created_at`` is row metadata.
    """

    __tablename__ = "purchase_requests"

    __table_args__ = (
        Index("idx_purchase_request_status", "status"),
        Index("idx_purchase_request_stock_item", "stock_item_id"),
    )

    quantity: Mapped[Decimal] = mapped_column(default=Decimal("1"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="open")
    stock_item_id: Mapped[UUID | None]
    requested_at: Mapped[datetime | None]
    urgency: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    def to_dto(self):
        from procurement_kernel.domain.models import (
            PurchaseRequest,
            RequestStatus,
            Urgency,
        )

        return PurchaseRequest(
            id=self.id,
            quantity=self.quantity,
            status=RequestStatus(self.status),
            stock_item_id=self.stock_item_id,
            created_at=as_aware(self.requested_at),
            urgency=Urgency(self.urgency),
            description=self.description,
        )

    @classmethod
    def from_dto(cls, dto) -> "PurchaseRequestModel":
        return cls(
            id=dto.id,
            quantity=dto.quantity,
            status=dto.status.value,
            stock_item_id=dto.stock_item_id,
            requested_at=dto.created_at,
            urgency=dto.urgency.value,
            description=dto.description,
        )

    def __repr__(self) -> str:
        return f"<PurchaseRequestModel {self.id} [{self.status}]>"


class StockItemSupplierModel(TrackedBase):
    """A supplier able to deliver a stock item, under its own reference."""

    __tablename__ = "stock_item_suppliers"

    __table_args__ = (
        UniqueConstraint("stock_item_id", "supplier_id", name="uq_stock_item_supplier"),
        Index("idx_stock_item_supplier_item", "stock_item_id"),
    )

    stock_item_id: Mapped[UUID] = mapped_column(nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(nullable=False)
    supplier_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_preferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self):
        from procurement_kernel.domain.models import SupplierReference

        return SupplierReference(
            stock_item_id=self.stock_item_id,
            supplier_id=self.supplier_id,
            supplier_ref=self.supplier_ref,
            is_preferred=self.is_preferred,
        )

    @classmethod
    def from_dto(cls, dto) -> "StockItemSupplierModel":
        return cls(
            stock_item_id=dto.stock_item_id,
            supplier_id=dto.supplier_id,
            supplier_ref=dto.supplier_ref,
            is_preferred=dto.is_preferred,
        )
