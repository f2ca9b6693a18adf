"""
ORM models for supplier orders ("baskets"), their lines, and the
line-to-purchase-request links.

Invariants enforced
-------------------
* A ``SupplierOrderLineModel`` belongs to exactly one ``SupplierOrderModel``.
* A purchase request is linked to a given line at most once
  (``uq_line_purchase_request``).
* Purchase requests are referenced by the link table only; the same request
  may be linked to lines in several baskets (twin lines).
* Deleting a line deletes its link rows; deleting a basket deletes its lines.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase
from procurement_kernel.models._time import as_aware


class SupplierOrderModel(TrackedBase):
    """
    A consolidated purchase document addressed to one supplier.

    Maps to the ``SupplierOrder`` DTO.  ``opened_at`` is the business
    creation time used for aging and order numbering.
    """

    __tablename__ = "supplier_orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_supplier_order_number"),
        Index("idx_supplier_order_supplier_status", "supplier_id", "status"),
    )

    supplier_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="POOLING")
    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    opened_at: Mapped[datetime | None]
    sent_at: Mapped[datetime | None]
    received_at: Mapped[datetime | None]
    closed_at: Mapped[datetime | None]

    lines: Mapped[list["SupplierOrderLineModel"]] = relationship(
        "SupplierOrderLineModel",
        back_populates="basket",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SupplierOrderLineModel.position",
    )

    def to_dto(self, include_lines: bool = True):
        from procurement_kernel.domain.models import BasketStatus, SupplierOrder

        lines = tuple(line.to_dto() for line in self.lines) if include_lines else ()
        return SupplierOrder(
            id=self.id,
            supplier_id=self.supplier_id,
            status=BasketStatus.parse(self.status),
            order_number=self.order_number,
            created_at=as_aware(self.opened_at),
            sent_at=as_aware(self.sent_at),
            received_at=as_aware(self.received_at),
            closed_at=as_aware(self.closed_at),
            lines=lines,
        )

    def __repr__(self) -> str:
        return f"<SupplierOrderModel {self.order_number} [{self.status}]>"


class SupplierOrderLineModel(TrackedBase):
    """
    One item quantity within a basket.

    ``position`` keeps the fetch order stable (insertion order).
    """

    __tablename__ = "supplier_order_lines"

    __table_args__ = (
        Index("idx_supplier_order_line_basket", "supplier_order_id"),
        Index("idx_supplier_order_line_stock_item", "stock_item_id"),
    )

    supplier_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("supplier_orders.id", ondelete="CASCADE"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stock_item_id: Mapped[UUID | None]
    quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quote_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quote_price: Mapped[Decimal | None]
    lead_time_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    manufacturer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    manufacturer_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_ref_snapshot: Mapped[str | None] = mapped_column(String(100), nullable=True)
    urgency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quantity_received: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    basket: Mapped["SupplierOrderModel"] = relationship(
        "SupplierOrderModel",
        back_populates="lines",
    )

    request_links: Mapped[list["SupplierOrderLineRequestModel"]] = relationship(
        "SupplierOrderLineRequestModel",
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SupplierOrderLineRequestModel.position",
    )

    def to_dto(self):
        from procurement_kernel.domain.models import SupplierOrderLine, Urgency

        return SupplierOrderLine(
            id=self.id,
            basket_id=self.supplier_order_id,
            quantity=self.quantity,
            stock_item_id=self.stock_item_id,
            is_selected=self.is_selected,
            quote_received=self.quote_received,
            quote_price=self.quote_price,
            lead_time_days=self.lead_time_days,
            manufacturer_name=self.manufacturer_name,
            manufacturer_ref=self.manufacturer_ref,
            supplier_ref_snapshot=self.supplier_ref_snapshot,
            urgency=Urgency(self.urgency) if self.urgency else None,
            quantity_received=self.quantity_received,
            purchase_request_ids=tuple(
                link.purchase_request_id for link in self.request_links
            ),
        )

    def __repr__(self) -> str:
        return f"<SupplierOrderLineModel {self.id} qty={self.quantity}>"


class SupplierOrderLineRequestModel(TrackedBase):
    """Link between a basket line and a purchase request it fulfils."""

    __tablename__ = "supplier_order_line_requests"

    __table_args__ = (
        UniqueConstraint(
            "supplier_order_line_id", "purchase_request_id",
            name="uq_line_purchase_request",
        ),
        Index("idx_line_request_purchase_request", "purchase_request_id"),
    )

    supplier_order_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("supplier_order_lines.id", ondelete="CASCADE"), nullable=False,
    )
    purchase_request_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_requests.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    line: Mapped["SupplierOrderLineModel"] = relationship(
        "SupplierOrderLineModel",
        back_populates="request_links",
    )
