"""
ProcurementGateway -- persistence collaborator contract.

Responsibility:
    The reads and writes the procurement core needs, expressed over the
    canonical domain types.  Implementations own transport, storage and
    record normalization; the core never sees raw records.

Contract:
    - Reads of a basket's lines return the authoritative, current set, in a
      stable order.
    - ``delete_line`` raises ``LineNotFoundError`` if the line is already gone.
    - ``update_*`` raise the matching ``NotFoundError`` subclass for an
      unknown id.
    - ``link_request`` is idempotent and returns False when the link existed.
    - Transport or storage failures surface as ``GatewayError``.

Implementations:
    - ``procurement_services.record_gateway.RecordProcurementGateway``
    - ``procurement_services.sql_gateway.SqlProcurementGateway``
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from procurement_kernel.domain.models import (
    BasketStatus,
    PurchaseRequest,
    SupplierOrder,
    SupplierOrderLine,
    SupplierReference,
    Urgency,
)

ACTIVE_BASKET_STATUSES = (
    BasketStatus.POOLING,
    BasketStatus.SENT,
    BasketStatus.ACK,
    BasketStatus.RECEIVED,
    BasketStatus.CLOSED,
)


class ProcurementGateway(Protocol):
    """Persistence operations consumed by the procurement services."""

    # Baskets

    def fetch_basket(self, basket_id: UUID) -> SupplierOrder:
        """Basket without lines.  Raises BasketNotFoundError."""
        ...

    def fetch_baskets(
        self, statuses: Iterable[BasketStatus] | None = None,
    ) -> Sequence[SupplierOrder]:
        """Baskets with their lines, optionally restricted to ``statuses``."""
        ...

    def fetch_open_basket_for_supplier(self, supplier_id: UUID) -> SupplierOrder | None:
        """The supplier's POOLING basket, if any."""
        ...

    def create_basket(
        self, supplier_id: UUID, order_number: str, created_at: datetime,
    ) -> SupplierOrder:
        ...

    def update_basket(self, basket_id: UUID, fields: Mapping[str, Any]) -> SupplierOrder:
        ...

    def delete_basket(self, basket_id: UUID) -> None:
        ...

    # Lines

    def fetch_lines_for_basket(self, basket_id: UUID) -> Sequence[SupplierOrderLine]:
        ...

    def find_line(self, basket_id: UUID, stock_item_id: UUID) -> SupplierOrderLine | None:
        ...

    def create_line(
        self,
        basket_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal,
        urgency: Urgency | None = None,
        supplier_ref_snapshot: str | None = None,
    ) -> SupplierOrderLine:
        """New lines start unselected and without a quote."""
        ...

    def update_line(self, line_id: UUID, fields: Mapping[str, Any]) -> SupplierOrderLine:
        ...

    def delete_line(self, line_id: UUID) -> None:
        ...

    def link_request(self, line_id: UUID, request_id: UUID, quantity: Decimal) -> bool:
        ...

    # Purchase requests

    def fetch_purchase_requests(self, request_ids: Iterable[UUID]) -> Sequence[PurchaseRequest]:
        """Known requests among ``request_ids``; unknown ids are omitted."""
        ...

    def fetch_open_purchase_requests(self) -> Sequence[PurchaseRequest]:
        ...

    def update_purchase_request(
        self, request_id: UUID, fields: Mapping[str, Any],
    ) -> PurchaseRequest:
        ...

    # Supplier references

    def fetch_supplier_references(self, stock_item_id: UUID) -> Sequence[SupplierReference]:
        ...
