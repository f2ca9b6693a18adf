"""
RecordProcurementGateway -- gateway over a raw record transport.

Responsibility:
    Speak plain dict records to a ``RecordTransport`` (an HTTP data API, a
    document store, an in-memory fake) and expose them to the core as the
    canonical domain types.  This is the normalization boundary: every
    record received is parsed by ``procurement_kernel.domain.normalize`` and
    every write is serialized by it.

Collections:
    supplier_orders                         baskets
    supplier_order_lines                    basket lines
    supplier_order_line_purchase_requests   line <-> purchase request links
    purchase_requests                       purchase requests
    stock_item_suppliers                    supplier references

Failure modes:
    - A transport ``LookupError`` (record missing) becomes the matching
      ``NotFoundError`` subclass.
    - Any other transport exception becomes ``GatewayError``.
    - A record that cannot be normalized raises ``MalformedRecordError``.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from procurement_kernel.domain.models import (
    BASKET_UPDATABLE_FIELDS,
    LINE_UPDATABLE_FIELDS,
    REQUEST_UPDATABLE_FIELDS,
    BasketStatus,
    PurchaseRequest,
    RequestStatus,
    SupplierOrder,
    SupplierOrderLine,
    SupplierReference,
    Urgency,
    check_updatable_fields,
)
from procurement_kernel.domain.normalize import (
    parse_basket,
    parse_line,
    parse_many,
    parse_purchase_request,
    parse_supplier_reference,
    serialize_fields,
)
from procurement_kernel.exceptions import (
    BasketNotFoundError,
    GatewayError,
    LineNotFoundError,
    NotFoundError,
    ProcurementError,
    PurchaseRequestNotFoundError,
)
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.record_gateway")

BASKETS = "supplier_orders"
LINES = "supplier_order_lines"
LINE_REQUESTS = "supplier_order_line_purchase_requests"
PURCHASE_REQUESTS = "purchase_requests"
STOCK_ITEM_SUPPLIERS = "stock_item_suppliers"

Record = Mapping[str, Any]


class RecordTransport(Protocol):
    """CRUD by collection over plain records.

    ``patch`` and ``delete`` raise ``LookupError`` for an unknown id;
    ``get`` returns None.  ``list`` filters on field equality.
    """

    def get(self, collection: str, record_id: str) -> Record | None:
        ...

    def list(
        self, collection: str, filters: Mapping[str, Any] | None = None,
    ) -> Sequence[Record]:
        ...

    def create(self, collection: str, record: Record) -> Record:
        ...

    def patch(self, collection: str, record_id: str, fields: Record) -> Record:
        ...

    def delete(self, collection: str, record_id: str) -> None:
        ...


class RecordProcurementGateway:
    """``ProcurementGateway`` implementation over a ``RecordTransport``."""

    def __init__(self, transport: RecordTransport):
        self._transport = transport

    @contextmanager
    def _call(
        self,
        operation: str,
        not_found: Callable[[], NotFoundError] | None = None,
    ) -> Iterator[None]:
        try:
            yield
        except LookupError as exc:
            if not_found is None:
                raise GatewayError(operation, f"record not found: {exc}") from exc
            raise not_found() from exc
        except ProcurementError:
            raise
        except Exception as exc:
            logger.error(
                "transport_call_failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise GatewayError(operation, str(exc)) from exc

    # =========================================================================
    # Line assembly
    # =========================================================================

    def _links_by_line(self, line_ids: Iterable[str] | None = None) -> dict[str, list[Record]]:
        with self._call("list_line_requests"):
            links = self._transport.list(LINE_REQUESTS)
        wanted = None if line_ids is None else set(line_ids)
        grouped: dict[str, list[Record]] = defaultdict(list)
        for link in links:
            owner = link.get("supplier_order_line_id") or link.get("supplierOrderLineId")
            if isinstance(owner, Mapping):
                owner = owner.get("id")
            if owner is None:
                continue
            owner = str(owner)
            if wanted is None or owner in wanted:
                grouped[owner].append(link)
        return grouped

    def _assemble_lines(
        self,
        records: Sequence[Record],
        basket_id: UUID | None = None,
    ) -> tuple[SupplierOrderLine, ...]:
        if not records:
            return ()
        links = self._links_by_line(str(r.get("id")) for r in records)
        lines = []
        for record in records:
            joined = links.get(str(record.get("id")))
            if joined:
                record = {**record, "purchase_requests": joined}
            lines.append(parse_line(record, basket_id=basket_id))
        return tuple(lines)

    # =========================================================================
    # Baskets
    # =========================================================================

    def fetch_basket(self, basket_id: UUID) -> SupplierOrder:
        with self._call("fetch_basket"):
            record = self._transport.get(BASKETS, str(basket_id))
        if record is None:
            raise BasketNotFoundError(str(basket_id))
        return parse_basket({k: v for k, v in record.items() if k != "lines"})

    def fetch_baskets(
        self, statuses: Iterable[BasketStatus] | None = None,
    ) -> tuple[SupplierOrder, ...]:
        wanted = None if statuses is None else set(statuses)
        with self._call("fetch_baskets"):
            records = self._transport.list(BASKETS)
            line_records = self._transport.list(LINES)
        baskets = [
            b for b in parse_many(parse_basket, records)
            if wanted is None or b.status in wanted
        ]
        lines_by_basket: dict[UUID, list[SupplierOrderLine]] = defaultdict(list)
        for line in self._assemble_lines(line_records):
            lines_by_basket[line.basket_id].append(line)
        return tuple(b.with_lines(lines_by_basket.get(b.id, ())) for b in baskets)

    def fetch_open_basket_for_supplier(self, supplier_id: UUID) -> SupplierOrder | None:
        with self._call("fetch_open_basket_for_supplier"):
            records = self._transport.list(BASKETS, {"supplier_id": str(supplier_id)})
        pooling = [
            b for b in parse_many(parse_basket, records)
            if b.status == BasketStatus.POOLING
        ]
        if not pooling:
            return None
        pooling.sort(key=lambda b: (b.created_at is None, b.created_at or datetime.min))
        return pooling[0]

    def create_basket(
        self, supplier_id: UUID, order_number: str, created_at: datetime,
    ) -> SupplierOrder:
        record = serialize_fields({
            "supplier_id": supplier_id,
            "status": BasketStatus.POOLING,
            "order_number": order_number,
            "created_at": created_at,
        })
        with self._call("create_basket"):
            created = self._transport.create(BASKETS, record)
        return parse_basket(created)

    def update_basket(self, basket_id: UUID, fields: Mapping[str, Any]) -> SupplierOrder:
        check_updatable_fields("update_basket", fields, BASKET_UPDATABLE_FIELDS)
        with self._call("update_basket", lambda: BasketNotFoundError(str(basket_id))):
            record = self._transport.patch(BASKETS, str(basket_id), serialize_fields(fields))
        return parse_basket(record)

    def delete_basket(self, basket_id: UUID) -> None:
        with self._call("delete_basket", lambda: BasketNotFoundError(str(basket_id))):
            self._transport.delete(BASKETS, str(basket_id))

    # =========================================================================
    # Lines
    # =========================================================================

    def fetch_lines_for_basket(self, basket_id: UUID) -> tuple[SupplierOrderLine, ...]:
        with self._call("fetch_lines_for_basket"):
            records = self._transport.list(LINES, {"supplier_order_id": str(basket_id)})
        return self._assemble_lines(records, basket_id=basket_id)

    def find_line(self, basket_id: UUID, stock_item_id: UUID) -> SupplierOrderLine | None:
        with self._call("find_line"):
            records = self._transport.list(
                LINES,
                {"supplier_order_id": str(basket_id), "stock_item_id": str(stock_item_id)},
            )
        lines = self._assemble_lines(records[:1], basket_id=basket_id)
        return lines[0] if lines else None

    def create_line(
        self,
        basket_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal,
        urgency: Urgency | None = None,
        supplier_ref_snapshot: str | None = None,
    ) -> SupplierOrderLine:
        record = serialize_fields({
            "supplier_order_id": basket_id,
            "stock_item_id": stock_item_id,
            "quantity": quantity,
            "is_selected": False,
            "quote_received": False,
            "quantity_received": Decimal("0"),
            "urgency": urgency,
            "supplier_ref_snapshot": supplier_ref_snapshot,
        })
        with self._call("create_line"):
            created = self._transport.create(LINES, record)
        return parse_line(created, basket_id=basket_id)

    def update_line(self, line_id: UUID, fields: Mapping[str, Any]) -> SupplierOrderLine:
        check_updatable_fields("update_line", fields, LINE_UPDATABLE_FIELDS)
        with self._call("update_line", lambda: LineNotFoundError(str(line_id))):
            record = self._transport.patch(LINES, str(line_id), serialize_fields(fields))
        return self._assemble_lines([record])[0]

    def delete_line(self, line_id: UUID) -> None:
        with self._call("delete_line", lambda: LineNotFoundError(str(line_id))):
            self._transport.delete(LINES, str(line_id))
        for link in self._links_by_line([str(line_id)]).get(str(line_id), ()):
            with self._call("delete_line_request"):
                try:
                    self._transport.delete(LINE_REQUESTS, str(link["id"]))
                except LookupError:
                    logger.debug("line_request_already_deleted", extra={"link_id": str(link["id"])})

    def link_request(self, line_id: UUID, request_id: UUID, quantity: Decimal) -> bool:
        with self._call("link_request"):
            line = self._transport.get(LINES, str(line_id))
        if line is None:
            raise LineNotFoundError(str(line_id))
        existing = self._assemble_lines([line])[0]
        if existing.references(request_id):
            return False
        with self._call("link_request"):
            self._transport.create(LINE_REQUESTS, serialize_fields({
                "supplier_order_line_id": line_id,
                "purchase_request_id": request_id,
                "quantity": quantity,
            }))
        return True

    # =========================================================================
    # Purchase requests
    # =========================================================================

    def fetch_purchase_requests(self, request_ids: Iterable[UUID]) -> tuple[PurchaseRequest, ...]:
        requests = []
        for request_id in request_ids:
            with self._call("fetch_purchase_requests"):
                record = self._transport.get(PURCHASE_REQUESTS, str(request_id))
            if record is not None:
                requests.append(parse_purchase_request(record))
        return tuple(requests)

    def fetch_open_purchase_requests(self) -> tuple[PurchaseRequest, ...]:
        with self._call("fetch_open_purchase_requests"):
            records = self._transport.list(
                PURCHASE_REQUESTS, {"status": RequestStatus.OPEN.value},
            )
        return parse_many(parse_purchase_request, records)

    def update_purchase_request(
        self, request_id: UUID, fields: Mapping[str, Any],
    ) -> PurchaseRequest:
        check_updatable_fields("update_purchase_request", fields, REQUEST_UPDATABLE_FIELDS)
        with self._call(
            "update_purchase_request",
            lambda: PurchaseRequestNotFoundError(str(request_id)),
        ):
            record = self._transport.patch(
                PURCHASE_REQUESTS, str(request_id), serialize_fields(fields),
            )
        return parse_purchase_request(record)

    # =========================================================================
    # Supplier references
    # =========================================================================

    def fetch_supplier_references(self, stock_item_id: UUID) -> tuple[SupplierReference, ...]:
        with self._call("fetch_supplier_references"):
            records = self._transport.list(
                STOCK_ITEM_SUPPLIERS, {"stock_item_id": str(stock_item_id)},
            )
        return parse_many(parse_supplier_reference, records)
