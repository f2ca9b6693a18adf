"""
Record normalization (``procurement_kernel.domain.normalize``).

Responsibility
--------------
Parse every raw record received from a transport into one canonical typed
shape (``PurchaseRequest``, ``SupplierOrder``, ``SupplierOrderLine``,
``SupplierReference``), and serialize canonical field values back into
plain record values for writes.

Records arrive with field-name variants (``is_selected`` / ``isSelected``),
foreign keys either as bare ids or as nested objects (``{"id": ...}``), and
purchase request links either as M2M junction rows
(``{"purchase_request_id": {...}}``), as bare ids, or as a single legacy
``purchase_request_uid``.  All variants are resolved here and nowhere else.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.

Failure modes
-------------
* ``MalformedRecordError`` when a required field is missing or a value
  cannot be coerced (bad UUID, bad decimal, unknown status).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from procurement_kernel.domain.models import (
    BasketStatus,
    PurchaseRequest,
    RequestStatus,
    SupplierOrder,
    SupplierOrderLine,
    SupplierReference,
    Urgency,
)
from procurement_kernel.exceptions import MalformedRecordError

_MISSING = object()


# ---------------------------------------------------------------------------
# Field access
# ---------------------------------------------------------------------------


def _pick(record: Mapping[str, Any], *names: str, default: Any = _MISSING) -> Any:
    """Return the first present, non-None value among ``names``."""
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return None if default is _MISSING else default


def _unwrap_id(value: Any) -> Any:
    """Resolve a nested ``{"id": ...}`` foreign key to the bare id."""
    if isinstance(value, Mapping):
        return value.get("id")
    return value


def _as_uuid(record_type: str, field: str, value: Any) -> UUID:
    value = _unwrap_id(value)
    if value is None:
        raise MalformedRecordError(record_type, field, "missing")
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise MalformedRecordError(record_type, field, f"not a UUID: {value!r}")


def _as_optional_uuid(record_type: str, field: str, value: Any) -> UUID | None:
    if _unwrap_id(value) is None:
        return None
    return _as_uuid(record_type, field, value)


def _as_decimal(record_type: str, field: str, value: Any, default: Decimal) -> Decimal:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise MalformedRecordError(record_type, field, f"not a number: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise MalformedRecordError(record_type, field, f"not a number: {value!r}")


def _as_optional_decimal(record_type: str, field: str, value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return _as_decimal(record_type, field, value, Decimal("0"))


def _as_optional_int(record_type: str, field: str, value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedRecordError(record_type, field, f"not an integer: {value!r}")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _as_datetime(record_type: str, field: str, value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise MalformedRecordError(record_type, field, f"not a timestamp: {value!r}")


def _as_urgency(record_type: str, value: Any) -> Urgency | None:
    if value is None or value == "":
        return None
    try:
        return Urgency(str(value).strip().lower())
    except ValueError:
        raise MalformedRecordError(record_type, "urgency", f"unknown urgency: {value!r}")


def _as_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


# ---------------------------------------------------------------------------
# Record parsers
# ---------------------------------------------------------------------------


def parse_purchase_request(record: Mapping[str, Any]) -> PurchaseRequest:
    """Parse a raw purchase request record."""
    status_raw = _pick(record, "status", default=RequestStatus.OPEN.value)
    try:
        status = RequestStatus.parse(status_raw)
    except ValueError:
        raise MalformedRecordError(
            "purchase_request", "status", f"unknown status: {status_raw!r}"
        )
    return PurchaseRequest(
        id=_as_uuid("purchase_request", "id", record.get("id")),
        quantity=_as_decimal(
            "purchase_request", "quantity", record.get("quantity"), Decimal("1")
        ),
        status=status,
        stock_item_id=_as_optional_uuid(
            "purchase_request",
            "stock_item_id",
            _pick(record, "stock_item_id", "stockItemId", "stock_item", "stockItem"),
        ),
        created_at=_as_datetime(
            "purchase_request",
            "created_at",
            _pick(record, "created_at", "createdAt", "date_created"),
        ),
        urgency=_as_urgency("purchase_request", record.get("urgency")) or Urgency.NORMAL,
        description=str(_pick(record, "description", "item_label", "itemLabel", default="")),
    )


def _linked_request_ids(record: Mapping[str, Any]) -> tuple[UUID, ...]:
    """Collect purchase request ids from every link shape a line may carry."""
    raw: list[Any] = []
    links = _pick(
        record,
        "purchase_requests",
        "purchaseRequests",
        "purchase_request_ids",
        "purchaseRequestIds",
        default=(),
    )
    for link in links:
        if isinstance(link, Mapping) and (
            "purchase_request_id" in link or "purchaseRequest" in link
        ):
            raw.append(_pick(link, "purchase_request_id", "purchaseRequest"))
        else:
            raw.append(link)
    legacy = _pick(record, "purchase_request_uid", "purchaseRequestUid")
    if legacy is not None:
        raw.append(legacy)

    seen: dict[UUID, None] = {}
    for value in raw:
        if _unwrap_id(value) is None:
            continue
        seen.setdefault(_as_uuid("supplier_order_line", "purchase_requests", value), None)
    return tuple(seen)


def parse_line(record: Mapping[str, Any], basket_id: UUID | None = None) -> SupplierOrderLine:
    """Parse a raw basket line record.

    ``basket_id`` is used when the record omits its owning basket, which
    happens when lines are embedded in a basket record.
    """
    owner = _pick(record, "supplier_order_id", "supplierOrderId", "basket_id", "basketId")
    if _unwrap_id(owner) is None:
        owner = basket_id
    return SupplierOrderLine(
        id=_as_uuid("supplier_order_line", "id", record.get("id")),
        basket_id=_as_uuid("supplier_order_line", "supplier_order_id", owner),
        quantity=_as_decimal(
            "supplier_order_line", "quantity", record.get("quantity"), Decimal("0")
        ),
        stock_item_id=_as_optional_uuid(
            "supplier_order_line",
            "stock_item_id",
            _pick(record, "stock_item_id", "stockItemId", "stock_item", "stockItem"),
        ),
        is_selected=_as_bool(_pick(record, "is_selected", "isSelected", default=False)),
        quote_received=_as_bool(
            _pick(record, "quote_received", "quoteReceived", default=False)
        ),
        quote_price=_as_optional_decimal(
            "supplier_order_line",
            "quote_price",
            _pick(record, "quote_price", "quotePrice", "unit_price", "unitPrice"),
        ),
        lead_time_days=_as_optional_int(
            "supplier_order_line",
            "lead_time_days",
            _pick(record, "lead_time_days", "leadTimeDays"),
        ),
        manufacturer_name=_as_optional_str(
            _pick(record, "manufacturer_name", "manufacturerName")
        ),
        manufacturer_ref=_as_optional_str(
            _pick(record, "manufacturer_ref", "manufacturerRef")
        ),
        supplier_ref_snapshot=_as_optional_str(
            _pick(record, "supplier_ref_snapshot", "supplierRefSnapshot")
        ),
        urgency=_as_urgency("supplier_order_line", record.get("urgency")),
        quantity_received=_as_decimal(
            "supplier_order_line",
            "quantity_received",
            _pick(record, "quantity_received", "quantityReceived"),
            Decimal("0"),
        ),
        purchase_request_ids=_linked_request_ids(record),
    )


def parse_basket(record: Mapping[str, Any]) -> SupplierOrder:
    """Parse a raw basket (supplier order) record, with embedded lines if any."""
    basket_id = _as_uuid("supplier_order", "id", record.get("id"))
    status_raw = _pick(record, "status", default=BasketStatus.POOLING.value)
    try:
        status = BasketStatus.parse(status_raw)
    except ValueError:
        raise MalformedRecordError(
            "supplier_order", "status", f"unknown status: {status_raw!r}"
        )
    lines = tuple(
        parse_line(line, basket_id=basket_id)
        for line in _pick(record, "lines", "supplier_order_lines", default=())
    )
    return SupplierOrder(
        id=basket_id,
        supplier_id=_as_uuid(
            "supplier_order",
            "supplier_id",
            _pick(record, "supplier_id", "supplierId", "supplier"),
        ),
        status=status,
        order_number=str(_pick(record, "order_number", "orderNumber", default="")),
        created_at=_as_datetime(
            "supplier_order", "created_at",
            _pick(record, "created_at", "createdAt", "date_created"),
        ),
        sent_at=_as_datetime(
            "supplier_order", "sent_at", _pick(record, "sent_at", "sentAt", "ordered_at")
        ),
        received_at=_as_datetime(
            "supplier_order", "received_at", _pick(record, "received_at", "receivedAt")
        ),
        closed_at=_as_datetime(
            "supplier_order", "closed_at", _pick(record, "closed_at", "closedAt")
        ),
        lines=lines,
    )


def parse_supplier_reference(record: Mapping[str, Any]) -> SupplierReference:
    """Parse a raw stock item / supplier link record."""
    return SupplierReference(
        stock_item_id=_as_uuid(
            "stock_item_supplier",
            "stock_item_id",
            _pick(record, "stock_item_id", "stockItemId", "stock_item"),
        ),
        supplier_id=_as_uuid(
            "stock_item_supplier",
            "supplier_id",
            _pick(record, "supplier_id", "supplierId", "supplier"),
        ),
        supplier_ref=_as_optional_str(_pick(record, "supplier_ref", "supplierRef")),
        is_preferred=_as_bool(
            _pick(record, "is_preferred", "isPreferred", "preferred", default=False)
        ),
    )


def parse_many(parser, records: Iterable[Mapping[str, Any]]) -> tuple:
    return tuple(parser(record) for record in records)


# ---------------------------------------------------------------------------
# Write serialization
# ---------------------------------------------------------------------------


def serialize_value(value: Any) -> Any:
    """Render a canonical value as a plain record value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def serialize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {name: serialize_value(value) for name, value in fields.items()}
