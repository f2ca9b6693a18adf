"""
Procurement Domain Models.

The nouns of procurement reconciliation: purchase requests, supplier
orders ("baskets"), basket lines, and supplier references.

All records are frozen.  A line belongs to exactly one basket
(``basket_id``); it refers to purchase requests only by id, so the same
request may be referenced by twin lines in several baskets.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class BasketStatus(str, Enum):
    """Supplier order (basket) lifecycle states."""
    POOLING = "POOLING"
    SENT = "SENT"
    ACK = "ACK"
    RECEIVED = "RECEIVED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: "BasketStatus | str") -> "BasketStatus":
        """Read a status case-insensitively; legacy ``OPEN`` is POOLING.

        Raises:
            ValueError: if the value is not a basket status.
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        if text == "OPEN":
            return cls.POOLING
        return cls(text)


class RequestStatus(str, Enum):
    """Purchase request lifecycle states."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    ORDERED = "ordered"
    RECEIVED = "received"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: "RequestStatus | str") -> "RequestStatus":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class Urgency(str, Enum):
    """Purchase request urgency, carried onto basket lines."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]

    @classmethod
    def highest(cls, *values: "Urgency | None") -> "Urgency | None":
        present = [v for v in values if v is not None]
        if not present:
            return None
        return max(present, key=lambda u: u.rank)


_URGENCY_RANK = {Urgency.LOW: 1, Urgency.NORMAL: 2, Urgency.HIGH: 3}


# Fields the core is allowed to write through the gateway.
LINE_UPDATABLE_FIELDS = frozenset({
    "quantity",
    "is_selected",
    "quote_received",
    "quote_price",
    "lead_time_days",
    "manufacturer_name",
    "manufacturer_ref",
    "urgency",
    "quantity_received",
})

BASKET_UPDATABLE_FIELDS = frozenset({
    "status",
    "sent_at",
    "received_at",
    "closed_at",
})

REQUEST_UPDATABLE_FIELDS = frozenset({"status"})


def check_updatable_fields(
    operation: str, fields: Iterable[str], allowed: frozenset[str],
) -> None:
    """Raise ValueError naming every field in ``fields`` outside ``allowed``."""
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise ValueError(f"{operation}: field(s) not updatable: {', '.join(unknown)}")


@dataclass(frozen=True)
class PurchaseRequest:
    """An originating demand for a stock item."""
    id: UUID
    quantity: Decimal = Decimal("1")
    status: RequestStatus = RequestStatus.OPEN
    stock_item_id: UUID | None = None
    created_at: datetime | None = None
    urgency: Urgency = Urgency.NORMAL
    description: str = ""


@dataclass(frozen=True)
class SupplierOrderLine:
    """One item quantity within a basket."""
    id: UUID
    basket_id: UUID
    quantity: Decimal = Decimal("0")
    stock_item_id: UUID | None = None
    is_selected: bool = False
    quote_received: bool = False
    quote_price: Decimal | None = None
    lead_time_days: int | None = None
    manufacturer_name: str | None = None
    manufacturer_ref: str | None = None
    supplier_ref_snapshot: str | None = None
    urgency: Urgency | None = None
    quantity_received: Decimal = Decimal("0")
    purchase_request_ids: tuple[UUID, ...] = field(default_factory=tuple)

    def references(self, request_id: UUID) -> bool:
        return request_id in self.purchase_request_ids


@dataclass(frozen=True)
class SupplierOrder:
    """A consolidated purchase document addressed to one supplier."""
    id: UUID
    supplier_id: UUID
    status: BasketStatus = BasketStatus.POOLING
    order_number: str = ""
    created_at: datetime | None = None
    sent_at: datetime | None = None
    received_at: datetime | None = None
    closed_at: datetime | None = None
    lines: tuple[SupplierOrderLine, ...] = field(default_factory=tuple)

    def with_lines(self, lines) -> "SupplierOrder":
        return replace(self, lines=tuple(lines))

    def get_line(self, line_id: UUID) -> SupplierOrderLine | None:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None

    @property
    def selected_lines(self) -> tuple[SupplierOrderLine, ...]:
        return tuple(line for line in self.lines if line.is_selected)

    @property
    def unselected_lines(self) -> tuple[SupplierOrderLine, ...]:
        return tuple(line for line in self.lines if not line.is_selected)

    @property
    def request_ids(self) -> tuple[UUID, ...]:
        """Unique purchase request ids referenced by the lines, first-seen order."""
        return linked_request_ids(self.lines)


@dataclass(frozen=True)
class SupplierReference:
    """A supplier able to deliver a stock item, under its own reference."""
    stock_item_id: UUID
    supplier_id: UUID
    supplier_ref: str | None = None
    is_preferred: bool = False


def linked_request_ids(lines) -> tuple[UUID, ...]:
    """Unique purchase request ids referenced by ``lines``, first-seen order."""
    seen: dict[UUID, None] = {}
    for line in lines:
        for request_id in line.purchase_request_ids:
            seen.setdefault(request_id, None)
    return tuple(seen)
