"""
Pure domain layer.

Canonical procurement types, workflow definitions and record
normalization, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Transport
- I/O

All domain objects are immutable.
"""

from procurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from procurement_kernel.domain.models import (
    BasketStatus,
    PurchaseRequest,
    RequestStatus,
    SupplierOrder,
    SupplierOrderLine,
    SupplierReference,
    Urgency,
    linked_request_ids,
)
from procurement_kernel.domain.workflow import Guard, Transition, Workflow
from procurement_kernel.domain.workflows import (
    BASKET_WORKFLOW,
    PURCHASE_REQUEST_WORKFLOW,
)

__all__ = [
    "BASKET_WORKFLOW",
    "PURCHASE_REQUEST_WORKFLOW",
    "BasketStatus",
    "Clock",
    "DeterministicClock",
    "Guard",
    "PurchaseRequest",
    "RequestStatus",
    "SupplierOrder",
    "SupplierOrderLine",
    "SupplierReference",
    "SystemClock",
    "Transition",
    "Urgency",
    "Workflow",
    "linked_request_ids",
]
