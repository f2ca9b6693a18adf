"""
Dispatch Allocator (``procurement_services.dispatch_service``).

Responsibility
--------------
Place open purchase requests into basket lines.  Each request is attached
to the open (POOLING) basket of its preferred supplier, creating the basket
when the supplier has none, and merged into the basket's line for the same
stock item.  With ``consult_all_suppliers`` the request is placed at every
referenced supplier, preferred first, which creates twin lines.

Architecture position
---------------------
**Services layer** -- imperative shell over ``ProcurementGateway``.
Supplier resolution is a separate, injectable collaborator
(``SupplierResolver``).

Outcomes
--------
* ``dispatched``  -- the request is linked to one line per supplier and is
  now ``in_progress``.
* ``to_qualify``  -- no stock item, or no preferred supplier.  Not a
  failure; a buyer must qualify the request.
* ``errors``      -- a per-request failure (request not open, gateway
  failure, vanished record).  The batch continues.

``ConfigurationError`` is never collected; it stops the batch.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.models import (
    PurchaseRequest,
    RequestStatus,
    SupplierOrder,
    SupplierOrderLine,
    SupplierReference,
    Urgency,
)
from procurement_kernel.domain.workflows import PURCHASE_REQUEST_WORKFLOW
from procurement_kernel.exceptions import (
    ConfigurationError,
    ProcurementError,
    RequestNotDispatchableError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_services.gateway import ProcurementGateway

logger = get_logger("services.dispatch")

REASON_NO_STOCK_ITEM = "no stock item"
REASON_NO_PREFERRED_SUPPLIER = "no preferred supplier"


@dataclass(frozen=True)
class DispatchedRequest:
    request_id: UUID
    basket_ids: tuple[UUID, ...]
    line_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class ToQualify:
    request_id: UUID
    reason: str


@dataclass(frozen=True)
class DispatchError:
    request_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class DispatchResult:
    """Itemized outcome of one dispatch run."""

    dispatched: tuple[DispatchedRequest, ...] = ()
    to_qualify: tuple[ToQualify, ...] = ()
    errors: tuple[DispatchError, ...] = ()


class SupplierResolver(Protocol):
    def resolve(self, request: PurchaseRequest) -> Sequence[SupplierReference]:
        """Supplier references to dispatch to, preferred first.

        Empty when the request has no preferred supplier.
        """
        ...


class StockItemSupplierResolver:
    """Resolve suppliers from the stock item / supplier reference table."""

    def __init__(self, gateway: ProcurementGateway, consult_all: bool = False):
        self._gateway = gateway
        self._consult_all = consult_all

    def resolve(self, request: PurchaseRequest) -> tuple[SupplierReference, ...]:
        if request.stock_item_id is None:
            return ()
        references = self._gateway.fetch_supplier_references(request.stock_item_id)
        preferred = next((r for r in references if r.is_preferred), None)
        if preferred is None:
            return ()
        if not self._consult_all:
            return (preferred,)
        others = tuple(
            r for r in references
            if r.supplier_id != preferred.supplier_id
        )
        return (preferred,) + others


def _random_order_sequence() -> int:
    return secrets.randbelow(10000)


class DispatchAllocator:
    """
    Places open purchase requests into supplier baskets.

    Contract
    --------
    * ``dispatch`` never raises for a single request's failure; it is
      recorded in ``DispatchResult.errors``.
    * A request is linked to a given line at most once, so dispatching the
      same request twice does not double its quantity.
    """

    def __init__(
        self,
        gateway: ProcurementGateway,
        resolver: SupplierResolver | None = None,
        clock: Clock | None = None,
        order_number_prefix: str = "CMD",
        consult_all_suppliers: bool = False,
        number_source: Callable[[], int] | None = None,
    ):
        self._gateway = gateway
        self._resolver = resolver or StockItemSupplierResolver(
            gateway, consult_all=consult_all_suppliers,
        )
        self._clock = clock or SystemClock()
        self._prefix = order_number_prefix
        self._number_source = number_source or _random_order_sequence

    @classmethod
    def from_config(
        cls,
        gateway: ProcurementGateway,
        config,
        clock: Clock | None = None,
        number_source: Callable[[], int] | None = None,
    ) -> DispatchAllocator:
        return cls(
            gateway,
            clock=clock,
            order_number_prefix=config.order_number_prefix,
            consult_all_suppliers=config.consult_all_suppliers,
            number_source=number_source,
        )

    def dispatch(
        self,
        open_requests: Iterable[PurchaseRequest] | None = None,
    ) -> DispatchResult:
        """Dispatch ``open_requests``, or every open request when omitted."""
        if open_requests is None:
            open_requests = self._gateway.fetch_open_purchase_requests()
        requests = tuple(open_requests)
        logger.info("dispatch_started", extra={"request_count": len(requests)})

        dispatched: list[DispatchedRequest] = []
        to_qualify: list[ToQualify] = []
        errors: list[DispatchError] = []

        for request in requests:
            with LogContext.bind(request_id=str(request.id)):
                try:
                    outcome = self._dispatch_one(request)
                except ConfigurationError:
                    raise
                except ProcurementError as exc:
                    logger.warning(
                        "dispatch_request_failed",
                        extra={"code": exc.code, "error": str(exc)},
                    )
                    errors.append(DispatchError(request.id, exc.code, str(exc)))
                    continue
            if isinstance(outcome, ToQualify):
                to_qualify.append(outcome)
            else:
                dispatched.append(outcome)

        result = DispatchResult(
            dispatched=tuple(dispatched),
            to_qualify=tuple(to_qualify),
            errors=tuple(errors),
        )
        logger.info(
            "dispatch_completed",
            extra={
                "dispatched_count": len(result.dispatched),
                "to_qualify_count": len(result.to_qualify),
                "error_count": len(result.errors),
            },
        )
        return result

    def _dispatch_one(self, request: PurchaseRequest) -> DispatchedRequest | ToQualify:
        transition = PURCHASE_REQUEST_WORKFLOW.find_transition(
            request.status.value, RequestStatus.IN_PROGRESS.value,
        )
        if transition is None or transition.action != "dispatch":
            raise RequestNotDispatchableError(str(request.id), request.status.value)

        if request.stock_item_id is None:
            logger.info("request_to_qualify", extra={"reason": REASON_NO_STOCK_ITEM})
            return ToQualify(request.id, REASON_NO_STOCK_ITEM)

        references = self._resolver.resolve(request)
        if not references:
            logger.info(
                "request_to_qualify", extra={"reason": REASON_NO_PREFERRED_SUPPLIER},
            )
            return ToQualify(request.id, REASON_NO_PREFERRED_SUPPLIER)

        basket_ids: list[UUID] = []
        line_ids: list[UUID] = []
        for reference in references:
            basket = self._open_basket(reference.supplier_id)
            line = self._place(basket, request, reference)
            basket_ids.append(basket.id)
            line_ids.append(line.id)

        self._gateway.update_purchase_request(
            request.id, {"status": RequestStatus.IN_PROGRESS},
        )
        logger.info(
            "request_dispatched",
            extra={
                "basket_ids": [str(b) for b in basket_ids],
                "line_ids": [str(i) for i in line_ids],
            },
        )
        return DispatchedRequest(request.id, tuple(basket_ids), tuple(line_ids))

    def _open_basket(self, supplier_id: UUID) -> SupplierOrder:
        basket = self._gateway.fetch_open_basket_for_supplier(supplier_id)
        if basket is not None:
            return basket
        order_number = self.next_order_number()
        basket = self._gateway.create_basket(supplier_id, order_number, self._clock.now())
        logger.info(
            "basket_created",
            extra={
                "basket_id": str(basket.id),
                "supplier_id": str(supplier_id),
                "order_number": order_number,
            },
        )
        return basket

    def _place(
        self,
        basket: SupplierOrder,
        request: PurchaseRequest,
        reference: SupplierReference,
    ) -> SupplierOrderLine:
        """Merge the request into the basket's line for its stock item."""
        line = self._gateway.find_line(basket.id, request.stock_item_id)
        if line is None:
            line = self._gateway.create_line(
                basket.id,
                request.stock_item_id,
                request.quantity,
                urgency=request.urgency,
                supplier_ref_snapshot=reference.supplier_ref,
            )
        elif not line.references(request.id):
            line = self._gateway.update_line(
                line.id,
                {
                    "quantity": line.quantity + request.quantity,
                    "urgency": Urgency.highest(line.urgency, request.urgency),
                },
            )
        self._gateway.link_request(line.id, request.id, request.quantity)
        return line

    def next_order_number(self) -> str:
        """``<prefix>-YYYYMMDD-NNNN``."""
        return f"{self._prefix}-{self._clock.now():%Y%m%d}-{self._number_source():04d}"
