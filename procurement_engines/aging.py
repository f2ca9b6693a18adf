"""
Module: procurement_engines.aging
Responsibility:
    Age baskets and purchase requests: flag stale baskets (POOLING or SENT
    for too long) and urgent purchase requests (waiting for too long).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The "as of" instant is always passed in; engines never read the clock.

Invariants enforced:
    - A basket is stale when its age in whole days is strictly greater than
      the threshold for its status (POOLING: 5, SENT: 3 by default).
    - A purchase request is urgent when it is still open or in progress and
      its age is strictly greater than the threshold (5 by default).
    - Records without a timestamp are never stale nor urgent.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from procurement_kernel.domain.models import (
    BasketStatus,
    PurchaseRequest,
    RequestStatus,
    SupplierOrder,
)
from procurement_kernel.logging_config import get_logger
from procurement_engines.tracer import traced_engine

logger = get_logger("engines.aging")

_WAITING_REQUEST_STATUSES = frozenset({
    RequestStatus.OPEN,
    RequestStatus.IN_PROGRESS,
})


@dataclass(frozen=True)
class StaleBasket:
    """A basket that has stayed too long in its current status."""

    basket_id: UUID
    order_number: str
    status: BasketStatus
    age_days: int
    threshold_days: int


@dataclass(frozen=True)
class UrgentRequest:
    """A purchase request waiting longer than the urgency threshold."""

    request_id: UUID
    status: RequestStatus
    age_days: int


class BasketAgingCalculator:
    """
    Calculate staleness and urgency for baskets and purchase requests.

    Contract:
        Pure functions -- no I/O, no database access.
    Guarantees:
        - ``age_days`` is a deterministic integer for any (since, as_of) pair.
    """

    def __init__(
        self,
        stale_pooling_days: int = 5,
        stale_sent_days: int = 3,
        urgent_request_days: int = 5,
    ):
        self._thresholds = {
            BasketStatus.POOLING: stale_pooling_days,
            BasketStatus.SENT: stale_sent_days,
        }
        self._urgent_request_days = urgent_request_days

    @staticmethod
    def age_days(since: datetime, as_of: datetime) -> int:
        return (as_of - since).days

    @traced_engine("basket_aging", "1.0")
    def find_stale_baskets(
        self,
        baskets: Iterable[SupplierOrder],
        as_of: datetime,
    ) -> tuple[StaleBasket, ...]:
        stale: list[StaleBasket] = []
        for basket in baskets:
            threshold = self._thresholds.get(basket.status)
            if threshold is None or basket.created_at is None:
                continue
            age = self.age_days(basket.created_at, as_of)
            if age > threshold:
                stale.append(StaleBasket(
                    basket_id=basket.id,
                    order_number=basket.order_number,
                    status=basket.status,
                    age_days=age,
                    threshold_days=threshold,
                ))
        logger.debug("stale_baskets_found", extra={"stale_count": len(stale)})
        return tuple(stale)

    @traced_engine("basket_aging", "1.0")
    def find_urgent_requests(
        self,
        requests: Iterable[PurchaseRequest],
        as_of: datetime,
    ) -> tuple[UrgentRequest, ...]:
        urgent: list[UrgentRequest] = []
        for request in requests:
            if request.status not in _WAITING_REQUEST_STATUSES:
                continue
            if request.created_at is None:
                continue
            age = self.age_days(request.created_at, as_of)
            if age > self._urgent_request_days:
                urgent.append(UrgentRequest(request.id, request.status, age))
        logger.debug("urgent_requests_found", extra={"urgent_count": len(urgent)})
        return tuple(urgent)

    def is_urgent_basket(
        self,
        basket: SupplierOrder,
        requests_by_id: dict[UUID, PurchaseRequest],
        as_of: datetime,
    ) -> bool:
        """True when any line of the basket serves an urgent request."""
        linked = [
            requests_by_id[r] for r in basket.request_ids if r in requests_by_id
        ]
        return bool(self.find_urgent_requests(linked, as_of))
