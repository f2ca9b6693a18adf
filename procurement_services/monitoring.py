"""
Basket monitoring -- stale baskets and urgent purchase requests.

Reads the current baskets and open requests through the gateway and hands
them, with the clock's current instant, to ``BasketAgingCalculator``.
Read-only.
"""

from __future__ import annotations

from procurement_engines.aging import BasketAgingCalculator, StaleBasket, UrgentRequest
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.models import BasketStatus, RequestStatus
from procurement_kernel.logging_config import get_logger
from procurement_services.gateway import ProcurementGateway

logger = get_logger("services.monitoring")


class BasketMonitor:
    def __init__(
        self,
        gateway: ProcurementGateway,
        clock: Clock | None = None,
        calculator: BasketAgingCalculator | None = None,
    ):
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._calculator = calculator or BasketAgingCalculator()

    @classmethod
    def from_config(cls, gateway: ProcurementGateway, config, clock: Clock | None = None):
        return cls(
            gateway,
            clock=clock,
            calculator=BasketAgingCalculator(
                stale_pooling_days=config.stale_pooling_days,
                stale_sent_days=config.stale_sent_days,
                urgent_request_days=config.urgent_request_days,
            ),
        )

    def stale_baskets(self) -> tuple[StaleBasket, ...]:
        baskets = self._gateway.fetch_baskets((BasketStatus.POOLING, BasketStatus.SENT))
        stale = self._calculator.find_stale_baskets(baskets, self._clock.now())
        if stale:
            logger.warning(
                "stale_baskets_detected",
                extra={"order_numbers": [s.order_number for s in stale]},
            )
        return stale

    def urgent_requests(self) -> tuple[UrgentRequest, ...]:
        """Open requests, plus in-progress requests linked to active baskets."""
        requests = {r.id: r for r in self._gateway.fetch_open_purchase_requests()}
        baskets = self._gateway.fetch_baskets(
            (BasketStatus.POOLING, BasketStatus.SENT, BasketStatus.ACK),
        )
        linked = {rid for basket in baskets for rid in basket.request_ids}
        for request in self._gateway.fetch_purchase_requests(linked - set(requests)):
            if request.status == RequestStatus.IN_PROGRESS:
                requests[request.id] = request
        urgent = self._calculator.find_urgent_requests(
            list(requests.values()), self._clock.now(),
        )
        if urgent:
            logger.warning("urgent_requests_detected", extra={"urgent_count": len(urgent)})
        return urgent
