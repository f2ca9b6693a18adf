"""
Tests for the Basket Aging Calculator.

Covers:
- Age calculation
- Stale baskets per status threshold (strictly greater than)
- Urgent purchase requests
- Custom thresholds
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from procurement_engines.aging import BasketAgingCalculator
from procurement_kernel.domain.models import (
    BasketStatus,
    PurchaseRequest,
    RequestStatus,
)
from tests.engines.builders import make_basket, make_line

AS_OF = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


def _days_ago(days: float) -> datetime:
    return AS_OF - timedelta(days=days)


class TestAgeCalculation:
    def test_whole_days(self):
        assert BasketAgingCalculator.age_days(_days_ago(5), AS_OF) == 5

    def test_partial_days_round_down(self):
        assert BasketAgingCalculator.age_days(_days_ago(5.9), AS_OF) == 5


class TestStaleBaskets:
    def setup_method(self):
        self.calculator = BasketAgingCalculator()

    def test_pooling_basket_older_than_five_days_is_stale(self):
        old = make_basket(BasketStatus.POOLING, created_at=_days_ago(6))
        edge = make_basket(BasketStatus.POOLING, created_at=_days_ago(5))

        stale = self.calculator.find_stale_baskets([old, edge], AS_OF)

        assert [s.basket_id for s in stale] == [old.id]
        assert stale[0].age_days == 6
        assert stale[0].threshold_days == 5

    def test_sent_basket_older_than_three_days_is_stale(self):
        old = make_basket(BasketStatus.SENT, created_at=_days_ago(4))
        edge = make_basket(BasketStatus.SENT, created_at=_days_ago(3))

        stale = self.calculator.find_stale_baskets([old, edge], AS_OF)

        assert [s.basket_id for s in stale] == [old.id]

    def test_other_statuses_are_never_stale(self):
        baskets = [
            make_basket(status, created_at=_days_ago(60))
            for status in (BasketStatus.ACK, BasketStatus.RECEIVED, BasketStatus.CLOSED)
        ]

        assert self.calculator.find_stale_baskets(baskets, AS_OF) == ()

    def test_basket_without_creation_date_is_skipped(self):
        basket = make_basket(BasketStatus.POOLING, created_at=None)

        assert self.calculator.find_stale_baskets([basket], AS_OF) == ()

    def test_custom_thresholds(self):
        calculator = BasketAgingCalculator(stale_pooling_days=1, stale_sent_days=10)
        pooling = make_basket(BasketStatus.POOLING, created_at=_days_ago(2))
        sent = make_basket(BasketStatus.SENT, created_at=_days_ago(5))

        stale = calculator.find_stale_baskets([pooling, sent], AS_OF)

        assert [s.basket_id for s in stale] == [pooling.id]


class TestUrgentRequests:
    def setup_method(self):
        self.calculator = BasketAgingCalculator()

    def test_waiting_request_older_than_five_days_is_urgent(self):
        old = PurchaseRequest(id=uuid4(), created_at=_days_ago(6))
        recent = PurchaseRequest(id=uuid4(), created_at=_days_ago(5))

        urgent = self.calculator.find_urgent_requests([old, recent], AS_OF)

        assert [u.request_id for u in urgent] == [old.id]

    def test_ordered_requests_are_not_urgent(self):
        ordered = PurchaseRequest(
            id=uuid4(), status=RequestStatus.ORDERED, created_at=_days_ago(30),
        )
        in_progress = PurchaseRequest(
            id=uuid4(), status=RequestStatus.IN_PROGRESS, created_at=_days_ago(30),
        )

        urgent = self.calculator.find_urgent_requests([ordered, in_progress], AS_OF)

        assert [u.request_id for u in urgent] == [in_progress.id]

    def test_urgent_basket(self):
        old = PurchaseRequest(id=uuid4(), created_at=_days_ago(9))
        fresh = PurchaseRequest(id=uuid4(), created_at=_days_ago(1))
        basket_id = uuid4()
        urgent_basket = make_basket(
            BasketStatus.POOLING, [make_line(basket_id, old.id)], basket_id=basket_id,
        )
        calm_id = uuid4()
        calm_basket = make_basket(
            BasketStatus.POOLING, [make_line(calm_id, fresh.id)], basket_id=calm_id,
        )
        by_id = {old.id: old, fresh.id: fresh}

        assert self.calculator.is_urgent_basket(urgent_basket, by_id, AS_OF)
        assert not self.calculator.is_urgent_basket(calm_basket, by_id, AS_OF)
