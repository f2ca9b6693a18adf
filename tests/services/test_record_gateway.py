"""
Tests for RecordProcurementGateway over the in-memory transport.

Covers normalization of raw records, junction assembly, write
serialization, and the mapping of transport failures to typed errors.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_kernel.domain.models import BasketStatus, RequestStatus, Urgency
from procurement_kernel.exceptions import (
    BasketNotFoundError,
    GatewayError,
    LineNotFoundError,
    MalformedRecordError,
    PurchaseRequestNotFoundError,
)
from tests.fakes import FIXED_NOW

BASKETS = "supplier_orders"
LINES = "supplier_order_lines"
LINKS = "supplier_order_line_purchase_requests"
REQUESTS = "purchase_requests"


class TestReads:
    def test_basket_is_normalized(self, gateway, seed):
        supplier = uuid4()
        basket_id = seed.basket(supplier_id=supplier, status="SENT")

        basket = gateway.fetch_basket(basket_id)

        assert basket.id == basket_id
        assert basket.supplier_id == supplier
        assert basket.status is BasketStatus.SENT
        assert basket.order_number == "CMD-20240301-0001"
        assert basket.created_at == FIXED_NOW
        assert basket.lines == ()

    def test_lines_carry_their_linked_requests(self, gateway, seed):
        pr_1, pr_2 = seed.request(), seed.request()
        basket = seed.basket()
        line_id = seed.line(basket, (pr_1, pr_2), selected=True, quantity="2.5")

        (line,) = gateway.fetch_lines_for_basket(basket)

        assert line.id == line_id
        assert line.basket_id == basket
        assert line.is_selected is True
        assert line.quantity == Decimal("2.5")
        assert line.purchase_request_ids == (pr_1, pr_2)

    def test_fetch_baskets_filters_by_status_and_embeds_lines(self, gateway, seed):
        sent = seed.basket(status="SENT")
        seed.basket(status="CANCELLED")
        line = seed.line(sent, (seed.request(),))

        baskets = gateway.fetch_baskets([BasketStatus.SENT, BasketStatus.ACK])

        assert [b.id for b in baskets] == [sent]
        assert [line.id for line in baskets[0].lines] == [line]

    def test_earliest_pooling_basket_of_the_supplier(self, gateway, seed):
        supplier = uuid4()
        seed.basket(supplier_id=supplier, status="POOLING", created_at=FIXED_NOW)
        older = seed.basket(
            supplier_id=supplier, status="POOLING", created_at=FIXED_NOW - timedelta(days=2),
        )
        seed.basket(supplier_id=supplier, status="SENT", created_at=FIXED_NOW - timedelta(days=9))
        seed.basket(status="POOLING", created_at=FIXED_NOW - timedelta(days=9))

        assert gateway.fetch_open_basket_for_supplier(supplier).id == older
        assert gateway.fetch_open_basket_for_supplier(uuid4()) is None

    def test_purchase_requests(self, gateway, seed):
        item = uuid4()
        pr = seed.request(stock_item_id=item, quantity="4", urgency="high")
        seed.request(status="ordered")

        (request,) = gateway.fetch_open_purchase_requests()

        assert request.id == pr
        assert request.stock_item_id == item
        assert request.quantity == Decimal("4")
        assert request.urgency is Urgency.HIGH
        assert gateway.fetch_purchase_requests([uuid4(), pr]) == (request,)

    def test_supplier_references(self, gateway, seed):
        item, supplier = uuid4(), uuid4()
        seed.reference(item, supplier, supplier_ref="REF-7")
        seed.reference(uuid4(), uuid4())

        (reference,) = gateway.fetch_supplier_references(item)

        assert reference.supplier_id == supplier
        assert reference.supplier_ref == "REF-7"
        assert reference.is_preferred is True

    def test_missing_basket(self, gateway):
        with pytest.raises(BasketNotFoundError):
            gateway.fetch_basket(uuid4())

    def test_malformed_record(self, gateway, transport):
        basket_id = str(uuid4())
        transport.seed(BASKETS, {"id": basket_id, "status": "SHIPPED", "supplier_id": str(uuid4())})

        with pytest.raises(MalformedRecordError):
            gateway.fetch_basket(basket_id)


class TestWrites:
    def test_create_basket_and_line(self, gateway, transport):
        supplier, item = uuid4(), uuid4()

        basket = gateway.create_basket(supplier, "CMD-20240315-0007", FIXED_NOW)
        line = gateway.create_line(
            basket.id, item, Decimal("3"), urgency=Urgency.LOW, supplier_ref_snapshot="R",
        )

        assert basket.status is BasketStatus.POOLING
        assert basket.created_at == FIXED_NOW
        record = transport.record(LINES, str(line.id))
        assert record["quantity"] == "3"
        assert record["urgency"] == "low"
        assert record["is_selected"] is False
        assert line.basket_id == basket.id

    def test_update_basket_serializes_values(self, gateway, seed, transport):
        basket = seed.basket()

        updated = gateway.update_basket(
            basket, {"status": BasketStatus.SENT, "sent_at": FIXED_NOW},
        )

        assert updated.status is BasketStatus.SENT
        record = transport.record(BASKETS, str(basket))
        assert record["status"] == "SENT"
        assert record["sent_at"] == FIXED_NOW.isoformat()

    def test_fields_outside_the_write_set_are_rejected(self, gateway, seed):
        basket = seed.basket()

        with pytest.raises(ValueError):
            gateway.update_basket(basket, {"supplier_id": uuid4()})

    def test_update_request_status(self, gateway, seed):
        pr = seed.request()

        updated = gateway.update_purchase_request(pr, {"status": RequestStatus.IN_PROGRESS})

        assert updated.status is RequestStatus.IN_PROGRESS
        assert seed.status_of(REQUESTS, pr) == "in_progress"

    def test_delete_line_removes_its_links(self, gateway, seed, transport):
        basket = seed.basket()
        kept = seed.line(basket, (seed.request(),))
        line = seed.line(basket, (seed.request(), seed.request()))

        gateway.delete_line(line)

        assert transport.record(LINES, str(line)) is None
        owners = {link["supplier_order_line_id"] for link in transport.records(LINKS)}
        assert owners == {str(kept)}

    def test_link_request_is_idempotent(self, gateway, seed, transport):
        basket = seed.basket()
        line = seed.line(basket, ())
        pr = seed.request()

        assert gateway.link_request(line, pr, Decimal("1")) is True
        assert gateway.link_request(line, pr, Decimal("1")) is False
        assert len(transport.records(LINKS)) == 1

    def test_link_to_missing_line(self, gateway, seed):
        with pytest.raises(LineNotFoundError):
            gateway.link_request(uuid4(), seed.request(), Decimal("1"))


class TestTransportFailures:
    def test_missing_records_become_typed_not_found_errors(self, gateway):
        with pytest.raises(LineNotFoundError):
            gateway.delete_line(uuid4())
        with pytest.raises(BasketNotFoundError):
            gateway.update_basket(uuid4(), {"status": BasketStatus.SENT})
        with pytest.raises(PurchaseRequestNotFoundError):
            gateway.update_purchase_request(uuid4(), {"status": RequestStatus.OPEN})

    def test_other_failures_become_gateway_errors(self, gateway, seed, transport, captured_logs):
        basket = seed.basket()
        transport.fail_on("patch", BASKETS, error=ConnectionError("reset by peer"))

        with pytest.raises(GatewayError) as exc_info:
            gateway.update_basket(basket, {"status": BasketStatus.SENT})

        assert exc_info.value.operation == "update_basket"
        assert "reset by peer" in exc_info.value.reason
        assert any(r["message"] == "transport_call_failed" for r in captured_logs())
