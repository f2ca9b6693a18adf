"""
Tests for the Basket Status Synchronizer.

Covers:
- Finalization (->RECEIVED): purge, redispatch, map, persist
- Guards: no selected line, twin conflicts, illegal transitions
- Totality over the six basket statuses
- Partial failures and repair through re_evaluate
- Timestamps and receipt on close
- Logging of transitions

Test infrastructure:
- In-memory record transport seeded with raw records (camelCase and
  nested-id shapes mixed in), behind RecordProcurementGateway
- DeterministicClock for reproducible timestamps
"""

import threading
from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_kernel.domain.models import BasketStatus, RequestStatus
from procurement_kernel.exceptions import (
    BasketNotFoundError,
    ConfigurationError,
    LastSelectedTwinError,
    LineNotFoundError,
    LockContentionError,
    LockedBasketError,
    NoSelectedLineError,
    PartialBatchError,
    ProcurementError,
    TransitionError,
    TwinConflictError,
    UnmappedStatusError,
    ValidationError,
)
from procurement_services.basket_status_service import BasketStatusSynchronizer
from procurement_services.record_gateway import RecordProcurementGateway
from tests.fakes import FIXED_NOW

LINES = "supplier_order_lines"
LINKS = "supplier_order_line_purchase_requests"
BASKETS = "supplier_orders"
REQUESTS = "purchase_requests"


def _writes(transport):
    return [call for call in transport.calls if call[0] in ("create", "patch", "delete")]


# ---------------------------------------------------------------------------
# Finalization scenarios
# ---------------------------------------------------------------------------


class TestFinalization:
    def test_unselected_line_is_purged_and_its_request_redispatched(
        self, synchronizer, seed, transport,
    ):
        pr1 = seed.request(status="ordered")
        pr2 = seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        l1 = seed.line(basket, (pr1,), selected=True)
        l2 = seed.line(basket, (pr2,), selected=False)

        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert transport.record(LINES, str(l2)) is None
        assert transport.record(LINES, str(l1)) is not None
        assert seed.status_of(REQUESTS, pr2) == "in_progress"
        assert seed.status_of(REQUESTS, pr1) == "ordered"
        assert seed.status_of(BASKETS, basket) == "RECEIVED"
        assert transport.record(BASKETS, str(basket))["received_at"] == FIXED_NOW.isoformat()

        assert outcome.from_status is BasketStatus.SENT
        assert outcome.to_status is BasketStatus.RECEIVED
        assert outcome.request_status is RequestStatus.ORDERED
        assert outcome.purged_line_ids == (l2,)
        assert outcome.redispatched_request_ids == (pr2,)
        assert outcome.updated_request_ids == (pr1,)
        assert outcome.steps == (
            "purge_lines", "redispatch_requests", "map_requests", "persist_basket",
        )

    def test_links_of_purged_lines_are_removed(self, synchronizer, seed, transport):
        pr1, pr2 = seed.request(), seed.request()
        basket = seed.basket(status="ACK")
        seed.line(basket, (pr1,), selected=True)
        l2 = seed.line(basket, (pr2,))

        synchronizer.change_basket_status(basket, "received")

        assert not [
            link for link in transport.records(LINKS)
            if link["supplier_order_line_id"] == str(l2)
        ]

    def test_no_selected_line_is_refused_without_mutation(
        self, synchronizer, seed, transport,
    ):
        basket = seed.basket(status="SENT")
        seed.line(basket, (seed.request(status="ordered"),))
        seed.line(basket, (seed.request(status="ordered"),))

        with pytest.raises(NoSelectedLineError) as exc_info:
            synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert isinstance(exc_info.value, ValidationError)
        assert seed.status_of(BASKETS, basket) == "SENT"
        assert _writes(transport) == []

    def test_selected_twins_in_two_baskets_block_finalization(
        self, synchronizer, seed, transport,
    ):
        pr5 = seed.request(status="ordered")
        basket_a = seed.basket(status="SENT")
        basket_b = seed.basket(status="ACK")
        line_a = seed.line(basket_a, (pr5,), selected=True)
        line_b = seed.line(basket_b, (pr5,), selected=True)

        with pytest.raises(TwinConflictError) as exc_info:
            synchronizer.change_basket_status(basket_a, BasketStatus.RECEIVED)

        assert isinstance(exc_info.value, ValidationError)
        assert set(exc_info.value.line_ids) == {str(line_a), str(line_b)}
        assert exc_info.value.request_id == str(pr5)
        assert _writes(transport) == []

    def test_twin_in_cancelled_basket_does_not_block(self, synchronizer, seed):
        pr = seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        cancelled = seed.basket(status="CANCELLED")
        seed.line(basket, (pr,), selected=True)
        seed.line(cancelled, (pr,), selected=True)

        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert outcome.to_status is BasketStatus.RECEIVED

    def test_abandoned_consultation_is_reported_as_a_warning(
        self, synchronizer, seed, captured_logs,
    ):
        pr = seed.request(status="ordered")
        basket = seed.basket(status="ACK")
        consulting = seed.basket(status="SENT")
        seed.line(basket, (pr,), selected=True)
        pending = seed.line(consulting, (pr,), quote_received=False)

        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        (warning,) = outcome.warnings
        assert warning.code == "TWIN_QUOTE_PENDING"
        assert warning.line_ids == (pending,)
        assert any(r["message"] == "twin_consultation_abandoned" for r in captured_logs())

    def test_request_shared_by_kept_and_purged_line_is_mapped_not_redispatched(
        self, synchronizer, seed, transport,
    ):
        pr1, pr2, pr3 = (seed.request(status="ordered") for _ in range(3))
        basket = seed.basket(status="SENT")
        seed.line(basket, (pr1, pr3), selected=True)
        seed.line(basket, (pr2,))
        seed.line(basket, (pr3,))

        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        remaining = [
            r for r in transport.records(LINES)
            if r["supplier_order_id"]["id"] == str(basket)
        ]
        assert len(remaining) == 1
        assert outcome.redispatched_request_ids == (pr2,)
        assert seed.status_of(REQUESTS, pr2) == "in_progress"
        assert seed.status_of(REQUESTS, pr3) == "ordered"
        assert set(outcome.updated_request_ids) == {pr1, pr3}


    def test_request_still_ordered_elsewhere_keeps_its_status(
        self, synchronizer, seed, transport,
    ):
        pr1 = seed.request(status="ordered")
        pr5 = seed.request(status="ordered")
        received = seed.basket(status="RECEIVED")
        seed.line(received, (pr5,), selected=True)
        basket = seed.basket(status="SENT")
        seed.line(basket, (pr1,), selected=True)
        dropped = seed.line(basket, (pr5,))

        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert transport.record(LINES, str(dropped)) is None
        assert outcome.redispatched_request_ids == ()
        assert seed.status_of(REQUESTS, pr5) == "ordered"
        assert synchronizer.find_status_drift(received) == ()

    def test_request_with_a_pooling_twin_is_not_redispatched(self, synchronizer, seed):
        pr = seed.request(status="in_progress")
        pooling = seed.basket(status="POOLING")
        seed.line(pooling, (pr,))
        basket = seed.basket(status="SENT")
        seed.line(basket, (seed.request(),), selected=True)
        seed.line(basket, (pr,))

        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert pr not in outcome.redispatched_request_ids
        assert seed.status_of(REQUESTS, pr) == "in_progress"


class TestSelectionGuardProperty:
    @pytest.mark.parametrize("selected_flags", [
        (False,), (False, False, False), (True,), (False, True), (True, True, False),
    ])
    def test_receipt_requires_a_selected_line(self, synchronizer, seed, selected_flags):
        basket = seed.basket(status="SENT")
        for flag in selected_flags:
            seed.line(basket, (seed.request(status="ordered"),), selected=flag)

        if any(selected_flags):
            synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)
            assert seed.status_of(BASKETS, basket) == "RECEIVED"
        else:
            with pytest.raises(ValidationError):
                synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)
            assert seed.status_of(BASKETS, basket) == "SENT"

    def test_after_receipt_every_remaining_line_is_selected(
        self, synchronizer, seed, gateway,
    ):
        basket = seed.basket(status="ACK")
        only_purged = []
        for index in range(6):
            pr = seed.request(status="ordered")
            selected = index % 3 == 0
            seed.line(basket, (pr,), selected=selected)
            if not selected:
                only_purged.append(pr)

        synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        lines = gateway.fetch_lines_for_basket(basket)
        assert lines and all(line.is_selected for line in lines)
        for pr in only_purged:
            assert seed.status_of(REQUESTS, pr) == "in_progress"


# ---------------------------------------------------------------------------
# Transitions other than RECEIVED
# ---------------------------------------------------------------------------


class TestTransitions:
    def test_send_maps_requests_to_ordered_and_stamps_sent_at(
        self, synchronizer, seed, transport,
    ):
        pr = seed.request(status="in_progress")
        basket = seed.basket(status="POOLING")
        seed.line(basket, (pr,))

        outcome = synchronizer.change_basket_status(basket, "SENT")

        assert outcome.steps == ("map_requests", "persist_basket")
        assert seed.status_of(REQUESTS, pr) == "ordered"
        record = transport.record(BASKETS, str(basket))
        assert record["status"] == "SENT"
        assert record["sent_at"] == FIXED_NOW.isoformat()

    def test_acknowledge_has_no_timestamp(self, synchronizer, seed, transport):
        basket = seed.basket(status="SENT")

        synchronizer.change_basket_status(basket, BasketStatus.ACK)

        record = transport.record(BASKETS, str(basket))
        assert record["status"] == "ACK"
        assert "ack_at" not in record

    def test_close_records_receipt_of_selected_lines(self, synchronizer, seed, transport):
        pr = seed.request(status="ordered")
        basket = seed.basket(status="RECEIVED")
        line = seed.line(basket, (pr,), selected=True, quantity="3")

        outcome = synchronizer.change_basket_status(basket, BasketStatus.CLOSED)

        assert outcome.received_line_ids == (line,)
        assert outcome.steps == ("record_receipt", "map_requests", "persist_basket")
        assert Decimal(transport.record(LINES, str(line))["quantity_received"]) == 3
        assert seed.status_of(REQUESTS, pr) == "received"
        assert transport.record(BASKETS, str(basket))["closed_at"] == FIXED_NOW.isoformat()

    def test_receipt_on_close_can_be_disabled(self, gateway, deterministic_clock, seed, transport):
        from procurement_config import ProcurementConfig

        config = ProcurementConfig(record_receipt_on_close=False)
        synchronizer = BasketStatusSynchronizer.from_config(
            gateway, config, clock=deterministic_clock,
        )
        basket = seed.basket(status="RECEIVED")
        line = seed.line(basket, (seed.request(status="ordered"),), selected=True, quantity="3")

        outcome = synchronizer.change_basket_status(basket, BasketStatus.CLOSED)

        assert outcome.received_line_ids == ()
        assert "quantity_received" not in transport.record(LINES, str(line))

    def test_cancel_maps_requests_to_cancelled(self, synchronizer, seed):
        pr = seed.request(status="in_progress")
        basket = seed.basket(status="POOLING")
        seed.line(basket, (pr,))

        synchronizer.change_basket_status(basket, BasketStatus.CANCELLED)

        assert seed.status_of(REQUESTS, pr) == "cancelled"
        assert seed.status_of(BASKETS, basket) == "CANCELLED"

    def test_illegal_transition_is_refused_without_mutation(
        self, synchronizer, seed, transport,
    ):
        basket = seed.basket(status="CLOSED")

        with pytest.raises(TransitionError) as exc_info:
            synchronizer.change_basket_status(basket, BasketStatus.SENT)

        assert exc_info.value.from_status == "CLOSED"
        assert exc_info.value.to_status == "SENT"
        assert _writes(transport) == []

    def test_pooling_cannot_be_ordered_without_being_sent(self, synchronizer, seed):
        basket = seed.basket(status="POOLING")
        seed.line(basket, (seed.request(),), selected=True)

        with pytest.raises(TransitionError):
            synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

    def test_unknown_basket(self, synchronizer):
        with pytest.raises(BasketNotFoundError):
            synchronizer.change_basket_status(uuid4(), BasketStatus.SENT)

    def test_transition_is_logged_with_basket_context(
        self, synchronizer, seed, captured_logs,
    ):
        basket = seed.basket(status="POOLING")

        synchronizer.change_basket_status(basket, BasketStatus.SENT)

        completed = [
            r for r in captured_logs() if r["message"] == "basket_transition_completed"
        ]
        assert len(completed) == 1
        assert completed[0]["basket_id"] == str(basket)
        assert completed[0]["to_status"] == "SENT"


class TestStatusTotality:
    @pytest.mark.parametrize("source, target", [
        ("POOLING", "SENT"),
        ("SENT", "ACK"),
        ("ACK", "RECEIVED"),
        ("RECEIVED", "CLOSED"),
        ("POOLING", "CANCELLED"),
    ])
    def test_defined_statuses_never_raise_configuration_errors(
        self, synchronizer, seed, source, target,
    ):
        basket = seed.basket(status=source)
        seed.line(basket, (seed.request(status="ordered"),), selected=True)

        outcome = synchronizer.change_basket_status(basket, target)

        assert outcome.to_status.value == target

    @pytest.mark.parametrize("target", ["POOLING", "open"])
    def test_pooling_target_is_a_transition_error_not_a_configuration_error(
        self, synchronizer, seed, target,
    ):
        basket = seed.basket(status="SENT")

        with pytest.raises(TransitionError) as exc_info:
            synchronizer.change_basket_status(basket, target)

        assert exc_info.value.to_status == "POOLING"

    @pytest.mark.parametrize("status", list(BasketStatus))
    def test_mapping_table_is_total(self, synchronizer, status):
        assert isinstance(synchronizer.mapping_table.map(status), RequestStatus)

    @pytest.mark.parametrize("target", ["SHIPPED", "", "lost"])
    def test_undefined_status_raises_configuration_error(
        self, synchronizer, seed, transport, target,
    ):
        basket = seed.basket(status="SENT")

        with pytest.raises(ConfigurationError) as exc_info:
            synchronizer.change_basket_status(basket, target)

        assert isinstance(exc_info.value, UnmappedStatusError)
        assert _writes(transport) == []


# ---------------------------------------------------------------------------
# Partial failures and repair
# ---------------------------------------------------------------------------


class TestPartialFailures:
    def test_failed_line_delete_stops_before_mapping(self, synchronizer, seed, transport):
        pr1, pr2 = seed.request(status="ordered"), seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        seed.line(basket, (pr1,), selected=True)
        l2 = seed.line(basket, (pr2,))
        transport.fail_on("delete", LINES, record_id=str(l2))

        with pytest.raises(PartialBatchError) as exc_info:
            synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert exc_info.value.step == "purge_lines"
        assert [key for key, _ in exc_info.value.failed] == [str(l2)]
        assert exc_info.value.completed_steps == ()
        assert seed.status_of(REQUESTS, pr2) == "ordered"
        assert seed.status_of(BASKETS, basket) == "SENT"

    def test_vanished_line_counts_as_already_purged(self, synchronizer, seed, transport):
        basket = seed.basket(status="SENT")
        seed.line(basket, (seed.request(status="ordered"),), selected=True)
        l2 = seed.line(basket, (seed.request(status="ordered"),))
        transport.fail_on("delete", LINES, record_id=str(l2), error=KeyError(str(l2)))

        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert outcome.purged_line_ids == (l2,)
        assert seed.status_of(BASKETS, basket) == "RECEIVED"

    def test_failed_mapping_reports_progress_and_stops(self, synchronizer, seed, transport):
        pr1, pr2 = seed.request(status="ordered"), seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        seed.line(basket, (pr1,), selected=True)
        seed.line(basket, (pr2,))
        transport.fail_on("patch", REQUESTS, record_id=str(pr1), times=1)

        with pytest.raises(PartialBatchError) as exc_info:
            synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert exc_info.value.step == "map_requests"
        assert exc_info.value.completed_steps == ("purge_lines", "redispatch_requests")
        assert exc_info.value.basket_id == str(basket)
        assert seed.status_of(REQUESTS, pr2) == "in_progress"
        assert seed.status_of(BASKETS, basket) == "SENT"

        # The purge already happened; retrying the transition completes it.
        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)
        assert outcome.purged_line_ids == ()
        assert seed.status_of(BASKETS, basket) == "RECEIVED"

    def test_failed_basket_persist_is_a_partial_batch(self, synchronizer, seed, transport):
        pr = seed.request(status="in_progress")
        basket = seed.basket(status="POOLING")
        seed.line(basket, (pr,))
        transport.fail_on("patch", BASKETS, record_id=str(basket))

        with pytest.raises(PartialBatchError) as exc_info:
            synchronizer.change_basket_status(basket, BasketStatus.SENT)

        assert exc_info.value.step == "persist_basket"
        assert exc_info.value.completed_steps == ("map_requests",)
        assert seed.status_of(REQUESTS, pr) == "ordered"


class TestDriftAndReEvaluation:
    def test_drift_is_detected_and_repaired(self, synchronizer, seed):
        pr1 = seed.request(status="ordered")
        pr2 = seed.request(status="open")
        basket = seed.basket(status="SENT")
        seed.line(basket, (pr1, pr2), selected=True)

        drift = synchronizer.find_status_drift(basket)

        assert [(d.request_id, d.current_status, d.expected_status) for d in drift] == [
            (pr2, RequestStatus.OPEN, RequestStatus.ORDERED),
        ]

        result = synchronizer.re_evaluate(basket)

        assert result.updated_count == 2
        assert result.basket_status is BasketStatus.SENT
        assert result.request_status is RequestStatus.ORDERED
        assert seed.status_of(REQUESTS, pr2) == "ordered"
        assert synchronizer.find_status_drift(basket) == ()
        assert seed.status_of(BASKETS, basket) == "SENT"

    def test_re_evaluate_without_linked_requests_fails(self, synchronizer, seed):
        from procurement_kernel.exceptions import ReEvaluationError

        basket = seed.basket(status="SENT")
        seed.line(basket, ())

        with pytest.raises(ReEvaluationError):
            synchronizer.re_evaluate(basket)

    def test_partial_re_evaluation(self, synchronizer, seed, transport):
        pr1, pr2 = seed.request(status="open"), seed.request(status="open")
        basket = seed.basket(status="ACK")
        seed.line(basket, (pr1, pr2), selected=True)
        transport.fail_on("patch", REQUESTS, record_id=str(pr2))

        with pytest.raises(PartialBatchError) as exc_info:
            synchronizer.re_evaluate(basket)

        assert exc_info.value.step == "re_evaluate"
        assert exc_info.value.succeeded == (str(pr1),)


# ---------------------------------------------------------------------------
# Selection and quotes
# ---------------------------------------------------------------------------


class TestLineSelection:
    def test_select_line(self, synchronizer, seed, transport):
        basket = seed.basket(status="SENT")
        line = seed.line(basket, (seed.request(status="ordered"),))

        outcome = synchronizer.toggle_line_selection(basket, line, True)

        assert outcome.changed is True
        assert outcome.flagged is False
        assert transport.record(LINES, str(line))["is_selected"] is True

    def test_selecting_a_second_twin_is_allowed_but_flagged(self, synchronizer, seed):
        pr = seed.request(status="ordered")
        basket_a, basket_b = seed.basket(status="SENT"), seed.basket(status="SENT")
        line_a = seed.line(basket_a, (pr,), selected=True)
        line_b = seed.line(basket_b, (pr,))

        outcome = synchronizer.toggle_line_selection(basket_b, line_b, True)

        assert outcome.changed is True
        assert outcome.flagged is True
        assert outcome.conflicting_line_ids == (line_a,)

    def test_deselecting_the_last_selected_twin_is_refused(
        self, synchronizer, seed, transport,
    ):
        pr = seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        line = seed.line(basket, (pr,), selected=True)
        seed.line(seed.basket(status="SENT"), (pr,), selected=False)

        with pytest.raises(LastSelectedTwinError) as exc_info:
            synchronizer.toggle_line_selection(basket, line, False)

        assert exc_info.value.request_ids == (str(pr),)
        assert _writes(transport) == []

    def test_deselect_allowed_when_another_twin_is_selected(
        self, synchronizer, seed, transport,
    ):
        pr = seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        line = seed.line(basket, (pr,), selected=True)
        seed.line(seed.basket(status="ACK"), (pr,), selected=True)

        outcome = synchronizer.toggle_line_selection(basket, line, False)

        assert outcome.changed is True
        assert transport.record(LINES, str(line))["is_selected"] is False

    def test_twin_in_cancelled_basket_does_not_count_as_coverage(self, synchronizer, seed):
        pr = seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        line = seed.line(basket, (pr,), selected=True)
        seed.line(seed.basket(status="CANCELLED"), (pr,), selected=True)

        with pytest.raises(LastSelectedTwinError):
            synchronizer.toggle_line_selection(basket, line, False)

    def test_unchanged_selection_does_not_write(self, synchronizer, seed, transport):
        basket = seed.basket(status="POOLING")
        line = seed.line(basket, (seed.request(),), selected=True)

        outcome = synchronizer.toggle_line_selection(basket, line, True)

        assert outcome.changed is False
        assert _writes(transport) == []

    @pytest.mark.parametrize("status", ["RECEIVED", "CLOSED", "CANCELLED"])
    def test_lines_of_locked_baskets_cannot_change(self, synchronizer, seed, status):
        basket = seed.basket(status=status)
        line = seed.line(basket, (seed.request(),), selected=False)

        with pytest.raises(LockedBasketError) as exc_info:
            synchronizer.toggle_line_selection(basket, line, True)

        assert exc_info.value.status == status

    def test_unknown_line(self, synchronizer, seed):
        basket = seed.basket(status="SENT")

        with pytest.raises(LineNotFoundError):
            synchronizer.toggle_line_selection(basket, uuid4(), True)

    def test_selection_holds_the_request_locks(
        self, transport, seed, config, deterministic_clock, lock_registry,
    ):
        pr = seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        line = seed.line(basket, (pr,))
        observed = []

        class ObservingGateway(RecordProcurementGateway):
            def fetch_baskets(self, statuses=None):
                observed.append(lock_registry.is_held(pr))
                return super().fetch_baskets(statuses)

        synchronizer = BasketStatusSynchronizer.from_config(
            ObservingGateway(transport), config,
            clock=deterministic_clock, lock_registry=lock_registry,
        )
        synchronizer.toggle_line_selection(basket, line, True)

        assert observed == [True]
        assert lock_registry.is_held(pr) is False


class TestLineQuotes:
    def test_quote_is_recorded(self, synchronizer, seed, transport):
        basket = seed.basket(status="SENT")
        line = seed.line(basket, (seed.request(status="ordered"),))

        updated = synchronizer.update_line_quote(
            basket, line,
            quote_price=Decimal("12.50"),
            lead_time_days=5,
            manufacturer_name="Acme",
        )

        assert updated.quote_received is True
        assert updated.quote_price == Decimal("12.50")
        assert updated.lead_time_days == 5
        record = transport.record(LINES, str(line))
        assert record["manufacturer_name"] == "Acme"
        assert "manufacturer_ref" not in record

    def test_quote_on_received_basket_is_refused(self, synchronizer, seed):
        basket = seed.basket(status="RECEIVED")
        line = seed.line(basket, (seed.request(),), selected=True)

        with pytest.raises(LockedBasketError):
            synchronizer.update_line_quote(basket, line, quote_price=Decimal("1"))


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrentFinalization:
    def test_finalization_holds_the_request_locks(
        self, transport, seed, config, deterministic_clock, lock_registry,
    ):
        pr = seed.request(status="ordered")
        basket = seed.basket(status="SENT")
        seed.line(basket, (pr,), selected=True)
        observed = []

        class ObservingGateway(RecordProcurementGateway):
            def fetch_baskets(self, statuses=None):
                observed.append(lock_registry.is_held(pr))
                return super().fetch_baskets(statuses)

        synchronizer = BasketStatusSynchronizer.from_config(
            ObservingGateway(transport), config,
            clock=deterministic_clock, lock_registry=lock_registry,
        )
        synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert observed == [True]

    def test_request_linked_while_waiting_for_locks_is_locked_too(
        self, transport, seed, config, deterministic_clock, lock_registry,
    ):
        pr = seed.request(status="ordered")
        late = seed.request(status="in_progress")
        basket = seed.basket(status="SENT")
        seed.line(basket, (pr,), selected=True)
        reads = []
        observed = []

        class LinkingGateway(RecordProcurementGateway):
            def fetch_lines_for_basket(self, basket_id):
                reads.append(basket_id)
                if len(reads) == 2:
                    seed.line(basket, (late,))
                return super().fetch_lines_for_basket(basket_id)

            def fetch_baskets(self, statuses=None):
                observed.append((lock_registry.is_held(pr), lock_registry.is_held(late)))
                return super().fetch_baskets(statuses)

        synchronizer = BasketStatusSynchronizer.from_config(
            LinkingGateway(transport), config,
            clock=deterministic_clock, lock_registry=lock_registry,
        )
        outcome = synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert observed == [(True, True)]
        assert outcome.redispatched_request_ids == (late,)
        assert not lock_registry.is_held(late)

    def test_links_changing_on_every_attempt_give_up_without_writes(
        self, transport, seed, config, deterministic_clock, lock_registry,
    ):
        basket = seed.basket(status="SENT")
        seed.line(basket, (seed.request(status="ordered"),), selected=True)

        class ChurningGateway(RecordProcurementGateway):
            def fetch_lines_for_basket(self, basket_id):
                seed.line(basket, (seed.request(),))
                return super().fetch_lines_for_basket(basket_id)

        synchronizer = BasketStatusSynchronizer.from_config(
            ChurningGateway(transport), config,
            clock=deterministic_clock, lock_registry=lock_registry,
        )
        with pytest.raises(LockContentionError) as exc_info:
            synchronizer.change_basket_status(basket, BasketStatus.RECEIVED)

        assert exc_info.value.basket_id == str(basket)
        assert _writes(transport) == []
        assert seed.status_of(BASKETS, basket) == "SENT"

    @pytest.mark.parametrize("attempt", range(5))
    def test_at_most_one_twin_basket_is_received(self, synchronizer, seed, attempt):
        pr = seed.request(status="ordered")
        basket_a, basket_b = seed.basket(status="SENT"), seed.basket(status="SENT")
        seed.line(basket_a, (pr,), selected=True, quote_received=True)
        line_b = seed.line(basket_b, (pr,), quote_received=True)
        barrier = threading.Barrier(2)
        errors = []

        def finalize_a():
            barrier.wait()
            try:
                synchronizer.change_basket_status(basket_a, BasketStatus.RECEIVED)
            except ProcurementError as exc:
                errors.append(exc)

        def select_and_finalize_b():
            barrier.wait()
            try:
                synchronizer.toggle_line_selection(basket_b, line_b, True)
                synchronizer.change_basket_status(basket_b, BasketStatus.RECEIVED)
            except ProcurementError as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=finalize_a),
            threading.Thread(target=select_and_finalize_b),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        statuses = [seed.status_of(BASKETS, b) for b in (basket_a, basket_b)]
        assert statuses.count("RECEIVED") <= 1
        assert errors
        assert all(isinstance(e, TwinConflictError) for e in errors)
