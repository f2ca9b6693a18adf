"""
Basket Status Synchronizer (``procurement_services.basket_status_service``).

Responsibility
--------------
Drives the basket state machine.  Validates a requested status change
against ``BASKET_WORKFLOW``, runs the guards for finalization, purges
unselected lines, cascades the mapped status onto every linked purchase
request, then persists the basket's new status and timestamp.  Also owns
line selection, quote recording, drift detection and re-evaluation.

Architecture position
---------------------
**Services layer** -- imperative shell.  Pure decisions are delegated to
``procurement_engines`` (``StatusMappingTable``, ``SelectionValidator``,
``TwinLineReconciler``); writes go through ``ProcurementGateway`` and fan
out via ``BatchRunner``.

Invariants enforced
-------------------
* A basket reaches RECEIVED only with at least one selected line.
* After RECEIVED every remaining line is selected (the rest were purged).
* At most one selected twin per purchase request when a basket reaches
  RECEIVED; the check runs under the per-request locks.
* Order within a transition: purge, then map, then persist.  Mapping reads
  the post-purge line set.
* Guards raise before any write.

Failure modes
-------------
* Undefined target status  -> ``UnmappedStatusError`` (ConfigurationError).
* No workflow edge  -> ``TransitionError``.
* Guard failure  -> ``NoSelectedLineError`` / ``TwinConflictError``;
  nothing mutated.
* A failing write step  -> ``PartialBatchError`` carrying the step and the
  steps completed before it.  Later steps are not applied.  Repair with
  ``re_evaluate``.

Usage::

    synchronizer = BasketStatusSynchronizer.from_config(gateway, config, clock=clock)
    outcome = synchronizer.change_basket_status(basket_id, BasketStatus.RECEIVED)
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from procurement_engines.selection import SelectionValidator
from procurement_engines.status_mapping import StatusMappingTable
from procurement_engines.twins import TwinFinding, TwinLineReconciler
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.models import (
    BasketStatus,
    RequestStatus,
    SupplierOrder,
    SupplierOrderLine,
)
from procurement_kernel.domain.workflows import BASKET_WORKFLOW
from procurement_kernel.exceptions import (
    GatewayError,
    LineNotFoundError,
    LockContentionError,
    NoSelectedLineError,
    NotFoundError,
    PartialBatchError,
    ReEvaluationError,
    TransitionError,
    UnmappedStatusError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_services.batch import BatchRunner
from procurement_services.gateway import ACTIVE_BASKET_STATUSES, ProcurementGateway
from procurement_services.locks import RequestLockRegistry, process_lock_registry
from procurement_services.purge_service import PurgeRedispatchProcessor

logger = get_logger("services.basket_status")

STEP_RECORD_RECEIPT = "record_receipt"
STEP_MAP_REQUESTS = "map_requests"
STEP_PERSIST_BASKET = "persist_basket"
STEP_RE_EVALUATE = "re_evaluate"

_LOCK_ATTEMPTS = 5

_T = TypeVar("_T")

_TIMESTAMP_FIELDS = {
    BasketStatus.SENT: "sent_at",
    BasketStatus.RECEIVED: "received_at",
    BasketStatus.CLOSED: "closed_at",
}


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a successful basket status change."""

    basket_id: UUID
    from_status: BasketStatus
    to_status: BasketStatus
    request_status: RequestStatus
    updated_request_ids: tuple[UUID, ...] = ()
    purged_line_ids: tuple[UUID, ...] = ()
    redispatched_request_ids: tuple[UUID, ...] = ()
    received_line_ids: tuple[UUID, ...] = ()
    warnings: tuple[TwinFinding, ...] = ()
    steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class SelectionOutcome:
    """Result of a line (de)selection."""

    basket_id: UUID
    line_id: UUID
    is_selected: bool
    changed: bool
    flagged: bool = False
    conflicting_line_ids: tuple[UUID, ...] = ()
    reason: str = ""


@dataclass(frozen=True)
class ReEvaluationResult:
    """Result of re-applying the mapped status to a basket's requests."""

    basket_id: UUID
    basket_status: BasketStatus
    request_status: RequestStatus
    updated_count: int
    updated_request_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class StatusDrift:
    """A linked purchase request whose status differs from the mapped one."""

    request_id: UUID
    current_status: RequestStatus
    expected_status: RequestStatus


class BasketStatusSynchronizer:
    """
    The basket state machine driver.

    Contract
    --------
    * Exposed operations return a frozen outcome on success and raise a
      typed ``ProcurementError`` on failure.
    * Every read that feeds a decision is authoritative (re-read from the
      gateway); no local cache is trusted.

    Guarantees
    ----------
    * The mapping table is injected and immutable.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * No automatic retry or rollback of partially applied steps.
    """

    def __init__(
        self,
        gateway: ProcurementGateway,
        mapping_table: StatusMappingTable | None = None,
        *,
        purge_processor: PurgeRedispatchProcessor | None = None,
        selection_validator: SelectionValidator | None = None,
        reconciler: TwinLineReconciler | None = None,
        batch_runner: BatchRunner | None = None,
        lock_registry: RequestLockRegistry | None = None,
        clock: Clock | None = None,
        record_receipt_on_close: bool = True,
    ):
        self._gateway = gateway
        self._mapping = mapping_table or StatusMappingTable.default()
        self._batch = batch_runner or BatchRunner()
        self._purge = purge_processor or PurgeRedispatchProcessor(gateway, self._batch)
        self._validator = selection_validator or SelectionValidator()
        self._reconciler = reconciler or TwinLineReconciler()
        self._locks = lock_registry
        self._clock = clock or SystemClock()
        self._record_receipt_on_close = record_receipt_on_close

    @classmethod
    def from_config(
        cls,
        gateway: ProcurementGateway,
        config,
        clock: Clock | None = None,
        lock_registry: RequestLockRegistry | None = None,
    ) -> BasketStatusSynchronizer:
        """Build a synchronizer from a ``ProcurementConfig``."""
        batch = BatchRunner(max_workers=config.max_parallel_writes)
        if config.enforce_request_locks and lock_registry is None:
            lock_registry = process_lock_registry()
        return cls(
            gateway,
            config.status_mapping_table(),
            batch_runner=batch,
            purge_processor=PurgeRedispatchProcessor(gateway, batch),
            lock_registry=lock_registry if config.enforce_request_locks else None,
            clock=clock,
            record_receipt_on_close=config.record_receipt_on_close,
        )

    @property
    def mapping_table(self) -> StatusMappingTable:
        return self._mapping

    # =========================================================================
    # Status changes
    # =========================================================================

    def change_basket_status(
        self,
        basket_id: UUID,
        target: BasketStatus | str,
    ) -> TransitionOutcome:
        """Move a basket to ``target`` and cascade onto its purchase requests."""
        with LogContext.bind(basket_id=str(basket_id)):
            try:
                target_status = BasketStatus.parse(target)
            except ValueError:
                logger.error("basket_status_undefined", extra={"target": str(target)})
                raise UnmappedStatusError(str(target), self._mapping.known_statuses)
            request_status = self._mapping.map(target_status)

            basket = self._gateway.fetch_basket(basket_id)
            transition = BASKET_WORKFLOW.find_transition(
                basket.status.value, target_status.value,
            )
            if transition is None:
                logger.warning(
                    "basket_transition_rejected",
                    extra={
                        "from_status": basket.status.value,
                        "to_status": target_status.value,
                        "allowed": BASKET_WORKFLOW.targets_from(basket.status.value),
                    },
                )
                raise TransitionError(
                    str(basket_id), basket.status.value, target_status.value,
                )

            logger.info(
                "basket_transition_started",
                extra={
                    "from_status": basket.status.value,
                    "to_status": target_status.value,
                    "action": transition.action,
                },
            )
            if target_status == BasketStatus.RECEIVED:
                outcome = self._finalize(basket, request_status)
            else:
                outcome = self._apply(basket, target_status, request_status)

            logger.info(
                "basket_transition_completed",
                extra={
                    "from_status": outcome.from_status.value,
                    "to_status": outcome.to_status.value,
                    "updated_request_count": len(outcome.updated_request_ids),
                    "purged_line_count": len(outcome.purged_line_ids),
                },
            )
            return outcome

    def _finalize(
        self,
        basket: SupplierOrder,
        request_status: RequestStatus,
    ) -> TransitionOutcome:
        """Transition into RECEIVED: guards, then purge, map, persist."""
        snapshot = self._with_current_lines(basket)
        if not snapshot.selected_lines:
            raise NoSelectedLineError(str(basket.id))

        with self._hold_current(
            basket.id,
            lambda: self._with_current_lines(basket),
            lambda lines_now: lines_now.request_ids,
            first=snapshot,
        ) as snapshot:
            # The basket may have changed while waiting for the locks.
            current = self._gateway.fetch_basket(basket.id)
            if current.status != basket.status:
                raise TransitionError(
                    str(basket.id), current.status.value, BasketStatus.RECEIVED.value,
                )
            if not snapshot.selected_lines:
                raise NoSelectedLineError(str(basket.id))

            all_baskets = self._gateway.fetch_baskets(ACTIVE_BASKET_STATUSES)
            report = self._reconciler.validate_for_finalization(
                basket=snapshot, all_baskets=all_baskets,
            )
            if report.is_blocked:
                logger.warning(
                    "basket_finalization_blocked",
                    extra={
                        "conflicts": [
                            {
                                "request_id": str(f.request_id),
                                "line_ids": [str(i) for i in f.line_ids],
                            }
                            for f in report.errors
                        ],
                    },
                )
                report.raise_for_errors()
            for finding in report.warnings:
                logger.warning(
                    "twin_consultation_abandoned",
                    extra={
                        "request_id": str(finding.request_id),
                        "line_ids": [str(i) for i in finding.line_ids],
                    },
                )

            purge = self._purge.purge(snapshot, other_baskets=all_baskets)
            done = list(purge.steps)

            remaining = self._with_current_lines(basket)
            updated = self._cascade(
                basket.id, remaining.request_ids, request_status, done,
            )
            done.append(STEP_MAP_REQUESTS)

            self._persist(basket.id, BasketStatus.RECEIVED, done)
            done.append(STEP_PERSIST_BASKET)

        return TransitionOutcome(
            basket_id=basket.id,
            from_status=basket.status,
            to_status=BasketStatus.RECEIVED,
            request_status=request_status,
            updated_request_ids=updated,
            purged_line_ids=purge.purged_line_ids + purge.already_resolved_line_ids,
            redispatched_request_ids=purge.redispatched_request_ids,
            warnings=report.warnings,
            steps=tuple(done),
        )

    def _apply(
        self,
        basket: SupplierOrder,
        target: BasketStatus,
        request_status: RequestStatus,
    ) -> TransitionOutcome:
        """Any transition other than RECEIVED: map all linked requests, persist."""
        snapshot = self._with_current_lines(basket)
        done: list[str] = []
        received: tuple[UUID, ...] = ()

        if target == BasketStatus.CLOSED and self._record_receipt_on_close:
            received = self._record_receipt(snapshot, done)
            done.append(STEP_RECORD_RECEIPT)

        updated = self._cascade(basket.id, snapshot.request_ids, request_status, done)
        done.append(STEP_MAP_REQUESTS)

        self._persist(basket.id, target, done)
        done.append(STEP_PERSIST_BASKET)

        return TransitionOutcome(
            basket_id=basket.id,
            from_status=basket.status,
            to_status=target,
            request_status=request_status,
            updated_request_ids=updated,
            received_line_ids=received,
            steps=tuple(done),
        )

    def _record_receipt(
        self,
        basket: SupplierOrder,
        completed_steps: list[str],
    ) -> tuple[UUID, ...]:
        """Selected lines are received in full when the basket closes."""
        pending = [
            line for line in basket.selected_lines
            if line.quantity_received != line.quantity
        ]
        outcome = self._batch.run(
            STEP_RECORD_RECEIPT,
            [
                (
                    str(line.id),
                    functools.partial(
                        self._gateway.update_line,
                        line.id,
                        {"quantity_received": line.quantity},
                    ),
                )
                for line in pending
            ],
        )
        outcome.raise_for_failures(completed_steps, str(basket.id))
        return tuple(UUID(k) for k in outcome.succeeded_keys)

    def _cascade(
        self,
        basket_id: UUID,
        request_ids: tuple[UUID, ...],
        request_status: RequestStatus,
        completed_steps: list[str],
        step: str = STEP_MAP_REQUESTS,
    ) -> tuple[UUID, ...]:
        outcome = self._batch.run(
            step,
            [
                (
                    str(request_id),
                    functools.partial(
                        self._gateway.update_purchase_request,
                        request_id,
                        {"status": request_status},
                    ),
                )
                for request_id in request_ids
            ],
        )
        outcome.raise_for_failures(completed_steps, str(basket_id))
        return tuple(UUID(k) for k in outcome.succeeded_keys)

    def _persist(
        self,
        basket_id: UUID,
        status: BasketStatus,
        completed_steps: list[str],
    ) -> SupplierOrder:
        fields: dict[str, Any] = {"status": status}
        timestamp_field = _TIMESTAMP_FIELDS.get(status)
        if timestamp_field is not None:
            fields[timestamp_field] = self._clock.now()
        try:
            return self._gateway.update_basket(basket_id, fields)
        except (GatewayError, NotFoundError) as exc:
            logger.error(
                "basket_persist_failed",
                extra={"status": status.value, "completed_steps": list(completed_steps)},
            )
            raise PartialBatchError(
                step=STEP_PERSIST_BASKET,
                succeeded=(),
                failed=((str(basket_id), str(exc)),),
                completed_steps=completed_steps,
                basket_id=str(basket_id),
            )

    # =========================================================================
    # Line selection and quotes
    # =========================================================================

    def toggle_line_selection(
        self,
        basket_id: UUID,
        line_id: UUID,
        desired: bool,
    ) -> SelectionOutcome:
        """Select or deselect a line, subject to the selection rules."""
        with LogContext.bind(basket_id=str(basket_id)):
            with self._hold_current(
                basket_id,
                lambda: self._with_current_lines(self._gateway.fetch_basket(basket_id)),
                lambda basket_now: self._line_of(basket_now, line_id).purchase_request_ids,
            ) as basket:
                line = self._line_of(basket, line_id)
                all_baskets = self._gateway.fetch_baskets(ACTIVE_BASKET_STATUSES)

                if desired:
                    decision = self._validator.can_select(
                        basket=basket, line=line, all_baskets=all_baskets,
                    )
                else:
                    decision = self._validator.can_deselect(
                        basket=basket, line=line, all_baskets=all_baskets,
                    )
                if not decision.allowed:
                    logger.info(
                        "line_selection_refused",
                        extra={"line_id": str(line_id), "code": decision.code},
                    )
                decision.raise_if_refused(basket, line)

                changed = decision.code != "NO_CHANGE"
                if changed:
                    self._gateway.update_line(line_id, {"is_selected": desired})
                    logger.info(
                        "line_selection_changed",
                        extra={
                            "line_id": str(line_id),
                            "is_selected": desired,
                            "flagged": decision.flagged,
                        },
                    )
            return SelectionOutcome(
                basket_id=basket_id,
                line_id=line_id,
                is_selected=desired,
                changed=changed,
                flagged=decision.flagged,
                conflicting_line_ids=decision.conflicting_line_ids,
                reason=decision.reason,
            )

    def update_line_quote(
        self,
        basket_id: UUID,
        line_id: UUID,
        *,
        quote_price: Decimal | None = None,
        lead_time_days: int | None = None,
        manufacturer_name: str | None = None,
        manufacturer_ref: str | None = None,
        quote_received: bool = True,
    ) -> SupplierOrderLine:
        """Record a supplier's quote on a line while the basket is editable."""
        with LogContext.bind(basket_id=str(basket_id)):
            basket = self._with_current_lines(self._gateway.fetch_basket(basket_id))
            line = self._line_of(basket, line_id)
            decision = self._validator.can_modify(basket=basket, line=line)
            decision.raise_if_refused(basket, line)

            fields: dict[str, Any] = {"quote_received": quote_received}
            optional = {
                "quote_price": quote_price,
                "lead_time_days": lead_time_days,
                "manufacturer_name": manufacturer_name,
                "manufacturer_ref": manufacturer_ref,
            }
            fields.update({k: v for k, v in optional.items() if v is not None})
            updated = self._gateway.update_line(line_id, fields)
            logger.info(
                "line_quote_recorded",
                extra={"line_id": str(line_id), "fields": sorted(fields)},
            )
            return updated

    # =========================================================================
    # Drift and repair
    # =========================================================================

    def find_status_drift(self, basket_id: UUID) -> tuple[StatusDrift, ...]:
        """Linked requests whose stored status differs from the mapped status."""
        basket = self._with_current_lines(self._gateway.fetch_basket(basket_id))
        expected = self._mapping.map(basket.status)
        requests = self._gateway.fetch_purchase_requests(basket.request_ids)
        return tuple(
            StatusDrift(request.id, request.status, expected)
            for request in requests
            if request.status != expected
        )

    def re_evaluate(self, basket_id: UUID) -> ReEvaluationResult:
        """Re-apply the mapped status to every linked request.

        The basket's own status is left unchanged.
        """
        with LogContext.bind(basket_id=str(basket_id)):
            basket = self._with_current_lines(self._gateway.fetch_basket(basket_id))
            request_ids = basket.request_ids
            if not request_ids:
                raise ReEvaluationError(
                    str(basket_id), "no purchase request is linked to this basket",
                )
            request_status = self._mapping.map(basket.status)
            updated = self._cascade(
                basket_id, request_ids, request_status, [], step=STEP_RE_EVALUATE,
            )
            logger.info(
                "basket_re_evaluated",
                extra={
                    "basket_status": basket.status.value,
                    "request_status": request_status.value,
                    "updated_count": len(updated),
                },
            )
            return ReEvaluationResult(
                basket_id=basket_id,
                basket_status=basket.status,
                request_status=request_status,
                updated_count=len(updated),
                updated_request_ids=updated,
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _with_current_lines(self, basket: SupplierOrder) -> SupplierOrder:
        return basket.with_lines(self._gateway.fetch_lines_for_basket(basket.id))

    @staticmethod
    def _line_of(basket: SupplierOrder, line_id: UUID) -> SupplierOrderLine:
        line = basket.get_line(line_id)
        if line is None:
            raise LineNotFoundError(str(line_id))
        return line

    def _hold(self, request_ids: tuple[UUID, ...]):
        if self._locks is None:
            return nullcontext(request_ids)
        return self._locks.hold(request_ids)

    @contextmanager
    def _hold_current(
        self,
        basket_id: UUID,
        read: Callable[[], _T],
        request_ids_of: Callable[[_T], Iterable[UUID]],
        first: _T | None = None,
    ) -> Iterator[_T]:
        """Hold the locks of every request the value returned by ``read`` links.

        The value is read again under the locks.  When it now links a request
        whose lock is not held, the locks are released and taken again for the
        wider set.
        """
        value = read() if first is None else first
        wanted = set(request_ids_of(value))
        for attempt in range(1, _LOCK_ATTEMPTS + 1):
            with self._hold(tuple(wanted)):
                value = read()
                missing = set(request_ids_of(value)) - wanted
                if not missing or self._locks is None:
                    yield value
                    return
            logger.info(
                "request_locks_widened",
                extra={"attempt": attempt, "added_count": len(missing)},
            )
            wanted |= missing
        raise LockContentionError(str(basket_id), _LOCK_ATTEMPTS)
