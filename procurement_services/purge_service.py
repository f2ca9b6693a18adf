"""
Purge & Redispatch Processor (``procurement_services.purge_service``).

Responsibility
--------------
When a basket is finalized, delete its unselected lines and return the
purchase requests that only those lines served to the dispatch pool
(``in_progress``).  Also purges a whole basket on request, returning every
linked purchase request to ``open``.

Architecture position
---------------------
**Services layer** -- imperative shell over ``ProcurementGateway``.  The
purge plan is computed purely (``plan_purge``); writes fan out through
``BatchRunner``.

Invariants enforced
-------------------
* A request still referenced by a kept line, or by any line of another
  live basket, is never redispatched here and keeps its status.
* Line deletes complete before any request is redispatched.
* A line that vanished before its delete counts as already purged.

Failure modes
-------------
* Any failed write  -> ``PartialBatchError`` naming the step, the items that
  succeeded and failed, and the steps completed before it.  Nothing is
  retried.
* ``purge_basket`` on a RECEIVED or CLOSED basket  -> ``PurgeRefusedError``.
"""

from __future__ import annotations

import functools
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from uuid import UUID

from procurement_kernel.domain.models import (
    BasketStatus,
    RequestStatus,
    SupplierOrder,
    SupplierOrderLine,
    linked_request_ids,
)
from procurement_kernel.exceptions import (
    GatewayError,
    NotFoundError,
    PartialBatchError,
    PurgeRefusedError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_services.batch import BatchRunner
from procurement_services.gateway import ProcurementGateway

logger = get_logger("services.purge")

STEP_PURGE_LINES = "purge_lines"
STEP_REDISPATCH = "redispatch_requests"
STEP_RELEASE = "release_requests"
STEP_DELETE_BASKET = "delete_basket"

_UNPURGEABLE = frozenset({BasketStatus.RECEIVED, BasketStatus.CLOSED})


@dataclass(frozen=True)
class PurgePlan:
    """What a finalization purge will delete and redispatch."""

    purge_lines: tuple[SupplierOrderLine, ...]
    kept_lines: tuple[SupplierOrderLine, ...]
    redispatch_request_ids: tuple[UUID, ...]
    skipped_request_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class PurgeResult:
    """Outcome of a finalization purge."""

    basket_id: UUID
    purged_line_ids: tuple[UUID, ...] = ()
    already_resolved_line_ids: tuple[UUID, ...] = ()
    redispatched_request_ids: tuple[UUID, ...] = ()
    skipped_request_ids: tuple[UUID, ...] = ()
    steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class BasketPurgeResult:
    """Outcome of purging a whole basket."""

    basket_id: UUID
    released_request_ids: tuple[UUID, ...] = ()
    deleted_line_ids: tuple[UUID, ...] = ()


def _still_referenced(
    basket_id: UUID,
    kept: Sequence[SupplierOrderLine],
    other_baskets: Iterable[SupplierOrder],
) -> set[UUID]:
    """Requests that keep a line once this basket's unselected lines are gone."""
    referenced = set(linked_request_ids(kept))
    for other in other_baskets:
        if other.id == basket_id:
            continue
        for line in other.lines:
            if line.is_selected or other.status != BasketStatus.CANCELLED:
                referenced.update(line.purchase_request_ids)
    return referenced


def plan_purge(
    lines: Sequence[SupplierOrderLine],
    other_baskets: Iterable[SupplierOrder] = (),
    basket_id: UUID | None = None,
) -> PurgePlan:
    """Split lines into purged and kept, and derive the requests to redispatch.

    Only a request referenced by purged lines alone is redispatched.  One
    still referenced by a kept line, by a line of another live basket, or by
    a selected line anywhere is skipped and keeps its status.
    """
    purge = tuple(line for line in lines if not line.is_selected)
    kept = tuple(line for line in lines if line.is_selected)
    if basket_id is None and lines:
        basket_id = lines[0].basket_id
    referenced = _still_referenced(basket_id, kept, other_baskets)
    candidates = linked_request_ids(purge)
    return PurgePlan(
        purge_lines=purge,
        kept_lines=kept,
        redispatch_request_ids=tuple(r for r in candidates if r not in referenced),
        skipped_request_ids=tuple(r for r in candidates if r in referenced),
    )


class PurgeRedispatchProcessor:
    """
    Deletes unselected lines and returns their requests to the dispatch pool.

    Contract
    --------
    * ``purge`` takes the authoritative line set of the basket being
      finalized (callers re-read it first) and the other baskets that may
      still reference its requests.
    * Returns ``PurgeResult`` on success; raises ``PartialBatchError`` when a
      step partially fails.
    """

    def __init__(
        self,
        gateway: ProcurementGateway,
        batch_runner: BatchRunner | None = None,
    ):
        self._gateway = gateway
        self._batch = batch_runner or BatchRunner()

    def purge(
        self,
        basket: SupplierOrder,
        completed_steps: Sequence[str] = (),
        other_baskets: Iterable[SupplierOrder] = (),
    ) -> PurgeResult:
        plan = plan_purge(basket.lines, other_baskets, basket_id=basket.id)
        basket_key = str(basket.id)
        done = list(completed_steps)

        if plan.skipped_request_ids:
            logger.warning(
                "redispatch_skipped_for_referenced_requests",
                extra={
                    "basket_id": basket_key,
                    "request_ids": [str(r) for r in plan.skipped_request_ids],
                },
            )

        deleted = self._batch.run(
            STEP_PURGE_LINES,
            [
                (str(line.id), functools.partial(self._gateway.delete_line, line.id))
                for line in plan.purge_lines
            ],
            tolerate_not_found=True,
        )
        deleted.raise_for_failures(done, basket_key)
        done.append(STEP_PURGE_LINES)

        redispatched = self._batch.run(
            STEP_REDISPATCH,
            [
                (
                    str(request_id),
                    functools.partial(
                        self._gateway.update_purchase_request,
                        request_id,
                        {"status": RequestStatus.IN_PROGRESS},
                    ),
                )
                for request_id in plan.redispatch_request_ids
            ],
        )
        redispatched.raise_for_failures(done, basket_key)
        done.append(STEP_REDISPATCH)

        result = PurgeResult(
            basket_id=basket.id,
            purged_line_ids=tuple(UUID(k) for k in deleted.succeeded_keys),
            already_resolved_line_ids=tuple(
                UUID(k) for k in deleted.already_resolved_keys
            ),
            redispatched_request_ids=plan.redispatch_request_ids,
            skipped_request_ids=plan.skipped_request_ids,
            steps=tuple(done[len(completed_steps):]),
        )
        logger.info(
            "lines_purged",
            extra={
                "basket_id": basket_key,
                "purged_count": len(result.purged_line_ids),
                "already_resolved_count": len(result.already_resolved_line_ids),
                "redispatched_count": len(result.redispatched_request_ids),
            },
        )
        return result

    def purge_basket(self, basket_id: UUID) -> BasketPurgeResult:
        """Delete a basket and all of its lines; linked requests become open.

        Steps: release requests, delete lines, delete the basket.
        """
        with LogContext.bind(basket_id=str(basket_id)):
            basket = self._gateway.fetch_basket(basket_id)
            if basket.status in _UNPURGEABLE:
                raise PurgeRefusedError(str(basket_id), basket.status.value)

            lines = tuple(self._gateway.fetch_lines_for_basket(basket_id))
            request_ids = linked_request_ids(lines)
            done: list[str] = []

            released = self._batch.run(
                STEP_RELEASE,
                [
                    (
                        str(request_id),
                        functools.partial(
                            self._gateway.update_purchase_request,
                            request_id,
                            {"status": RequestStatus.OPEN},
                        ),
                    )
                    for request_id in request_ids
                ],
            )
            released.raise_for_failures(done, str(basket_id))
            done.append(STEP_RELEASE)

            deleted = self._batch.run(
                STEP_PURGE_LINES,
                [
                    (str(line.id), functools.partial(self._gateway.delete_line, line.id))
                    for line in lines
                ],
                tolerate_not_found=True,
            )
            deleted.raise_for_failures(done, str(basket_id))
            done.append(STEP_PURGE_LINES)

            try:
                self._gateway.delete_basket(basket_id)
            except NotFoundError:
                logger.info("basket_already_deleted", extra={"basket_id": str(basket_id)})
            except GatewayError as exc:
                raise PartialBatchError(
                    step=STEP_DELETE_BASKET,
                    succeeded=(),
                    failed=((str(basket_id), str(exc)),),
                    completed_steps=done,
                    basket_id=str(basket_id),
                )

            logger.info(
                "basket_purged",
                extra={
                    "released_count": len(request_ids),
                    "deleted_line_count": len(lines),
                },
            )
            return BasketPurgeResult(
                basket_id=basket_id,
                released_request_ids=request_ids,
                deleted_line_ids=tuple(line.id for line in lines),
            )
