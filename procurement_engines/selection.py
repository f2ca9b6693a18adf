"""
Selection Validator -- may a basket line be selected, deselected or edited?

Responsibility:
    Decide, from a basket snapshot and the other active baskets, whether a
    line's ``is_selected`` flag (or its quote fields) may change, and say
    why not when it may not.

Architecture position:
    Engines -- pure calculation, zero I/O.  Callers pass authoritative
    snapshots; the synchronizer turns refusals into typed exceptions.

Invariants enforced:
    - Lines are editable only while the owning basket is POOLING, SENT or ACK.
    - Deselecting the only selected line of a purchase request (across every
      non-cancelled basket) is refused, so no request is left without a
      selected line.
    - Selecting a twin while a sibling is already selected elsewhere is
      allowed but flagged; arbitration happens at finalization.

Non-goals:
    - Does not decide which twin is the better offer.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from procurement_kernel.domain.models import (
    BasketStatus,
    SupplierOrder,
    SupplierOrderLine,
)
from procurement_kernel.exceptions import (
    LastSelectedTwinError,
    LockedBasketError,
    SelectionError,
)
from procurement_kernel.logging_config import get_logger
from procurement_engines.tracer import traced_engine

logger = get_logger("engines.selection")

EDITABLE_STATUSES = frozenset({
    BasketStatus.POOLING,
    BasketStatus.SENT,
    BasketStatus.ACK,
})


@dataclass(frozen=True)
class SelectionDecision:
    """
    Outcome of a selection check.

    ``code`` is ``ALLOWED``, ``NO_CHANGE``, ``LOCKED_BASKET`` or
    ``LAST_SELECTED_TWIN``.  ``flagged`` marks an allowed selection that
    creates a twin conflict to be resolved before finalization.
    """

    allowed: bool
    reason: str
    code: str = "ALLOWED"
    flagged: bool = False
    conflicting_line_ids: tuple[UUID, ...] = ()
    request_ids: tuple[UUID, ...] = ()

    def raise_if_refused(self, basket: SupplierOrder, line: SupplierOrderLine) -> None:
        """Raise the typed exception matching a refusal; no-op when allowed."""
        if self.allowed:
            return
        if self.code == "LOCKED_BASKET":
            raise LockedBasketError(str(basket.id), str(line.id), basket.status.value)
        if self.code == "LAST_SELECTED_TWIN":
            raise LastSelectedTwinError(
                str(basket.id), str(line.id), [str(r) for r in self.request_ids]
            )
        raise SelectionError(str(basket.id), str(line.id), self.reason)


def _active_lines(
    basket: SupplierOrder,
    all_baskets: Iterable[SupplierOrder],
) -> list[tuple[SupplierOrder, SupplierOrderLine]]:
    """Every line of every non-cancelled basket, ``basket`` taking precedence."""
    pairs: list[tuple[SupplierOrder, SupplierOrderLine]] = [
        (basket, line) for line in basket.lines
    ]
    seen = {line.id for line in basket.lines}
    for other in all_baskets:
        if other.id == basket.id or other.status == BasketStatus.CANCELLED:
            continue
        for line in other.lines:
            if line.id not in seen:
                seen.add(line.id)
                pairs.append((other, line))
    return pairs


class SelectionValidator:
    """
    Pure selection rules for basket lines.

    Usage:
        validator = SelectionValidator()
        decision = validator.can_deselect(basket, line, all_baskets)
        decision.raise_if_refused(basket, line)
    """

    def _locked(self, basket: SupplierOrder) -> SelectionDecision | None:
        if basket.status in EDITABLE_STATUSES:
            return None
        return SelectionDecision(
            allowed=False,
            reason=f"Basket is {basket.status.value}; its lines are locked",
            code="LOCKED_BASKET",
        )

    @traced_engine("selection_validator", "1.0", fingerprint_fields=("basket", "line"))
    def can_modify(
        self,
        basket: SupplierOrder,
        line: SupplierOrderLine,
    ) -> SelectionDecision:
        """May the line's quote or manufacturer fields be edited?"""
        locked = self._locked(basket)
        if locked is not None:
            return locked
        return SelectionDecision(
            allowed=True,
            reason=f"Basket is {basket.status.value}; lines are editable",
        )

    @traced_engine("selection_validator", "1.0", fingerprint_fields=("basket", "line"))
    def can_select(
        self,
        basket: SupplierOrder,
        line: SupplierOrderLine,
        all_baskets: Iterable[SupplierOrder] = (),
    ) -> SelectionDecision:
        """May the line be selected?  Flags an existing selected twin."""
        locked = self._locked(basket)
        if locked is not None:
            return locked
        if line.is_selected:
            return SelectionDecision(
                allowed=True, reason="Line is already selected", code="NO_CHANGE"
            )

        conflicting = tuple(
            other.id
            for _, other in _active_lines(basket, all_baskets)
            if other.id != line.id
            and other.is_selected
            and any(other.references(r) for r in line.purchase_request_ids)
        )
        if conflicting:
            logger.info(
                "twin_selection_flagged",
                extra={
                    "basket_id": str(basket.id),
                    "line_id": str(line.id),
                    "conflicting_line_ids": [str(i) for i in conflicting],
                },
            )
            return SelectionDecision(
                allowed=True,
                reason=(
                    f"{len(conflicting)} twin line(s) already selected; only one "
                    f"may remain selected when a basket is finalized"
                ),
                flagged=True,
                conflicting_line_ids=conflicting,
            )
        return SelectionDecision(allowed=True, reason="Line can be selected")

    @traced_engine("selection_validator", "1.0", fingerprint_fields=("basket", "line"))
    def can_deselect(
        self,
        basket: SupplierOrder,
        line: SupplierOrderLine,
        all_baskets: Iterable[SupplierOrder] = (),
    ) -> SelectionDecision:
        """May the line be deselected without orphaning a purchase request?"""
        locked = self._locked(basket)
        if locked is not None:
            return locked
        if not line.is_selected:
            return SelectionDecision(
                allowed=True, reason="Line is not selected", code="NO_CHANGE"
            )

        others = [
            other for _, other in _active_lines(basket, all_baskets)
            if other.id != line.id and other.is_selected
        ]
        orphaned = tuple(
            request_id
            for request_id in line.purchase_request_ids
            if not any(other.references(request_id) for other in others)
        )
        if orphaned:
            return SelectionDecision(
                allowed=False,
                reason=(
                    f"Line is the only selected line for {len(orphaned)} purchase "
                    f"request(s); select another twin first"
                ),
                code="LAST_SELECTED_TWIN",
                request_ids=orphaned,
            )
        return SelectionDecision(allowed=True, reason="Line can be deselected")
