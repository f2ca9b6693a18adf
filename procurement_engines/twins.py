"""
TwinLineReconciler -- Pure engine for twin-line exclusivity checks.

Twin lines are lines in different baskets that reference the same purchase
request while several suppliers are consulted in parallel.  Before a basket
is finalized (moves to RECEIVED) every twin group touching it is checked.

Architecture: procurement_engines -- pure calculation, zero I/O.
All inputs are frozen basket snapshots populated by the service layer.

Checks performed:
    TWIN_CONFLICT        ERROR    more than one selected twin for a request
    TWIN_QUOTE_PENDING   WARNING  an outside twin still awaits a quote while
                                  this basket's twin is being finalized

Cancelled baskets are ignored: their lines no longer compete.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from procurement_kernel.domain.models import (
    BasketStatus,
    SupplierOrder,
    SupplierOrderLine,
)
from procurement_kernel.exceptions import TwinConflictError
from procurement_kernel.logging_config import get_logger
from procurement_engines.selection import EDITABLE_STATUSES
from procurement_engines.tracer import traced_engine

logger = get_logger("engines.twins")


class CheckSeverity(str, Enum):
    """Severity level of a twin finding."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class TwinLine:
    """A line together with the basket that owns it."""

    line: SupplierOrderLine
    basket_id: UUID
    basket_status: BasketStatus

    @property
    def line_id(self) -> UUID:
        return self.line.id

    @property
    def is_selected(self) -> bool:
        return self.line.is_selected


@dataclass(frozen=True)
class TwinFinding:
    """One issue found for a twin group.

    Each finding has a machine-readable ``code``, a severity, a
    human-readable message, and the request and lines involved.
    """

    code: str
    severity: CheckSeverity
    message: str
    request_id: UUID
    line_ids: tuple[UUID, ...] = ()
    details: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class FinalizationReport:
    """Result of ``validate_for_finalization`` for one basket."""

    basket_id: UUID
    findings: tuple[TwinFinding, ...] = ()
    groups_checked: int = 0

    @property
    def errors(self) -> tuple[TwinFinding, ...]:
        return tuple(f for f in self.findings if f.severity == CheckSeverity.ERROR)

    @property
    def warnings(self) -> tuple[TwinFinding, ...]:
        return tuple(f for f in self.findings if f.severity == CheckSeverity.WARNING)

    @property
    def is_blocked(self) -> bool:
        return bool(self.errors)

    def raise_for_errors(self) -> None:
        """Raise ``TwinConflictError`` naming every conflicting line."""
        if not self.errors:
            return
        conflicts = tuple(
            (str(f.request_id), tuple(str(i) for i in f.line_ids))
            for f in self.errors
        )
        first_request, first_lines = conflicts[0]
        raise TwinConflictError(
            str(self.basket_id), first_request, first_lines, conflicts=conflicts
        )


def _collect(
    all_baskets: Iterable[SupplierOrder],
    basket: SupplierOrder | None = None,
) -> list[TwinLine]:
    twins: list[TwinLine] = []
    seen: set[UUID] = set()
    ordered = ([basket] if basket is not None else []) + [
        b for b in all_baskets if basket is None or b.id != basket.id
    ]
    for owner in ordered:
        if owner.status == BasketStatus.CANCELLED and owner is not basket:
            continue
        for line in owner.lines:
            if line.id in seen:
                continue
            seen.add(line.id)
            twins.append(TwinLine(line, owner.id, owner.status))
    return twins


class TwinLineReconciler:
    """Pure engine for twin-line reconciliation.

    Usage:
        reconciler = TwinLineReconciler()
        report = reconciler.validate_for_finalization(basket, all_baskets)
        report.raise_for_errors()
    """

    def find_twins(
        self,
        request_id: UUID,
        all_baskets: Iterable[SupplierOrder],
    ) -> tuple[TwinLine, ...]:
        """All lines, across every non-cancelled basket, referencing the request."""
        return tuple(
            twin for twin in _collect(all_baskets)
            if twin.line.references(request_id)
        )

    def group_by_request(
        self,
        all_baskets: Iterable[SupplierOrder],
        basket: SupplierOrder | None = None,
    ) -> dict[UUID, tuple[TwinLine, ...]]:
        """Group every line system-wide by referenced purchase request id.

        When ``basket`` is given its lines replace any stale copy of the same
        basket in ``all_baskets``.
        """
        groups: dict[UUID, list[TwinLine]] = {}
        for twin in _collect(all_baskets, basket):
            for request_id in twin.line.purchase_request_ids:
                groups.setdefault(request_id, []).append(twin)
        return {k: tuple(v) for k, v in groups.items()}

    @traced_engine("twin_reconciler", "1.0", fingerprint_fields=("basket",))
    def validate_for_finalization(
        self,
        basket: SupplierOrder,
        all_baskets: Iterable[SupplierOrder] = (),
    ) -> FinalizationReport:
        """Check every twin group intersecting ``basket``.

        More than one selected twin is an ERROR (blocking).  An outside twin
        in a still-consulting basket without a quote, while this basket's
        twin is selected, is a WARNING.
        """
        findings: list[TwinFinding] = []
        groups = self.group_by_request(all_baskets, basket)
        checked = 0

        for request_id, twins in groups.items():
            local = [t for t in twins if t.basket_id == basket.id]
            if not local:
                continue
            checked += 1

            selected = [t for t in twins if t.is_selected]
            if len(selected) > 1:
                findings.append(TwinFinding(
                    code="TWIN_CONFLICT",
                    severity=CheckSeverity.ERROR,
                    message=(
                        f"Purchase request {request_id} has {len(selected)} "
                        f"selected twin lines"
                    ),
                    request_id=request_id,
                    line_ids=tuple(t.line_id for t in selected),
                    details={"basket_ids": [str(t.basket_id) for t in selected]},
                ))

            if not any(t.is_selected for t in local):
                continue
            pending = [
                t for t in twins
                if t.basket_id != basket.id
                and t.basket_status in EDITABLE_STATUSES
                and not t.line.quote_received
            ]
            if pending:
                findings.append(TwinFinding(
                    code="TWIN_QUOTE_PENDING",
                    severity=CheckSeverity.WARNING,
                    message=(
                        f"{len(pending)} twin line(s) for purchase request "
                        f"{request_id} still await a quote; that consultation "
                        f"is abandoned"
                    ),
                    request_id=request_id,
                    line_ids=tuple(t.line_id for t in pending),
                ))

        report = FinalizationReport(
            basket_id=basket.id,
            findings=tuple(findings),
            groups_checked=checked,
        )
        logger.info(
            "twin_validation_completed",
            extra={
                "basket_id": str(basket.id),
                "groups_checked": checked,
                "error_count": len(report.errors),
                "warning_count": len(report.warnings),
            },
        )
        return report
