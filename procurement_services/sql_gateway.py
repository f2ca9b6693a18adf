"""
SqlProcurementGateway -- gateway over the SQLAlchemy ORM models.

Each operation runs in its own ``session_scope``: committed on success,
rolled back on failure.  ORM rows are converted to the canonical domain
types with ``to_dto()`` before they leave the gateway.

SQLite connections are shared across threads (``StaticPool``), so the
gateway serializes its sessions on that dialect.  Batch writes then run one
at a time; on PostgreSQL they fan out over the connection pool.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager, nullcontext
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from procurement_kernel.db.engine import session_scope
from procurement_kernel.domain.models import (
    BASKET_UPDATABLE_FIELDS,
    LINE_UPDATABLE_FIELDS,
    REQUEST_UPDATABLE_FIELDS,
    BasketStatus,
    PurchaseRequest,
    RequestStatus,
    SupplierOrder,
    SupplierOrderLine,
    SupplierReference,
    Urgency,
    check_updatable_fields,
)
from procurement_kernel.exceptions import (
    BasketNotFoundError,
    GatewayError,
    LineNotFoundError,
    PurchaseRequestNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models import (
    PurchaseRequestModel,
    StockItemSupplierModel,
    SupplierOrderLineModel,
    SupplierOrderLineRequestModel,
    SupplierOrderModel,
)

logger = get_logger("services.sql_gateway")


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class SqlProcurementGateway:
    """``ProcurementGateway`` implementation over SQLAlchemy sessions."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        serialize: bool | None = None,
    ):
        self._factory = session_factory
        if serialize is None:
            bind = session_factory.kw.get("bind")
            serialize = bind is not None and bind.dialect.name == "sqlite"
        self._lock = threading.RLock() if serialize else None

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        guard = self._lock if self._lock is not None else nullcontext()
        try:
            with guard, session_scope(self._factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "database_operation_failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise GatewayError(operation, str(exc)) from exc

    # =========================================================================
    # Intake (not part of the core contract)
    # =========================================================================

    def add_purchase_request(self, request: PurchaseRequest) -> PurchaseRequest:
        with self._session("add_purchase_request") as session:
            model = PurchaseRequestModel.from_dto(request)
            session.add(model)
            session.flush()
            return model.to_dto()

    def add_supplier_reference(self, reference: SupplierReference) -> SupplierReference:
        with self._session("add_supplier_reference") as session:
            model = StockItemSupplierModel.from_dto(reference)
            session.add(model)
            session.flush()
            return model.to_dto()

    # =========================================================================
    # Baskets
    # =========================================================================

    @staticmethod
    def _basket(session: Session, basket_id: UUID) -> SupplierOrderModel:
        model = session.get(SupplierOrderModel, basket_id)
        if model is None:
            raise BasketNotFoundError(str(basket_id))
        return model

    def fetch_basket(self, basket_id: UUID) -> SupplierOrder:
        with self._session("fetch_basket") as session:
            return self._basket(session, basket_id).to_dto(include_lines=False)

    def fetch_baskets(
        self, statuses: Iterable[BasketStatus] | None = None,
    ) -> tuple[SupplierOrder, ...]:
        stmt = select(SupplierOrderModel).order_by(SupplierOrderModel.order_number)
        if statuses is not None:
            stmt = stmt.where(
                SupplierOrderModel.status.in_([s.value for s in statuses])
            )
        with self._session("fetch_baskets") as session:
            return tuple(m.to_dto() for m in session.scalars(stmt))

    def fetch_open_basket_for_supplier(self, supplier_id: UUID) -> SupplierOrder | None:
        stmt = (
            select(SupplierOrderModel)
            .where(
                SupplierOrderModel.supplier_id == supplier_id,
                SupplierOrderModel.status == BasketStatus.POOLING.value,
            )
            .order_by(SupplierOrderModel.opened_at)
            .limit(1)
        )
        with self._session("fetch_open_basket_for_supplier") as session:
            model = session.scalars(stmt).first()
            return model.to_dto() if model is not None else None

    def create_basket(
        self, supplier_id: UUID, order_number: str, created_at: datetime,
    ) -> SupplierOrder:
        with self._session("create_basket") as session:
            model = SupplierOrderModel(
                supplier_id=supplier_id,
                status=BasketStatus.POOLING.value,
                order_number=order_number,
                opened_at=created_at,
            )
            session.add(model)
            session.flush()
            return model.to_dto()

    def update_basket(self, basket_id: UUID, fields: Mapping[str, Any]) -> SupplierOrder:
        check_updatable_fields("update_basket", fields, BASKET_UPDATABLE_FIELDS)
        with self._session("update_basket") as session:
            model = self._basket(session, basket_id)
            for name, value in fields.items():
                setattr(model, name, _column_value(value))
            session.flush()
            return model.to_dto(include_lines=False)

    def delete_basket(self, basket_id: UUID) -> None:
        with self._session("delete_basket") as session:
            session.delete(self._basket(session, basket_id))

    # =========================================================================
    # Lines
    # =========================================================================

    @staticmethod
    def _line(session: Session, line_id: UUID) -> SupplierOrderLineModel:
        model = session.get(SupplierOrderLineModel, line_id)
        if model is None:
            raise LineNotFoundError(str(line_id))
        return model

    def fetch_lines_for_basket(self, basket_id: UUID) -> tuple[SupplierOrderLine, ...]:
        stmt = (
            select(SupplierOrderLineModel)
            .where(SupplierOrderLineModel.supplier_order_id == basket_id)
            .order_by(SupplierOrderLineModel.position)
        )
        with self._session("fetch_lines_for_basket") as session:
            return tuple(m.to_dto() for m in session.scalars(stmt))

    def find_line(self, basket_id: UUID, stock_item_id: UUID) -> SupplierOrderLine | None:
        stmt = (
            select(SupplierOrderLineModel)
            .where(
                SupplierOrderLineModel.supplier_order_id == basket_id,
                SupplierOrderLineModel.stock_item_id == stock_item_id,
            )
            .order_by(SupplierOrderLineModel.position)
            .limit(1)
        )
        with self._session("find_line") as session:
            model = session.scalars(stmt).first()
            return model.to_dto() if model is not None else None

    def create_line(
        self,
        basket_id: UUID,
        stock_item_id: UUID,
        quantity: Decimal,
        urgency: Urgency | None = None,
        supplier_ref_snapshot: str | None = None,
    ) -> SupplierOrderLine:
        with self._session("create_line") as session:
            self._basket(session, basket_id)
            last = session.scalar(
                select(func.max(SupplierOrderLineModel.position))
                .where(SupplierOrderLineModel.supplier_order_id == basket_id)
            )
            model = SupplierOrderLineModel(
                supplier_order_id=basket_id,
                position=0 if last is None else last + 1,
                stock_item_id=stock_item_id,
                quantity=quantity,
                is_selected=False,
                quote_received=False,
                quantity_received=Decimal("0"),
                urgency=_column_value(urgency),
                supplier_ref_snapshot=supplier_ref_snapshot,
            )
            session.add(model)
            session.flush()
            return model.to_dto()

    def update_line(self, line_id: UUID, fields: Mapping[str, Any]) -> SupplierOrderLine:
        check_updatable_fields("update_line", fields, LINE_UPDATABLE_FIELDS)
        with self._session("update_line") as session:
            model = self._line(session, line_id)
            for name, value in fields.items():
                setattr(model, name, _column_value(value))
            session.flush()
            return model.to_dto()

    def delete_line(self, line_id: UUID) -> None:
        with self._session("delete_line") as session:
            session.delete(self._line(session, line_id))

    def link_request(self, line_id: UUID, request_id: UUID, quantity: Decimal) -> bool:
        with self._session("link_request") as session:
            line = self._line(session, line_id)
            if session.get(PurchaseRequestModel, request_id) is None:
                raise PurchaseRequestNotFoundError(str(request_id))
            if any(link.purchase_request_id == request_id for link in line.request_links):
                return False
            line.request_links.append(SupplierOrderLineRequestModel(
                purchase_request_id=request_id,
                position=len(line.request_links),
                quantity=quantity,
            ))
            return True

    # =========================================================================
    # Purchase requests
    # =========================================================================

    def fetch_purchase_requests(
        self, request_ids: Iterable[UUID],
    ) -> tuple[PurchaseRequest, ...]:
        ids = list(dict.fromkeys(request_ids))
        if not ids:
            return ()
        stmt = select(PurchaseRequestModel).where(PurchaseRequestModel.id.in_(ids))
        with self._session("fetch_purchase_requests") as session:
            by_id = {m.id: m.to_dto() for m in session.scalars(stmt)}
        return tuple(by_id[i] for i in ids if i in by_id)

    def fetch_open_purchase_requests(self) -> tuple[PurchaseRequest, ...]:
        stmt = (
            select(PurchaseRequestModel)
            .where(PurchaseRequestModel.status == RequestStatus.OPEN.value)
            .order_by(PurchaseRequestModel.requested_at)
        )
        with self._session("fetch_open_purchase_requests") as session:
            return tuple(m.to_dto() for m in session.scalars(stmt))

    def update_purchase_request(
        self, request_id: UUID, fields: Mapping[str, Any],
    ) -> PurchaseRequest:
        check_updatable_fields("update_purchase_request", fields, REQUEST_UPDATABLE_FIELDS)
        with self._session("update_purchase_request") as session:
            model = session.get(PurchaseRequestModel, request_id)
            if model is None:
                raise PurchaseRequestNotFoundError(str(request_id))
            if "status" in fields:
                model.status = RequestStatus.parse(fields["status"]).value
            session.flush()
            return model.to_dto()

    # =========================================================================
    # Supplier references
    # =========================================================================

    def fetch_supplier_references(
        self, stock_item_id: UUID,
    ) -> Sequence[SupplierReference]:
        stmt = (
            select(StockItemSupplierModel)
            .where(StockItemSupplierModel.stock_item_id == stock_item_id)
            .order_by(StockItemSupplierModel.is_preferred.desc())
        )
        with self._session("fetch_supplier_references") as session:
            return tuple(m.to_dto() for m in session.scalars(stmt))
