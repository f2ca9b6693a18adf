"""
procurement_services -- Package init and public API.

Responsibility:
    Imperative shell of the procurement core.  Composes the pure engines
    (procurement_engines/) with a persistence gateway, the batch runner and
    the clock.  This is the only layer that performs reads and writes.

Architecture position:
    Services -- orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundary.py):
        procurement_services/ -> procurement_engines/  (allowed)
        procurement_services/ -> procurement_kernel/   (allowed)
        procurement_engines/  -> procurement_services/ (FORBIDDEN)
        procurement_kernel/   -> procurement_services/ (FORBIDDEN)
"""

from procurement_services.basket_status_service import (
    BasketStatusSynchronizer,
    ReEvaluationResult,
    SelectionOutcome,
    StatusDrift,
    TransitionOutcome,
)
from procurement_services.batch import BatchOutcome, BatchRunner
from procurement_services.dispatch_service import (
    DispatchAllocator,
    DispatchResult,
    StockItemSupplierResolver,
)
from procurement_services.gateway import ACTIVE_BASKET_STATUSES, ProcurementGateway
from procurement_services.locks import RequestLockRegistry, process_lock_registry
from procurement_services.monitoring import BasketMonitor
from procurement_services.purge_service import PurgeRedispatchProcessor
from procurement_services.record_gateway import RecordProcurementGateway, RecordTransport
from procurement_services.sql_gateway import SqlProcurementGateway

__all__ = [
    "ACTIVE_BASKET_STATUSES",
    "BasketMonitor",
    "BasketStatusSynchronizer",
    "BatchOutcome",
    "BatchRunner",
    "DispatchAllocator",
    "DispatchResult",
    "ProcurementGateway",
    "PurgeRedispatchProcessor",
    "ReEvaluationResult",
    "RecordProcurementGateway",
    "RecordTransport",
    "RequestLockRegistry",
    "SelectionOutcome",
    "SqlProcurementGateway",
    "StatusDrift",
    "StockItemSupplierResolver",
    "TransitionOutcome",
    "process_lock_registry",
]
