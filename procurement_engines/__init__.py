"""
Module: procurement_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procurement_kernel (domain, exceptions, logging).
    MUST NOT import procurement_services.

Invariants enforced:
    - Purity: engines never read the clock; instants are passed in.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from procurement_engines.status_mapping import StatusMappingTable
    from procurement_engines.selection import SelectionValidator
    from procurement_engines.twins import TwinLineReconciler
    from procurement_engines.aging import BasketAgingCalculator
"""

from procurement_engines.aging import (
    BasketAgingCalculator,
    StaleBasket,
    UrgentRequest,
)
from procurement_engines.selection import (
    EDITABLE_STATUSES,
    SelectionDecision,
    SelectionValidator,
)
from procurement_engines.status_mapping import (
    DEFAULT_STATUS_MAPPING,
    StatusMappingTable,
    map_status,
)
from procurement_engines.tracer import traced_engine
from procurement_engines.twins import (
    CheckSeverity,
    FinalizationReport,
    TwinFinding,
    TwinLine,
    TwinLineReconciler,
)

__all__ = [
    "BasketAgingCalculator",
    "CheckSeverity",
    "DEFAULT_STATUS_MAPPING",
    "EDITABLE_STATUSES",
    "FinalizationReport",
    "SelectionDecision",
    "SelectionValidator",
    "StaleBasket",
    "StatusMappingTable",
    "TwinFinding",
    "TwinLine",
    "TwinLineReconciler",
    "UrgentRequest",
    "map_status",
    "traced_engine",
]
