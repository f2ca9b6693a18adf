"""
SQLAlchemy ORM models for procurement persistence.

Importing this package registers every table on ``Base.metadata``.
"""

from procurement_kernel.models.purchase_request import (
    PurchaseRequestModel,
    StockItemSupplierModel,
)
from procurement_kernel.models.supplier_order import (
    SupplierOrderLineModel,
    SupplierOrderLineRequestModel,
    SupplierOrderModel,
)

__all__ = [
    "PurchaseRequestModel",
    "StockItemSupplierModel",
    "SupplierOrderLineModel",
    "SupplierOrderLineRequestModel",
    "SupplierOrderModel",
]
