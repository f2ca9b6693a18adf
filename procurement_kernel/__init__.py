"""
Procurement Kernel

Core types of the procurement reconciliation system:
- Typed exception hierarchy
- Structured JSON logging
- Canonical basket / line / purchase request records
- Basket and purchase request state machines
- SQLAlchemy persistence models
"""

__version__ = "0.1.0"
