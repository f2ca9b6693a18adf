"""
Pytest fixtures for the procurement test suite.

Provides:
- Structured logging at DEBUG for the session, and a ``captured_logs`` fixture
- A deterministic clock and a default configuration
- An in-memory record transport with failure injection, the record gateway
  over it, and a seeder for raw records
- A fully wired synchronizer, purge processor and dispatch allocator
- An in-memory SQLite engine for the SQLAlchemy gateway
"""

import json
import logging
from io import StringIO

import pytest

from procurement_config import ProcurementConfig
from procurement_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from procurement_services.basket_status_service import BasketStatusSynchronizer
from procurement_services.batch import BatchRunner
from procurement_services.dispatch_service import DispatchAllocator
from procurement_services.locks import RequestLockRegistry
from procurement_services.purge_service import PurgeRedispatchProcessor
from procurement_services.record_gateway import RecordProcurementGateway
from procurement_services.sql_gateway import SqlProcurementGateway
from tests.fakes import FIXED_NOW, InMemoryRecordTransport, ProcurementSeeder


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture procurement logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, synchronizer):
            synchronizer.change_basket_status(basket_id, "SENT")
            logs = captured_logs()
            assert any(r["message"] == "basket_transition_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("procurement")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock and configuration
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def config():
    return ProcurementConfig.with_defaults()


# =============================================================================
# Record transport and gateway
# =============================================================================


@pytest.fixture
def transport():
    return InMemoryRecordTransport()


@pytest.fixture
def gateway(transport):
    return RecordProcurementGateway(transport)


@pytest.fixture
def seed(transport):
    return ProcurementSeeder(transport, FIXED_NOW)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def lock_registry():
    """A registry private to the test, so tests never share locks."""
    return RequestLockRegistry()


@pytest.fixture
def synchronizer(gateway, config, deterministic_clock, lock_registry):
    return BasketStatusSynchronizer.from_config(
        gateway, config, clock=deterministic_clock, lock_registry=lock_registry,
    )


@pytest.fixture
def purge_processor(gateway):
    return PurgeRedispatchProcessor(gateway, BatchRunner(max_workers=4))


@pytest.fixture
def allocator(gateway, config, deterministic_clock):
    return DispatchAllocator.from_config(
        gateway, config, clock=deterministic_clock, number_source=iter(range(1, 10000)).__next__,
    )


# =============================================================================
# SQLite
# =============================================================================


@pytest.fixture
def sql_gateway():
    """SqlProcurementGateway over a fresh in-memory SQLite database."""
    init_engine_from_url("sqlite://")
    create_tables()
    yield SqlProcurementGateway(get_session_factory())
    reset_engine()
