"""
Procurement Configuration Schema.

Defines the structure and defaults for procurement reconciliation settings.
Actual values are loaded from a YAML file at runtime
(``procurement_config.loader.load_config``).
"""

from dataclasses import dataclass, field, fields
from typing import Self

from procurement_engines.status_mapping import DEFAULT_STATUS_MAPPING, StatusMappingTable
from procurement_kernel.exceptions import ConfigurationError
from procurement_kernel.logging_config import get_logger

logger = get_logger("config.schema")


def _default_status_mapping() -> dict[str, str]:
    return {k.value: v.value for k, v in DEFAULT_STATUS_MAPPING.items()}


@dataclass
class ProcurementConfig:
    """
    Configuration schema for procurement reconciliation.

    Override at instantiation with site-specific values:

        config = ProcurementConfig(
            max_parallel_writes=4,
            consult_all_suppliers=True,
        )
    """

    # Basket status -> purchase request status
    status_mapping: dict[str, str] = field(default_factory=_default_status_mapping)

    # Batch writes
    max_parallel_writes: int = 8

    # Dispatch
    order_number_prefix: str = "CMD"
    consult_all_suppliers: bool = False

    # Closing
    record_receipt_on_close: bool = True

    # Aging
    stale_pooling_days: int = 5
    stale_sent_days: int = 3
    urgent_request_days: int = 5

    # Finalization
    enforce_request_locks: bool = True

    def __post_init__(self):
        if self.max_parallel_writes < 1:
            raise ConfigurationError(
                f"max_parallel_writes must be at least 1, got {self.max_parallel_writes}"
            )
        for name in ("stale_pooling_days", "stale_sent_days", "urgent_request_days"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if not self.order_number_prefix:
            raise ConfigurationError("order_number_prefix must not be empty")
        # Fails loudly on an unknown status before any service is built.
        self.status_mapping_table()

        logger.info(
            "procurement_config_initialized",
            extra={
                "max_parallel_writes": self.max_parallel_writes,
                "order_number_prefix": self.order_number_prefix,
                "consult_all_suppliers": self.consult_all_suppliers,
                "record_receipt_on_close": self.record_receipt_on_close,
                "enforce_request_locks": self.enforce_request_locks,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with default settings."""
        logger.info("procurement_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from dictionary (e.g., loaded from a YAML file)."""
        logger.info(
            "procurement_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown procurement config key(s): {', '.join(unknown)}"
            )
        data = dict(data)
        if "status_mapping" in data:
            mapping = data["status_mapping"]
            if not isinstance(mapping, dict):
                raise ConfigurationError("status_mapping must be a mapping")
            merged = _default_status_mapping()
            merged.update({str(k): str(v) for k, v in mapping.items()})
            data["status_mapping"] = merged
        return cls(**data)

    def status_mapping_table(self) -> StatusMappingTable:
        """Build the immutable table injected into the synchronizer."""
        return StatusMappingTable.from_dict(self.status_mapping)
