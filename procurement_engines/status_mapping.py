"""
Status Mapping Table -- basket status to purchase request status.

Responsibility:
    Total, pure lookup from a basket status to the status every purchase
    request linked to that basket should carry.

Architecture position:
    Engines -- pure calculation, zero I/O.  The table is an immutable value
    built once from configuration and injected into the synchronizer.

Invariants enforced:
    - Completeness: a table maps every ``BasketStatus``; building one with a
      gap raises ``ConfigurationError``.
    - Purity: ``map()`` depends only on its argument and the table, so
      applying it twice yields the same result.

Failure modes:
    - ``UnmappedStatusError`` (a ``ConfigurationError``) for any status
      outside the six basket statuses.  Never defaulted silently.

Default table:
    POOLING -> in_progress, SENT -> ordered, ACK -> ordered,
    RECEIVED -> ordered, CLOSED -> received, CANCELLED -> cancelled.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from procurement_kernel.domain.models import BasketStatus, RequestStatus
from procurement_kernel.exceptions import ConfigurationError, UnmappedStatusError
from procurement_kernel.logging_config import get_logger
from procurement_engines.tracer import traced_engine

logger = get_logger("engines.status_mapping")


DEFAULT_STATUS_MAPPING: Mapping[BasketStatus, RequestStatus] = MappingProxyType({
    BasketStatus.POOLING: RequestStatus.IN_PROGRESS,
    BasketStatus.SENT: RequestStatus.ORDERED,
    BasketStatus.ACK: RequestStatus.ORDERED,
    BasketStatus.RECEIVED: RequestStatus.ORDERED,
    BasketStatus.CLOSED: RequestStatus.RECEIVED,
    BasketStatus.CANCELLED: RequestStatus.CANCELLED,
})


@dataclass(frozen=True)
class StatusMappingTable:
    """
    Immutable basket-status to request-status table.

    Contract:
        ``entries`` must cover every ``BasketStatus``.
    Guarantees:
        - The stored mapping is read-only.
        - ``map`` is total over the basket statuses and raises for anything
          else.
    """

    entries: Mapping[BasketStatus, RequestStatus] = field(
        default_factory=lambda: DEFAULT_STATUS_MAPPING,
        hash=False,
    )

    def __post_init__(self) -> None:
        missing = [s.value for s in BasketStatus if s not in self.entries]
        if missing:
            raise ConfigurationError(
                f"Status mapping table is missing basket status(es): "
                f"{', '.join(missing)}"
            )
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    @classmethod
    def default(cls) -> StatusMappingTable:
        return cls(DEFAULT_STATUS_MAPPING)

    @classmethod
    def from_dict(cls, raw: Mapping[str, str]) -> StatusMappingTable:
        """Build a table from plain strings, e.g. a YAML ``status_mapping`` block.

        Keys absent from ``raw`` keep their default entry.

        Raises:
            ConfigurationError: if a key is not a basket status or a value
                is not a request status.
        """
        entries = dict(DEFAULT_STATUS_MAPPING)
        for key, value in raw.items():
            try:
                basket_status = BasketStatus.parse(key)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown basket status in status mapping: {key!r}"
                )
            try:
                entries[basket_status] = RequestStatus.parse(value)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown purchase request status {value!r} "
                    f"mapped from basket status {key!r}"
                )
        return cls(entries)

    @property
    def known_statuses(self) -> tuple[str, ...]:
        return tuple(s.value for s in self.entries)

    def map(self, status: BasketStatus | str) -> RequestStatus:
        """Return the purchase request status for a basket status.

        Raises:
            UnmappedStatusError: if ``status`` is not a basket status.
        """
        try:
            basket_status = BasketStatus.parse(status)
        except ValueError:
            logger.error(
                "status_mapping_undefined",
                extra={"status": str(status), "known_statuses": self.known_statuses},
            )
            raise UnmappedStatusError(str(status), self.known_statuses)
        return self.entries[basket_status]

    def as_dict(self) -> dict[str, str]:
        return {k.value: v.value for k, v in self.entries.items()}


_DEFAULT_TABLE = StatusMappingTable.default()


@traced_engine("status_mapping", "1.0", fingerprint_fields=("status",))
def map_status(
    status: BasketStatus | str,
    table: StatusMappingTable | None = None,
) -> RequestStatus:
    """Map a basket status through ``table`` (the default table when None)."""
    return (table or _DEFAULT_TABLE).map(status)
