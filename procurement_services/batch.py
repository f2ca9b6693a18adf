"""
procurement_services.batch -- Fan-out runner for independent writes.

Responsibility:
    Issue a step's writes (line deletes, purchase request status updates)
    concurrently and collect an itemized outcome.  Every item runs; one
    failure never cancels the others, and nothing is retried or rolled back.

Invariants enforced:
    - Items are reported in submission order.
    - A ``NotFoundError`` is recorded as ``ALREADY_RESOLVED`` when the step
      tolerates it (deletes); otherwise as ``FAILED``.
    - ``ConfigurationError`` is never swallowed.
    - The caller's ``LogContext`` is visible inside worker threads.
"""

from __future__ import annotations

import contextvars
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any

from procurement_kernel.exceptions import (
    ConfigurationError,
    NotFoundError,
    PartialBatchError,
)
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.batch")


class BatchItemStatus(str, Enum):
    """Per-item outcome within a batch step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ALREADY_RESOLVED = "already_resolved"  # target vanished before the write


@dataclass(frozen=True)
class BatchItemResult:
    """Immutable result of one write of a batch step."""

    item_key: str
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    value: Any = None


@dataclass(frozen=True)
class BatchOutcome:
    """Itemized outcome of one batch step."""

    step: str
    items: tuple[BatchItemResult, ...] = ()

    @property
    def succeeded_keys(self) -> tuple[str, ...]:
        return tuple(
            i.item_key for i in self.items if i.status == BatchItemStatus.SUCCEEDED
        )

    @property
    def already_resolved_keys(self) -> tuple[str, ...]:
        return tuple(
            i.item_key for i in self.items
            if i.status == BatchItemStatus.ALREADY_RESOLVED
        )

    @property
    def failed(self) -> tuple[tuple[str, str], ...]:
        return tuple(
            (i.item_key, i.error_message or "")
            for i in self.items if i.status == BatchItemStatus.FAILED
        )

    @property
    def is_success(self) -> bool:
        return not self.failed

    def raise_for_failures(
        self,
        completed_steps: Sequence[str] = (),
        basket_id: str | None = None,
    ) -> None:
        """Raise ``PartialBatchError`` if any item failed."""
        if self.is_success:
            return
        raise PartialBatchError(
            step=self.step,
            succeeded=self.succeeded_keys + self.already_resolved_keys,
            failed=self.failed,
            completed_steps=completed_steps,
            basket_id=basket_id,
        )


class BatchRunner:
    """
    Runs the writes of one step on a thread pool.

    Usage:
        runner = BatchRunner(max_workers=8)
        outcome = runner.run(
            "purge_lines",
            [(str(line.id), functools.partial(gateway.delete_line, line.id))
             for line in lines],
            tolerate_not_found=True,
        )
        outcome.raise_for_failures(completed_steps=())
    """

    def __init__(self, max_workers: int = 8):
        self._max_workers = max_workers

    def run(
        self,
        step: str,
        items: Sequence[tuple[str, Callable[[], Any]]],
        tolerate_not_found: bool = False,
    ) -> BatchOutcome:
        if not items:
            return BatchOutcome(step=step)

        logger.info("batch_step_started", extra={"step": step, "item_count": len(items)})
        workers = max(1, min(self._max_workers, len(items)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=step) as pool:
            futures = [
                (key, pool.submit(contextvars.copy_context().run, write))
                for key, write in items
            ]
            results = [self._collect(step, key, future, tolerate_not_found)
                       for key, future in futures]

        outcome = BatchOutcome(step=step, items=tuple(results))
        logger.info(
            "batch_step_completed",
            extra={
                "step": step,
                "succeeded": len(outcome.succeeded_keys),
                "already_resolved": len(outcome.already_resolved_keys),
                "failed": len(outcome.failed),
            },
        )
        return outcome

    @staticmethod
    def _collect(step, key, future, tolerate_not_found) -> BatchItemResult:
        try:
            value = future.result()
        except ConfigurationError:
            raise
        except NotFoundError as exc:
            if tolerate_not_found:
                logger.info(
                    "batch_item_already_resolved",
                    extra={"step": step, "item_key": key},
                )
                return BatchItemResult(
                    key, BatchItemStatus.ALREADY_RESOLVED,
                    error_code=exc.code, error_message=str(exc),
                )
            logger.warning(
                "batch_item_failed",
                extra={"step": step, "item_key": key, "error_code": exc.code},
            )
            return BatchItemResult(
                key, BatchItemStatus.FAILED,
                error_code=exc.code, error_message=str(exc),
            )
        except Exception as exc:
            code = getattr(exc, "code", type(exc).__name__)
            logger.warning(
                "batch_item_failed",
                extra={"step": step, "item_key": key, "error_code": code},
                exc_info=True,
            )
            return BatchItemResult(
                key, BatchItemStatus.FAILED,
                error_code=code, error_message=str(exc),
            )
        return BatchItemResult(key, BatchItemStatus.SUCCEEDED, value=value)
