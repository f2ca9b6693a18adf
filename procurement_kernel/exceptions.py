"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A basket transition touches many records (lines, purchase requests, the
basket itself).  Callers need to know precisely *what* went wrong and *how
far* the work got, without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (line ids, request ids, steps)

Example - WRONG way to handle errors:
    try:
        synchronizer.change_basket_status(basket_id, "RECEIVED")
    except Exception as e:
        if "no selected line" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        synchronizer.change_basket_status(basket_id, BasketStatus.RECEIVED)
    except TwinConflictError as e:
        show_conflict(e.request_id, e.line_ids)
    except PartialBatchError as e:
        log.warning("partial", extra={"step": e.step, "failed": e.failed})
        synchronizer.re_evaluate(basket_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProcurementError:

    ProcurementError (base)
    |
    +-- ValidationError
    |   +-- NoSelectedLineError
    |   +-- TwinConflictError
    |   +-- MalformedRecordError
    |   +-- PurgeRefusedError
    |   +-- RequestNotDispatchableError
    |   +-- SelectionError
    |       +-- LockedBasketError
    |       +-- LastSelectedTwinError
    |
    +-- TransitionError
    |
    +-- ConfigurationError
    |   +-- UnmappedStatusError
    |
    +-- PartialBatchError
    |
    +-- ReEvaluationError
    |
    +-- LockContentionError
    |
    +-- NotFoundError
    |   +-- BasketNotFoundError
    |   +-- LineNotFoundError
    |   +-- PurchaseRequestNotFoundError
    |
    +-- GatewayError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | A guard failed; nothing was written
                | NO_SELECTED_LINE            | ->RECEIVED with no selected line
                | TWIN_CONFLICT               | >1 selected twin for one request
                | MALFORMED_RECORD            | External record cannot be parsed
                | PURGE_REFUSED               | Purge of a RECEIVED/CLOSED basket
                | REQUEST_NOT_DISPATCHABLE    | Dispatch of a request that is not open
Selection       | SELECTION_ERROR             | (De)selection refused
                | LOCKED_BASKET               | Basket RECEIVED/CLOSED/CANCELLED
                | LAST_SELECTED_TWIN          | Deselect would orphan a request
----------------|-----------------------------|-----------------------------------------
Transition      | ILLEGAL_TRANSITION          | No such edge in the basket workflow
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Invalid configuration value
                | UNMAPPED_STATUS             | Status missing from mapping table
----------------|-----------------------------|-----------------------------------------
Batch           | PARTIAL_BATCH               | Some writes of a step failed
----------------|-----------------------------|-----------------------------------------
Re-evaluation   | REEVALUATION_ERROR          | Basket has no linked requests
----------------|-----------------------------|-----------------------------------------
Concurrency     | LOCK_CONTENTION             | Linked requests kept changing under lock
----------------|-----------------------------|-----------------------------------------
Not found       | BASKET_NOT_FOUND            | Basket id unknown
                | LINE_NOT_FOUND              | Line id unknown (or already deleted)
                | PURCHASE_REQUEST_NOT_FOUND  | Request id unknown
----------------|-----------------------------|-----------------------------------------
Gateway         | GATEWAY_ERROR               | Transport / persistence failure

===============================================================================
HANDLING PATTERNS
===============================================================================

1. GUARD FAILURES ARE SAFE TO SHOW AND RETRY:

    except ValidationError as e:
        notify_user(str(e))     # nothing was mutated

2. PARTIAL BATCHES ARE REPAIRED, NOT RETRIED BLINDLY:

    except PartialBatchError as e:
        for key, message in e.failed:
            log.error("write_failed", extra={"key": key, "error": message})
        synchronizer.re_evaluate(basket_id)

3. NOT FOUND ON DELETE IS ALREADY-RESOLVED:

    The batch runner records a NotFoundError raised by a delete as
    ``ALREADY_RESOLVED`` instead of a failure.

4. CONFIGURATION ERRORS ARE FATAL:

    ConfigurationError is never caught inside the core.  A status that the
    mapping table does not cover must stop the operation loudly.
"""

from __future__ import annotations

from collections.abc import Sequence


class ProcurementError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_ERROR"


# Validation (guard) exceptions


class ValidationError(ProcurementError):
    """A guard failed.  No mutation occurred."""

    code: str = "VALIDATION_ERROR"


class NoSelectedLineError(ValidationError):
    """A basket cannot reach RECEIVED without at least one selected line."""

    code: str = "NO_SELECTED_LINE"

    def __init__(self, basket_id: str):
        self.basket_id = basket_id
        super().__init__(
            f"Basket {basket_id} has no selected line; "
            f"select at least one line before ordering"
        )


class TwinConflictError(ValidationError):
    """More than one twin line is selected for the same purchase request."""

    code: str = "TWIN_CONFLICT"

    def __init__(
        self,
        basket_id: str,
        request_id: str,
        line_ids: Sequence[str],
        conflicts: Sequence[tuple[str, tuple[str, ...]]] = (),
    ):
        self.basket_id = basket_id
        self.request_id = request_id
        self.line_ids = tuple(line_ids)
        # Every (request_id, line_ids) conflict found; the first one is
        # mirrored in request_id / line_ids.
        self.conflicts = tuple(conflicts) or ((request_id, self.line_ids),)
        super().__init__(
            f"Purchase request {request_id} has {len(self.line_ids)} selected "
            f"twin lines ({', '.join(self.line_ids)}); keep exactly one before "
            f"finalizing basket {basket_id}"
        )


class MalformedRecordError(ValidationError):
    """An external record could not be normalized into a canonical shape."""

    code: str = "MALFORMED_RECORD"

    def __init__(self, record_type: str, field: str, reason: str):
        self.record_type = record_type
        self.field = field
        self.reason = reason
        super().__init__(f"Malformed {record_type} record, field '{field}': {reason}")


class SelectionError(ValidationError):
    """A line selection or deselection was refused."""

    code: str = "SELECTION_ERROR"

    def __init__(self, basket_id: str, line_id: str, reason: str):
        self.basket_id = basket_id
        self.line_id = line_id
        self.reason = reason
        super().__init__(f"Line {line_id} in basket {basket_id}: {reason}")


class LockedBasketError(SelectionError):
    """The owning basket is RECEIVED, CLOSED or CANCELLED; its lines are locked."""

    code: str = "LOCKED_BASKET"

    def __init__(self, basket_id: str, line_id: str, status: str):
        self.status = status
        super().__init__(
            basket_id,
            line_id,
            f"lines are locked while the basket is {status}",
        )


class LastSelectedTwinError(SelectionError):
    """Deselecting would leave a purchase request with no selected line."""

    code: str = "LAST_SELECTED_TWIN"

    def __init__(self, basket_id: str, line_id: str, request_ids: Sequence[str]):
        self.request_ids = tuple(request_ids)
        super().__init__(
            basket_id,
            line_id,
            f"it is the only selected line for purchase request(s) "
            f"{', '.join(self.request_ids)}; select another twin first",
        )


class PurgeRefusedError(ValidationError):
    """A basket that was ordered or closed cannot be purged."""

    code: str = "PURGE_REFUSED"

    def __init__(self, basket_id: str, status: str):
        self.basket_id = basket_id
        self.status = status
        super().__init__(f"Basket {basket_id} is {status} and cannot be purged")


class RequestNotDispatchableError(ValidationError):
    """Only open purchase requests can be dispatched into a basket."""

    code: str = "REQUEST_NOT_DISPATCHABLE"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Purchase request {request_id} is {status}, not open")


# Transition exceptions


class TransitionError(ProcurementError):
    """The requested basket status change is not a workflow transition."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, basket_id: str, from_status: str, to_status: str):
        self.basket_id = basket_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Basket {basket_id} cannot move from {from_status} to {to_status}"
        )


# Configuration exceptions


class ConfigurationError(ProcurementError):
    """Configuration is invalid.  Fatal: never defaulted silently."""

    code: str = "CONFIGURATION_ERROR"


class UnmappedStatusError(ConfigurationError):
    """A basket status has no entry in the status mapping table."""

    code: str = "UNMAPPED_STATUS"

    def __init__(self, status: str, known_statuses: Sequence[str] = ()):
        self.status = status
        self.known_statuses = tuple(known_statuses)
        super().__init__(
            f"No purchase request status mapped for basket status {status!r}; "
            f"known: {', '.join(self.known_statuses) or '(none)'}"
        )


# Batch exceptions


class PartialBatchError(ProcurementError):
    """
    Some writes of a batch step failed while others succeeded.

    The sequence stopped at ``step``; ``completed_steps`` lists the steps
    that had fully succeeded before it.  Nothing is rolled back or retried.
    """

    code: str = "PARTIAL_BATCH"

    def __init__(
        self,
        step: str,
        succeeded: Sequence[str],
        failed: Sequence[tuple[str, str]],
        completed_steps: Sequence[str] = (),
        basket_id: str | None = None,
    ):
        self.step = step
        self.succeeded = tuple(succeeded)
        self.failed = tuple(failed)
        self.completed_steps = tuple(completed_steps)
        self.basket_id = basket_id
        super().__init__(
            f"Step '{step}' failed for {len(self.failed)} of "
            f"{len(self.failed) + len(self.succeeded)} item(s)"
            + (f" on basket {basket_id}" if basket_id else "")
        )

    @property
    def failed_keys(self) -> tuple[str, ...]:
        return tuple(key for key, _ in self.failed)


# Re-evaluation exceptions


class ReEvaluationError(ProcurementError):
    """A basket could not be re-evaluated."""

    code: str = "REEVALUATION_ERROR"

    def __init__(self, basket_id: str, reason: str):
        self.basket_id = basket_id
        self.reason = reason
        super().__init__(f"Cannot re-evaluate basket {basket_id}: {reason}")


# Concurrency exceptions


class LockContentionError(ProcurementError):
    """The requests linked to a basket changed on every locking attempt."""

    code: str = "LOCK_CONTENTION"

    def __init__(self, basket_id: str, attempts: int):
        self.basket_id = basket_id
        self.attempts = attempts
        super().__init__(
            f"Basket {basket_id}: linked purchase requests changed during "
            f"{attempts} locking attempts"
        )


# Not-found exceptions


class NotFoundError(ProcurementError):
    """An entity vanished between read and write."""

    code: str = "NOT_FOUND"


class BasketNotFoundError(NotFoundError):
    """Basket with given ID was not found."""

    code: str = "BASKET_NOT_FOUND"

    def __init__(self, basket_id: str):
        self.basket_id = basket_id
        super().__init__(f"Basket not found: {basket_id}")


class LineNotFoundError(NotFoundError):
    """Basket line with given ID was not found."""

    code: str = "LINE_NOT_FOUND"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Basket line not found: {line_id}")


class PurchaseRequestNotFoundError(NotFoundError):
    """Purchase request with given ID was not found."""

    code: str = "PURCHASE_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Purchase request not found: {request_id}")


# Gateway exceptions


class GatewayError(ProcurementError):
    """The persistence or transport collaborator failed."""

    code: str = "GATEWAY_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")
