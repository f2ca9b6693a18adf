"""
Procurement Workflows.

State machines for supplier baskets and purchase requests.
"""

from procurement_kernel.domain.models import BasketStatus, RequestStatus
from procurement_kernel.domain.workflow import Guard, Transition, Workflow
from procurement_kernel.logging_config import get_logger

logger = get_logger("domain.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_SELECTED_LINE = Guard(
    name="has_selected_line",
    description="At least one line of the basket is selected",
)

TWINS_RESOLVED = Guard(
    name="twins_resolved",
    description="No purchase request has more than one selected twin line",
)


# -----------------------------------------------------------------------------
# Basket Workflow
# -----------------------------------------------------------------------------

_POOLING = BasketStatus.POOLING.value
_SENT = BasketStatus.SENT.value
_ACK = BasketStatus.ACK.value
_RECEIVED = BasketStatus.RECEIVED.value
_CLOSED = BasketStatus.CLOSED.value
_CANCELLED = BasketStatus.CANCELLED.value

BASKET_WORKFLOW = Workflow(
    name="supplier_basket",
    description="Supplier basket lifecycle: pooling, quote, order, close",
    initial_state=_POOLING,
    states=(_POOLING, _SENT, _ACK, _RECEIVED, _CLOSED, _CANCELLED),
    transitions=(
        Transition(_POOLING, _SENT, action="send"),
        Transition(_SENT, _ACK, action="acknowledge"),
        Transition(
            _SENT, _RECEIVED, action="order",
            guards=(HAS_SELECTED_LINE, TWINS_RESOLVED),
        ),
        Transition(
            _ACK, _RECEIVED, action="order",
            guards=(HAS_SELECTED_LINE, TWINS_RESOLVED),
        ),
        Transition(_RECEIVED, _CLOSED, action="close"),
        Transition(_POOLING, _CANCELLED, action="cancel"),
        Transition(_SENT, _CANCELLED, action="cancel"),
        Transition(_ACK, _CANCELLED, action="cancel"),
        Transition(_RECEIVED, _CANCELLED, action="cancel"),
    ),
    terminal_states=(_CLOSED, _CANCELLED),
)

logger.info(
    "basket_workflow_registered",
    extra={
        "workflow_name": BASKET_WORKFLOW.name,
        "state_count": len(BASKET_WORKFLOW.states),
        "transition_count": len(BASKET_WORKFLOW.transitions),
        "initial_state": BASKET_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Purchase Request Workflow
# -----------------------------------------------------------------------------

_OPEN = RequestStatus.OPEN.value
_IN_PROGRESS = RequestStatus.IN_PROGRESS.value
_ORDERED = RequestStatus.ORDERED.value
_REQ_RECEIVED = RequestStatus.RECEIVED.value
_REQ_CANCELLED = RequestStatus.CANCELLED.value

PURCHASE_REQUEST_WORKFLOW = Workflow(
    name="purchase_request",
    description="Purchase request lifecycle from intake to reception",
    initial_state=_OPEN,
    states=(_OPEN, _IN_PROGRESS, _ORDERED, _REQ_RECEIVED, _REQ_CANCELLED),
    transitions=(
        Transition(_OPEN, _IN_PROGRESS, action="dispatch"),
        Transition(_OPEN, _ORDERED, action="order"),
        Transition(_OPEN, _REQ_CANCELLED, action="cancel"),
        Transition(_IN_PROGRESS, _ORDERED, action="order"),
        Transition(_IN_PROGRESS, _OPEN, action="release"),
        Transition(_IN_PROGRESS, _REQ_CANCELLED, action="cancel"),
        Transition(_ORDERED, _IN_PROGRESS, action="redispatch"),
        Transition(_ORDERED, _OPEN, action="release"),
        Transition(_ORDERED, _REQ_RECEIVED, action="receive"),
        Transition(_ORDERED, _REQ_CANCELLED, action="cancel"),
    ),
    terminal_states=(_REQ_RECEIVED, _REQ_CANCELLED),
)

logger.info(
    "purchase_request_workflow_registered",
    extra={
        "workflow_name": PURCHASE_REQUEST_WORKFLOW.name,
        "state_count": len(PURCHASE_REQUEST_WORKFLOW.states),
        "transition_count": len(PURCHASE_REQUEST_WORKFLOW.transitions),
        "initial_state": PURCHASE_REQUEST_WORKFLOW.initial_state,
    },
)
