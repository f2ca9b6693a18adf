"""
Canonical workflow types (``procurement_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for state machines.  Guard, Transition and Workflow are
defined once and used by both the basket and the purchase request
lifecycles.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the service owning the transition evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guards: tuple[Guard, ...] = ()


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition between two states, or None if there is none."""
        for transition in self.transitions:
            if transition.from_state == from_state and transition.to_state == to_state:
                return transition
        return None

    def allows(self, from_state: str, to_state: str) -> bool:
        return self.find_transition(from_state, to_state) is not None

    def targets_from(self, from_state: str) -> tuple[str, ...]:
        return tuple(
            t.to_state for t in self.transitions if t.from_state == from_state
        )

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
