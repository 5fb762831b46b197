"""
Canonical workflow types (``harvest_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines.  Used by every module
(activities, harvest lots) so that Guard, Transition, and Workflow are
defined once.  A transition may declare the stock-ledger action that must
run in the same transaction as the status write.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* A (from_state, to_state) pair appears at most once.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class LedgerAction(str, Enum):
    """Stock-ledger side effect attached to a status transition."""

    NONE = "none"
    DEBIT = "debit"
    CREDIT = "credit"


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    Contract: frozen.  ``ledger_action`` names the stock-ledger operation the
    service must apply atomically with the status write.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    ledger_action: LedgerAction = LedgerAction.NONE


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} "
                    "references an undeclared state"
                )
            key = (t.from_state, t.to_state)
            if key in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition {key}"
                )
            seen.add(key)

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition between two states, or None if not allowed."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None
