"""
Stack model — a deployable unit and its lifecycle state.

Two separate capabilities:

    Synthesizable: anything that can produce a Template (stack builders).
    Deployable:    anything the orchestrator can schedule: a name,
                   the stacks it depends on, and a mutable state.

Concrete types implement these protocols; nothing inherits deployment
behavior from a base class.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from stackrecon.core.models.template import Template


class StackState(StrEnum):
    """Per-stack deployment states.

    Transitions:
        PENDING   → READY:      every dependency is DEPLOYED
        READY     → DEPLOYING:  dispatched to the provider (exactly once)
        DEPLOYING → DEPLOYED | FAILED
        PENDING   → BLOCKED:    a dependency FAILED or was BLOCKED
        PENDING | READY → CANCELLED: run cancelled before dispatch
    """

    PENDING = "pending"
    READY = "ready"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {StackState.DEPLOYED, StackState.FAILED, StackState.BLOCKED, StackState.CANCELLED}
)


@runtime_checkable
class Synthesizable(Protocol):
    """Produces a Template."""

    @property
    def name(self) -> str: ...

    def synth(self) -> Template: ...


@runtime_checkable
class Deployable(Protocol):
    """Something the orchestrator can schedule."""

    @property
    def name(self) -> str: ...

    @property
    def dependencies(self) -> frozenset[str]: ...

    state: StackState


class StackDeployment(BaseModel):
    """One stack as planned for this run.

    Attributes:
        name:          Unique stack name.
        desired:       Template as synthesized (never mutated).
        deployed:      Last-deployed template from the provider, or None
                       if the stack does not exist yet.
        patched:       Template that will actually be sent: ``desired``
                       plus any reconciled exports.
        retained_exports: Export names re-injected by reconciliation.
        dependencies:  Stacks this one imports from.
        state:         Current lifecycle state.
    """

    name: str
    desired: Template
    deployed: Template | None = None
    patched: Template | None = None
    retained_exports: list[str] = Field(default_factory=list)
    dependencies: frozenset[str] = Field(default_factory=frozenset)
    state: StackState = StackState.PENDING

    @property
    def template(self) -> Template:
        """The template to deploy."""
        return self.patched if self.patched is not None else self.desired

    @property
    def is_new(self) -> bool:
        return self.deployed is None

    @property
    def reconciled(self) -> bool:
        return bool(self.retained_exports)
