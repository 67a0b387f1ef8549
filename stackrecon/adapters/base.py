"""
Provider base — the contract between the engine and a cloud provider.

The engine only talks to the provider through this interface, never
directly to an SDK or CLI.

    describe_deployed_template(stack) → Template | None   (None = not found)
    deploy(stack, template)           → DeployReceipt     (never raises)

``describe_deployed_template`` may raise TransientProviderError (retried
by the caller) or ProviderRejection. ``deploy`` captures every failure in
the receipt so the orchestrator can keep going with other stacks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from stackrecon.core.models.receipt import DeployReceipt
from stackrecon.core.models.template import Template


class Provider(ABC):
    """Abstract base class for deployment providers.

    To create a new provider:
        1. Subclass Provider
        2. Implement name, is_available, describe_deployed_template, deploy
        3. Pass an instance to the planner and orchestrator
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The provider identifier (e.g., 'cloudformation', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check that the provider's tooling/credentials are usable.

        Should be fast and never raise.
        """

    @abstractmethod
    def describe_deployed_template(self, stack_name: str) -> Template | None:
        """Fetch the currently deployed template of a stack.

        Output ``resolved_value``s are filled in when the provider reports
        them.

        Returns:
            The deployed Template, or None if the stack does not exist.
        """

    @abstractmethod
    def deploy(self, stack_name: str, template: Template) -> DeployReceipt:
        """Create or update a stack and wait for completion.

        MUST never raise. All failures are captured in the receipt with
        status='failed'.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
