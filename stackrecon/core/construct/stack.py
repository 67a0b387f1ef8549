"""
Stack builder — assembles one stack's template during synthesis.

Cross-stack reads go through ``import_value()``, which records the
reference on the shared SynthesisContext, makes sure the producer exports
the output, and returns an ``Fn::ImportValue`` expression. Reading your
own output is not a cross-stack reference: the raw value is returned and
nothing is recorded.
"""

from __future__ import annotations

import logging
from typing import Any

from stackrecon.core.construct.context import SynthesisContext
from stackrecon.core.errors import ConfigurationError, UnknownOutputError
from stackrecon.core.models.export import export_name_for
from stackrecon.core.models.template import IMPORT_VALUE, Output, Resource, Template

logger = logging.getLogger(__name__)


class StackBuilder:
    """Mutable template under construction. Implements ``Synthesizable``."""

    def __init__(self, context: SynthesisContext, name: str, description: str = ""):
        if not name:
            raise ConfigurationError("Stack name must not be empty")
        self._context = context
        self._name = name
        self._description = description
        self._resources: dict[str, Resource] = {}
        self._outputs: dict[str, Output] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def context(self) -> SynthesisContext:
        return self._context

    def __repr__(self) -> str:
        return f"<StackBuilder name={self._name!r}>"

    # ── Resources ───────────────────────────────────────────────

    def add_resource(
        self,
        logical_id: str,
        type: str,
        properties: dict[str, Any] | None = None,
        depends_on: list[str] | None = None,
    ) -> Resource:
        if logical_id in self._resources:
            raise ConfigurationError(f"Duplicate resource '{logical_id}' in stack '{self._name}'")
        resource = Resource(
            type=type,
            properties=properties or {},
            depends_on=depends_on or [],
        )
        self._resources[logical_id] = resource
        return resource

    # ── Outputs ─────────────────────────────────────────────────

    def add_output(
        self,
        key: str,
        value: Any,
        export: bool = False,
        export_name: str | None = None,
        description: str = "",
    ) -> Output:
        """Declare an output; ``export``/``export_name`` publish it."""
        if key in self._outputs:
            raise ConfigurationError(f"Duplicate output '{key}' in stack '{self._name}'")
        if export and not export_name:
            export_name = export_name_for(self._name, key)
        output = Output(value=value, export_name=export_name, description=description)
        self._outputs[key] = output
        return output

    def set_output_value(self, key: str, value: Any) -> None:
        """Replace the value of a declared output (export name is kept)."""
        self._require_output(key).value = value

    def get_output(self, key: str) -> Output | None:
        return self._outputs.get(key)

    def export(self, key: str) -> str:
        """Make sure output ``key`` is exported; return its export name."""
        output = self._require_output(key)
        if not output.export_name:
            output.export_name = export_name_for(self._name, key)
            logger.debug("Auto-exporting %s.%s as %s", self._name, key, output.export_name)
        return output.export_name

    # ── Cross-stack reads ───────────────────────────────────────

    def import_value(self, producer: StackBuilder, key: str) -> Any:
        """Read output ``key`` of ``producer`` from this stack."""
        if producer is self or producer.name == self._name:
            return self._require_output(key).value

        export_name = producer.export(key)
        self._context.record_reference(self._name, producer.name, key)
        return {IMPORT_VALUE: export_name}

    # ── Synthesis ───────────────────────────────────────────────

    def synth(self) -> Template:
        """Snapshot the current definition as an immutable-by-convention Template."""
        template = Template(
            description=self._description,
            resources=self._resources,
            outputs=self._outputs,
        )
        return template.model_copy(deep=True)

    def _require_output(self, key: str) -> Output:
        output = self._outputs.get(key)
        if output is None:
            raise UnknownOutputError(f"Stack '{self._name}' has no output '{key}'")
        return output
