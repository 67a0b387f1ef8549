"""
Export reconciler — keep exports alive while something still imports them.

When a stack stops producing an export that another stack still imports
(typically because the consumer dropped the import in the same change
and has not been redeployed yet), deploying the producer would fail:
the provider refuses to delete an export that is in use.

The reconciler re-injects such exports into a copy of the desired
template, reproducing the exact (export name, value) pair that was last
deployed. Once no consumer is left the export is simply not re-injected,
so it disappears on the following run without any manual step:

    run 1: consumer still imports at diff time  → export kept
    run 2: no consumer left                     → export dropped
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from stackrecon.core.errors import MissingExportValueError
from stackrecon.core.models.export import Export
from stackrecon.core.models.template import Output, Template, referenced_resources

logger = logging.getLogger(__name__)

RETAINED_SUFFIX = "Retained"

ConsumerSets = Mapping[tuple[str, str], frozenset[str]]


def reconcile(
    stack: str,
    desired: Template,
    last_deployed: Template | None,
    removed: Iterable[Export],
    consumer_sets: ConsumerSets,
    retiring: frozenset[str] = frozenset(),
) -> Template:
    """Return the template to deploy for ``stack``.

    Args:
        stack: Stack being reconciled.
        desired: Newly synthesized template. Never modified.
        last_deployed: Template currently deployed (source of retained values).
        removed: Exports the diff found disappearing.
        consumer_sets: (producer stack, export name) → stacks importing it.
        retiring: Stacks being removed in this same run; they do not keep
            an export alive.

    Returns:
        ``desired`` itself when nothing has to be retained, otherwise a
        patched deep copy with one extra output per retained export.

    Raises:
        MissingExportValueError: If an export must be kept but its last
            deployed value cannot be reproduced.
    """
    keep: list[tuple[Export, frozenset[str]]] = []
    for export in sorted(removed, key=lambda e: e.name):
        consumers = consumer_sets.get((stack, export.name), frozenset())
        surviving = frozenset(consumers) - retiring - {stack}
        if not surviving:
            if consumers:
                logger.info(
                    "Dropping export %s from %s: remaining importers are retiring (%s)",
                    export.name,
                    stack,
                    ", ".join(sorted(consumers)),
                )
            else:
                logger.info("Dropping export %s from %s: no importers left", export.name, stack)
            continue
        keep.append((export, surviving))

    if not keep:
        return desired

    patched = desired.model_copy(deep=True)
    for export, surviving in keep:
        value = _reproduce_value(stack, export, last_deployed, desired, surviving)
        key = _free_output_key(patched, export.output_key)
        patched.outputs[key] = Output(
            value=value,
            export_name=export.name,
            description=f"Retained export, still imported by {', '.join(sorted(surviving))}",
        )
        logger.info(
            "Retaining export %s in %s as output %s (imported by %s)",
            export.name,
            stack,
            key,
            ", ".join(sorted(surviving)),
        )

    return patched


def _reproduce_value(
    stack: str,
    export: Export,
    last_deployed: Template | None,
    desired: Template,
    consumers: frozenset[str],
) -> Any:
    """Last deployed value of an export, provided its resources still exist.

    The provider-resolved value is preferred over the expression.
    """
    if last_deployed is None:
        raise MissingExportValueError(stack, export.name, consumers, "stack was never deployed")

    output = last_deployed.outputs.get(export.output_key)
    if output is None or output.export_name != export.name:
        raise MissingExportValueError(
            stack, export.name, consumers, "export not found in deployed template"
        )

    # A resolved value of a deleted resource would point consumers at nothing
    missing = sorted(r for r in referenced_resources(output.value) if not desired.has_resource(r))
    if missing:
        raise MissingExportValueError(
            stack,
            export.name,
            consumers,
            f"resource {', '.join(missing)} no longer exists",
        )

    if output.resolved_value is not None:
        return output.resolved_value

    if output.value is None:
        raise MissingExportValueError(stack, export.name, consumers, "deployed output has no value")

    return output.value


def _free_output_key(template: Template, preferred: str) -> str:
    """``preferred`` if unused, else ``<preferred>Retained``, ``<preferred>Retained2``..."""
    if preferred not in template.outputs:
        return preferred
    candidate = f"{preferred}{RETAINED_SUFFIX}"
    index = 2
    while candidate in template.outputs:
        candidate = f"{preferred}{RETAINED_SUFFIX}{index}"
        index += 1
    return candidate
