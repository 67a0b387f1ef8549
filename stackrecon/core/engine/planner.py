"""
Deployment planner — from synthesized templates to a reconciled plan.

Flow:
    references → graph (fatal on cycle)
               → describe last-deployed templates (retried)
               → consumer sets
               → diff + reconcile per stack
               → export collision check
               → DeploymentPlan

Everything here happens before the first deploy call. Any
ConfigurationError raised on the way aborts the run with nothing sent to
the provider.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from stackrecon.adapters.base import Provider
from stackrecon.core.engine.diff import ExportDiff, diff_exports
from stackrecon.core.engine.graph import DependencyGraph, build_graph
from stackrecon.core.engine.reconcile import reconcile
from stackrecon.core.engine.references import ReferenceTracker
from stackrecon.core.errors import (
    ERROR_KIND_TRANSIENT,
    ExportCollisionError,
    ProviderRejection,
    TransientProviderError,
)
from stackrecon.core.models.stack import StackDeployment
from stackrecon.core.models.template import Template
from stackrecon.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class DeploymentPlan:
    """What one run is going to deploy, in dependency order."""

    graph: DependencyGraph
    stacks: dict[str, StackDeployment] = field(default_factory=dict)
    diffs: dict[str, ExportDiff] = field(default_factory=dict)
    consumer_sets: dict[tuple[str, str], frozenset[str]] = field(default_factory=dict)
    retiring: frozenset[str] = frozenset()

    @property
    def order(self) -> list[str]:
        return [name for name in self.graph.topological_order() if name in self.stacks]

    @property
    def retained(self) -> dict[str, list[str]]:
        """Stack → export names kept alive by reconciliation."""
        return {n: list(s.retained_exports) for n, s in self.stacks.items() if s.retained_exports}

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "levels": self.graph.levels(),
            "retiring": sorted(self.retiring),
            "stacks": {
                name: {
                    "new": stack.is_new,
                    "dependencies": sorted(stack.dependencies),
                    "exports": self.diffs[name].to_dict() if name in self.diffs else {},
                    "retained_exports": list(stack.retained_exports),
                }
                for name, stack in ((n, self.stacks[n]) for n in self.order)
            },
        }


def plan_deployment(
    templates: Mapping[str, Template],
    references: ReferenceTracker,
    provider: Provider,
    retry: RetryPolicy | None = None,
    retiring: Iterable[str] = (),
) -> DeploymentPlan:
    """Plan a deployment of every synthesized stack.

    Args:
        templates: Stack name → desired template, straight from synthesis.
        references: Cross-stack references observed during synthesis.
        provider: Where last-deployed templates are fetched from.
        retry: Retry policy for describe calls.
        retiring: Stacks removed from the app in this run. They are never
            deployed and do not keep exports alive.

    Raises:
        CycleError: Stacks import from each other in a loop.
        ExportCollisionError: Two outputs would publish the same export name.
        MissingExportValueError: A still-imported export cannot be reproduced.
        ProviderRejection: Describe failed, including throttling that
            outlasted the retries.
    """
    retry = retry or RetryPolicy()
    retiring_set = frozenset(retiring) - set(templates)

    graph = build_graph(references.references, stacks=templates.keys())
    _check_collisions(templates)

    deployed = {
        name: _describe(provider, retry, name) for name in sorted(set(templates) | retiring_set)
    }

    consumer_sets = compute_consumer_sets(templates, references, deployed)

    plan = DeploymentPlan(graph=graph, consumer_sets=consumer_sets, retiring=retiring_set)
    for name in graph.topological_order():
        desired = templates[name]
        last = deployed.get(name)
        diff = diff_exports(name, last, desired).with_consumers(consumer_sets)
        patched = reconcile(name, desired, last, diff.removed, consumer_sets, retiring_set)
        retained = sorted(set(patched.exports()) - set(desired.exports()))

        plan.diffs[name] = diff
        plan.stacks[name] = StackDeployment(
            name=name,
            desired=desired,
            deployed=last,
            patched=patched if patched is not desired else None,
            retained_exports=retained,
            dependencies=graph.dependencies_of(name),
        )

    _check_collisions({name: s.template for name, s in plan.stacks.items()})

    logger.info(
        "Planned %d stacks (%d retiring, %d exports retained)",
        len(plan.stacks),
        len(retiring_set),
        sum(len(s.retained_exports) for s in plan.stacks.values()),
    )
    return plan


def compute_consumer_sets(
    templates: Mapping[str, Template],
    references: ReferenceTracker,
    deployed: Mapping[str, Template | None],
) -> dict[tuple[str, str], frozenset[str]]:
    """(producer, export name) → stacks that import it.

    Two sources are merged:

    * references recorded during this synthesis, mapped to the export
      name the producer's desired template publishes them under;
    * ``Fn::ImportValue`` expressions in other stacks' last-deployed
      templates, mapped to the stack whose last-deployed template exports
      that name.

    The second source is what keeps an export alive while a consumer that
    has just dropped its import is still deployed with it.
    """
    consumers: dict[tuple[str, str], set[str]] = defaultdict(set)

    for ref in references.references:
        producer = templates.get(ref.producer)
        output = producer.outputs.get(ref.output_key) if producer is not None else None
        if output is None or not output.export_name:
            continue
        consumers[(ref.producer, output.export_name)].add(ref.consumer)

    deployed_owner: dict[str, str] = {}
    for name, template in deployed.items():
        if template is None:
            continue
        for export_name in template.exports():
            deployed_owner[export_name] = name

    for name, template in deployed.items():
        if template is None:
            continue
        for export_name in template.imports():
            owner = deployed_owner.get(export_name)
            if owner is None or owner == name:
                continue
            consumers[(owner, export_name)].add(name)

    return {key: frozenset(names) for key, names in sorted(consumers.items())}


def _check_collisions(templates: Mapping[str, Template]) -> None:
    owners: dict[str, set[str]] = defaultdict(set)
    for name, template in templates.items():
        for key, output in template.outputs.items():
            if output.export_name:
                owners[output.export_name].add(f"{name}.{key}")

    for export_name in sorted(owners):
        if len(owners[export_name]) > 1:
            raise ExportCollisionError(export_name, owners[export_name])


def _describe(provider: Provider, retry: RetryPolicy, name: str) -> Template | None:
    """Last deployed template of a stack; exhausted throttling becomes a rejection."""
    try:
        return retry.call(f"describe {name}", lambda: provider.describe_deployed_template(name))
    except TransientProviderError as e:
        raise ProviderRejection(
            name,
            f"{e} (gave up after {retry.max_attempts} attempts)",
            kind=ERROR_KIND_TRANSIENT,
        ) from e
