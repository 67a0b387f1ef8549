"""
Export diff — which exports a new template is about to drop.

Exports are compared by NAME only. A new value under an existing export
name is an update the provider handles natively, so it is reported as
unchanged rather than removed.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Mapping

from stackrecon.core.models.export import Export
from stackrecon.core.models.template import Template


@dataclass(frozen=True)
class ExportDiff:
    """Exports of one stack, partitioned by what the new template does to them.

    ``removed`` exports carry their LAST DEPLOYED value; ``unchanged`` and
    ``added`` carry the desired value.
    """

    stack: str
    removed: tuple[Export, ...] = ()
    unchanged: tuple[Export, ...] = ()
    added: tuple[Export, ...] = ()

    @property
    def has_removals(self) -> bool:
        return bool(self.removed)

    @property
    def removed_names(self) -> list[str]:
        return [e.name for e in self.removed]

    def with_consumers(self, consumer_sets: Mapping[tuple[str, str], frozenset[str]]) -> ExportDiff:
        """Copy with ``consumers`` filled in on removed and unchanged exports."""

        def fill(exports: tuple[Export, ...]) -> tuple[Export, ...]:
            return tuple(
                e.with_consumers(consumer_sets.get((self.stack, e.name), frozenset())) for e in exports
            )

        return replace(self, removed=fill(self.removed), unchanged=fill(self.unchanged))

    def to_dict(self) -> dict:
        return {
            "stack": self.stack,
            "removed": self.removed_names,
            "unchanged": [e.name for e in self.unchanged],
            "added": [e.name for e in self.added],
        }


def _exports_of(stack: str, template: Template) -> dict[str, Export]:
    return {
        name: Export(stack=stack, name=name, output_key=key, value=output.value)
        for name, (key, output) in template.exports().items()
    }


def diff_exports(stack: str, last_deployed: Template | None, desired: Template) -> ExportDiff:
    """Compare a stack's last deployed exports against its desired ones.

    Args:
        stack: Stack name.
        last_deployed: Template currently deployed, or None for a new stack.
        desired: Newly synthesized template.

    Returns:
        ExportDiff with removed / unchanged / added exports, each sorted
        by export name.
    """
    before = _exports_of(stack, last_deployed) if last_deployed is not None else {}
    after = _exports_of(stack, desired)

    removed = tuple(before[n] for n in sorted(before.keys() - after.keys()))
    unchanged = tuple(after[n] for n in sorted(before.keys() & after.keys()))
    added = tuple(after[n] for n in sorted(after.keys() - before.keys()))

    return ExportDiff(stack=stack, removed=removed, unchanged=unchanged, added=added)
