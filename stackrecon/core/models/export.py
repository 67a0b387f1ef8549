"""
Cross-stack value types — exports, references and dependency edges.

These are small immutable value objects. They are hashable so the engine
can collect them in sets and use them as dict keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

EXPORT_NAME_SEPARATOR = ":"


def export_name_for(stack: str, output_key: str) -> str:
    """Deterministic export name for a (stack, output) pair.

    Stable across runs so diffing by name works: ``StackA:TableName``.
    """
    return f"{stack}{EXPORT_NAME_SEPARATOR}{output_key}"


@dataclass(frozen=True, order=True)
class Reference:
    """Stack ``consumer`` read output ``output_key`` of stack ``producer``."""

    consumer: str
    producer: str
    output_key: str


@dataclass(frozen=True, order=True)
class DependencyEdge:
    """``dependent`` imports from ``dependency`` (so it deploys after it)."""

    dependent: str
    dependency: str


@dataclass(frozen=True)
class Export:
    """A named value published by one stack.

    ``consumers`` is filled in by the planner from the current run's consumer
    sets; it is empty on exports straight out of a template diff.
    """

    stack: str
    name: str
    output_key: str
    value: Any = field(compare=False, hash=False)
    consumers: frozenset[str] = field(default_factory=frozenset, compare=False, hash=False)

    def with_consumers(self, consumers: frozenset[str]) -> Export:
        return Export(
            stack=self.stack,
            name=self.name,
            output_key=self.output_key,
            value=self.value,
            consumers=consumers,
        )
