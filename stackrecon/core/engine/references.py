"""
Reference tracker — who reads whose outputs.

Every time one stack's construction reads a value produced by another
stack, the synthesis context calls ``record()``. The tracker only does
bookkeeping: it never looks at or mutates templates.

Recording is idempotent and self-references are dropped, so the graph
built from ``edges()`` never contains self-loops.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from stackrecon.core.models.export import DependencyEdge, Reference

logger = logging.getLogger(__name__)


class ReferenceTracker:
    """Set of (consumer, producer, output key) references for one synthesis pass."""

    def __init__(self) -> None:
        self._references: set[Reference] = set()

    def __len__(self) -> int:
        return len(self._references)

    def __contains__(self, item: object) -> bool:
        return item in self._references

    def record(self, consumer: str, producer: str, output_key: str) -> bool:
        """Record that ``consumer`` read ``producer``'s output ``output_key``.

        Returns:
            True if this is a new cross-stack reference, False for a
            duplicate or a self-reference.
        """
        if consumer == producer:
            logger.debug("Ignoring self-reference %s.%s", producer, output_key)
            return False

        ref = Reference(consumer=consumer, producer=producer, output_key=output_key)
        if ref in self._references:
            return False

        self._references.add(ref)
        logger.debug("Reference: %s → %s.%s", consumer, producer, output_key)
        return True

    def merge(self, other: ReferenceTracker) -> None:
        """Add every reference from another tracker."""
        for ref in other.references:
            self.record(ref.consumer, ref.producer, ref.output_key)

    @property
    def references(self) -> list[Reference]:
        """All references, sorted for deterministic iteration."""
        return sorted(self._references)

    def resolve(self) -> dict[tuple[str, str], frozenset[str]]:
        """Map (producer, output key) → distinct consumer stacks."""
        consumers: dict[tuple[str, str], set[str]] = defaultdict(set)
        for ref in self._references:
            consumers[(ref.producer, ref.output_key)].add(ref.consumer)
        return {key: frozenset(names) for key, names in sorted(consumers.items())}

    def consumers_of(self, producer: str, output_key: str) -> frozenset[str]:
        return frozenset(
            ref.consumer
            for ref in self._references
            if ref.producer == producer and ref.output_key == output_key
        )

    def edges(self) -> list[DependencyEdge]:
        """One edge per (consumer, producer) pair, however many outputs are shared."""
        pairs = {DependencyEdge(ref.consumer, ref.producer) for ref in self._references}
        return sorted(pairs)
