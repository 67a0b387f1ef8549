"""
Synthesis context — the explicit bookkeeping object for one synthesis pass.

The App owns exactly one SynthesisContext and hands it to every stack it
creates. Stacks never touch the bookkeeping directly; they go through
two methods:

    record_reference(consumer, producer, key)   a cross-stack read
    register_handler(props)                     a function entry point

There is no module-level state: two Apps in the same process never see
each other's references or handlers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from stackrecon.core.construct.builder import Builder, PassthroughBuilder
from stackrecon.core.engine.references import ReferenceTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class HandlerProps:
    """Where a function's code lives."""

    src_path: str
    entry: str
    handler: str


class HandlerRegistry:
    """Ordered, de-duplicated list of function handlers in the app."""

    def __init__(self) -> None:
        self._handlers: list[HandlerProps] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def add(self, props: HandlerProps) -> None:
        if props not in self._handlers:
            self._handlers.append(props)

    @property
    def handlers(self) -> list[HandlerProps]:
        return list(self._handlers)


@dataclass
class SynthesisSettings:
    """Settings constructs need while synthesizing."""

    local: bool = False
    debug_endpoint: str = ""
    build_dir: str = ".build"
    asset_bucket: str = ""


@dataclass
class SynthesisContext:
    """Threaded through every construct of one App."""

    settings: SynthesisSettings = field(default_factory=SynthesisSettings)
    builder: Builder = field(default_factory=PassthroughBuilder)
    references: ReferenceTracker = field(default_factory=ReferenceTracker)
    handlers: HandlerRegistry = field(default_factory=HandlerRegistry)

    def record_reference(self, consumer: str, producer: str, output_key: str) -> bool:
        """Record that ``consumer`` reads ``producer``'s output ``output_key``."""
        return self.references.record(consumer, producer, output_key)

    def register_handler(self, props: HandlerProps) -> None:
        """Register a function handler with the app."""
        self.handlers.add(props)
        logger.debug("Registered handler %s:%s (%s)", props.entry, props.handler, props.src_path)
