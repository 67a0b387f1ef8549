"""
App — the root of a synthesis pass.

The App owns the SynthesisContext (reference tracker + handler registry)
and every StackBuilder created through it. ``synth()`` snapshots all
stacks into Templates and hands back the references observed while they
were built.

``synthesize_app()`` builds an App from a stacks.yml definition in two
passes: first every stack and output is declared, then resources,
functions and output values are added with their ``{import: ...}``
markers resolved. Declaring first means a stack may read from a stack
declared after it in the file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from stackrecon.core.construct.builder import Builder, PassthroughBuilder
from stackrecon.core.construct.context import HandlerProps, SynthesisContext, SynthesisSettings
from stackrecon.core.construct.function import Function, FunctionProps
from stackrecon.core.construct.stack import StackBuilder
from stackrecon.core.engine.references import ReferenceTracker
from stackrecon.core.errors import ConfigurationError, UnknownOutputError
from stackrecon.core.models.app import AppConfig, StackConfig
from stackrecon.core.models.template import Template

logger = logging.getLogger(__name__)

IMPORT_MARKER = "import"


@dataclass
class SynthesisResult:
    """Everything one synthesis pass produced."""

    templates: dict[str, Template]
    references: ReferenceTracker
    handlers: list[HandlerProps]

    @property
    def stack_names(self) -> list[str]:
        return list(self.templates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stacks": {name: t.to_cfn() for name, t in self.templates.items()},
            "references": [
                {"consumer": r.consumer, "producer": r.producer, "output": r.output_key}
                for r in self.references.references
            ],
            "handlers": [
                {"src_path": h.src_path, "entry": h.entry, "handler": h.handler}
                for h in self.handlers
            ],
        }


class App:
    """Owns the synthesis context and the stacks built with it."""

    def __init__(
        self,
        name: str,
        stage: str = "dev",
        settings: SynthesisSettings | None = None,
        builder: Builder | None = None,
    ):
        self.name = name
        self.stage = stage
        self._context = SynthesisContext(
            settings=settings or SynthesisSettings(),
            builder=builder or PassthroughBuilder(),
        )
        self._stacks: dict[str, StackBuilder] = {}

    @property
    def context(self) -> SynthesisContext:
        return self._context

    @property
    def stacks(self) -> list[StackBuilder]:
        return list(self._stacks.values())

    def add_stack(self, name: str, description: str = "") -> StackBuilder:
        if name in self._stacks:
            raise ConfigurationError(f"Duplicate stack name: {name}")
        stack = StackBuilder(self._context, name, description)
        self._stacks[name] = stack
        return stack

    def get_stack(self, name: str) -> StackBuilder:
        stack = self._stacks.get(name)
        if stack is None:
            raise UnknownOutputError(f"Unknown stack '{name}'")
        return stack

    def synth(self) -> SynthesisResult:
        templates = {name: stack.synth() for name, stack in self._stacks.items()}
        logger.info(
            "Synthesized %d stacks (%d cross-stack references, %d handlers)",
            len(templates),
            len(self._context.references),
            len(self._context.handlers),
        )
        return SynthesisResult(
            templates=templates,
            references=self._context.references,
            handlers=self._context.handlers.handlers,
        )


# ── stacks.yml → App ─────────────────────────────────────────────────


def synthesize_app(config: AppConfig, builder: Builder | None = None) -> SynthesisResult:
    """Build every declared stack and synthesize the app."""
    settings = SynthesisSettings(
        local=config.app.local,
        debug_endpoint=config.app.debug_endpoint,
        build_dir=config.app.build_dir,
        asset_bucket=config.app.asset_bucket or f"{config.app.resource_prefix}-assets",
    )
    app = App(config.app.name, config.app.stage, settings=settings, builder=builder)

    # Pass 1: declare stacks and outputs
    for stack_cfg in config.stacks:
        stack = app.add_stack(stack_cfg.name, stack_cfg.description)
        for key, out in stack_cfg.outputs.items():
            stack.add_output(
                key,
                value=None,
                export=out.export,
                export_name=out.export_name,
                description=out.description,
            )

    # Pass 2: resources, functions and output values, imports resolved
    for stack_cfg in config.stacks:
        stack = app.get_stack(stack_cfg.name)
        resolver = _ImportResolver(app, stack, stack_cfg)
        for logical_id, res in stack_cfg.resources.items():
            stack.add_resource(
                logical_id,
                res.type,
                properties=resolver.resolve(res.properties),
                depends_on=list(res.depends_on),
            )
        for fn in stack_cfg.functions:
            props = FunctionProps(
                entry=fn.entry,
                handler=fn.handler,
                src_path=fn.src_path,
                runtime=fn.runtime,
                bundle=fn.bundle,
                environment=resolver.resolve(fn.environment),
                memory_size=fn.memory_size,
                timeout=fn.timeout,
                role=resolver.resolve(fn.role),
            )
            Function(stack, fn.id, props)
        for key, out in stack_cfg.outputs.items():
            stack.set_output_value(key, resolver.resolve(out.value))

    return app.synth()


class _ImportResolver:
    """Replaces ``{import: "Stack.Output"}`` markers for one consumer stack.

    Markers naming another stack become ``Fn::ImportValue`` expressions
    (and record a reference). Markers naming the consumer's own output are
    replaced by that output's declared value.
    """

    def __init__(self, app: App, consumer: StackBuilder, stack_cfg: StackConfig):
        self.app = app
        self.consumer = consumer
        self.stack_cfg = stack_cfg

    def resolve(self, value: Any, _seen: frozenset[str] = frozenset()) -> Any:
        if isinstance(value, dict):
            if set(value) == {IMPORT_MARKER}:
                return self._resolve_marker(value[IMPORT_MARKER], _seen)
            return {k: self.resolve(v, _seen) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(v, _seen) for v in value]
        return value

    def _resolve_marker(self, target: Any, seen: frozenset[str]) -> Any:
        producer, key = _split_import(target)
        if producer != self.consumer.name:
            return self.consumer.import_value(self.app.get_stack(producer), key)

        if target in seen:
            raise ConfigurationError(f"Output '{target}' refers to itself")
        output = self.stack_cfg.outputs.get(key)
        if output is None:
            raise UnknownOutputError(f"Stack '{producer}' has no output '{key}'")
        return self.resolve(output.value, seen | {target})


def _split_import(target: Any) -> tuple[str, str]:
    if not isinstance(target, str) or "." not in target:
        raise ConfigurationError(f"Import must look like 'Stack.Output', got {target!r}")
    producer, key = target.split(".", 1)
    if not producer or not key:
        raise ConfigurationError(f"Import must look like 'Stack.Output', got {target!r}")
    return producer, key
