"""
App model — the declared shape of an app, loaded from stacks.yml.

This is the canonical truth about which stacks exist, what they contain
and which values they read from each other. If a stack isn't declared
here, it doesn't exist to the engine (unless listed under ``retire``).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

DEFAULT_RUNTIME = "nodejs12.x"


class AppSettings(BaseModel):
    """App-wide identity and synthesis settings."""

    name: str
    stage: str = "dev"
    region: str | None = None
    profile: str | None = None

    local: bool = False            # synthesize debug stubs instead of bundles
    debug_endpoint: str = ""       # websocket endpoint the debug stub calls
    build_dir: str = ".build"
    asset_bucket: str | None = None

    @property
    def resource_prefix(self) -> str:
        """``<stage>-<name>``, used for physical names."""
        return f"{self.stage}-{self.name}"


class ResourceConfig(BaseModel):
    """A raw resource definition."""

    type: str
    properties: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)


class OutputConfig(BaseModel):
    """A declared output.

    ``export: true`` publishes it under the default export name
    (``<stack>:<key>``); ``export_name`` overrides that name. Outputs read
    by another stack are exported automatically.
    """

    value: Any
    export: bool = False
    export_name: str | None = None
    description: str = ""


class FunctionConfig(BaseModel):
    """A Lambda function declared on a stack."""

    id: str
    entry: str = ""
    handler: str = "handler"
    src_path: str = "."
    runtime: str = DEFAULT_RUNTIME
    bundle: bool = True
    environment: dict[str, Any] = Field(default_factory=dict)
    memory_size: int | None = None
    timeout: int | None = None
    role: Any = None


class StackConfig(BaseModel):
    """One stack declaration."""

    name: str
    description: str = ""
    resources: dict[str, ResourceConfig] = Field(default_factory=dict)
    outputs: dict[str, OutputConfig] = Field(default_factory=dict)
    functions: list[FunctionConfig] = Field(default_factory=list)


class DeploySettings(BaseModel):
    """Orchestrator tuning."""

    max_workers: int = Field(default=4, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)


class AppConfig(BaseModel):
    """Root app definition, loaded from stacks.yml."""

    version: int = 1

    app: AppSettings
    stacks: list[StackConfig] = Field(default_factory=list)
    retire: list[str] = Field(default_factory=list)
    deploy: DeploySettings = Field(default_factory=DeploySettings)

    @model_validator(mode="after")
    def _unique_stack_names(self) -> AppConfig:
        seen: set[str] = set()
        for stack in self.stacks:
            if stack.name in seen:
                raise ValueError(f"Duplicate stack name: {stack.name}")
            seen.add(stack.name)
        overlap = seen & set(self.retire)
        if overlap:
            raise ValueError(f"Stacks both declared and retired: {', '.join(sorted(overlap))}")
        return self

    def get_stack(self, name: str) -> StackConfig | None:
        """Look up a stack declaration by name."""
        for stack in self.stacks:
            if stack.name == name:
                return stack
        return None

    @property
    def stack_names(self) -> list[str]:
        return [s.name for s in self.stacks]
