"""
Function construct — a Node.js Lambda function with a registered handler.

Two synthesis modes:

    local    → a debug stub is deployed instead of the real code; the stub
               forwards invocations to ``debug_endpoint`` and learns where
               the real handler lives from SST_DEBUG_* variables.
    deployed → the Builder collaborator packages the entry point and the
               resource points at the resulting artifact.

Either way the handler is registered with the app through the synthesis
context.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from pydantic import BaseModel, Field

from stackrecon.core.construct.context import HandlerProps
from stackrecon.core.construct.stack import StackBuilder
from stackrecon.core.errors import ConfigurationError
from stackrecon.core.models.app import DEFAULT_RUNTIME

logger = logging.getLogger(__name__)

LAMBDA_FUNCTION_TYPE = "AWS::Lambda::Function"

NODE_RUNTIMES = (
    "nodejs",
    "nodejs4.3",
    "nodejs6.10",
    "nodejs8.10",
    "nodejs10.x",
    "nodejs12.x",
)

STUB_ARTIFACT = "stub.zip"
STUB_HANDLER = "index.main"


class FunctionProps(BaseModel):
    """Function options.

    Attributes:
        entry:    Path to the entry file (.js or .ts), relative to src_path.
        handler:  Exported function in the entry file.
        src_path: Directory whose node_modules is used for bundling.
        runtime:  Node.js runtime identifier.
        bundle:   Whether to bundle the entry point.
    """

    entry: str = ""
    handler: str = "handler"
    src_path: str = "."
    runtime: str = DEFAULT_RUNTIME
    bundle: bool = True
    environment: dict[str, Any] = Field(default_factory=dict)
    memory_size: int | None = None
    timeout: int | None = None
    role: Any = None


class Function:
    """Adds an ``AWS::Lambda::Function`` resource to a stack."""

    def __init__(self, stack: StackBuilder, function_id: str, props: FunctionProps):
        if not props.entry:
            raise ConfigurationError(f"No entry point defined for the {function_id} Lambda function")
        if props.runtime not in NODE_RUNTIMES:
            raise ConfigurationError(
                f"Function {function_id} does not support {props.runtime}. "
                "Only NodeJS runtimes are currently supported."
            )

        self.stack = stack
        self.function_id = function_id
        self.props = props

        context = stack.context
        settings = context.settings
        environment = dict(props.environment)

        if settings.local:
            code_path = STUB_ARTIFACT
            handler = STUB_HANDLER
            environment.update(
                {
                    "SST_DEBUG_SRC_PATH": props.src_path,
                    "SST_DEBUG_SRC_ENTRY": props.entry,
                    "SST_DEBUG_SRC_HANDLER": props.handler,
                    "SST_DEBUG_ENDPOINT": settings.debug_endpoint or "",
                }
            )
        else:
            artifact = context.builder.build(
                entry=props.entry,
                src_path=props.src_path,
                handler=props.handler,
                bundle=props.bundle,
                build_dir=settings.build_dir,
            )
            code_path = artifact.zip_path
            handler = artifact.handler

        properties: dict[str, Any] = {
            "Handler": handler,
            "Runtime": props.runtime,
            "Code": _code_location(settings.asset_bucket, function_id, code_path),
        }
        if environment:
            properties["Environment"] = {"Variables": environment}
        if props.memory_size is not None:
            properties["MemorySize"] = props.memory_size
        if props.timeout is not None:
            properties["Timeout"] = props.timeout
        if props.role is not None:
            properties["Role"] = props.role

        self.resource = stack.add_resource(function_id, LAMBDA_FUNCTION_TYPE, properties)
        self.resource.metadata["stackrecon:asset"] = code_path

        context.register_handler(
            HandlerProps(src_path=props.src_path, entry=props.entry, handler=props.handler)
        )
        logger.debug("Function %s/%s → %s", stack.name, function_id, code_path)


def _code_location(bucket: str, function_id: str, code_path: str) -> dict[str, Any]:
    """S3 location the artifact is uploaded to; the key is derived from its path."""
    digest = hashlib.sha256(code_path.encode("utf-8")).hexdigest()[:16]
    return {"S3Bucket": bucket, "S3Key": f"assets/{function_id}/{digest}.zip"}
