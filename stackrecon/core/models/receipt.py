"""
DeployReceipt — the result contract between orchestrator and provider.

The orchestrator hands a provider a (stack, template) pair; the provider
returns a receipt. Providers NEVER raise from ``deploy()``; failures are
captured here, with the provider's message and its classification.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from stackrecon.core.errors import classify_provider_error


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class DeployReceipt(BaseModel):
    """Outcome of one deploy call against the provider."""

    provider: str
    stack: str
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_kind: str | None = None       # transient, export_in_use, rejected
    export_name: str | None = None
    consumer: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the deploy succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the deploy failed."""
        return self.status == "failed"

    @property
    def transient(self) -> bool:
        """Whether the failure is worth retrying."""
        return self.failed and self.error_kind == "transient"

    @classmethod
    def success(
        cls,
        provider: str,
        stack: str,
        output: str = "",
        **kwargs: Any,
    ) -> DeployReceipt:
        """Create a success receipt."""
        return cls(provider=provider, stack=stack, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        provider: str,
        stack: str,
        error: str,
        **kwargs: Any,
    ) -> DeployReceipt:
        """Create a failure receipt, classifying the message if no kind is given."""
        if "error_kind" not in kwargs:
            classified = classify_provider_error(error)
            kwargs["error_kind"] = classified.kind
            kwargs.setdefault("export_name", classified.export_name)
            kwargs.setdefault("consumer", classified.consumer)
        return cls(provider=provider, stack=stack, status="failed", error=error, **kwargs)
