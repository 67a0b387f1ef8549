"""
Error taxonomy for planning and deployment.

Two families:

    ConfigurationError  → fatal, raised before any deployment is attempted
                          (cycles, export collisions, unreproducible exports).
    ProviderError       → raised while talking to the provider. Rejections are
                          fatal for one stack only; transient errors are retried.

Provider adapters never raise from ``deploy()``; they return a failed
receipt whose message is classified here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable


class StackReconError(Exception):
    """Base class for every error raised by stackrecon."""


# ── Configuration errors (fatal, pre-deploy) ─────────────────────────


class ConfigurationError(StackReconError):
    """The app definition cannot be deployed as written."""


class CycleError(ConfigurationError):
    """Stacks import from each other in a loop.

    Attributes:
        cycle: Stack names along the cycle, first name repeated at the end
               (e.g. ``["A", "B", "A"]``).
    """

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic stack dependency: {' → '.join(self.cycle)}")

    @property
    def stacks(self) -> set[str]:
        """Distinct stacks taking part in the cycle."""
        return set(self.cycle)


class ExportCollisionError(ConfigurationError):
    """Two different logical outputs would publish the same export name."""

    def __init__(self, export_name: str, owners: Iterable[str]):
        self.export_name = export_name
        self.owners = sorted(owners)
        super().__init__(
            f"Export name '{export_name}' is produced by more than one output: "
            f"{', '.join(self.owners)}"
        )


class MissingExportValueError(ConfigurationError):
    """An export must be kept but its last deployed value cannot be reproduced."""

    def __init__(self, stack: str, export_name: str, consumers: Iterable[str], reason: str = ""):
        self.stack = stack
        self.export_name = export_name
        self.consumers = sorted(consumers)
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Stack '{stack}' must keep export '{export_name}' for "
            f"{', '.join(self.consumers)} but no prior value is available{detail}"
        )


class UnknownOutputError(ConfigurationError):
    """An import names a stack or output that does not exist."""


# ── Provider errors ──────────────────────────────────────────────────


class ProviderError(StackReconError):
    """Something went wrong talking to the provider."""


class TransientProviderError(ProviderError):
    """Throttling or a network hiccup. Safe to retry."""


class ProviderRejection(ProviderError):
    """The provider refused the operation for one stack.

    Attributes:
        stack: Stack the operation targeted.
        kind: ``export_in_use``, ``rejected`` or ``transient`` (exhausted retries).
        export_name: Export involved, when the provider names one.
        consumer: Stack still importing that export, when known.
    """

    def __init__(
        self,
        stack: str,
        message: str,
        kind: str = "rejected",
        export_name: str | None = None,
        consumer: str | None = None,
    ):
        self.stack = stack
        self.kind = kind
        self.export_name = export_name
        self.consumer = consumer
        self.detail = message
        super().__init__(describe_failure(stack, message, export_name, consumer))


# ── Message classification ───────────────────────────────────────────

ERROR_KIND_TRANSIENT = "transient"
ERROR_KIND_EXPORT_IN_USE = "export_in_use"
ERROR_KIND_REJECTED = "rejected"

# CloudFormation: "Export StackA:TableName cannot be deleted as it is in use by StackB"
_EXPORT_IN_USE_RE = re.compile(
    r"Export\s+(?P<export>\S+)\s+cannot be (?:deleted|updated) as it is in use by\s+(?P<consumer>[\w-]+)",
    re.IGNORECASE,
)

_TRANSIENT_MARKERS = (
    "throttling",
    "rate exceeded",
    "too many requests",
    "requestlimitexceeded",
    "connection reset",
    "connection aborted",
    "timed out",
    "temporarily unavailable",
    "service unavailable",
)


@dataclass(frozen=True)
class ClassifiedError:
    """Provider message reduced to something the orchestrator can act on."""

    kind: str
    export_name: str | None = None
    consumer: str | None = None


def classify_provider_error(message: str) -> ClassifiedError:
    """Reduce a provider error message to kind, export name and consumer."""
    match = _EXPORT_IN_USE_RE.search(message or "")
    if match:
        return ClassifiedError(
            kind=ERROR_KIND_EXPORT_IN_USE,
            export_name=match.group("export"),
            consumer=match.group("consumer"),
        )

    lowered = (message or "").lower()
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return ClassifiedError(kind=ERROR_KIND_TRANSIENT)

    return ClassifiedError(kind=ERROR_KIND_REJECTED)


def describe_failure(
    stack: str,
    message: str,
    export_name: str | None = None,
    consumer: str | None = None,
) -> str:
    """Render a user-facing failure line naming stack, export and consumer."""
    parts = [f"Stack '{stack}' failed"]
    if export_name:
        parts.append(f"export '{export_name}'")
    if consumer:
        parts.append(f"still imported by '{consumer}'")
    return f"{', '.join(parts)}: {message}"
