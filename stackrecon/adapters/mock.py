"""
Mock provider — an in-memory stand-in for the cloud provider.

Used by tests and by ``--mock`` runs to exercise planning and
deployment without touching a real account. It enforces the same export
rules the real provider does, so reconciliation bugs surface here too:

    - an export cannot be removed while another stack imports it
    - an import must name an export that exists
    - an export name can only be owned by one stack

State can optionally be persisted to a JSON file (atomic write) so that
consecutive CLI runs see each other's deployments.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any

from stackrecon.adapters.base import Provider
from stackrecon.core.errors import TransientProviderError
from stackrecon.core.models.receipt import DeployReceipt
from stackrecon.core.models.template import IMPORT_VALUE, Template

logger = logging.getLogger(__name__)


class MockProvider(Provider):
    """In-memory provider with configurable failures.

    Args:
        prefix: Prefix for generated physical resource names
            (e.g. ``dev-demo`` → ``dev-demo-StackA-MyTable-1a2b3c``).
        state_path: Optional JSON file to load from / save to.
        latency: Seconds each deploy takes (simulates a long-running operation).
    """

    def __init__(
        self,
        prefix: str = "mock",
        state_path: Path | None = None,
        latency: float = 0.0,
        available: bool = True,
    ):
        self._prefix = prefix
        self._state_path = state_path
        self._latency = latency
        self._available = available
        self._lock = threading.Lock()

        self._templates: dict[str, dict[str, Any]] = {}
        self._resolved: dict[str, dict[str, str]] = {}

        self._failures: dict[str, tuple[str, int | None]] = {}
        self._describe_failures: dict[str, int] = {}
        self._call_log: list[tuple[str, Template]] = []
        self._in_flight = 0
        self._max_in_flight = 0

        if state_path is not None and state_path.is_file():
            self._load()

    # ── Provider protocol ───────────────────────────────────────

    @property
    def name(self) -> str:
        return "mock"

    def is_available(self) -> bool:
        return self._available

    def describe_deployed_template(self, stack_name: str) -> Template | None:
        with self._lock:
            remaining = self._describe_failures.get(stack_name, 0)
            if remaining:
                self._describe_failures[stack_name] = remaining - 1
                raise TransientProviderError(f"Rate exceeded describing {stack_name}")

            body = self._templates.get(stack_name)
            if body is None:
                return None
            return Template.from_cfn(body, dict(self._resolved.get(stack_name, {})))

    def deploy(self, stack_name: str, template: Template) -> DeployReceipt:
        start = time.monotonic()
        with self._lock:
            self._call_log.append((stack_name, template))
            self._in_flight += 1
            self._max_in_flight = max(self._max_in_flight, self._in_flight)

        try:
            if self._latency:
                time.sleep(self._latency)

            with self._lock:
                scripted = self._take_failure(stack_name)
                if scripted:
                    return DeployReceipt.failure(
                        provider=self.name, stack=stack_name, error=scripted
                    )

                error = self._check_exports(stack_name, template)
                if error:
                    return DeployReceipt.failure(provider=self.name, stack=stack_name, error=error)

                body = template.to_cfn()
                self._templates[stack_name] = body
                self._resolved[stack_name] = self._resolve_outputs(stack_name, template)
                self._save()

            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.debug("[mock] deployed %s", stack_name)
            return DeployReceipt.success(
                provider=self.name,
                stack=stack_name,
                output=f"[mock] {stack_name} deployed",
                duration_ms=elapsed_ms,
                metadata={"mock": True},
            )
        finally:
            with self._lock:
                self._in_flight -= 1

    # ── Test controls ───────────────────────────────────────────

    @property
    def call_log(self) -> list[tuple[str, Template]]:
        """Every (stack, template) deploy this mock has received."""
        return self._call_log

    @property
    def deployed_stacks(self) -> list[str]:
        return sorted(self._templates)

    @property
    def max_in_flight(self) -> int:
        """Highest number of deploys observed running at the same time."""
        return self._max_in_flight

    def set_failure(self, stack_name: str, error: str = "Mock failure", times: int | None = None) -> None:
        """Make deploys of a stack fail (``times`` = None: always)."""
        self._failures[stack_name] = (error, times)

    def set_transient(self, stack_name: str, times: int = 1) -> None:
        """Make the next ``times`` deploys of a stack fail with throttling."""
        self._failures[stack_name] = ("Rate exceeded", times)

    def set_describe_transient(self, stack_name: str, times: int = 1) -> None:
        """Make the next ``times`` describe calls of a stack throttle."""
        self._describe_failures[stack_name] = times

    def seed(self, stack_name: str, template: Template) -> None:
        """Install a template as deployed, bypassing export checks."""
        with self._lock:
            self._templates[stack_name] = template.to_cfn()
            self._resolved[stack_name] = self._resolve_outputs(stack_name, template)
            self._save()

    def exported_value(self, export_name: str) -> str | None:
        """Resolved value of an export across all deployed stacks."""
        owner = self._export_owner(export_name)
        if owner is None:
            return None
        stack, key = owner
        return self._resolved.get(stack, {}).get(key)

    def reset(self) -> None:
        """Clear deployed state, call log and scripted failures."""
        with self._lock:
            self._templates.clear()
            self._resolved.clear()
            self._failures.clear()
            self._describe_failures.clear()
            self._call_log.clear()
            self._max_in_flight = 0

    # ── Rules ───────────────────────────────────────────────────

    def _take_failure(self, stack_name: str) -> str | None:
        entry = self._failures.get(stack_name)
        if entry is None:
            return None
        error, times = entry
        if times is not None:
            if times <= 1:
                del self._failures[stack_name]
            else:
                self._failures[stack_name] = (error, times - 1)
        return error

    def _check_exports(self, stack_name: str, template: Template) -> str | None:
        """Apply the provider's export rules. Returns an error message or None."""
        new_exports = set(template.exports())

        for name in sorted(new_exports):
            owner = self._export_owner(name)
            if owner is not None and owner[0] != stack_name:
                return f"Export with name {name} is already exported by stack {owner[0]}"

        for name in sorted(template.imports()):
            owner = self._export_owner(name)
            if owner is None or owner[0] == stack_name:
                return f"No export named {name} found"

        current = self._templates.get(stack_name)
        if current is not None:
            old_exports = set(Template.from_cfn(current).exports())
            for name in sorted(old_exports - new_exports):
                importers = self._importers_of(name, exclude=stack_name)
                if importers:
                    return (
                        f"Export {name} cannot be deleted as it is in use by {importers[0]}"
                    )
        return None

    def _export_owner(self, export_name: str) -> tuple[str, str] | None:
        for stack, body in self._templates.items():
            exports = Template.from_cfn(body).exports()
            if export_name in exports:
                return stack, exports[export_name][0]
        return None

    def _importers_of(self, export_name: str, exclude: str) -> list[str]:
        return sorted(
            stack
            for stack, body in self._templates.items()
            if stack != exclude and export_name in Template.from_cfn(body).imports()
        )

    # ── Value resolution ────────────────────────────────────────

    def _physical_id(self, stack: str, logical_id: str) -> str:
        digest = hashlib.sha256(f"{stack}/{logical_id}".encode()).hexdigest()[:8].upper()
        return f"{self._prefix}-{stack}-{logical_id}-{digest}"

    def _resolve(self, stack: str, value: Any) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, dict):
            if "Ref" in value and isinstance(value["Ref"], str):
                return self._physical_id(stack, value["Ref"])
            if "Fn::GetAtt" in value:
                att = value["Fn::GetAtt"]
                logical, attr = att if isinstance(att, list) else att.split(".", 1)
                return f"arn:mock:{stack}:{self._physical_id(stack, logical)}:{attr}"
            if IMPORT_VALUE in value and isinstance(value[IMPORT_VALUE], str):
                return self.exported_value(value[IMPORT_VALUE]) or ""
        return json.dumps(value, sort_keys=True)

    def _resolve_outputs(self, stack: str, template: Template) -> dict[str, str]:
        return {key: self._resolve(stack, output.value) for key, output in template.outputs.items()}

    # ── Persistence ─────────────────────────────────────────────

    def _save(self) -> None:
        if self._state_path is None:
            return
        data = {
            "stacks": {
                name: {"template": body, "outputs": self._resolved.get(name, {})}
                for name, body in sorted(self._templates.items())
            }
        }
        path = self._state_path
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".mock_", suffix=".tmp")
        os.close(fd)
        tmp = Path(tmp_path)
        try:
            tmp.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
            tmp.rename(path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def _load(self) -> None:
        assert self._state_path is not None
        try:
            data = json.loads(self._state_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Cannot load mock provider state from %s: %s", self._state_path, e)
            return
        for name, entry in (data.get("stacks") or {}).items():
            self._templates[name] = entry.get("template", {})
            self._resolved[name] = entry.get("outputs", {})
        logger.info("Loaded %d mock stacks from %s", len(self._templates), self._state_path)
