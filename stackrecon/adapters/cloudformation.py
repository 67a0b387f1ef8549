"""
CloudFormation provider — deploys stacks through the AWS CLI.

Uses the ``aws`` CLI (``aws cloudformation ...``), never the API
directly, so credentials, profiles and regions behave exactly as they do
in the operator's shell.

    describe  → get-template (Original stage) + describe-stacks for outputs
    deploy    → cloudformation deploy (change set, waits for completion)

Throttling and network errors are reported as transient; export-in-use
failures are recognised from the stack events when the CLI output does
not already say so.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any, NoReturn

import yaml

from stackrecon.adapters.base import Provider
from stackrecon.core.errors import (
    ERROR_KIND_TRANSIENT,
    ProviderRejection,
    TransientProviderError,
    classify_provider_error,
)
from stackrecon.core.models.receipt import DeployReceipt
from stackrecon.core.models.template import Template

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKER = "does not exist"


class CloudFormationProvider(Provider):
    """AWS CloudFormation through the ``aws`` CLI.

    Args:
        region: AWS region (default: CLI configuration).
        profile: AWS CLI profile (default: CLI configuration).
        capabilities: Capabilities acknowledged on deploy.
        timeout: Seconds to wait for one deploy.
    """

    def __init__(
        self,
        region: str | None = None,
        profile: str | None = None,
        capabilities: tuple[str, ...] = ("CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"),
        timeout: int = 1800,
    ):
        self._region = region
        self._profile = profile
        self._capabilities = capabilities
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "cloudformation"

    def is_available(self) -> bool:
        return shutil.which("aws") is not None

    # ── Describe ────────────────────────────────────────────────

    def describe_deployed_template(self, stack_name: str) -> Template | None:
        result = self._describe(
            stack_name,
            ["get-template", "--stack-name", stack_name, "--template-stage", "Original"],
        )
        if result.returncode != 0:
            message = result.stderr.strip()
            if _NOT_FOUND_MARKER in message:
                logger.debug("Stack %s not deployed yet", stack_name)
                return None
            self._raise_for(stack_name, message)

        body = _parse_template_body(json.loads(result.stdout).get("TemplateBody"))
        return Template.from_cfn(body, self._resolved_outputs(stack_name))

    def _resolved_outputs(self, stack_name: str) -> dict[str, str]:
        result = self._describe(stack_name, ["describe-stacks", "--stack-name", stack_name])
        if result.returncode != 0:
            self._raise_for(stack_name, result.stderr.strip())

        stacks = json.loads(result.stdout).get("Stacks") or []
        if not stacks:
            return {}
        return {
            o["OutputKey"]: o.get("OutputValue", "")
            for o in stacks[0].get("Outputs") or []
            if "OutputKey" in o
        }

    # ── Deploy ──────────────────────────────────────────────────

    def deploy(self, stack_name: str, template: Template) -> DeployReceipt:
        start = time.monotonic()
        try:
            with tempfile.TemporaryDirectory(prefix="stackrecon-") as tmp:
                template_file = Path(tmp) / f"{stack_name}.template.json"
                template_file.write_text(
                    json.dumps(template.to_cfn(), indent=1), encoding="utf-8"
                )
                args = [
                    "deploy",
                    "--stack-name",
                    stack_name,
                    "--template-file",
                    str(template_file),
                    "--no-fail-on-empty-changeset",
                ]
                if self._capabilities:
                    args += ["--capabilities", *self._capabilities]
                result = self._aws(args, timeout=self._timeout)
        except subprocess.TimeoutExpired:
            return DeployReceipt.failure(
                provider=self.name,
                stack=stack_name,
                error=f"Deploy timed out after {self._timeout}s",
                error_kind="rejected",
            )
        except OSError as e:
            return DeployReceipt.failure(
                provider=self.name,
                stack=stack_name,
                error=f"Cannot run aws CLI: {e}",
                error_kind="rejected",
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode == 0:
            return DeployReceipt.success(
                provider=self.name,
                stack=stack_name,
                output=result.stdout.strip(),
                duration_ms=elapsed_ms,
            )

        error = result.stderr.strip() or result.stdout.strip() or f"Exit code {result.returncode}"
        reason = self._failure_reason(stack_name)
        if reason:
            error = f"{error}: {reason}"
        return DeployReceipt.failure(
            provider=self.name,
            stack=stack_name,
            error=error,
            duration_ms=elapsed_ms,
            metadata={"return_code": result.returncode},
        )

    def _failure_reason(self, stack_name: str) -> str:
        """First FAILED status reason from the most recent stack events."""
        try:
            result = self._aws(
                ["describe-stack-events", "--stack-name", stack_name, "--max-items", "50"],
                timeout=60,
            )
        except (subprocess.TimeoutExpired, OSError):
            return ""
        if result.returncode != 0:
            return ""
        try:
            events = json.loads(result.stdout).get("StackEvents") or []
        except json.JSONDecodeError:
            return ""
        for event in events:
            status = event.get("ResourceStatus", "")
            reason = event.get("ResourceStatusReason", "")
            if status.endswith("FAILED") and reason:
                return reason
        return ""

    # ── Helpers ─────────────────────────────────────────────────

    def _aws(self, args: list[str], timeout: int) -> subprocess.CompletedProcess[str]:
        """Run an ``aws cloudformation`` command with JSON output."""
        cmd = ["aws", "cloudformation", *args, "--output", "json"]
        if self._region:
            cmd += ["--region", self._region]
        if self._profile:
            cmd += ["--profile", self._profile]
        logger.debug("Executing: %s", " ".join(cmd))
        return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)

    def _describe(self, stack_name: str, args: list[str]) -> subprocess.CompletedProcess[str]:
        """Run a read-only call; timeouts count as transient."""
        try:
            return self._aws(args, timeout=60)
        except subprocess.TimeoutExpired as e:
            raise TransientProviderError(f"Timed out describing {stack_name}") from e
        except OSError as e:
            raise ProviderRejection(stack_name, f"Cannot run aws CLI: {e}") from e

    def _raise_for(self, stack_name: str, message: str) -> NoReturn:
        classified = classify_provider_error(message)
        if classified.kind == ERROR_KIND_TRANSIENT:
            raise TransientProviderError(message)
        raise ProviderRejection(stack_name, message, kind=classified.kind)


def _parse_template_body(body: Any) -> dict[str, Any]:
    """TemplateBody comes back as a dict (JSON templates) or a string (YAML)."""
    if isinstance(body, dict):
        return body
    if not isinstance(body, str):
        return {}
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        data = yaml.load(body, Loader=_CfnLoader)
    return data if isinstance(data, dict) else {}


class _CfnLoader(yaml.SafeLoader):
    """SafeLoader that understands CloudFormation short-form tags (!Ref, !GetAtt...)."""


def _cfn_tag(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> dict[str, Any]:
    fn = "Ref" if tag_suffix == "Ref" else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
        if fn == "Fn::GetAtt" and isinstance(value, str):
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {fn: value}


_CfnLoader.add_multi_constructor("!", _cfn_tag)
