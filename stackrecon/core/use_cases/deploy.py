"""
Deploy use cases — the vertical slices behind the CLI commands.

    synth_app   stacks.yml → templates + references
    plan_app    ... → last-deployed state → reconciled DeploymentPlan
    deploy_app  ... → orchestrated deployment → audit ledger

Each returns a result dataclass with ``error`` set instead of raising,
so callers only have to render it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from stackrecon.adapters.base import Provider
from stackrecon.adapters.cloudformation import CloudFormationProvider
from stackrecon.adapters.mock import MockProvider
from stackrecon.core.config.loader import app_root, find_app_file, load_app_config
from stackrecon.core.construct.app import SynthesisResult, synthesize_app
from stackrecon.core.construct.builder import Builder
from stackrecon.core.engine.graph import DependencyGraph, build_graph
from stackrecon.core.engine.orchestrator import (
    DeploymentReport,
    Orchestrator,
    ProgressCallback,
    generate_run_id,
)
from stackrecon.core.engine.planner import DeploymentPlan, plan_deployment
from stackrecon.core.errors import ConfigurationError, ProviderError
from stackrecon.core.models.app import AppConfig
from stackrecon.core.persistence.audit import AuditEntry, AuditWriter
from stackrecon.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_MOCK_STATE = Path(".state") / "mock-provider.json"


@dataclass
class SynthResult:
    """Result of synthesizing an app."""

    config: AppConfig | None = None
    config_path: Path | None = None
    synthesis: SynthesisResult | None = None
    graph: DependencyGraph | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {
            "app": self.config.app.name if self.config else "",
            "stage": self.config.app.stage if self.config else "",
        }
        if self.synthesis:
            result.update(self.synthesis.to_dict())
        if self.graph:
            result["graph"] = self.graph.to_dict()
        return result


@dataclass
class PlanResult(SynthResult):
    """Result of planning a deployment."""

    plan: DeploymentPlan | None = None
    provider: Provider | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {
            "app": self.config.app.name if self.config else "",
            "stage": self.config.app.stage if self.config else "",
            "provider": self.provider.name if self.provider else "",
        }
        if self.plan:
            result["plan"] = self.plan.to_dict()
        return result


@dataclass
class DeployResult(PlanResult):
    """Result of deploying an app."""

    report: DeploymentReport | None = None
    audit_path: Path | None = None

    def to_dict(self) -> dict:
        result = super().to_dict()
        if self.report:
            result["report"] = self.report.to_dict()
        if self.audit_path:
            result["audit"] = str(self.audit_path)
        return result


def make_provider(
    config: AppConfig,
    mock: bool = False,
    mock_state: Path | None = None,
) -> Provider:
    """The provider a run talks to: CloudFormation, or the mock."""
    if mock:
        return MockProvider(prefix=config.app.resource_prefix, state_path=mock_state)
    return CloudFormationProvider(region=config.app.region, profile=config.app.profile)


def retry_policy_for(config: AppConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.deploy.max_attempts,
        base_delay=config.deploy.base_delay,
        max_delay=config.deploy.max_delay,
    )


def synth_app(
    config_path: Path | None = None,
    builder: Builder | None = None,
) -> SynthResult:
    """Load stacks.yml, synthesize every stack and validate the graph."""
    result = SynthResult()
    _synthesize(result, config_path, builder)
    return result


def plan_app(
    config_path: Path | None = None,
    provider: Provider | None = None,
    mock: bool = False,
    mock_state: Path | None = None,
    builder: Builder | None = None,
) -> PlanResult:
    """Synthesize and plan, without deploying anything."""
    result = PlanResult()
    _plan(result, config_path, provider, mock, mock_state, builder)
    return result


def deploy_app(
    config_path: Path | None = None,
    provider: Provider | None = None,
    mock: bool = False,
    mock_state: Path | None = None,
    builder: Builder | None = None,
    max_workers: int | None = None,
    cancel_event: threading.Event | None = None,
    on_progress: ProgressCallback | None = None,
    audit: bool = True,
) -> DeployResult:
    """Synthesize, plan and deploy every stack of the app.

    Args:
        config_path: Explicit stacks.yml; searched upward from cwd if None.
        provider: Pre-built provider (tests); otherwise chosen by ``mock``.
        mock: Use the mock provider instead of CloudFormation.
        mock_state: JSON file the mock provider persists to.
        builder: Function build collaborator.
        max_workers: Concurrent deployments (default from stacks.yml).
        cancel_event: Set it to stop dispatching new stacks.
        on_progress: Called on every stack state transition.
        audit: Append the run to ``.state/audit.ndjson``.

    Returns:
        DeployResult with the plan and report.
    """
    result = DeployResult()
    if not _plan(result, config_path, provider, mock, mock_state, builder):
        return result

    config = result.config
    assert config is not None and result.plan is not None and result.provider is not None

    orchestrator = Orchestrator(
        provider=result.provider,
        retry=retry_policy_for(config),
        max_workers=max_workers or config.deploy.max_workers,
        cancel_event=cancel_event,
        on_progress=on_progress,
    )
    report = orchestrator.run(result.plan, run_id=generate_run_id())
    result.report = report

    if audit and result.config_path is not None:
        writer = AuditWriter(app_root=app_root(result.config_path))
        writer.write_many(audit_entries(config, result.plan, report))
        result.audit_path = writer.path

    return result


def audit_entries(
    config: AppConfig,
    plan: DeploymentPlan,
    report: DeploymentReport,
) -> list[AuditEntry]:
    """One entry per stack plus a run summary."""
    entries = []
    for name, outcome in report.outcomes.items():
        entries.append(
            AuditEntry(
                run_id=report.run_id,
                entry_type="stack",
                app=config.app.name,
                stage=config.app.stage,
                stack=name,
                status=str(outcome.state),
                attempts=outcome.attempts,
                duration_ms=outcome.duration_ms,
                retained_exports=list(outcome.retained_exports),
                error=outcome.error,
                error_kind=outcome.error_kind,
                export_name=outcome.export_name,
                consumer=outcome.consumer,
                context={"blocked_by": outcome.blocked_by} if outcome.blocked_by else {},
            )
        )
    entries.append(
        AuditEntry(
            run_id=report.run_id,
            entry_type="run",
            app=config.app.name,
            stage=config.app.stage,
            status=report.status,
            duration_ms=report.duration_ms,
            retained_exports=sorted(
                name for names in plan.retained.values() for name in names
            ),
            context={
                "order": report.dispatch_order,
                "retiring": sorted(plan.retiring),
                "deployed": report.deployed,
                "failed": report.failed,
                "blocked": report.blocked,
                "cancelled": report.cancelled_count,
            },
        )
    )
    return entries


# ── Shared steps ─────────────────────────────────────────────────────


def _synthesize(
    result: SynthResult,
    config_path: Path | None,
    builder: Builder | None,
) -> bool:
    try:
        if config_path is None:
            config_path = find_app_file()
        if config_path is None:
            result.error = "No stacks.yml found."
            return False

        result.config_path = config_path
        result.config = load_app_config(config_path)
        result.synthesis = synthesize_app(result.config, builder=builder)
        result.graph = build_graph(
            result.synthesis.references.references,
            stacks=result.synthesis.stack_names,
        )
    except ConfigurationError as e:
        result.error = str(e)
        return False
    return True


def _plan(
    result: PlanResult,
    config_path: Path | None,
    provider: Provider | None,
    mock: bool,
    mock_state: Path | None,
    builder: Builder | None,
) -> bool:
    if not _synthesize(result, config_path, builder):
        return False

    config = result.config
    synthesis = result.synthesis
    assert config is not None and synthesis is not None

    if provider is None:
        if mock and mock_state is None and result.config_path is not None:
            mock_state = app_root(result.config_path) / DEFAULT_MOCK_STATE
        provider = make_provider(config, mock=mock, mock_state=mock_state)
    result.provider = provider

    if not provider.is_available():
        result.error = f"Provider '{provider.name}' is not available."
        return False

    try:
        result.plan = plan_deployment(
            synthesis.templates,
            synthesis.references,
            provider,
            retry=retry_policy_for(config),
            retiring=config.retire,
        )
    except (ConfigurationError, ProviderError) as e:
        result.error = str(e)
        return False
    return True
