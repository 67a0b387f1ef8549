"""
Deployment orchestrator — runs a DeploymentPlan against a provider.

A single supervising loop owns every state transition:

    1. PENDING stacks whose dependencies are all DEPLOYED become READY;
       those with a FAILED or BLOCKED dependency become BLOCKED.
    2. READY stacks are dispatched (exactly once) to a thread pool.
    3. The loop waits for the first deployment to finish, records it,
       and starts over.

Worker threads only call the provider and return a receipt; they never
touch shared state. Independent stacks therefore deploy concurrently,
while a stack is never dispatched before all of its dependencies are
DEPLOYED.

Cancellation: once the cancel event is set, nothing new is dispatched.
Deployments already in flight run to completion; everything that was
never dispatched ends up CANCELLED.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable

from stackrecon.adapters.base import Provider
from stackrecon.core.engine.planner import DeploymentPlan
from stackrecon.core.errors import ERROR_KIND_TRANSIENT, ProviderRejection
from stackrecon.core.models.receipt import DeployReceipt
from stackrecon.core.models.stack import StackDeployment, StackState
from stackrecon.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, StackState], None]


@dataclass
class StackOutcome:
    """Terminal result for one stack."""

    name: str
    state: StackState = StackState.PENDING
    attempts: int = 0
    duration_ms: int = 0
    error: str | None = None           # user-facing message
    detail: str | None = None          # raw provider message
    error_kind: str | None = None
    export_name: str | None = None
    consumer: str | None = None
    blocked_by: list[str] = field(default_factory=list)
    retained_exports: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data: dict = {"state": str(self.state), "attempts": self.attempts}
        if self.duration_ms:
            data["duration_ms"] = self.duration_ms
        if self.retained_exports:
            data["retained_exports"] = list(self.retained_exports)
        if self.blocked_by:
            data["blocked_by"] = list(self.blocked_by)
        if self.error:
            data["error"] = self.error
            data["detail"] = self.detail
            data["error_kind"] = self.error_kind
            if self.export_name:
                data["export_name"] = self.export_name
            if self.consumer:
                data["consumer"] = self.consumer
        return data


@dataclass
class DeploymentReport:
    """Result of running a plan."""

    run_id: str = ""
    outcomes: dict[str, StackOutcome] = field(default_factory=dict)
    dispatch_order: list[str] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: int = 0

    def _count(self, state: StackState) -> int:
        return sum(1 for o in self.outcomes.values() if o.state == state)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def deployed(self) -> int:
        return self._count(StackState.DEPLOYED)

    @property
    def failed(self) -> int:
        return self._count(StackState.FAILED)

    @property
    def blocked(self) -> int:
        return self._count(StackState.BLOCKED)

    @property
    def cancelled_count(self) -> int:
        return self._count(StackState.CANCELLED)

    @property
    def all_ok(self) -> bool:
        return self.deployed == self.total

    @property
    def status(self) -> str:
        if self.all_ok:
            return "ok"
        if self.cancelled and self.failed == 0:
            return "cancelled"
        if self.deployed > 0:
            return "partial"
        return "failed"

    def failures(self) -> list[StackOutcome]:
        return [o for o in self.outcomes.values() if o.state == StackState.FAILED]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "total": self.total,
            "deployed": self.deployed,
            "failed": self.failed,
            "blocked": self.blocked,
            "cancelled": self.cancelled_count,
            "duration_ms": self.duration_ms,
            "dispatch_order": list(self.dispatch_order),
            "stacks": {name: o.to_dict() for name, o in self.outcomes.items()},
        }


def generate_run_id() -> str:
    """Generate a unique deploy run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"run-{now}-{uuid.uuid4().hex[:6]}"


class Orchestrator:
    """Deploys the stacks of a plan in dependency order."""

    def __init__(
        self,
        provider: Provider,
        retry: RetryPolicy | None = None,
        max_workers: int = 4,
        cancel_event: threading.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._provider = provider
        self._retry = retry or RetryPolicy()
        self._max_workers = max_workers
        self._cancel = cancel_event or threading.Event()
        self._on_progress = on_progress

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def cancel(self) -> None:
        """Stop dispatching; in-flight deployments finish."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested, no new stacks will be dispatched")
        self._cancel.set()

    def run(self, plan: DeploymentPlan, run_id: str | None = None) -> DeploymentReport:
        report = DeploymentReport(run_id=run_id or generate_run_id())
        stacks = {name: plan.stacks[name] for name in plan.order}
        for name, stack in stacks.items():
            stack.state = StackState.PENDING
            report.outcomes[name] = StackOutcome(
                name=name, retained_exports=list(stack.retained_exports)
            )

        start = time.monotonic()
        in_flight: dict[Future, str] = {}

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="deploy"
        ) as pool:
            while True:
                self._advance(stacks, report)

                for name, stack in stacks.items():
                    if self._cancel.is_set():
                        break
                    if stack.state == StackState.READY:
                        self._transition(stack, StackState.DEPLOYING)
                        report.dispatch_order.append(name)
                        logger.info("Deploying %s", name)
                        in_flight[pool.submit(self._deploy_one, stack)] = name

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    name = in_flight.pop(future)
                    receipt, attempts = future.result()
                    self._record(stacks[name], report.outcomes[name], receipt, attempts)

        for name, stack in stacks.items():
            if not stack.state.terminal:
                self._transition(stack, StackState.CANCELLED)
                report.outcomes[name].state = StackState.CANCELLED

        report.cancelled = self._cancel.is_set()
        report.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Run %s %s: %d deployed, %d failed, %d blocked, %d cancelled",
            report.run_id,
            report.status,
            report.deployed,
            report.failed,
            report.blocked,
            report.cancelled_count,
        )
        return report

    # ── Supervising loop helpers ────────────────────────────────

    def _advance(self, stacks: dict[str, StackDeployment], report: DeploymentReport) -> None:
        """Promote PENDING stacks to READY or BLOCKED until nothing changes."""
        changed = True
        while changed:
            changed = False
            for name, stack in stacks.items():
                if stack.state != StackState.PENDING:
                    continue
                deps = [stacks[d] for d in sorted(stack.dependencies) if d in stacks]
                bad = [d.name for d in deps if d.state in (StackState.FAILED, StackState.BLOCKED)]
                if bad:
                    self._transition(stack, StackState.BLOCKED)
                    outcome = report.outcomes[name]
                    outcome.state = StackState.BLOCKED
                    outcome.blocked_by = bad
                    logger.warning("%s blocked by %s", name, ", ".join(bad))
                    changed = True
                elif all(d.state == StackState.DEPLOYED for d in deps):
                    self._transition(stack, StackState.READY)

    def _deploy_one(self, stack: StackDeployment) -> tuple[DeployReceipt, int]:
        """Runs on a worker thread. Never raises."""
        template = stack.template

        def attempt() -> DeployReceipt:
            try:
                return self._provider.deploy(stack.name, template)
            except Exception as e:
                # Providers should never raise; treat it as a rejection
                logger.error("Provider %s raised deploying %s: %s", self._provider.name, stack.name, e)
                return DeployReceipt.failure(
                    provider=self._provider.name,
                    stack=stack.name,
                    error=f"Unexpected error: {e}",
                    error_kind="rejected",
                )

        return self._retry.deploy(f"deploy {stack.name}", attempt)

    def _record(
        self,
        stack: StackDeployment,
        outcome: StackOutcome,
        receipt: DeployReceipt,
        attempts: int,
    ) -> None:
        outcome.attempts = attempts
        outcome.duration_ms = receipt.duration_ms

        if receipt.ok:
            self._transition(stack, StackState.DEPLOYED)
            outcome.state = StackState.DEPLOYED
            logger.info("✓ %s deployed (%d attempt%s)", stack.name, attempts, "" if attempts == 1 else "s")
            return

        message = receipt.error or "deployment failed"
        if receipt.error_kind == ERROR_KIND_TRANSIENT:
            message = f"{message} (gave up after {attempts} attempts)"
        rejection = ProviderRejection(
            stack.name,
            message,
            kind=receipt.error_kind or "rejected",
            export_name=receipt.export_name,
            consumer=receipt.consumer,
        )

        self._transition(stack, StackState.FAILED)
        outcome.state = StackState.FAILED
        outcome.error = str(rejection)
        outcome.detail = receipt.error
        outcome.error_kind = rejection.kind
        outcome.export_name = rejection.export_name
        outcome.consumer = rejection.consumer
        logger.error("✗ %s", rejection)

    def _transition(self, stack: StackDeployment, state: StackState) -> None:
        logger.debug("%s: %s → %s", stack.name, stack.state, state)
        stack.state = state
        if self._on_progress is not None:
            self._on_progress(stack.name, state)
