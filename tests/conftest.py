"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from stackrecon.adapters.mock import MockProvider
from stackrecon.core.construct.app import App
from stackrecon.core.construct.function import Function, FunctionProps
from stackrecon.core.engine.orchestrator import Orchestrator
from stackrecon.core.engine.planner import plan_deployment
from stackrecon.core.reliability.retry import RetryPolicy

DEMO_STACKS_YML = textwrap.dedent("""\
    app:
      name: demo
      stage: dev
    stacks:
      - name: StackA
        resources:
          MyTable:
            type: AWS::DynamoDB::Table
            properties:
              BillingMode: PAY_PER_REQUEST
        outputs:
          TableName:
            value: {Ref: MyTable}
      - name: StackB
        functions:
          - id: Handler
            entry: src/lambda.js
            handler: main
            environment:
              TABLE_NAME: {import: StackA.TableName}
    deploy:
      max_workers: 2
      max_attempts: 2
      base_delay: 0
      max_delay: 0
""")


@pytest.fixture
def no_sleep() -> RetryPolicy:
    """Retry policy that never actually waits."""
    return RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=2.0, sleep=lambda _s: None)


@pytest.fixture
def provider() -> MockProvider:
    return MockProvider(prefix="dev-demo")


@pytest.fixture
def demo_app():
    """Factory for the two-stack demo app: StackB reads StackA's table name."""

    def _build(consumer_imports: bool = True):
        app = App("demo", "dev")
        a = app.add_stack("StackA")
        a.add_resource("MyTable", "AWS::DynamoDB::Table", {"BillingMode": "PAY_PER_REQUEST"})
        a.add_output("TableName", {"Ref": "MyTable"})

        b = app.add_stack("StackB")
        env = {"TABLE_NAME": b.import_value(a, "TableName")} if consumer_imports else {}
        Function(b, "Handler", FunctionProps(entry="src/lambda.js", handler="main", environment=env))
        return app.synth()

    return _build


@pytest.fixture
def run_deploy(no_sleep: RetryPolicy):
    """Plan + deploy a synthesis result against a provider, return (plan, report)."""

    def _run(synthesis, provider, retiring=(), max_workers: int = 4):
        plan = plan_deployment(
            synthesis.templates,
            synthesis.references,
            provider,
            retry=no_sleep,
            retiring=retiring,
        )
        report = Orchestrator(provider, retry=no_sleep, max_workers=max_workers).run(plan)
        return plan, report

    return _run


@pytest.fixture
def stacks_yml(tmp_path: Path) -> Path:
    """The demo app written to tmp_path/stacks.yml."""
    path = tmp_path / "stacks.yml"
    path.write_text(DEMO_STACKS_YML)
    return path
