"""
End-to-end reconciliation scenarios against the mock provider.

The demo app: StackA owns a table and outputs its name; StackB's
function reads it through an import. Removing the import must not make
StackA's deploy fail, and the export must disappear one run later.
"""

from stackrecon.adapters.mock import MockProvider
from stackrecon.core.construct.app import App
from stackrecon.core.models.stack import StackState
from stackrecon.core.models.template import IMPORT_VALUE

EXPORT = "StackA:TableName"


class TestCanonicalScenario:
    def test_initial_deploy(self, demo_app, provider, run_deploy):
        plan, report = run_deploy(demo_app(), provider)
        assert report.all_ok
        assert report.dispatch_order == ["StackA", "StackB"]
        value = provider.exported_value(EXPORT)
        assert value.startswith("dev-demo-StackA-MyTable-")

    def test_removing_import_without_reconciliation_fails(self, demo_app, provider, run_deploy):
        run_deploy(demo_app(), provider)
        desired = demo_app(consumer_imports=False).templates["StackA"]

        receipt = provider.deploy("StackA", desired)

        assert receipt.failed
        assert receipt.error_kind == "export_in_use"
        assert receipt.export_name == EXPORT
        assert receipt.consumer == "StackB"

    def test_two_run_convergence(self, demo_app, provider, run_deploy):
        run_deploy(demo_app(), provider)
        original = provider.exported_value(EXPORT)

        # Run 1: StackB no longer imports, but is still deployed with the import
        plan, report = run_deploy(demo_app(consumer_imports=False), provider)
        assert report.all_ok
        assert plan.retained == {"StackA": [EXPORT]}
        assert plan.consumer_sets[("StackA", EXPORT)] == frozenset({"StackB"})
        assert EXPORT in plan.stacks["StackA"].template.exports()
        assert plan.stacks["StackB"].template.imports() == set()
        assert provider.exported_value(EXPORT) == original

        # Run 2: nobody imports it any more
        plan, report = run_deploy(demo_app(consumer_imports=False), provider)
        assert report.all_ok
        assert plan.retained == {}
        assert plan.diffs["StackA"].removed_names == [EXPORT]
        assert EXPORT not in plan.stacks["StackA"].template.exports()
        assert provider.exported_value(EXPORT) is None

    def test_idempotent_after_convergence(self, demo_app, provider, run_deploy):
        run_deploy(demo_app(), provider)
        run_deploy(demo_app(consumer_imports=False), provider)
        run_deploy(demo_app(consumer_imports=False), provider)

        plan, report = run_deploy(demo_app(consumer_imports=False), provider)
        assert report.all_ok
        for stack in plan.stacks.values():
            assert stack.patched is None
            assert stack.template.canonical_json() == stack.desired.canonical_json()
            assert stack.deployed.exports() == stack.desired.exports()

    def test_no_spurious_injection(self, demo_app, provider, run_deploy):
        run_deploy(demo_app(), provider)
        plan, _report = run_deploy(demo_app(), provider)
        assert plan.retained == {}
        assert all(s.patched is None for s in plan.stacks.values())

    def test_consumer_ordering_after_import_removed(self, demo_app, provider, run_deploy):
        run_deploy(demo_app(), provider)
        plan, _report = run_deploy(demo_app(consumer_imports=False), provider)
        # Without the reference there is no ordering edge left
        assert plan.stacks["StackB"].dependencies == frozenset()
        assert plan.graph.levels() == [["StackA", "StackB"]]

    def test_failed_run_one_keeps_export_next_time(self, demo_app, provider, run_deploy):
        run_deploy(demo_app(), provider)
        provider.set_failure("StackB", "Resource handler returned message: boom", times=1)

        _plan, report = run_deploy(demo_app(consumer_imports=False), provider)
        assert report.outcomes["StackB"].state == StackState.FAILED

        # StackB still carries its import, so the export must stay
        plan, report = run_deploy(demo_app(consumer_imports=False), provider)
        assert report.all_ok
        assert plan.retained == {"StackA": [EXPORT]}


def _shared_app(importers: list[str], declared: list[str]):
    """StackA outputs TableName; ``importers`` read it, all of ``declared`` exist."""
    app = App("demo")
    a = app.add_stack("StackA")
    a.add_resource("MyTable", "AWS::DynamoDB::Table")
    a.add_output("TableName", {"Ref": "MyTable"})
    for name in declared:
        stack = app.add_stack(name)
        props = {"Table": stack.import_value(a, "TableName")} if name in importers else {}
        stack.add_resource("Res", "Custom::Thing", props)
    return app.synth()


class TestMultiConsumerScenario:
    def test_surviving_consumer_keeps_export(self, provider, run_deploy):
        run_deploy(_shared_app(["StackB", "StackC"], ["StackB", "StackC"]), provider)

        # StackB drops its import, StackC is retired in the same run
        plan, report = run_deploy(_shared_app([], ["StackB"]), provider, retiring=["StackC"])

        assert plan.consumer_sets[("StackA", EXPORT)] == frozenset({"StackB", "StackC"})
        assert plan.retained == {"StackA": [EXPORT]}
        assert report.all_ok

    def test_only_retiring_consumers_drop_export(self, provider, run_deploy, no_sleep):
        from stackrecon.core.engine.planner import plan_deployment

        run_deploy(_shared_app(["StackC"], ["StackC"]), provider)
        synthesis = _shared_app([], [])

        plan = plan_deployment(
            synthesis.templates,
            synthesis.references,
            provider,
            retry=no_sleep,
            retiring=["StackC"],
        )
        assert plan.retained == {}
        assert EXPORT not in plan.stacks["StackA"].template.exports()

    def test_remaining_importer_means_no_removal(self, provider, run_deploy):
        run_deploy(_shared_app(["StackB", "StackC"], ["StackB", "StackC"]), provider)
        plan, report = run_deploy(_shared_app(["StackC"], ["StackB", "StackC"]), provider)

        assert report.all_ok
        assert plan.diffs["StackA"].removed == ()
        assert plan.retained == {}
        assert plan.stacks["StackC"].template.imports() == {EXPORT}


class TestPersistentMock:
    def test_state_survives_new_provider(self, tmp_path, demo_app, run_deploy):
        state = tmp_path / "mock.json"
        run_deploy(demo_app(), MockProvider(prefix="dev-demo", state_path=state))

        second = MockProvider(prefix="dev-demo", state_path=state)
        plan, report = run_deploy(demo_app(consumer_imports=False), second)
        assert report.all_ok
        assert plan.retained == {"StackA": [EXPORT]}

        deployed_b = second.describe_deployed_template("StackB")
        assert IMPORT_VALUE not in deployed_b.canonical_json()
