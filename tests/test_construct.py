"""
Tests for synthesis — App, StackBuilder, Function and stacks.yml synthesis.
"""

import pytest

from stackrecon.core.config.loader import parse_app_config
from stackrecon.core.construct.app import App, synthesize_app
from stackrecon.core.construct.builder import BuildArtifact, Builder, PassthroughBuilder
from stackrecon.core.construct.context import HandlerProps, SynthesisSettings
from stackrecon.core.construct.function import Function, FunctionProps
from stackrecon.core.errors import ConfigurationError, UnknownOutputError
from stackrecon.core.models.export import Reference
from stackrecon.core.models.stack import Synthesizable
from stackrecon.core.models.template import IMPORT_VALUE

# ── StackBuilder ─────────────────────────────────────────────────────


class TestStackBuilder:
    def test_import_value_records_reference_and_exports(self):
        app = App("demo")
        a = app.add_stack("StackA")
        a.add_output("TableName", {"Ref": "MyTable"})
        b = app.add_stack("StackB")

        value = b.import_value(a, "TableName")

        assert value == {IMPORT_VALUE: "StackA:TableName"}
        assert a.get_output("TableName").export_name == "StackA:TableName"
        assert Reference("StackB", "StackA", "TableName") in app.context.references

    def test_explicit_export_name_kept(self):
        app = App("demo")
        a = app.add_stack("StackA")
        a.add_output("TableName", {"Ref": "MyTable"}, export_name="shared-table")
        b = app.add_stack("StackB")
        assert b.import_value(a, "TableName") == {IMPORT_VALUE: "shared-table"}

    def test_self_import_returns_raw_value(self):
        app = App("demo")
        a = app.add_stack("StackA")
        a.add_output("TableName", {"Ref": "MyTable"})

        assert a.import_value(a, "TableName") == {"Ref": "MyTable"}
        assert len(app.context.references) == 0
        assert a.get_output("TableName").export_name is None

    def test_unknown_output(self):
        app = App("demo")
        a = app.add_stack("StackA")
        b = app.add_stack("StackB")
        with pytest.raises(UnknownOutputError):
            b.import_value(a, "Missing")

    def test_duplicates_rejected(self):
        app = App("demo")
        a = app.add_stack("StackA")
        a.add_resource("MyTable", "AWS::DynamoDB::Table")
        with pytest.raises(ConfigurationError):
            a.add_resource("MyTable", "AWS::DynamoDB::Table")
        a.add_output("X", 1)
        with pytest.raises(ConfigurationError):
            a.add_output("X", 2)
        with pytest.raises(ConfigurationError):
            app.add_stack("StackA")

    def test_synth_is_a_snapshot(self):
        app = App("demo")
        a = app.add_stack("StackA")
        a.add_output("X", "one")
        template = a.synth()
        a.set_output_value("X", "two")
        assert template.outputs["X"].value == "one"

    def test_stack_builder_is_synthesizable(self):
        app = App("demo")
        assert isinstance(app.add_stack("StackA"), Synthesizable)

    def test_apps_do_not_share_state(self):
        first, second = App("one"), App("two")
        a1 = first.add_stack("StackA")
        a1.add_output("X", 1)
        first.add_stack("StackB").import_value(a1, "X")
        assert len(first.context.references) == 1
        assert len(second.context.references) == 0


# ── Function ─────────────────────────────────────────────────────────


class _RecordingBuilder(Builder):
    def __init__(self):
        self.calls = []

    def build(self, entry, src_path, handler, bundle, build_dir):
        self.calls.append((entry, src_path, handler, bundle, build_dir))
        return BuildArtifact(zip_path=f"{build_dir}/bundle.zip", handler=f"index.{handler}")


class TestFunction:
    def test_requires_entry(self):
        stack = App("demo").add_stack("StackB")
        with pytest.raises(ConfigurationError, match="No entry point defined for the Handler Lambda function"):
            Function(stack, "Handler", FunctionProps())

    def test_rejects_non_node_runtime(self):
        stack = App("demo").add_stack("StackB")
        with pytest.raises(ConfigurationError, match="does not support python3.8"):
            Function(stack, "Handler", FunctionProps(entry="src/lambda.js", runtime="python3.8"))

    def test_deployed_mode_uses_builder(self):
        builder = _RecordingBuilder()
        app = App("demo", settings=SynthesisSettings(build_dir=".out"), builder=builder)
        stack = app.add_stack("StackB")

        fn = Function(stack, "Handler", FunctionProps(entry="src/lambda.js", handler="main", bundle=False))

        assert builder.calls == [("src/lambda.js", ".", "main", False, ".out")]
        props = fn.resource.properties
        assert props["Handler"] == "index.main"
        assert props["Runtime"] == "nodejs12.x"
        assert props["Code"]["S3Key"].startswith("assets/Handler/")
        assert fn.resource.metadata["stackrecon:asset"] == ".out/bundle.zip"

    def test_local_mode_deploys_stub(self):
        settings = SynthesisSettings(local=True, debug_endpoint="wss://debug.example")
        stack = App("demo", settings=settings).add_stack("StackB")

        fn = Function(stack, "Handler", FunctionProps(entry="src/lambda.js", handler="main"))

        props = fn.resource.properties
        assert props["Handler"] == "index.main"
        variables = props["Environment"]["Variables"]
        assert variables["SST_DEBUG_SRC_ENTRY"] == "src/lambda.js"
        assert variables["SST_DEBUG_SRC_HANDLER"] == "main"
        assert variables["SST_DEBUG_SRC_PATH"] == "."
        assert variables["SST_DEBUG_ENDPOINT"] == "wss://debug.example"
        assert fn.resource.metadata["stackrecon:asset"] == "stub.zip"

    def test_handler_registered_once(self):
        app = App("demo")
        stack = app.add_stack("StackB")
        Function(stack, "One", FunctionProps(entry="src/lambda.js", handler="main"))
        Function(stack, "Two", FunctionProps(entry="src/lambda.js", handler="main"))
        assert app.synth().handlers == [HandlerProps(src_path=".", entry="src/lambda.js", handler="main")]

    def test_passthrough_builder_names(self):
        artifact = PassthroughBuilder().build("src/api/get.js", ".", "main", True, ".build")
        assert artifact.zip_path == ".build/src-api-get.zip"
        assert artifact.handler == "get.main"


# ── stacks.yml synthesis ─────────────────────────────────────────────


class TestSynthesizeApp:
    def test_import_marker_becomes_import_value(self, stacks_yml):
        config = parse_app_config(stacks_yml.read_text())
        result = synthesize_app(config)

        a = result.templates["StackA"]
        b = result.templates["StackB"]
        assert a.outputs["TableName"].export_name == "StackA:TableName"
        env = b.resources["Handler"].properties["Environment"]["Variables"]
        assert env["TABLE_NAME"] == {IMPORT_VALUE: "StackA:TableName"}
        assert b.imports() == {"StackA:TableName"}
        assert result.references.references == [Reference("StackB", "StackA", "TableName")]

    def test_forward_reference(self):
        config = parse_app_config(
            """
app: {name: demo}
stacks:
  - name: Consumer
    outputs:
      Copy: {value: {import: Producer.Value}}
  - name: Producer
    outputs:
      Value: {value: hello}
"""
        )
        result = synthesize_app(config)
        assert result.templates["Consumer"].outputs["Copy"].value == {IMPORT_VALUE: "Producer:Value"}

    def test_same_stack_marker_inlines_value(self):
        config = parse_app_config(
            """
app: {name: demo}
stacks:
  - name: StackA
    resources:
      Queue:
        type: AWS::SQS::Queue
        properties:
          QueueName: {import: StackA.Name}
    outputs:
      Name: {value: jobs}
"""
        )
        result = synthesize_app(config)
        assert result.templates["StackA"].resources["Queue"].properties["QueueName"] == "jobs"
        assert len(result.references) == 0

    def test_self_referencing_output_rejected(self):
        config = parse_app_config(
            """
app: {name: demo}
stacks:
  - name: StackA
    outputs:
      Loop: {value: {import: StackA.Loop}}
"""
        )
        with pytest.raises(ConfigurationError, match="refers to itself"):
            synthesize_app(config)

    def test_unknown_stack(self):
        config = parse_app_config(
            """
app: {name: demo}
stacks:
  - name: StackA
    outputs:
      X: {value: {import: Nope.Y}}
"""
        )
        with pytest.raises(UnknownOutputError):
            synthesize_app(config)

    def test_malformed_marker(self):
        config = parse_app_config(
            """
app: {name: demo}
stacks:
  - name: StackA
    outputs:
      X: {value: {import: no-dot}}
"""
        )
        with pytest.raises(ConfigurationError, match="Stack.Output"):
            synthesize_app(config)

    def test_asset_bucket_defaults_to_prefix(self, stacks_yml):
        result = synthesize_app(parse_app_config(stacks_yml.read_text()))
        code = result.templates["StackB"].resources["Handler"].properties["Code"]
        assert code["S3Bucket"] == "dev-demo-assets"

    def test_to_dict(self, stacks_yml):
        d = synthesize_app(parse_app_config(stacks_yml.read_text())).to_dict()
        assert set(d["stacks"]) == {"StackA", "StackB"}
        assert d["references"] == [{"consumer": "StackB", "producer": "StackA", "output": "TableName"}]
        assert d["handlers"][0]["entry"] == "src/lambda.js"
