"""
Tests for the CLI — exercised through click's CliRunner.
"""

import json

import pytest
from click.testing import CliRunner

from stackrecon import __version__
from stackrecon.main import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _drop_import(stacks_yml):
    lines = [
        line
        for line in stacks_yml.read_text().splitlines(keepends=True)
        if "environment:" not in line and "TABLE_NAME" not in line
    ]
    stacks_yml.write_text("".join(lines))


class TestGlobal:
    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("synth", "graph", "plan", "deploy", "history"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_config(self, runner, tmp_path):
        result = runner.invoke(cli, ["-c", str(tmp_path / "nope.yml"), "synth"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestSynth:
    def test_text(self, runner, stacks_yml):
        result = runner.invoke(cli, ["-c", str(stacks_yml), "synth"])
        assert result.exit_code == 0
        assert "StackA: 1 resources, 1 outputs, 1 exports" in result.output
        assert "StackB → StackA.TableName" in result.output

    def test_json(self, runner, stacks_yml):
        result = runner.invoke(cli, ["-c", str(stacks_yml), "synth", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["references"] == [{"consumer": "StackB", "producer": "StackA", "output": "TableName"}]

    def test_out_dir(self, runner, stacks_yml, tmp_path):
        out = tmp_path / "cdk.out"
        result = runner.invoke(cli, ["-c", str(stacks_yml), "synth", "--out", str(out)])
        assert result.exit_code == 0
        template = json.loads((out / "StackA.template.json").read_text())
        assert template["Outputs"]["TableName"]["Export"] == {"Name": "StackA:TableName"}


class TestGraph:
    def test_waves(self, runner, stacks_yml):
        result = runner.invoke(cli, ["-c", str(stacks_yml), "graph"])
        assert result.exit_code == 0
        assert "Wave 1: StackA" in result.output
        assert "Wave 2: StackB" in result.output
        assert "StackB → StackA" in result.output

    def test_json(self, runner, stacks_yml):
        result = runner.invoke(cli, ["-c", str(stacks_yml), "graph", "--json"])
        assert json.loads(result.output)["order"] == ["StackA", "StackB"]


class TestPlanAndDeploy:
    def test_plan_new_app(self, runner, stacks_yml):
        result = runner.invoke(cli, ["-c", str(stacks_yml), "plan", "--mock"])
        assert result.exit_code == 0
        assert "StackA [new]" in result.output
        assert "StackB [new] (after StackA)" in result.output
        assert "+ export StackA:TableName" in result.output

    def test_two_run_convergence(self, runner, stacks_yml):
        args = ["-c", str(stacks_yml)]

        first = runner.invoke(cli, [*args, "deploy", "--mock"])
        assert first.exit_code == 0, first.output
        assert "Result: 2/2 deployed (ok)" in first.output

        _drop_import(stacks_yml)
        plan = runner.invoke(cli, [*args, "plan", "--mock"])
        assert "~ export StackA:TableName retained (imported by StackB)" in plan.output

        second = runner.invoke(cli, [*args, "deploy", "--mock"])
        assert second.exit_code == 0, second.output
        assert "~ StackA kept StackA:TableName" in second.output

        plan = runner.invoke(cli, [*args, "plan", "--mock"])
        assert "- export StackA:TableName" in plan.output

        third = runner.invoke(cli, [*args, "deploy", "--mock", "--json"])
        assert third.exit_code == 0
        data = json.loads(third.output)
        assert data["report"]["status"] == "ok"
        assert data["plan"]["stacks"]["StackA"]["retained_exports"] == []

    def test_deploy_no_audit(self, runner, stacks_yml):
        result = runner.invoke(cli, ["-c", str(stacks_yml), "deploy", "--mock", "--no-audit"])
        assert result.exit_code == 0
        assert not (stacks_yml.parent / ".state" / "audit.ndjson").exists()

    def test_deploy_cycle_fails(self, runner, tmp_path):
        path = tmp_path / "stacks.yml"
        path.write_text(
            "app: {name: demo}\n"
            "stacks:\n"
            "  - name: A\n"
            "    outputs: {X: {value: {import: B.Y}}}\n"
            "  - name: B\n"
            "    outputs: {Y: {value: {import: A.X}}}\n"
        )
        result = runner.invoke(cli, ["-c", str(path), "deploy", "--mock"])
        assert result.exit_code == 1
        assert "Cyclic stack dependency" in result.output


class TestHistory:
    def test_empty(self, runner, stacks_yml):
        result = runner.invoke(cli, ["-c", str(stacks_yml), "history"])
        assert result.exit_code == 0
        assert "No deploy runs recorded yet." in result.output

    def test_after_deploy(self, runner, stacks_yml):
        runner.invoke(cli, ["-c", str(stacks_yml), "deploy", "--mock"])
        result = runner.invoke(cli, ["-c", str(stacks_yml), "history", "--json"])
        assert result.exit_code == 0
        entries = json.loads(result.output)
        assert [e["entry_type"] for e in entries] == ["stack", "stack", "run"]
        assert entries[-1]["status"] == "ok"
