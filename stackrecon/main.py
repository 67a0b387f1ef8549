"""
stackrecon — CLI entrypoint.

Usage:
    python -m stackrecon.main --help
    stackrecon synth
    stackrecon plan --mock
    stackrecon deploy --mock --max-workers 8
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from stackrecon import __version__
from stackrecon.core.models.stack import StackState
from stackrecon.core.observability.logging_config import cli_level, setup_logging_from_env

_STATE_STYLE = {
    StackState.DEPLOYED: ("✓", "green"),
    StackState.FAILED: ("✗", "red"),
    StackState.BLOCKED: ("⊘", "yellow"),
    StackState.CANCELLED: ("⊘", "white"),
}

_STATUS_COLOR = {"ok": "green", "partial": "yellow", "failed": "red", "cancelled": "yellow"}


@click.group()
@click.version_option(version=__version__, prog_name="stackrecon")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to stacks.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """stackrecon — deploy interdependent stacks without export-in-use failures."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    setup_logging_from_env(cli_level(verbose=verbose, quiet=quiet, debug=debug))


# ── synth ────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option(
    "--out",
    "out_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Write one <Stack>.template.json per stack into this directory.",
)
@click.pass_context
def synth(ctx: click.Context, as_json: bool, out_dir: str | None) -> None:
    """Synthesize every stack and show the cross-stack references."""
    from stackrecon.core.use_cases.deploy import synth_app

    result = synth_app(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    synthesis = result.synthesis
    assert synthesis is not None and result.config is not None

    click.secho(f"\n🧱 {result.config.app.name} ({result.config.app.stage})", fg="cyan", bold=True)
    for name, template in synthesis.templates.items():
        exports = sorted(template.exports())
        click.echo(
            f"   {name}: {len(template.resources)} resources, "
            f"{len(template.outputs)} outputs, {len(exports)} exports"
        )
        if ctx.obj.get("verbose"):
            for export_name in exports:
                click.echo(f"     │ export {export_name}")

    refs = synthesis.references.references
    if refs:
        click.echo()
        click.secho("   References:", bold=True)
        for ref in refs:
            click.echo(f"     {ref.consumer} → {ref.producer}.{ref.output_key}")

    if out_dir:
        target = Path(out_dir)
        target.mkdir(parents=True, exist_ok=True)
        for name, template in synthesis.templates.items():
            (target / f"{name}.template.json").write_text(
                json.dumps(template.to_cfn(), indent=2, default=str) + "\n", encoding="utf-8"
            )
        click.echo()
        click.echo(f"   Templates written to {target}")
    click.echo()


# ── graph ────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def graph(ctx: click.Context, as_json: bool) -> None:
    """Show the deployment order derived from cross-stack references."""
    from stackrecon.core.use_cases.deploy import synth_app

    result = synth_app(config_path=ctx.obj.get("config_path"))

    if as_json:
        payload = {"error": result.error} if result.error else (result.graph.to_dict() if result.graph else {})
        click.echo(json.dumps(payload, indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    dep_graph = result.graph
    assert dep_graph is not None

    click.secho("\n🔗 Deployment order", fg="cyan", bold=True)
    for index, wave in enumerate(dep_graph.levels(), start=1):
        click.echo(f"   Wave {index}: {', '.join(wave)}")
    edges = dep_graph.edge_list()
    if edges:
        click.echo()
        for edge in edges:
            click.echo(f"   {edge.dependent} → {edge.dependency}")
    click.echo()


# ── plan ─────────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use the mock provider (no real deployment).")
@click.option(
    "--mock-state",
    type=click.Path(dir_okay=False),
    default=None,
    help="JSON file the mock provider persists to (default: .state/mock-provider.json).",
)
@click.pass_context
def plan(ctx: click.Context, as_json: bool, mock: bool, mock_state: str | None) -> None:
    """Show what a deploy would do, including retained exports."""
    from stackrecon.core.use_cases.deploy import plan_app

    result = plan_app(
        config_path=ctx.obj.get("config_path"),
        mock=mock,
        mock_state=Path(mock_state) if mock_state else None,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    deployment = result.plan
    assert deployment is not None and result.config is not None

    mode_label = "[mock] " if mock else ""
    click.secho(f"\n📋 {mode_label}Plan — {result.config.app.name}", fg="cyan", bold=True)
    for name in deployment.order:
        stack = deployment.stacks[name]
        diff = deployment.diffs[name]
        label = "new" if stack.is_new else "update"
        deps = f" (after {', '.join(sorted(stack.dependencies))})" if stack.dependencies else ""
        click.echo(f"   {name} [{label}]{deps}")
        for export in diff.added:
            click.secho(f"     + export {export.name}", fg="green")
        for export in diff.removed:
            if export.name in stack.retained_exports:
                importers = ", ".join(sorted(export.consumers))
                click.secho(
                    f"     ~ export {export.name} retained (imported by {importers})",
                    fg="yellow",
                )
            else:
                click.secho(f"     - export {export.name}", fg="red")

    if deployment.retiring:
        click.echo()
        click.echo(f"   Retiring: {', '.join(sorted(deployment.retiring))}")
    click.echo()


# ── deploy ───────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use the mock provider (no real deployment).")
@click.option(
    "--mock-state",
    type=click.Path(dir_okay=False),
    default=None,
    help="JSON file the mock provider persists to (default: .state/mock-provider.json).",
)
@click.option("--max-workers", type=click.IntRange(min=1), default=None, help="Concurrent deployments.")
@click.option("--no-audit", is_flag=True, help="Don't append this run to the audit ledger.")
@click.pass_context
def deploy(
    ctx: click.Context,
    as_json: bool,
    mock: bool,
    mock_state: str | None,
    max_workers: int | None,
    no_audit: bool,
) -> None:
    """Deploy every stack in dependency order.

    Examples:

        stackrecon deploy --mock

        stackrecon deploy --max-workers 8

    Ctrl-C stops dispatching new stacks; deployments already running finish.
    """
    from stackrecon.core.use_cases.deploy import deploy_app

    cancel = threading.Event()

    def _progress(name: str, state: StackState) -> None:
        if as_json or state not in _STATE_STYLE:
            return
        marker, color = _STATE_STYLE[state]
        click.secho(f"   {marker} {name} {state}", fg=color)

    with _cancel_on_interrupt(cancel):
        result = deploy_app(
            config_path=ctx.obj.get("config_path"),
            mock=mock,
            mock_state=Path(mock_state) if mock_state else None,
            max_workers=max_workers,
            cancel_event=cancel,
            on_progress=_progress,
            audit=not no_audit,
        )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        if result.error or (result.report and not result.report.all_ok):
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None

    failures = report.failures()
    if failures:
        click.echo()
        for outcome in failures:
            click.secho(f"   ✗ {outcome.error}", fg="red")
            if outcome.consumer and outcome.export_name:
                click.echo(
                    f"     │ {outcome.consumer} still imports {outcome.export_name}; "
                    f"deploy {outcome.consumer} first or keep the export."
                )

    retained = result.plan.retained if result.plan else {}
    if retained:
        click.echo()
        for name, exports in retained.items():
            click.secho(f"   ~ {name} kept {', '.join(exports)}", fg="yellow")

    click.echo()
    click.secho(
        f"   Result: {report.deployed}/{report.total} deployed ({report.status})",
        fg=_STATUS_COLOR.get(report.status, "white"),
        bold=True,
    )
    click.echo()

    if not report.all_ok:
        sys.exit(1)


@contextmanager
def _cancel_on_interrupt(event: threading.Event) -> Iterator[None]:
    """Turn SIGINT into a cancel request while a deploy is running."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handle(signum: int, frame: object) -> None:
        click.secho("\n   Cancelling — waiting for in-flight stacks…", fg="yellow", err=True)
        event.set()

    previous = signal.signal(signal.SIGINT, _handle)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


# ── history ──────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("-n", "count", default=20, type=int, help="Number of entries to show.")
@click.pass_context
def history(ctx: click.Context, as_json: bool, count: int) -> None:
    """Show recent deploy runs from the audit ledger."""
    from stackrecon.core.config.loader import app_root, find_app_file
    from stackrecon.core.persistence.audit import AuditWriter

    config_path = ctx.obj.get("config_path") or find_app_file()
    root = app_root(config_path) if config_path else Path.cwd()
    entries = AuditWriter(app_root=root).read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No deploy runs recorded yet.")
        return

    for entry in entries:
        subject = entry.stack or "run"
        line = f"{entry.timestamp}  {entry.run_id}  {subject:<20} {entry.status}"
        if entry.error:
            line += f"  — {entry.error}"
        click.echo(line)


if __name__ == "__main__":
    cli()
