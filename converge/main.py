"""
converge — CLI entrypoint.

Usage:
    converge --help
    converge meet "webserver running" nginx_version=1.25.3
    converge resolve "webserver running"
    converge check
"""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from pathlib import Path

import click

from converge import __version__
from converge.core.observability.logging_config import setup_logging

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="converge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to converge.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """converge — declarative dependency convergence."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("CONVERGE_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("CONVERGE_LOG_FILE"),
        log_file_level=os.environ.get("CONVERGE_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


def split_targets(args: tuple[str, ...]) -> tuple[list[str], dict[str, str]]:
    """Separate dependency names from ``key=value`` variable overrides."""
    names: list[str] = []
    overrides: dict[str, str] = {}
    for arg in args:
        key, sep, value = arg.partition("=")
        if sep and key and " " not in key:
            overrides[key] = value
        else:
            names.append(arg)
    return names, overrides


@cli.command()
@click.argument("targets", nargs=-1, required=True)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--platform", "-p", default=None, help="Override the detected platform.")
@click.option("--timeout", type=float, default=None, help="Per-call timeout in seconds.")
@click.option("--jobs", "-j", type=int, default=None, help="Converge independent branches in parallel.")
@click.option("--dry-run", is_flag=True, help="Only check; never run meet actions.")
@click.option("--mock", is_flag=True, help="Use mock shell (no real execution).")
@click.option("--save-vars", is_flag=True, help="Remember key=value overrides for later runs.")
@click.option("--saved-vars", "use_saved_vars", is_flag=True, help="Start from remembered variables.")
@click.pass_context
def meet(
    ctx: click.Context,
    targets: tuple[str, ...],
    as_json: bool,
    platform: str | None,
    timeout: float | None,
    jobs: int | None,
    dry_run: bool,
    mock: bool,
    save_vars: bool,
    use_saved_vars: bool,
) -> None:
    """Converge dependencies (NAME... [key=value...])."""
    from converge.core.use_cases.meet import run_meet

    names, overrides = split_targets(targets)
    if not names:
        click.secho("❌ No dependency named (only key=value pairs given)", fg="red")
        sys.exit(2)

    # First Ctrl-C stops starting new nodes; in-flight ones finish
    cancel_event = threading.Event()

    def _cancel(signum, frame):
        if not cancel_event.is_set():
            click.secho("\n⊘ Cancelling after in-flight dependencies finish…", fg="yellow", err=True)
        cancel_event.set()

    in_main = threading.current_thread() is threading.main_thread()
    previous = signal.signal(signal.SIGINT, _cancel) if in_main else None
    try:
        result = run_meet(
            names,
            overrides,
            config_path=ctx.obj.get("config_path"),
            platform=platform,
            timeout=timeout,
            jobs=jobs,
            dry_run=dry_run,
            mock_mode=mock,
            save_overrides=save_vars,
            use_saved_vars=use_saved_vars,
            cancel_event=cancel_event,
        )
    finally:
        if in_main:
            signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None  # guaranteed after error check above
    quiet = ctx.obj.get("quiet", False)

    if not quiet:
        mode = " (dry run)" if dry_run else ""
        click.secho(f"\n⚡ meet {', '.join(report.roots)}{mode}", fg="cyan", bold=True)
        click.echo(f"   Platform: {report.platform} | Nodes: {report.total}")
        click.echo()

    for run_result in report.results.values():
        timing = f" ({run_result.duration_ms}ms)" if run_result.duration_ms else ""
        if run_result.status == "already-met":
            click.secho(f"   ✓ {run_result.key}", fg="green", nl=False)
            click.echo(f" already met{timing}")
        elif run_result.status == "newly-met":
            click.secho(f"   ✓ {run_result.key}", fg="green", bold=True, nl=False)
            click.echo(f" met{timing}")
        elif run_result.failed:
            click.secho(f"   ✗ {run_result.key}", fg="red", nl=False)
            click.echo(f" [{run_result.error}]{timing}")
            for line in run_result.diagnostic.split("\n")[:5]:
                click.echo(f"     │ {line}")
        elif run_result.status == "unmet":
            click.secho(f"   ? {run_result.key}", fg="yellow", nl=False)
            click.echo(f" ({run_result.diagnostic})")
        else:
            click.secho(f"   ⊘ {run_result.key} ", fg="yellow", nl=False)
            click.echo(f"({run_result.diagnostic})")
        if ctx.obj.get("verbose") and run_result.ok and run_result.diagnostic:
            click.echo(f"     │ {run_result.diagnostic}")

    # Summary
    click.echo()
    summary = (
        f"   Result: {report.status} | {report.already_met} already met, "
        f"{report.newly_met} newly met, {report.failed} failed, "
        f"{report.skipped} skipped"
    )
    if report.unmet:
        summary += f", {report.unmet} unmet"
    click.secho(summary, fg=_STATUS_COLORS.get(report.status, "white"), bold=True)
    if report.cancelled:
        click.secho("   Run was cancelled", fg="yellow")

    if result.exit_code:
        click.echo()
        sys.exit(result.exit_code)

    click.echo()


@cli.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool) -> None:
    """List declared dependencies."""
    from converge.core.use_cases.check import list_dependencies

    result = list_dependencies(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    entries = result.entries()
    if not entries:
        click.secho("No dependencies declared.", fg="yellow")
        return

    click.secho(f"\n📋 Dependencies: {len(entries)}", fg="cyan", bold=True)
    for entry in entries:
        kind = f" [{entry['kind']}]" if entry["kind"] != "dep" else ""
        platforms = f" ({', '.join(entry['platforms'])})" if entry["platforms"] else ""
        click.echo(f"     • {entry['name']}{kind}{platforms}")
        if entry["requires"] and not ctx.obj.get("quiet"):
            click.echo(f"       requires: {', '.join(entry['requires'])}")
        if entry["description"] and ctx.obj.get("verbose"):
            click.echo(f"       {entry['description']}")
    click.echo()


@cli.command("resolve")
@click.argument("names", nargs=-1, required=True)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--platform", "-p", default=None, help="Override the detected platform.")
@click.pass_context
def resolve_cmd(
    ctx: click.Context,
    names: tuple[str, ...],
    as_json: bool,
    platform: str | None,
) -> None:
    """Show the satisfaction order without running anything."""
    from converge.core.use_cases.check import resolve_order

    result = resolve_order(
        names,
        config_path=ctx.obj.get("config_path"),
        platform=platform,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    graph = result.graph
    assert graph is not None  # guaranteed after error check above
    click.secho(f"\n🔗 Order on {graph.platform} ({len(graph)} nodes)", fg="cyan", bold=True)
    for i, node in enumerate(graph, start=1):
        note = ""
        if node.platform_skip:
            note = " ⊘ not applicable here"
        elif node.unsupported:
            note = f" ✗ {node.unsupported}"
        click.echo(f"   {i:>3}. {node.key}{note}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--platform", "-p", default=None, help="Override the detected platform.")
@click.pass_context
def check(ctx: click.Context, as_json: bool, platform: str | None) -> None:
    """Statically validate every declared dependency."""
    from converge.core.use_cases.check import check_recipes

    result = check_recipes(config_path=ctx.obj.get("config_path"), platform=platform)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        click.secho("✅ Recipes are valid", fg="green", bold=True)
        click.echo(f"   Dependencies: {result.dependency_count}")
        click.echo(f"   Platform: {result.platform}")
    else:
        click.secho("❌ Recipe errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("-n", "limit", type=int, default=10, help="Number of runs to show.")
@click.pass_context
def history(ctx: click.Context, as_json: bool, limit: int) -> None:
    """Show recent convergence runs from the audit ledger."""
    from converge.core.config.loader import ConfigError, load_settings
    from converge.core.persistence.audit import AuditWriter

    try:
        settings = load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    entries = AuditWriter(state_dir=settings.state_path).read_recent(limit)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No runs recorded yet.")
        return

    click.secho(f"\n📜 Last {len(entries)} run(s)", fg="cyan", bold=True)
    for entry in reversed(entries):
        color = _STATUS_COLORS.get(entry.status, "white")
        dry = " (dry run)" if entry.dry_run else ""
        click.echo(f"   {entry.timestamp[:19]}  {', '.join(entry.roots)}{dry} — ", nl=False)
        click.secho(entry.status, fg=color)
        for failure in entry.failures:
            click.echo(f"     │ {failure}")
    click.echo()


if __name__ == "__main__":
    cli()
