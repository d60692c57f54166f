"""CLI for the Generic language client."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from generic_lsp_client.cli_args import (
    DebugOption,
    InitTimeoutOption,
    LogFileOption,
    RestartPolicyOption,
    ShutdownTimeoutOption,
    TraceOption,
    WorkspaceOption,
    build_settings,
)
from generic_lsp_client.config import Settings
from generic_lsp_client.defaults import (
    DEFAULT_INIT_TIMEOUT,
    DEFAULT_RESTART_POLICY,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_TRACE,
    VERBOSITY_ENV,
)
from generic_lsp_client.extension import ExtensionContext, activate, deactivate
from generic_lsp_client.lsp.launch import resolve_server_options
from generic_lsp_client.lsp.scope import Document
from generic_lsp_client.utils import setup_logging

app = typer.Typer(
    name="generic-lsp-client",
    help="Launch and manage a Generic language server session",
)

console = Console()

_SEVERITIES = {1: "error", 2: "warning", 3: "info", 4: "hint"}


def _prepare(settings: Settings) -> Settings:
    setup_logging(settings.log_file, settings.debug)
    return settings


async def _shutdown(context: ExtensionContext) -> None:
    pending = deactivate(context)
    if pending is not None:
        await pending


@app.command("launch-config")
def launch_config(
    as_json: Annotated[bool, typer.Option("--json", help="Print the launch profiles as JSON")] = False,
) -> None:
    """Show how the language server would be launched."""
    options = resolve_server_options(os.environ)

    if as_json:
        typer.echo(options.model_dump_json(indent=2))
        return

    table = Table(title="Language Server Launch Profiles")
    table.add_column("Profile")
    table.add_column("Command")
    table.add_column(VERBOSITY_ENV)
    for profile, spec in (("run", options.run), ("debug", options.debug)):
        table.add_row(profile, spec.command, spec.environment.get(VERBOSITY_ENV, ""))
    console.print(table)


async def _run_session(settings: Settings) -> None:
    context = ExtensionContext(settings, trace_listener=lambda line: console.print(line, markup=False, highlight=False))
    try:
        await activate(context)
        console.print("[green]Language server running. Press Ctrl+C to stop.[/green]")
        await asyncio.Event().wait()
    finally:
        await _shutdown(context)


@app.command()
def run(
    workspace: WorkspaceOption = None,
    trace: TraceOption = DEFAULT_TRACE,
    init_timeout: InitTimeoutOption = DEFAULT_INIT_TIMEOUT,
    shutdown_timeout: ShutdownTimeoutOption = DEFAULT_SHUTDOWN_TIMEOUT,
    restart_policy: RestartPolicyOption = DEFAULT_RESTART_POLICY,
    log_file: LogFileOption = None,
    debug: DebugOption = False,
) -> None:
    """Start a session and keep it alive until interrupted.

    Files matching the watch glob are reported to the server as they change
    on disk. Protocol trace lines are printed to the terminal.
    """
    settings = _prepare(
        build_settings(workspace, trace, init_timeout, shutdown_timeout, restart_policy, log_file, debug)
    )

    console.print("[bold]Generic LSP Client[/bold]")
    for root in settings.workspace_roots:
        console.print(f"  Workspace: {root}")
    console.print(f"  Trace: {settings.trace}")
    console.print()

    try:
        asyncio.run(_run_session(settings))
    except KeyboardInterrupt:
        console.print("[blue]Session stopped.[/blue]")
    except OSError as e:
        console.print(f"[red]Failed to start language server: {e}[/red]")
        raise typer.Exit(1) from None


async def _check_files(settings: Settings, files: list[Path], wait: float) -> list[tuple[Path, list]]:
    context = ExtensionContext(settings)
    results: list[tuple[Path, list]] = []
    try:
        handle = await activate(context)
        opened: list[tuple[Path, Document]] = []
        for path in files:
            doc = Document.from_path(path)
            if await handle.open_document(doc):
                opened.append((path, doc))
            else:
                console.print(f"[yellow]Skipping {path}: not a Generic source file[/yellow]")

        if opened:
            await asyncio.sleep(wait)
        results = [(path, handle.diagnostics(doc.uri)) for path, doc in opened]
    finally:
        await _shutdown(context)
    return results


@app.command()
def check(
    files: Annotated[list[Path], typer.Argument(help="Files to open in the session", exists=True, dir_okay=False)],
    wait: Annotated[float, typer.Option("--wait", help="Seconds to wait for diagnostics")] = 2.0,
    workspace: WorkspaceOption = None,
    trace: TraceOption = DEFAULT_TRACE,
    init_timeout: InitTimeoutOption = DEFAULT_INIT_TIMEOUT,
    shutdown_timeout: ShutdownTimeoutOption = DEFAULT_SHUTDOWN_TIMEOUT,
    log_file: LogFileOption = None,
    debug: DebugOption = False,
) -> None:
    """Open files in a session and print the diagnostics the server publishes."""
    settings = _prepare(
        build_settings(workspace, trace, init_timeout, shutdown_timeout, DEFAULT_RESTART_POLICY, log_file, debug)
    )

    try:
        results = asyncio.run(_check_files(settings, files, wait))
    except OSError as e:
        console.print(f"[red]Failed to start language server: {e}[/red]")
        raise typer.Exit(1) from None

    table = Table(title="Diagnostics")
    table.add_column("File")
    table.add_column("Line")
    table.add_column("Severity")
    table.add_column("Message")

    has_errors = False
    for path, diagnostics in results:
        for diag in diagnostics:
            severity = getattr(diag.severity, "value", diag.severity)
            has_errors = has_errors or severity == 1
            table.add_row(
                str(path),
                str(diag.range.start.line + 1),
                _SEVERITIES.get(severity, "-"),
                diag.message,
            )

    if table.row_count:
        console.print(table)
    else:
        console.print("[green]No diagnostics reported.[/green]")

    if has_errors:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
