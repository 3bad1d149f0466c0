"""
CLI entry point for Gatehouse.

This module provides the Typer-based command-line interface for working
with policy files outside an application.

Commands:
    check   Load policy files and run their inline queries
    query   Run one query against policy files and print the results
    repl    Interactive query prompt over policy files

Architecture Note:
    The CLI is thin - it parses arguments and delegates to the Gatehouse
    engine. Host classes cannot be registered from the command line, so
    queries here work over primitive values, lists and dictionaries.
"""

import json
import traceback
from itertools import count
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from gatehouse import __version__
from gatehouse.engine import Gatehouse
from gatehouse.errors import GatehouseError
from gatehouse.kernel.terms import Variable
from gatehouse.log import configure_logging
from gatehouse.query import BindingSet
from gatehouse.schema import EngineConfig, load_config

# Initialize Typer app with metadata
app = typer.Typer(
    name="gatehouse",
    help="Load and query authorization policies.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

PolicyFiles = Annotated[
    list[Path],
    typer.Argument(
        help="Policy files to load, in order.",
        exists=True,
        readable=True,
        dir_okay=False,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]gatehouse[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to an engine configuration YAML file.",
            exists=True,
            readable=True,
            dir_okay=False,
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option(
            "--log-level",
            help="Override the configured log level (DEBUG, INFO, ...).",
        ),
    ] = None,
) -> None:
    """
    Gatehouse - Authorization policy engine.

    Load Polar policy files, check their inline queries, and run queries
    against them.
    """
    try:
        config = load_config(config_path) if config_path else EngineConfig()
        if log_level:
            config = EngineConfig.model_validate({**config.model_dump(), "log_level": log_level})
    except Exception as e:
        console.print(f"[red]Error loading config:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(code=2)

    configure_logging(config.log_level)
    ctx.obj = config


def _load_engine(config: EngineConfig, files: list[Path]) -> Gatehouse:
    gate = Gatehouse(config)
    for path in files:
        gate.load_file(path)
    gate.loader.flush_queue()
    return gate


def _report_error(e: Exception, json_output: bool, debug: bool = False) -> None:
    if json_output:
        output: dict[str, Any] = {"error": True}
        if isinstance(e, GatehouseError):
            output.update(e.to_dict())
        else:
            output.update({"error_type": type(e).__name__, "message": str(e)})
        if debug:
            output["traceback"] = traceback.format_exc()
        print(json.dumps(output, indent=2, default=str))
    else:
        console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        if debug:
            console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")


@app.command()
def check(
    ctx: typer.Context,
    files: PolicyFiles,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Enable debug mode with full error tracebacks.",
        ),
    ] = False,
) -> None:
    """
    Load policy files and run their inline queries.

    Exits non-zero if a file fails to parse or an inline query fails.

    Example:
        $ gatehouse check authorization.polar roles.polar
    """
    config: EngineConfig = ctx.obj
    try:
        gate = _load_engine(config, files)
    except Exception as e:
        _report_error(e, json_output=False, debug=debug)
        raise typer.Exit(code=1)

    for source in gate.loader.loaded_sources():
        console.print(f"[green]✓[/green] {source}")
    console.print(f"[dim]{len(gate.loader.kb)} rule(s) loaded[/dim]")


@app.command()
def query(
    ctx: typer.Context,
    files: PolicyFiles,
    goal: Annotated[
        str,
        typer.Option(
            "--goal",
            "-g",
            help="Query to run, e.g. 'allow(\"alice\", \"read\", x)'.",
        ),
    ],
    limit: Annotated[
        Optional[int],
        typer.Option(
            "--limit",
            "-n",
            help="Stop after this many results.",
            min=1,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    Run a query against policy files and print the results.

    Exits 0 if the query has at least one result and 1 otherwise.

    Example:
        $ gatehouse query app.polar --goal 'allow("alice", "read", "doc")'
    """
    config: EngineConfig = ctx.obj
    try:
        gate = _load_engine(config, files)
        results = _collect(gate, goal, limit)
    except Exception as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1)

    if json_output:
        output = {
            "query": goal,
            "success": bool(results),
            "results": [{k: _plain(v) for k, v in r.items()} for r in results],
        }
        print(json.dumps(output, indent=2, default=str))
    else:
        _display_results(results)

    raise typer.Exit(code=0 if results else 1)


@app.command()
def repl(
    ctx: typer.Context,
    files: Annotated[
        Optional[list[Path]],
        typer.Argument(
            help="Policy files to load before prompting.",
            exists=True,
            readable=True,
            dir_okay=False,
        ),
    ] = None,
) -> None:
    """
    Interactive query prompt.

    Each line is run as a query. Lines ending in ';' are loaded as policy
    source instead. Exit with Ctrl-D or 'exit'.
    """
    config: EngineConfig = ctx.obj
    try:
        gate = _load_engine(config, files or [])
    except Exception as e:
        _report_error(e, json_output=False)
        raise typer.Exit(code=1)

    repl_sources = count(1)
    while True:
        try:
            line = console.input("[bold cyan]query>[/bold cyan] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        if not line:
            continue
        if line in ("exit", "quit"):
            break
        try:
            if line.endswith(";"):
                source = gate.load_str(line, source_id=f"<repl-{next(repl_sources)}>")
                console.print(f"[dim]loaded into {source}[/dim]")
            else:
                _display_results(_collect(gate, line, None))
        except GatehouseError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)


def _collect(gate: Gatehouse, goal: str, limit: int | None) -> list[BindingSet]:
    results: list[BindingSet] = []
    with gate.query(goal) as q:
        for bindings in q:
            results.append(bindings)
            if limit is not None and len(results) >= limit:
                break
    return results


def _display_results(results: list[BindingSet]) -> None:
    """Display query results in a formatted way."""
    if not results:
        console.print("[red]✗ no results[/red]")
        return

    names = sorted({name for r in results for name in r})
    if not names:
        console.print(f"[green]✓ true[/green] [dim]({len(results)} result(s))[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", style="dim", width=3)
    for name in names:
        table.add_column(name, style="cyan")
    for index, bindings in enumerate(results, start=1):
        table.add_row(str(index), *(_format(bindings.get(name)) for name in names))
    console.print(table)


def _format(value: Any) -> str:
    if isinstance(value, Variable):
        return "[dim]unbound[/dim]"
    return escape(repr(_plain(value)))


def _plain(value: Any) -> Any:
    """Make a result value JSON-friendly."""
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, Variable):
        return f"<unbound {value}>"
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


if __name__ == "__main__":
    app()
