"""CLI entry point for the PRF profiling log analyzer."""

import json
import typer
from typing import Optional
from pathlib import Path
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from prf_analyzer.analyzer import analyze_trace, read_trace
from prf_analyzer.decoder import iter_events
from prf_analyzer.errors import ProfilerError
from prf_analyzer.report import build_report, render_report

app = typer.Typer(
    help="PRF Analyzer - Statistical performance reports from profiling logs",
    no_args_is_help=True
)
console = Console()


def _require_file(path: Path, label: str) -> None:
    if not path.exists():
        console.print(f"[red]Error:[/red] {label} not found: {path}")
        raise typer.Exit(code=1)
    if not path.is_file():
        console.print(f"[red]Error:[/red] Path is not a file: {path}")
        raise typer.Exit(code=1)


@app.command()
def analyze(
    trace: Path = typer.Option(..., "--trace", help="Path to the .PRF profiling log"),
    debug_xml: Optional[Path] = typer.Option(None, "--debug-xml", "-d", help="Path to the .prg.debug.xml file for symbol resolution"),
    show_callstacks: bool = typer.Option(False, "--show-callstacks", help="Show unique call stacks for each function"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON instead of a table"),
    top: int = typer.Option(0, "--top", help="Only report the N most expensive functions (0 = all)"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress status output"),
):
    """Analyze a profiling log and print per-function statistics."""

    _require_file(trace, "Trace file")
    if debug_xml is not None:
        _require_file(debug_xml, "Debug XML file")

    # Status lines go to stderr when stdout carries JSON.
    status = Console(stderr=True) if as_json else console
    if not quiet:
        status.print(f"[blue]Analyzing trace:[/blue] {trace}")
        status.print(f"[blue]Debug XML:[/blue] {debug_xml}")
        status.print(f"[blue]Show call stacks:[/blue] {show_callstacks}")

    try:
        state = analyze_trace(
            trace_path=str(trace),
            debug_xml=str(debug_xml) if debug_xml is not None else None
        )
    except ProfilerError as e:
        status.print(f"[red]Error during analysis:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)

    report = build_report(state, show_callstacks=show_callstacks, top=top)

    if not quiet:
        status.print(
            f"[green]✓[/green] Processed {state.event_count} events, "
            f"{len(state.stats)} functions"
        )
        for note in report["notes"].values():
            status.print(f"[yellow]Note:[/yellow] {note}")

    if as_json:
        print(json.dumps(report, indent=2))
    else:
        render_report(report, console)


@app.command()
def events(
    trace: Path = typer.Option(..., "--trace", help="Path to the .PRF profiling log"),
    limit: int = typer.Option(50, "--limit", help="Maximum number of events to show (0 = all)"),
):
    """Dump the decoded events of a profiling log."""
    _require_file(trace, "Trace file")

    table = Table(title=f"Events in {trace.name}")
    table.add_column("#", justify="right")
    table.add_column("Timestamp (us)", justify="right")
    table.add_column("Address", justify="right")
    table.add_column("Kind")
    table.add_column("Extra", justify="right")

    shown = 0
    try:
        for index, event in enumerate(iter_events(read_trace(str(trace)))):
            if limit and index >= limit:
                break
            table.add_row(
                str(index),
                str(event.timestamp_us),
                f"0x{event.code_address & 0xFFFFFFFF:08x}",
                event.kind.name,
                str(event.extra)
            )
            shown += 1
    except ProfilerError as e:
        console.print(table)
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)

    console.print(table)
    console.print(f"[green]✓[/green] Showed {shown} events")


if __name__ == "__main__":
    app()
