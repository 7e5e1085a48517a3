"""Report shaping: sorted rows, call-stack detail, rich rendering."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from prf_analyzer.analyzer import AggregationState, FunctionStats, diagnostic_notes
from prf_analyzer.symbols import EMPTY_SYMBOLS, NATIVE_CODE_LABEL, SymbolTable


def _average(total_us: int, call_count: int) -> float:
    if call_count <= 0:
        return 0.0
    return total_us / call_count


def build_rows(stats: dict[int, FunctionStats]) -> list[dict]:
    """One row per function, by total time descending then address."""
    ordered = sorted(
        stats.values(),
        key=lambda s: (-s.total_time_us, s.code_address)
    )
    return [
        {
            "code_address": s.code_address,
            "name": s.display_name,
            "total_time_us": s.total_time_us,
            "self_time_us": s.self_time_us,
            "average_time_us": _average(s.total_time_us, s.call_count),
            "call_count": s.call_count
        }
        for s in ordered
    ]


def _frame(address: int | None, symbols: SymbolTable) -> dict:
    if address is None:
        return {"address": None, "name": NATIVE_CODE_LABEL, "file": "", "line": None}
    name, file, line = symbols.describe(address)
    return {"address": address, "name": name, "file": file, "line": line}


def build_call_stacks(function_stats: FunctionStats, symbols: SymbolTable | None = None) -> list[dict]:
    """
    Unique caller contexts of a function, most frequent first.

    Frames run from the outermost caller to the immediate caller. A
    function entered with nothing else on the stack gets a single native
    code placeholder frame.
    """
    symbols = symbols if symbols is not None else EMPTY_SYMBOLS
    ordered = sorted(
        function_stats.call_stacks.items(),
        key=lambda item: (-item[1], item[0])
    )
    entries = []
    for context, count in ordered:
        if context:
            frames = [_frame(address, symbols) for address in context]
        else:
            frames = [_frame(None, symbols)]
        entries.append({
            "count": count,
            "native_entry": not context,
            "frames": frames
        })
    return entries


def build_report(state: AggregationState, show_callstacks: bool = False, top: int = 0) -> dict:
    rows = build_rows(state.stats)
    if top > 0:
        rows = rows[:top]

    if show_callstacks:
        for row in rows:
            row["call_stacks"] = build_call_stacks(
                state.stats[row["code_address"]],
                state.symbols
            )

    return {
        "summary": {
            "event_count": state.event_count,
            "function_count": len(state.stats),
            "total_self_time_us": sum(s.self_time_us for s in state.stats.values())
        },
        "functions": rows,
        "diagnostics": dict(state.diagnostics),
        "notes": diagnostic_notes(state)
    }


def _render_call_stacks(console: Console, row: dict) -> None:
    call_stacks = row.get("call_stacks") or []
    if not call_stacks:
        return
    console.print(f"[bold]{escape(row['name'])}[/bold]")
    console.print("    Call Stacks:")
    for entry in call_stacks:
        console.print(escape(f"      [{entry['count']}] Calls:"))
        for frame in entry["frames"]:
            if frame["file"]:
                console.print(
                    escape(f"        {frame['name']:<40} {frame['file']:<60} {frame['line']:<5}")
                )
            else:
                console.print(escape(f"        {frame['name']:<40}"))
        console.print("")


def render_report(report: dict, console: Console) -> None:
    table = Table(title="Function Profile")
    table.add_column("Function", overflow="fold")
    table.add_column("Total Time (us)", justify="right")
    table.add_column("Self Time (us)", justify="right")
    table.add_column("Average Time (us)", justify="right")
    table.add_column("Call Count", justify="right")

    for row in report["functions"]:
        table.add_row(
            escape(row["name"]),
            str(row["total_time_us"]),
            str(row["self_time_us"]),
            f"{row['average_time_us']:.3f}",
            str(row["call_count"])
        )
    console.print(table)

    for row in report["functions"]:
        _render_call_stacks(console, row)
