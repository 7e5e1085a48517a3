"""Call-stack reconstruction and time aggregation for PRF logs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from prf_analyzer.decoder import Event, EventKind, iter_events
from prf_analyzer.errors import IoError
from prf_analyzer.symbols import EMPTY_SYMBOLS, SymbolTable, load_debug_xml


# Counters for anomalies that are tolerated instead of aborting the run.
DIAGNOSTIC_KEYS = (
    "unmatched_exits",
    "negative_durations",
    "clamped_self_time",
    "ignored_events",
    "unclosed_frames",
)


@dataclass
class StackFrame:
    code_address: int
    start_time_us: int
    accumulated_children_time_us: int = 0


@dataclass
class FunctionStats:
    code_address: int
    display_name: str
    call_count: int = 0
    total_time_us: int = 0
    self_time_us: int = 0
    # Caller context (outermost first) -> occurrences. Tuples hash by value.
    call_stacks: dict[tuple[int, ...], int] = field(default_factory=dict)


@dataclass
class AggregationState:
    """Mutable state of a single aggregation pass."""

    symbols: SymbolTable = EMPTY_SYMBOLS
    stack: list[StackFrame] = field(default_factory=list)
    stats: dict[int, FunctionStats] = field(default_factory=dict)
    event_count: int = 0
    diagnostics: dict[str, int] = field(
        default_factory=lambda: {key: 0 for key in DIAGNOSTIC_KEYS}
    )


def _stats_for(state: AggregationState, address: int) -> FunctionStats:
    entry = state.stats.get(address)
    if entry is None:
        entry = FunctionStats(
            code_address=address,
            display_name=state.symbols.display_name(address)
        )
        state.stats[address] = entry
    return entry


def _handle_exit(state: AggregationState, event: Event) -> None:
    if not state.stack:
        # The log started mid-call.
        state.diagnostics["unmatched_exits"] += 1
        return

    frame = state.stack.pop()
    duration = event.timestamp_us - frame.start_time_us
    self_time = duration - frame.accumulated_children_time_us

    if duration < 0:
        state.diagnostics["negative_durations"] += 1
    if self_time < 0:
        state.diagnostics["clamped_self_time"] += 1

    entry = _stats_for(state, frame.code_address)
    entry.call_count += 1
    entry.total_time_us += max(duration, 0)
    entry.self_time_us += max(self_time, 0)

    context = tuple(f.code_address for f in state.stack)
    entry.call_stacks[context] = entry.call_stacks.get(context, 0) + 1

    if state.stack:
        state.stack[-1].accumulated_children_time_us += duration


def process_event(state: AggregationState, event: Event) -> None:
    """Apply one event to the call stack and statistics table."""
    state.event_count += 1
    if event.kind.is_enter:
        state.stack.append(StackFrame(event.code_address, event.timestamp_us))
    elif event.kind == EventKind.EXIT:
        _handle_exit(state, event)
    else:
        state.diagnostics["ignored_events"] += 1


def finish(state: AggregationState) -> dict[int, FunctionStats]:
    """Drop frames still open at end of stream and return the stats table."""
    state.diagnostics["unclosed_frames"] += len(state.stack)
    state.stack.clear()
    return state.stats


def aggregate(events: Iterable[Event], symbols: SymbolTable | None = None) -> AggregationState:
    state = AggregationState(symbols=symbols if symbols is not None else EMPTY_SYMBOLS)
    for event in events:
        process_event(state, event)
    finish(state)
    return state


def diagnostic_notes(state: AggregationState) -> dict[str, str]:
    """Human-readable notes for every non-zero anomaly counter."""
    notes = {}
    d = state.diagnostics
    if d["unmatched_exits"]:
        notes["unmatched_exits"] = (
            f"Dropped {d['unmatched_exits']} exit event(s) with no matching enter "
            "(log probably starts mid-call)"
        )
    if d["negative_durations"]:
        notes["negative_durations"] = (
            f"{d['negative_durations']} invocation(s) had a negative duration; "
            "counted as 0 toward total time"
        )
    if d["clamped_self_time"]:
        notes["clamped_self_time"] = (
            f"{d['clamped_self_time']} invocation(s) had children outlasting the parent; "
            "self time clamped to 0"
        )
    if d["ignored_events"]:
        notes["ignored_events"] = f"Ignored {d['ignored_events']} event(s) of unknown kind"
    if d["unclosed_frames"]:
        notes["unclosed_frames"] = (
            f"Discarded {d['unclosed_frames']} call(s) still open at end of log"
        )
    return notes


def read_trace(trace_path: str) -> bytes:
    try:
        with open(trace_path, "rb") as f:
            return f.read()
    except OSError as exc:
        raise IoError(f"Failed to read PRF file {trace_path}: {exc}") from exc


def analyze_trace(trace_path: str, debug_xml: str | None = None) -> AggregationState:
    """
    Run the full pipeline over a PRF file.

    Args:
        trace_path: Path to the .PRF profiling log
        debug_xml: Optional path to the .prg.debug.xml symbol file

    Returns:
        The finished aggregation state

    Raises:
        IoError, SymbolFileError, DecodeError
    """
    data = read_trace(trace_path)
    symbols = load_debug_xml(debug_xml) if debug_xml else None
    return aggregate(iter_events(data), symbols)
