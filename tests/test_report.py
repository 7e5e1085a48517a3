import io
import unittest

from rich.console import Console

from prf_analyzer.analyzer import AggregationState, FunctionStats, aggregate
from prf_analyzer.decoder import Event, EventKind
from prf_analyzer.report import build_call_stacks, build_report, build_rows, render_report
from prf_analyzer.symbols import SourceLocation, SymbolTable


def enter(t, pc):
    return Event(timestamp_us=t, code_address=pc, kind=EventKind.ENTER)


def leave(t, pc):
    return Event(timestamp_us=t, code_address=pc, kind=EventKind.EXIT)


class TestRows(unittest.TestCase):
    def test_sorted_by_total_time_descending(self):
        stats = {
            1: FunctionStats(1, "first", call_count=1, total_time_us=100),
            2: FunctionStats(2, "second", call_count=1, total_time_us=50),
            3: FunctionStats(3, "third", call_count=1, total_time_us=75),
        }
        rows = build_rows(stats)
        self.assertEqual([r["total_time_us"] for r in rows], [100, 75, 50])

    def test_ties_broken_by_address(self):
        stats = {
            9: FunctionStats(9, "late", call_count=1, total_time_us=10),
            4: FunctionStats(4, "early", call_count=1, total_time_us=10),
        }
        self.assertEqual([r["code_address"] for r in build_rows(stats)], [4, 9])

    def test_average_time(self):
        stats = {
            1: FunctionStats(1, "f", call_count=4, total_time_us=10, self_time_us=6),
            2: FunctionStats(2, "never", call_count=0),
        }
        rows = {r["code_address"]: r for r in build_rows(stats)}
        self.assertEqual(rows[1]["average_time_us"], 2.5)
        self.assertEqual(rows[1]["self_time_us"], 6)
        self.assertEqual(rows[2]["average_time_us"], 0.0)


class TestCallStacks(unittest.TestCase):
    def test_sorted_by_count_with_outermost_frame_first(self):
        stats = FunctionStats(9, "leaf", call_stacks={(1, 2): 1, (1, 3): 4})
        symbols = SymbolTable(
            names={2: "Caller.two"},
            sources={3: SourceLocation(file="main.mc", line=40, symbol="Caller.three")}
        )
        entries = build_call_stacks(stats, symbols)

        self.assertEqual([e["count"] for e in entries], [4, 1])
        frames = entries[0]["frames"]
        self.assertEqual([f["address"] for f in frames], [1, 3])
        self.assertEqual(frames[0]["name"], "Unknown_1")
        self.assertEqual(frames[1], {"address": 3, "name": "Caller.three", "file": "main.mc", "line": 40})
        self.assertEqual(entries[1]["frames"][1]["name"], "Caller.two")

    def test_empty_context_renders_native_placeholder(self):
        stats = FunctionStats(1, "main", call_stacks={(): 2})
        entries = build_call_stacks(stats)
        self.assertEqual(len(entries), 1)
        self.assertTrue(entries[0]["native_entry"])
        self.assertEqual(entries[0]["frames"][0]["name"], "<Native Code>")


class TestReport(unittest.TestCase):
    def setUp(self):
        self.state = aggregate([
            enter(0, 0x10000010),
            enter(5, 0x30000020),
            leave(8, 0x30000020),
            leave(12, 0x10000010),
            leave(13, 0x5),
        ])

    def test_build_report(self):
        report = build_report(self.state)
        self.assertEqual(report["summary"]["function_count"], 2)
        self.assertEqual(report["summary"]["event_count"], 5)
        self.assertEqual(report["summary"]["total_self_time_us"], 12)
        self.assertEqual([r["name"] for r in report["functions"]], ["<App Code> (10000010)", "<API Code> (30000020)"])
        self.assertNotIn("call_stacks", report["functions"][0])
        self.assertEqual(report["diagnostics"]["unmatched_exits"], 1)
        self.assertIn("unmatched_exits", report["notes"])

    def test_top_limits_rows(self):
        report = build_report(self.state, show_callstacks=True, top=1)
        self.assertEqual(len(report["functions"]), 1)
        self.assertEqual(report["functions"][0]["call_stacks"][0]["native_entry"], True)

    def test_render_report(self):
        report = build_report(self.state, show_callstacks=True)
        buffer = io.StringIO()
        render_report(report, Console(file=buffer, width=200))
        output = buffer.getvalue()

        self.assertIn("Total Time (us)", output)
        self.assertIn("<App Code> (10000010)", output)
        self.assertIn("12.000", output)
        self.assertIn("Call Stacks:", output)
        self.assertIn("[1] Calls:", output)
        self.assertIn("<Native Code>", output)

    def test_empty_state(self):
        report = build_report(AggregationState())
        self.assertEqual(report["functions"], [])
        self.assertEqual(report["notes"], {})


if __name__ == "__main__":
    unittest.main()
