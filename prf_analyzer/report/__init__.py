"""Report building and rendering."""

from prf_analyzer.report.summary import (
    build_call_stacks,
    build_report,
    build_rows,
    render_report
)

__all__ = [
    "build_call_stacks",
    "build_report",
    "build_rows",
    "render_report"
]
