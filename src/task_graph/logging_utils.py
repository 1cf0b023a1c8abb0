"""Configure loguru output and summarize engine events for display."""

from __future__ import annotations

import sys
from typing import Any, TextIO

from loguru import logger

from .task_engine.lifecycle import BulkStatusReport, ParentCompletionHint, StatusChange

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan> - "
    "{message}"
)


def configure_logging(level: str = "INFO", sink: TextIO = sys.stderr) -> int:
    """Enable ``task_graph`` log records and route them to *sink*.

    The package is silent until this is called. Returns the loguru handler
    id so the host can remove it again.
    """
    logger.enable("task_graph")
    return logger.add(
        sink,
        level=level.upper(),
        format=LOG_FORMAT,
        filter="task_graph",
    )


def summarize_change(change: StatusChange) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of one status change.

    Args:
        change: The audit record emitted by the lifecycle engine.

    Returns:
        A dictionary with the address, the transition as ``old -> new`` and,
        for cascades, the parent that caused it.
    """
    d: dict[str, Any] = {
        "address": change.address,
        "transition": f"{change.old_status.value} -> {change.new_status.value}",
        "cause": change.cause.value,
    }
    if change.caused_by is not None:
        d["caused_by"] = change.caused_by
    if change.old_status == change.new_status:
        d["unchanged"] = True
    return d


def summarize_hint(hint: ParentCompletionHint) -> dict[str, Any]:
    return {
        "parent_id": hint.parent_id,
        "suggestion": f"All subtasks of task {hint.parent_id} are done; consider marking it done",
        "triggered_by": hint.subtask_address,
    }


def summarize_bulk_report(report: BulkStatusReport) -> dict[str, Any]:
    """Summarize a bulk status update for logs or a CLI/MCP response."""
    return {
        "applied": [r.address for r in report.successes],
        "failed": [
            {"address": f.address, "kind": f.error.kind, "message": f.error.message}
            for f in report.failures
        ],
        "changes": [summarize_change(c) for c in report.changes],
        "hints": [summarize_hint(h) for h in report.hints],
    }
