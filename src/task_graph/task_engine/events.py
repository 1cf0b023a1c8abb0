"""Audit sinks for status changes and advisory hints."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from ..io_utils import _append_jsonl, _read_jsonl
from ..utils import _now_iso, _parse_iso
from .lifecycle import ParentCompletionHint, StatusChange

EVENT_STATUS_CHANGED = "status.changed"
EVENT_PARENT_MAY_COMPLETE = "parent.may_complete"


class AuditSink(ABC):
    @abstractmethod
    def record_change(self, tag: str, change: StatusChange) -> None:
        raise NotImplementedError

    @abstractmethod
    def record_hint(self, tag: str, hint: ParentCompletionHint) -> None:
        raise NotImplementedError


class NullAuditSink(AuditSink):
    def record_change(self, tag: str, change: StatusChange) -> None:
        return None

    def record_hint(self, tag: str, hint: ParentCompletionHint) -> None:
        return None


class MemoryAuditSink(AuditSink):
    """Keep records in memory; handy for embedding hosts and tests."""

    def __init__(self) -> None:
        self.changes: list[tuple[str, StatusChange]] = []
        self.hints: list[tuple[str, ParentCompletionHint]] = []

    def record_change(self, tag: str, change: StatusChange) -> None:
        self.changes.append((tag, change))

    def record_hint(self, tag: str, hint: ParentCompletionHint) -> None:
        self.hints.append((tag, hint))


class JsonlAuditSink(AuditSink):
    """Append one JSON line per record to *path*."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def record_change(self, tag: str, change: StatusChange) -> None:
        payload: dict[str, Any] = {"ts": _now_iso(), "tag": tag, "type": EVENT_STATUS_CHANGED}
        payload.update(change.to_dict())
        _append_jsonl(self.path, payload)

    def record_hint(self, tag: str, hint: ParentCompletionHint) -> None:
        payload: dict[str, Any] = {"ts": _now_iso(), "tag": tag, "type": EVENT_PARENT_MAY_COMPLETE}
        payload.update(hint.to_dict())
        _append_jsonl(self.path, payload)

    def recent(self, limit: int = 100, since: Optional[str] = None) -> list[dict[str, Any]]:
        if limit < 1:
            return []
        events = _read_jsonl(self.path)
        cutoff = _parse_iso(since)
        if cutoff is not None:
            events = [e for e in events if (_parse_iso(e.get("ts")) or cutoff) >= cutoff]
        return events[-limit:]

    def for_address(self, address: str, limit: int = 100) -> list[dict[str, Any]]:
        matched = [
            e for e in _read_jsonl(self.path)
            if str(e.get("address")) == address or str(e.get("parent_id")) == address
        ]
        return matched[-limit:]
