"""
rlmloop.events

Append-only JSONL event writer for replaying engine runs.
"""
from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
import threading
from typing import Any, Dict, Optional

from .time_utils import now_ms


class EventLogger:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log(self, event_type: str, payload: Dict[str, Any], *, span_id: str | None = None) -> None:
        event: Dict[str, Any] = {
            "ts_ms": now_ms(),
            "type": event_type,
            "payload": payload,
        }
        if span_id is not None:
            event["span_id"] = span_id
        self._append(event)

    def begin_span(
        self,
        span_id: str,
        *,
        parent_span_id: str | None = None,
        name: str,
        inputs: Dict[str, Any] | None = None,
    ) -> None:
        self._append(
            {
                "ts_ms": now_ms(),
                "type": "span_begin",
                "span_id": span_id,
                "parent_span_id": parent_span_id,
                "name": name,
                "inputs": inputs or {},
            }
        )

    def end_span(self, span_id: str, *, outputs: Dict[str, Any] | None = None) -> None:
        self._append(
            {
                "ts_ms": now_ms(),
                "type": "span_end",
                "span_id": span_id,
                "outputs": outputs or {},
            }
        )

    def _append(self, event: Dict[str, Any]) -> None:
        line = json.dumps(event, ensure_ascii=True, default=str)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")


class NullEventLogger:
    """Drop-in logger used when no events path is configured."""

    def log(self, event_type: str, payload: Dict[str, Any], *, span_id: str | None = None) -> None:
        return None

    def begin_span(
        self,
        span_id: str,
        *,
        parent_span_id: str | None = None,
        name: str,
        inputs: Dict[str, Any] | None = None,
    ) -> None:
        return None

    def end_span(self, span_id: str, *, outputs: Dict[str, Any] | None = None) -> None:
        return None


def build_event_logger(path: Optional[str | Path]) -> EventLogger | NullEventLogger:
    if not path:
        return NullEventLogger()
    return EventLogger(path)


def replay_events(path: str | Path) -> Dict[str, Any]:
    events_path = Path(path)
    if not events_path.exists():
        raise FileNotFoundError(f"event log not found: {events_path}")

    counts: Counter[str] = Counter()
    failed_tools: Counter[str] = Counter()
    malformed = 0
    with events_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                malformed += 1
                continue
            event_type = str(event.get("type", "unknown"))
            counts[event_type] += 1
            if event_type == "tool_result":
                payload = event.get("payload") or {}
                if not payload.get("ok", True):
                    failed_tools[str(payload.get("tool", "unknown"))] += 1

    return {
        "events": sum(counts.values()),
        "by_type": dict(sorted(counts.items())),
        "failed_tools": dict(sorted(failed_tools.items())),
        "malformed_lines": malformed,
    }
