from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any, Callable


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=True) + "\n", encoding="utf-8")
    tmp.replace(path)


class EventLog:
    """Append-only JSONL event stream, optionally echoed as JSON lines."""

    def __init__(
        self,
        path: Path | None,
        *,
        echo: bool = False,
        out: Callable[[str], None] = print,
    ) -> None:
        self.path = path
        self.echo = bool(echo)
        self._out = out
        self.write_errors = 0

    def append(self, *, phase: str, event_type: str, severity: str = "info", payload: dict[str, Any] | None = None) -> None:
        row = {
            "ts": utc_now_iso(),
            "phase": phase,
            "event_type": event_type,
            "severity": severity,
            "payload": payload or {},
        }
        line = json.dumps(row, ensure_ascii=True)
        if self.echo:
            self._out(line)
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError:
            # A full disk must not stop the loop.
            self.write_errors += 1
