"""
Structured event log for the relay.

Every record is a flat JSON object written as one line to the sink
(stdout unless replaced). Speaker sessions, the arbitrator and the bridge
all write through log_event(), so a single stream interleaves every
speaker; filter on "speaker_id" to follow one of them.

Records without a "ts_ms" field are stamped with wall-clock milliseconds.
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


Sink = Callable[[str], None]


def _write_stdout(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


_print: Sink = _write_stdout
_enabled: bool = True


def set_enabled(enabled: bool) -> None:
    """Switch JSONL output on or off (AppConfig.enable_json_logs)."""
    global _enabled  # pylint: disable=global-statement
    _enabled = enabled


def set_sink(sink: Sink | None) -> None:
    """Redirect output lines; None restores stdout."""
    global _print  # pylint: disable=global-statement
    _print = sink if sink is not None else _write_stdout


def log_event(event: Mapping[str, Any]) -> None:
    """
    Emit one record.

    Never raises: a record that json cannot encode is replaced by a
    LOGGER_SERIALIZATION_ERROR record carrying its repr.
    """
    if not _enabled:
        return

    record = dict(event)
    record.setdefault("ts_ms", time.time_ns() // 1_000_000)

    try:
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        line = json.dumps({
            "ts_ms": record["ts_ms"],
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }, ensure_ascii=False, separators=(",", ":"))

    _print(line)
