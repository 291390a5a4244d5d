"""
Latency metrics for backend round trips.

A metric is a single METRIC_TIMER log record; nothing is aggregated in
process. Durations come from the monotonic clock, the record's ts_ms from
the wall clock so it lines up with the rest of the event stream.

Each record carries an outcome:
- "ok": the block completed
- "error": the block raised
- "cancelled": the block was cancelled (stop preemption, shutdown)
"""

from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


def emit_timer(
    name: str,
    duration_ms: int,
    *,
    outcome: str = "ok",
    speaker_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    log_event({
        "ts_ms": time.time_ns() // 1_000_000,
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "outcome": outcome,
        "speaker_id": speaker_id,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    speaker_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Time the enclosed block and emit exactly one metric.

    Exceptions (cancellation included) propagate unchanged.

        with timed("backend_respond_ms", speaker_id=ssrc):
            reply = await backend.respond(utterance)
    """
    outcome = "ok"
    start_ns = time.monotonic_ns()
    try:
        yield
    except asyncio.CancelledError:
        outcome = "cancelled"
        raise
    except Exception:
        outcome = "error"
        raise
    finally:
        emit_timer(
            name,
            (time.monotonic_ns() - start_ns) // 1_000_000,
            outcome=outcome,
            speaker_id=speaker_id,
            details=details,
        )
