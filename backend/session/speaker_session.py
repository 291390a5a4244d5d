"""
Speaker session container.

- One per active speaker stream (ssrc)
- Owns the inbound channel, the FrameResampler and the SpeakerRuntime
- Owned and mutated by IngestionDemultiplexer
- NOT a state machine
- Contains no orchestration logic
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from audio.frames import InboundAudioEvent
from audio.resampler import FrameResampler
from orchestrator.runtime import SpeakerRuntime


@dataclass(eq=False)
class SpeakerSession:
    """
    Mutable runtime container for a single speaker stream.

    Compared by identity so retired sessions can be tracked in a set.
    """

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    ssrc: int
    user_id: str | None
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    channel: asyncio.Queue[InboundAudioEvent] | None = None
    resampler: FrameResampler | None = None
    runtime: SpeakerRuntime | None = None

    # Frame-loop task; set by start()
    task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        assert self.runtime is not None, "runtime must be attached before start()"
        self.task = asyncio.create_task(self.runtime.run(), name=f"speaker-{self.ssrc}")
        return self.task

    async def push(self, event: InboundAudioEvent) -> None:
        """Forward one inbound event, in order, to the frame loop."""
        assert self.resampler is not None, "resampler must be attached before push()"
        await self.resampler.push(event)

    def request_stop(self) -> None:
        if self.runtime is not None:
            self.runtime.request_stop()

    @property
    def finished(self) -> bool:
        return self.task is not None and self.task.done()

    async def wait_closed(self) -> None:
        if self.task is not None:
            await asyncio.gather(self.task, return_exceptions=True)
