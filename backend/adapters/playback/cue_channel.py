"""
Cue-channel playback.

Forwards playback requests as PlaybackCue messages on an asyncio queue that
the transport bridge drains toward the client, which owns the actual audio
output (cached sound effects + text-to-speech).

Speaking state:
- speak() marks playback as speaking
- stop() and mark_finished() (client reports the end of speech) clear it
"""

from __future__ import annotations

import asyncio

from adapters.playback.base import Cue, PlaybackCue, PlaybackSink
from observability.logger import log_event


class CueChannelPlayback(PlaybackSink):
    """
    PlaybackSink backed by an unbounded FIFO of PlaybackCue.

    Unbounded so that put_nowait() never fails inside a speaker loop.
    """

    def __init__(self) -> None:
        self._cues: asyncio.Queue[PlaybackCue] = asyncio.Queue()
        self._speaking = False

    # ------------------------------------------------------------------
    # PlaybackSink
    # ------------------------------------------------------------------

    def acknowledge(self, speaker_id: int) -> None:
        self._enqueue(PlaybackCue(cue=Cue.ACKNOWLEDGE, speaker_id=speaker_id))

    def start_waiting(self, speaker_id: int) -> None:
        self._enqueue(PlaybackCue(cue=Cue.WAITING, speaker_id=speaker_id))

    def speak(self, speaker_id: int, text: str) -> None:
        self._speaking = True
        self._enqueue(PlaybackCue(cue=Cue.SPEAK, speaker_id=speaker_id, text=text))

    def stop(self) -> None:
        self._speaking = False
        self._enqueue(PlaybackCue(cue=Cue.STOP))

    def is_speaking(self) -> bool:
        return self._speaking

    # ------------------------------------------------------------------
    # Transport side
    # ------------------------------------------------------------------

    def mark_finished(self) -> None:
        """Client reported that response speech finished playing."""
        self._speaking = False

    async def next_cue(self) -> PlaybackCue:
        """Wait for the next cue to deliver."""
        return await self._cues.get()

    def drain(self) -> tuple[PlaybackCue, ...]:
        """
        Drain all pending cues without waiting.

        Returns a FIFO-ordered tuple; empty if nothing is pending.
        """
        out: list[PlaybackCue] = []
        while not self._cues.empty():
            out.append(self._cues.get_nowait())
        return tuple(out)

    def _enqueue(self, cue: PlaybackCue) -> None:
        self._cues.put_nowait(cue)
        log_event({
            "event_type": "PLAYBACK_CUE",
            "cue": cue.cue.value,
            "speaker_id": cue.speaker_id,
        })
