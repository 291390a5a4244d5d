"""
Runtime execution shell for a single speaker session.

Responsibilities:
- Own the speaker's conversation snapshot and utterance buffer
- Pull fixed-size frames from the FrameResampler
- Drive the wake-word engine (DETECTION) or VAD (LISTENING), or poll for
  response completion (RESPONDING)
- Convert engine results into events, call the pure reducer
- Execute commands with side effects (attention, backend, playback)

Non-responsibilities:
- Orchestration decisions (reducer only)
- Transport concerns (gateway / server)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable

import numpy as np

from adapters.backend.base import BackendError, BackendReply
from adapters.engines.base import EngineError
from adapters.playback.base import Cue
from audio.resampler import FrameResampler
from audio.utterance import Utterance, UtteranceBuffer
from observability.logger import log_event
from observability.metrics import timed
from orchestrator.commands import (
    AcquireAttention,
    AppendUtterance,
    ClearUtterance,
    Command,
    DispatchUtterance,
    LogEvent,
    PlayCue,
    ReleaseAttention,
    ResetBackend,
    StopBackend,
)
from orchestrator.enums.state import ConversationState
from orchestrator.events import (
    AttentionDenied,
    AttentionGranted,
    Disconnected,
    EngineFailed,
    Event,
    EventType,
    ResponseFinished,
    SpeechFrame,
    StopRequested,
    WakeWordDetected,
)
from orchestrator.reducer import reduce
from orchestrator.runtime_context import RuntimeExecutionContext
from orchestrator.state_dataclass import ConversationSnapshot


def _now_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class SpeakerRuntime:
    """
    Runtime execution boundary for one speaker.

    Guarantees:
    - Reducer is called exactly once per event
    - Events are processed in order; events produced while executing
      commands (attention outcome) are queued behind the current batch
    - All side effects occur *after* state has been updated
    - The frame loop never waits on the backend; dispatch runs on a
      detached task
    """

    def __init__(
        self,
        *,
        speaker_id: int,
        resampler: FrameResampler,
        context: RuntimeExecutionContext,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """
        Args:
            speaker_id:
                Transport source id of the speaker (ssrc).
            resampler:
                Frame source for this speaker.
            context:
                Shared collaborators.
            clock:
                Monotonic milliseconds; read once per frame.
        """
        self._speaker_id = speaker_id
        self._resampler = resampler
        self._ctx = context
        self._clock = clock or _now_ms

        self._state = ConversationSnapshot(speaker_id=speaker_id, policy=context.policy)
        self._buffer = UtteranceBuffer(
            sample_rate_hz=context.sample_rate_hz,
            max_duration_s=context.max_utterance_s,
        )

        self._pending: deque[Event] = deque()
        self._dispatch_task: asyncio.Task[None] | None = None
        self._stop_requested = False
        self._last_poll_ms: int | None = None
        # Set by the dispatch task when the exchange ends the conversation
        self._conversation_over = False

        self.dispatched_utterances: int = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def speaker_id(self) -> int:
        return self._speaker_id

    @property
    def state(self) -> ConversationSnapshot:
        """
        Current immutable snapshot.

        Only mutated internally through the reducer; treat as read-only.
        """
        return self._state

    @property
    def buffer(self) -> UtteranceBuffer:
        return self._buffer

    @property
    def dispatch_task(self) -> asyncio.Task[None] | None:
        return self._dispatch_task

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """
        Ask the session to abandon its conversation.

        Picked up before the next frame is processed.
        """
        self._stop_requested = True

    async def run(self) -> None:
        """
        Frame loop. Returns once the inbound channel disconnects.
        """
        log_event({
            "ts_ms": self._clock(),
            "event_type": "SPEAKER_SESSION_STARTED",
            "speaker_id": self._speaker_id,
            "sample_rate_hz": self._ctx.sample_rate_hz,
            "frame_length": self._ctx.frame_length,
        })

        try:
            while not self._state.closed:
                frame = await self._resampler.next_frame()
                now = self._clock()

                if frame is None:
                    await self._apply_stop_request(now)
                    await self.handle_event(Disconnected(EventType.DISCONNECTED, now))
                    break

                await self.process_frame(frame, now)
        except Exception as exc:
            log_event({
                "ts_ms": self._clock(),
                "event_type": "SPEAKER_SESSION_FAILED",
                "speaker_id": self._speaker_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            raise
        finally:
            await self.shutdown()

        log_event({
            "ts_ms": self._clock(),
            "event_type": "SPEAKER_SESSION_ENDED",
            "speaker_id": self._speaker_id,
            "frames_emitted": self._resampler.frames_emitted,
            "silence_injections": self._resampler.silence_injections,
            "utterances_dispatched": self.dispatched_utterances,
            "false_triggers": self._state.false_triggers,
        })

    async def process_frame(self, frame: np.ndarray, now: int) -> None:
        """
        Run one resampled frame through the current state.

        A pending stop request is applied first.
        """
        await self._apply_stop_request(now)

        event = await self._frame_event(frame, now)
        if event is not None:
            await self.handle_event(event)

    async def handle_event(self, event: Event) -> None:
        """
        Process one event, plus any events its commands produce.

        Processing steps:
        1. Pass the current snapshot and event to the pure reducer
        2. Swap in the new snapshot
        3. Execute all emitted commands sequentially
        """
        self._pending.append(event)

        while self._pending:
            current = self._pending.popleft()
            new_state, commands = reduce(self._state, current)
            self._state = new_state

            for cmd in commands:
                await self._execute_command(cmd, current.ts_ms)

    async def shutdown(self) -> None:
        """
        Cancel an in-flight dispatch, wait for it to settle, and give up
        attention.

        The reducer already releases on Disconnect; the release here covers
        a frame loop that ended by raising.
        """
        task = self._dispatch_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._ctx.arbitrator.release_if_owned(self._speaker_id)

    # ------------------------------------------------------------------
    # Frame -> event
    # ------------------------------------------------------------------

    async def _apply_stop_request(self, now: int) -> None:
        if not self._stop_requested:
            return
        self._stop_requested = False
        await self.handle_event(StopRequested(EventType.STOP_REQUESTED, now))

    async def _frame_event(self, frame: np.ndarray, now: int) -> Event | None:
        state = self._state.state

        if state is ConversationState.DETECTION:
            try:
                keyword_index = self._ctx.wake.process(frame)
            except EngineError as exc:
                return EngineFailed(EventType.ENGINE_FAILED, now, engine="wake_word", reason=str(exc))

            if keyword_index >= 0:
                return WakeWordDetected(EventType.WAKE_WORD_DETECTED, now, keyword_index=keyword_index)
            return None

        if state is ConversationState.LISTENING:
            try:
                confidence = self._ctx.vad.process(frame)
            except EngineError as exc:
                return EngineFailed(EventType.ENGINE_FAILED, now, engine="vad", reason=str(exc))

            return SpeechFrame(EventType.SPEECH_FRAME, now, confidence=confidence, pcm=frame)

        if state is ConversationState.RESPONDING:
            # Frame discarded; completion is checked at most once per poll interval
            if (
                self._last_poll_ms is not None
                and now - self._last_poll_ms < self._state.policy.responding_poll_ms
            ):
                return None
            self._last_poll_ms = now
            return await self._poll_response(now)

        return None

    async def _poll_response(self, now: int) -> Event | None:
        arbitrator = self._ctx.arbitrator
        if await arbitrator.backend_is_responding():
            return None
        # The backend may be idle before the dispatch task has routed the reply
        task = self._dispatch_task
        if task is not None and not task.done():
            return None
        if self._ctx.playback.is_speaking():
            return None

        return ResponseFinished(
            EventType.RESPONSE_FINISHED,
            now,
            continue_conversation=(
                arbitrator.is_owner(self._speaker_id) and not self._conversation_over
            ),
        )

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command, ts_ms: int) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event(cmd.event)

        elif isinstance(cmd, AcquireAttention):
            if self._ctx.arbitrator.try_acquire(self._speaker_id):
                self._pending.append(AttentionGranted(EventType.ATTENTION_GRANTED, ts_ms))
            else:
                self._pending.append(AttentionDenied(EventType.ATTENTION_DENIED, ts_ms))

        elif isinstance(cmd, ReleaseAttention):
            self._ctx.arbitrator.release_if_owned(self._speaker_id)

        elif isinstance(cmd, AppendUtterance):
            if not self._buffer.append(cmd.pcm):
                log_event({
                    "ts_ms": ts_ms,
                    "event_type": "UTTERANCE_FRAME_DROPPED",
                    "speaker_id": self._speaker_id,
                    "buffered_s": self._buffer.duration_seconds(),
                })

        elif isinstance(cmd, ClearUtterance):
            self._buffer.clear()

        elif isinstance(cmd, DispatchUtterance):
            utterance = Utterance(
                speaker_id=self._speaker_id,
                samples=self._buffer.drain(),
                sample_rate_hz=self._ctx.sample_rate_hz,
            )
            self.dispatched_utterances += 1
            self._last_poll_ms = ts_ms
            self._conversation_over = False
            self._dispatch_task = asyncio.create_task(self._dispatch(utterance))

        elif isinstance(cmd, ResetBackend):
            async with self._ctx.arbitrator.backend() as backend:
                await backend.reset()

        elif isinstance(cmd, StopBackend):
            await self._ctx.arbitrator.stop_backend()
            self._ctx.playback.stop()

        elif isinstance(cmd, PlayCue):
            self._play_cue(cmd.cue)

        else:
            raise TypeError(f"Unhandled command type: {type(cmd).__name__}")

    def _play_cue(self, cue: Cue) -> None:
        playback = self._ctx.playback
        if cue is Cue.ACKNOWLEDGE:
            playback.acknowledge(self._speaker_id)
        elif cue is Cue.WAITING:
            playback.start_waiting(self._speaker_id)
        else:
            raise ValueError(f"cue {cue.value} is not a reducer cue")

    # ------------------------------------------------------------------
    # Detached backend exchange
    # ------------------------------------------------------------------

    async def _dispatch(self, utterance: Utterance) -> None:
        """
        Hand one utterance to the backend and route the outcome.

        No answer (None or BackendError) and end_conversation only mark the
        conversation as over. Attention stays with this session until the
        response has finished; the reducer releases it on the way back to
        DETECTION.
        """
        reply: BackendReply | None = None
        try:
            async with self._ctx.arbitrator.backend() as backend:
                with timed(
                    "backend_respond_ms",
                    speaker_id=self._speaker_id,
                    details={"utterance_ms": utterance.duration_ms},
                ):
                    reply = await backend.respond(utterance)
        except BackendError as exc:
            log_event({
                "ts_ms": self._clock(),
                "event_type": "BACKEND_FAILED",
                "speaker_id": self._speaker_id,
                "reason": str(exc),
            })

        arbitrator = self._ctx.arbitrator
        playback = self._ctx.playback

        if not arbitrator.is_owner(self._speaker_id):
            # Stopped or disconnected while the request was in flight
            log_event({
                "ts_ms": self._clock(),
                "event_type": "BACKEND_REPLY_DISCARDED",
                "speaker_id": self._speaker_id,
                "had_reply": reply is not None,
            })
            return

        if reply is None:
            self._conversation_over = True
            playback.stop()
            return

        if reply.text:
            playback.speak(self._speaker_id, reply.text)
        else:
            playback.stop()

        log_event({
            "ts_ms": self._clock(),
            "event_type": "BACKEND_REPLY",
            "speaker_id": self._speaker_id,
            "reply_len": len(reply.text),
            "end_conversation": reply.end_conversation,
        })

        if reply.end_conversation:
            self._conversation_over = True
