"""
Ingestion demultiplexer.

Responsibilities:
- Owns SpeakerSession lifecycle (one per ssrc)
- Maps transport user ids to ssrcs and ssrcs to sessions
- Routes speaking-state changes, raw audio and client disconnects
  into the right session's bounded channel
- Forwards stop requests to the session holding attention

NOT responsible for:
- Wire decoding (protocol.binary / server.routes)
- Any state machine logic (reducer)
- Backend or playback execution (runtime)
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

import numpy as np

from adapters.engines.base import VoiceActivityEngine, WakeWordEngine
from adapters.playback.base import PlaybackSink
from audio.frames import AudioPacket, Disconnect, InboundAudioEvent
from audio.resampler import FrameResampler
from observability.logger import log_event
from orchestrator.attention import AttentionArbitrator
from orchestrator.runtime import SpeakerRuntime
from orchestrator.runtime_context import RuntimeExecutionContext
from session.speaker_session import SpeakerSession
from spec import (
    DEFAULT_LISTENING_POLICY,
    SPEAKER_CHANNEL_CAPACITY,
    STARVATION_TIMEOUT_MS,
    ListeningPolicy,
)


EngineFactory = Callable[[], tuple[WakeWordEngine, VoiceActivityEngine]]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# ------------------------------------------------------------------
# IngestionDemultiplexer
# ------------------------------------------------------------------

class IngestionDemultiplexer:
    """
    Fans transport events out to per-speaker sessions.

    Mappings:
    - user_id -> ssrc (to route client disconnects)
    - ssrc -> SpeakerSession (to route audio)

    Both entries are removed on client disconnect so a reused ssrc always
    starts a fresh session.
    """

    def __init__(
        self,
        *,
        arbitrator: AttentionArbitrator,
        playback: PlaybackSink,
        engine_factory: EngineFactory,
        policy: ListeningPolicy = DEFAULT_LISTENING_POLICY,
        channel_capacity: int = SPEAKER_CHANNEL_CAPACITY,
        starvation_timeout_ms: int = STARVATION_TIMEOUT_MS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """
        Args:
            engine_factory:
                Builds a fresh (wake word, VAD) engine pair for each new
                speaker; engines keep per-stream state.
            clock:
                Optional monotonic-ms clock passed to every runtime.
        """
        if channel_capacity <= 0:
            raise ValueError("channel_capacity must be > 0")

        self._arbitrator = arbitrator
        self._playback = playback
        self._engine_factory = engine_factory
        self._policy = policy
        self._channel_capacity = channel_capacity
        self._starvation_timeout_ms = starvation_timeout_ms
        self._clock = clock

        self._user_to_ssrc: dict[str, int] = {}
        self._sessions: dict[int, SpeakerSession] = {}

        # Sessions removed from the maps whose tasks are still winding down;
        # each one drops out when its task finishes
        self._retired: set[SpeakerSession] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def arbitrator(self) -> AttentionArbitrator:
        return self._arbitrator

    def session_for_ssrc(self, ssrc: int) -> SpeakerSession | None:
        return self._sessions.get(ssrc)

    def ssrc_for_user(self, user_id: str) -> int | None:
        return self._user_to_ssrc.get(user_id)

    @property
    def sessions(self) -> tuple[SpeakerSession, ...]:
        return tuple(self._sessions.values())

    @property
    def retiring(self) -> tuple[SpeakerSession, ...]:
        return tuple(self._retired)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    async def on_speaking_state(self, user_id: str | None, ssrc: int, speaking: bool) -> None:
        """
        Speaking-state change for a stream.

        The first sighting of an ssrc creates its session; later changes
        are informational only. A known user showing up on a new ssrc
        retires the session on its old one.
        """
        if ssrc in self._sessions:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "SPEAKING_STATE_CHANGED",
                "ssrc": ssrc,
                "user_id": user_id,
                "speaking": speaking,
            })
            return

        session = await self._create_session(ssrc, user_id)
        if ssrc in self._sessions:
            # Another speaking-state change created it while engines loaded
            return

        if user_id is not None:
            previous = self._user_to_ssrc.get(user_id)
            if previous is not None and previous != ssrc:
                await self._retire(previous, user_id, reason="ssrc_changed")

        self._sessions[ssrc] = session
        if user_id is not None:
            self._user_to_ssrc[user_id] = ssrc

        session.start()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SPEAKER_SESSION_CREATED",
            "ssrc": ssrc,
            "user_id": user_id,
            "speaking": speaking,
            "active_sessions": len(self._sessions),
        })

    async def on_voice_packet(self, ssrc: int, samples: np.ndarray) -> None:
        """
        Raw interleaved stereo PCM16 for a stream.

        Unknown ssrcs are dropped (logged).
        """
        session = self._sessions.get(ssrc)
        if session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "VOICE_PACKET_UNKNOWN_SSRC",
                "ssrc": ssrc,
                "samples": int(len(samples)),
            })
            return

        await self._forward(session, AudioPacket(samples=samples))

    async def on_client_disconnect(self, user_id: str) -> None:
        """
        A transport user left.

        Forwards Disconnect to the user's session and forgets both mappings.
        """
        ssrc = self._user_to_ssrc.pop(user_id, None)
        if ssrc is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CLIENT_DISCONNECT_UNKNOWN_USER",
                "user_id": user_id,
            })
            return

        await self._retire(ssrc, user_id, reason="client_disconnect")

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop_conversation(self) -> bool:
        """
        Ask the session holding attention to abandon its conversation.

        Returns:
            True if a session was asked to stop.
        """
        owner = self._arbitrator.current_owner()
        session = self._sessions.get(owner) if owner is not None else None

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "STOP_CONVERSATION_REQUESTED",
            "owner": owner,
            "forwarded": session is not None,
        })

        if session is None:
            return False

        session.request_stop()
        return True

    async def shutdown(self) -> None:
        """Disconnect every session and wait for their frame loops to end."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        self._user_to_ssrc.clear()

        for session in sessions:
            await self._forward(session, Disconnect())

        for session in sessions + list(self._retired):
            await session.wait_closed()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "DEMUX_SHUTDOWN",
            "sessions_closed": len(sessions),
        })

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _retire(self, ssrc: int, user_id: str, *, reason: str) -> None:
        session = self._sessions.pop(ssrc, None)
        if session is None:
            return

        await self._forward(session, Disconnect())
        if session.task is not None and not session.task.done():
            self._retired.add(session)
            session.task.add_done_callback(lambda _task: self._retired.discard(session))

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SPEAKER_SESSION_DISCONNECTED",
            "ssrc": ssrc,
            "user_id": user_id,
            "reason": reason,
            "active_sessions": len(self._sessions),
        })

    async def _create_session(self, ssrc: int, user_id: str | None) -> SpeakerSession:
        # Model loading blocks; keep it off the event loop
        loop = asyncio.get_running_loop()
        wake, vad = await loop.run_in_executor(None, self._engine_factory)
        context = RuntimeExecutionContext(
            arbitrator=self._arbitrator,
            wake=wake,
            vad=vad,
            playback=self._playback,
            policy=self._policy,
        )

        channel: asyncio.Queue[InboundAudioEvent] = asyncio.Queue(maxsize=self._channel_capacity)
        resampler = FrameResampler(
            channel,
            sample_rate_hz=context.sample_rate_hz,
            frame_length=context.frame_length,
            starvation_timeout_ms=self._starvation_timeout_ms,
        )
        runtime = SpeakerRuntime(
            speaker_id=ssrc,
            resampler=resampler,
            context=context,
            clock=self._clock,
        )

        return SpeakerSession(
            ssrc=ssrc,
            user_id=user_id,
            channel=channel,
            resampler=resampler,
            runtime=runtime,
        )

    async def _forward(self, session: SpeakerSession, event: InboundAudioEvent) -> None:
        if session.finished:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "EVENT_FOR_FINISHED_SESSION",
                "ssrc": session.ssrc,
            })
            return
        await session.push(event)
