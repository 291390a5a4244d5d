# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import threading

import numpy as np
import pytest

from adapters.backend.base import BackendReply, ConversationalBackend
from adapters.engines.base import VoiceActivityEngine, WakeWordEngine
from adapters.playback.cue_channel import CueChannelPlayback
from orchestrator.attention import AttentionArbitrator
from orchestrator.enums.state import ConversationState
from session.gateway import IngestionDemultiplexer
from spec import ENGINE_FRAME_LENGTH, ENGINE_SAMPLE_RATE_HZ, NATIVE_CHANNELS


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FirstFrameWake(WakeWordEngine):
    """Matches on the first frame of each session only."""

    def __init__(self) -> None:
        self.calls = 0

    @property
    def sample_rate(self) -> int:
        return ENGINE_SAMPLE_RATE_HZ

    @property
    def frame_length(self) -> int:
        return ENGINE_FRAME_LENGTH

    def process(self, frame: np.ndarray) -> int:
        self.calls += 1
        return 0 if self.calls == 1 else -1


class AlwaysSpeaking(VoiceActivityEngine):
    @property
    def sample_rate(self) -> int:
        return ENGINE_SAMPLE_RATE_HZ

    @property
    def frame_length(self) -> int:
        return ENGINE_FRAME_LENGTH

    def process(self, frame: np.ndarray) -> float:
        return 1.0


class QuietBackend(ConversationalBackend):
    def __init__(self) -> None:
        self.utterances = []

    async def respond(self, utterance):
        self.utterances.append(utterance)
        return BackendReply(text="")

    async def is_responding(self) -> bool:
        return False

    async def stop(self) -> None:
        return None

    async def reset(self) -> None:
        return None


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def build() -> tuple[IngestionDemultiplexer, AttentionArbitrator, QuietBackend]:
    backend = QuietBackend()
    arbitrator = AttentionArbitrator(backend)
    demux = IngestionDemultiplexer(
        arbitrator=arbitrator,
        playback=CueChannelPlayback(),
        engine_factory=lambda: (FirstFrameWake(), AlwaysSpeaking()),
        # No silence injection while a test is waiting
        starvation_timeout_ms=10_000,
    )
    return demux, arbitrator, backend


def one_frame_of_audio() -> np.ndarray:
    # Enough native input for the first resampled frame
    return np.full(1534 * NATIVE_CHANNELS, 300, dtype=np.int16)


async def wait_for(predicate, timeout_s: float = 1.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout_s)


# ---------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------

def test_first_speaking_event_creates_session_and_mappings():
    async def scenario():
        demux, _, _ = build()
        await demux.on_speaking_state("alice", 1001, True)
        first = demux.session_for_ssrc(1001)

        await demux.on_speaking_state("alice", 1001, False)
        second = demux.session_for_ssrc(1001)

        state = (len(demux.sessions), demux.ssrc_for_user("alice"), first is second)
        await demux.shutdown()
        return state, first

    (count, ssrc, same), session = asyncio.run(scenario())

    assert count == 1
    assert ssrc == 1001
    assert same
    assert session.user_id == "alice"
    assert session.finished


def test_audio_for_known_ssrc_reaches_its_session():
    async def scenario():
        demux, arbitrator, _ = build()
        await demux.on_speaking_state("alice", 1001, True)
        await demux.on_speaking_state("bob", 2002, True)

        await demux.on_voice_packet(2002, one_frame_of_audio())
        await wait_for(lambda: arbitrator.current_owner() is not None)

        bob = demux.session_for_ssrc(2002)
        alice = demux.session_for_ssrc(1001)
        state = (arbitrator.current_owner(), bob.runtime.state.state, alice.runtime.state.state)
        await demux.shutdown()
        return state

    owner, bob_state, alice_state = asyncio.run(scenario())

    assert owner == 2002
    assert bob_state is ConversationState.LISTENING
    assert alice_state is ConversationState.DETECTION


def test_audio_for_unknown_ssrc_is_ignored():
    async def scenario():
        demux, _, _ = build()
        await demux.on_voice_packet(999, one_frame_of_audio())
        return len(demux.sessions)

    assert asyncio.run(scenario()) == 0


def test_client_disconnect_ends_session_and_forgets_mappings():
    async def scenario():
        demux, arbitrator, backend = build()
        await demux.on_speaking_state("alice", 1001, True)
        session = demux.session_for_ssrc(1001)

        await demux.on_voice_packet(1001, one_frame_of_audio())
        await wait_for(lambda: arbitrator.current_owner() == 1001)

        await demux.on_client_disconnect("alice")
        await session.wait_closed()

        result = (
            demux.session_for_ssrc(1001),
            demux.ssrc_for_user("alice"),
            arbitrator.current_owner(),
            session.finished,
            backend.utterances,
        )
        await demux.shutdown()
        return result

    session, ssrc, owner, finished, utterances = asyncio.run(scenario())

    assert session is None
    assert ssrc is None
    assert owner is None
    assert finished
    assert utterances == []


def test_reused_ssrc_starts_a_fresh_session():
    async def scenario():
        demux, _, _ = build()
        await demux.on_speaking_state("alice", 1001, True)
        old = demux.session_for_ssrc(1001)
        await demux.on_client_disconnect("alice")

        await demux.on_speaking_state("carol", 1001, True)
        new = demux.session_for_ssrc(1001)
        await demux.shutdown()
        return old, new, demux

    old, new, demux = asyncio.run(scenario())

    assert new is not old
    assert new.user_id == "carol"
    assert old.finished
    assert demux.sessions == ()


def test_disconnect_for_unknown_user_is_ignored():
    async def scenario():
        demux, _, _ = build()
        await demux.on_client_disconnect("nobody")
        return len(demux.sessions)

    assert asyncio.run(scenario()) == 0


def test_known_user_on_new_ssrc_retires_old_session():
    async def scenario():
        demux, _, _ = build()
        await demux.on_speaking_state("u1", 100, True)
        old = demux.session_for_ssrc(100)

        await demux.on_speaking_state("u1", 200, True)
        new = demux.session_for_ssrc(200)
        await old.wait_closed()
        moved = (demux.session_for_ssrc(100), demux.ssrc_for_user("u1"), old.finished)

        await demux.on_client_disconnect("u1")
        await new.wait_closed()
        gone = (demux.session_for_ssrc(200), demux.ssrc_for_user("u1"), new.finished)

        await demux.shutdown()
        return moved, gone, demux

    moved, gone, demux = asyncio.run(scenario())

    assert moved == (None, 200, True)
    assert gone == (None, None, True)
    assert demux.sessions == ()


def test_retired_sessions_are_forgotten_once_closed():
    async def scenario():
        demux, _, _ = build()
        for i in range(50):
            await demux.on_speaking_state("alice", 1000 + i, True)
            await demux.on_client_disconnect("alice")

        await wait_for(lambda: not demux.retiring)
        retiring = demux.retiring
        await demux.shutdown()
        return retiring

    assert asyncio.run(scenario()) == ()


def test_engines_are_built_off_the_event_loop():
    built_on: list[int] = []

    def factory():
        built_on.append(threading.get_ident())
        return FirstFrameWake(), AlwaysSpeaking()

    async def scenario():
        demux = IngestionDemultiplexer(
            arbitrator=AttentionArbitrator(QuietBackend()),
            playback=CueChannelPlayback(),
            engine_factory=factory,
            starvation_timeout_ms=10_000,
        )
        await demux.on_speaking_state("alice", 1001, True)
        created = demux.session_for_ssrc(1001) is not None
        await demux.shutdown()
        return created

    created = asyncio.run(scenario())

    assert created
    assert built_on and built_on[0] != threading.get_ident()


# ---------------------------------------------------------------------
# Stop / shutdown
# ---------------------------------------------------------------------

def test_stop_conversation_targets_attention_holder():
    async def scenario():
        demux, arbitrator, _ = build()
        nothing_to_stop = demux.stop_conversation()

        await demux.on_speaking_state("alice", 1001, True)
        await demux.on_voice_packet(1001, one_frame_of_audio())
        await wait_for(lambda: arbitrator.current_owner() == 1001)

        forwarded = demux.stop_conversation()

        # The request is applied before the next frame
        await demux.on_voice_packet(1001, np.zeros(1536 * NATIVE_CHANNELS, dtype=np.int16))
        await wait_for(lambda: arbitrator.current_owner() is None)

        state = demux.session_for_ssrc(1001).runtime.state.state
        await demux.shutdown()
        return nothing_to_stop, forwarded, state

    nothing_to_stop, forwarded, state = asyncio.run(scenario())

    assert nothing_to_stop is False
    assert forwarded is True
    assert state is ConversationState.DETECTION


def test_shutdown_closes_every_session():
    async def scenario():
        demux, _, _ = build()
        for i in range(3):
            await demux.on_speaking_state(f"user{i}", 100 + i, True)
        sessions = demux.sessions

        await demux.shutdown()
        return sessions, demux

    sessions, demux = asyncio.run(scenario())

    assert len(sessions) == 3
    assert all(s.finished for s in sessions)
    assert demux.sessions == ()


def test_invalid_channel_capacity_is_rejected():
    with pytest.raises(ValueError):
        IngestionDemultiplexer(
            arbitrator=AttentionArbitrator(QuietBackend()),
            playback=CueChannelPlayback(),
            engine_factory=lambda: (FirstFrameWake(), AlwaysSpeaking()),
            channel_capacity=0,
        )
