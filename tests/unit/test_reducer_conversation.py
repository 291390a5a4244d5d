# pylint: disable=missing-module-docstring,missing-function-docstring
from dataclasses import replace

import numpy as np

from adapters.playback.base import Cue
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
    EventType,
    ResponseFinished,
    SpeechFrame,
    StopRequested,
    WakeWordDetected,
)
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import ConversationSnapshot
from spec import ENGINE_FRAME_LENGTH, ListeningPolicy


FRAME_MS = 32
SPEAKER = 42


# ---------------------------------------------------------------------
# Event helpers (mirror runtime construction)
# ---------------------------------------------------------------------

def wake(ts_ms: int = 0) -> WakeWordDetected:
    return WakeWordDetected(EventType.WAKE_WORD_DETECTED, ts_ms, keyword_index=0)


def granted(ts_ms: int = 0) -> AttentionGranted:
    return AttentionGranted(EventType.ATTENTION_GRANTED, ts_ms)


def denied(ts_ms: int = 0) -> AttentionDenied:
    return AttentionDenied(EventType.ATTENTION_DENIED, ts_ms)


def speech(ts_ms: int, confidence: float) -> SpeechFrame:
    return SpeechFrame(
        EventType.SPEECH_FRAME,
        ts_ms,
        confidence=confidence,
        pcm=np.zeros(ENGINE_FRAME_LENGTH, dtype=np.int16),
    )


def finished(ts_ms: int, carry_on: bool) -> ResponseFinished:
    return ResponseFinished(EventType.RESPONSE_FINISHED, ts_ms, continue_conversation=carry_on)


def stop(ts_ms: int = 0) -> StopRequested:
    return StopRequested(EventType.STOP_REQUESTED, ts_ms)


def disconnected(ts_ms: int = 0) -> Disconnected:
    return Disconnected(EventType.DISCONNECTED, ts_ms)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def decisions(commands: tuple[Command, ...]) -> list[str]:
    """Extract decision strings from LogEvent commands."""
    return [c.event["decision"] for c in commands if isinstance(c, LogEvent)]


def effects(commands: tuple[Command, ...]) -> list[type]:
    """Non-log command types, in order."""
    return [type(c) for c in commands if not isinstance(c, LogEvent)]


def listening(ts_ms: int = 0, policy: ListeningPolicy | None = None) -> ConversationSnapshot:
    state = ConversationSnapshot(speaker_id=SPEAKER, policy=policy or ListeningPolicy())
    state, _ = reduce(state, granted(ts_ms))
    return state


def feed(state: ConversationSnapshot, start_ms: int, confidences: list[float]):
    """Feed one SpeechFrame per confidence, FRAME_MS apart."""
    all_commands: list[Command] = []
    ts = start_ms
    for conf in confidences:
        state, commands = reduce(state, speech(ts, conf))
        all_commands.extend(commands)
        ts += FRAME_MS
    return state, all_commands, ts


# ---------------------------------------------------------------------
# 1. Reducer shape & purity
# ---------------------------------------------------------------------

def test_reducer_returns_state_and_tuple():
    state = ConversationSnapshot(speaker_id=SPEAKER)

    new_state, commands = reduce(state, wake())

    assert isinstance(commands, tuple)
    assert isinstance(new_state, ConversationSnapshot)


def test_reducer_does_not_mutate_input_state():
    state = ConversationSnapshot(speaker_id=SPEAKER)
    before = replace(state)

    reduce(state, granted())

    assert state == before


def test_every_state_event_pair_is_handled_or_logged():
    events = [wake(), granted(), denied(), speech(0, 0.0), finished(0, True), stop(),
              EngineFailed(EventType.ENGINE_FAILED, 0, engine="vad", reason="x")]

    for s in ConversationState:
        state = ConversationSnapshot(speaker_id=SPEAKER, state=s, listening_since_ms=0)
        for event in events:
            _, commands = reduce(state, event)
            assert decisions(commands) or effects(commands), (s, event.event_type)


# ---------------------------------------------------------------------
# 2. DETECTION
# ---------------------------------------------------------------------

def test_wake_word_requests_attention_without_changing_state():
    state = ConversationSnapshot(speaker_id=SPEAKER)

    new_state, commands = reduce(state, wake(100))

    assert new_state.state is ConversationState.DETECTION
    assert effects(commands) == [AcquireAttention]
    assert new_state.wake_detections == 1


def test_attention_granted_enters_listening_with_fresh_conversation():
    state = ConversationSnapshot(speaker_id=SPEAKER)

    new_state, commands = reduce(state, granted(500))

    assert new_state.state is ConversationState.LISTENING
    assert new_state.listening_since_ms == 500
    assert new_state.not_speaking_since_ms is None
    assert effects(commands) == [ClearUtterance, ResetBackend, PlayCue]
    cue = [c for c in commands if isinstance(c, PlayCue)][0]
    assert cue.cue is Cue.ACKNOWLEDGE
    assert decisions(commands)[-1] == "state_changed"


def test_attention_denied_keeps_detection_and_buffers_nothing():
    state = ConversationSnapshot(speaker_id=SPEAKER)

    new_state, commands = reduce(state, denied(10))

    assert new_state == state
    assert effects(commands) == []
    assert decisions(commands) == ["ignore"]


def test_speech_frames_in_detection_buffer_nothing():
    state = ConversationSnapshot(speaker_id=SPEAKER)

    new_state, commands = reduce(state, speech(0, 1.0))

    assert new_state.buffered_frames == 0
    assert AppendUtterance not in effects(commands)


# ---------------------------------------------------------------------
# 3. LISTENING
# ---------------------------------------------------------------------

def test_each_listening_frame_is_appended():
    state = listening()

    state, commands, _ = feed(state, FRAME_MS, [1.0, 0.9, 0.1])

    assert effects(commands) == [AppendUtterance] * 3
    assert state.buffered_frames == 3


def test_low_confidence_starts_silence_and_high_confidence_clears_it():
    state = listening()

    state, _ = reduce(state, speech(100, 0.2))
    assert state.not_speaking_since_ms == 100

    state, _ = reduce(state, speech(132, 0.3))
    assert state.not_speaking_since_ms == 100

    state, _ = reduce(state, speech(164, 0.75))
    assert state.not_speaking_since_ms is None


def test_silence_must_strictly_exceed_window():
    policy = ListeningPolicy(silence_window_ms=3000)
    state = listening(0, policy)
    state, _ = reduce(state, speech(1000, 1.0))
    state, _ = reduce(state, speech(2000, 0.0))

    # exactly 3000 ms of silence: still listening
    state, commands = reduce(state, speech(5000, 0.0))
    assert state.state is ConversationState.LISTENING
    assert DispatchUtterance not in effects(commands)

    state, commands = reduce(state, speech(5001, 0.0))
    assert state.state is ConversationState.RESPONDING


def test_genuine_endpoint_dispatches_once_and_leaves_empty_buffer():
    state = listening(0)

    # 1 s of speech, then silence until the window is exceeded
    state, speech_cmds, ts = feed(state, FRAME_MS, [1.0] * 31)
    state, silence_cmds, _ = feed(state, ts, [0.0] * 96)

    commands = speech_cmds + silence_cmds
    assert effects(commands).count(DispatchUtterance) == 1
    assert state.state is ConversationState.RESPONDING
    assert state.buffered_frames == 0
    assert state.utterances_dispatched == 1

    waiting = [c for c in commands if isinstance(c, PlayCue)]
    assert [c.cue for c in waiting] == [Cue.WAITING]
    assert "utterance_dispatched" in decisions(silence_cmds)


def test_dispatch_follows_last_append():
    state = listening(0)
    state, _, ts = feed(state, FRAME_MS, [1.0] * 31)
    state, commands, _ = feed(state, ts, [0.0] * 96)

    kinds = effects(commands)
    dispatch_at = kinds.index(DispatchUtterance)
    assert kinds[dispatch_at - 1] is AppendUtterance
    assert AppendUtterance not in kinds[dispatch_at:]


def test_false_trigger_discards_buffer_and_releases_attention():
    state = listening(0)

    # Silent right after the wake word: speech duration 32 ms < 500 ms
    state, commands, _ = feed(state, FRAME_MS, [0.0] * 96)

    kinds = effects(commands)
    assert DispatchUtterance not in kinds
    assert kinds[-2:] == [ClearUtterance, ReleaseAttention]
    assert state.state is ConversationState.DETECTION
    assert state.buffered_frames == 0
    assert state.false_triggers == 1
    assert "false_trigger" in decisions(commands)


def test_false_trigger_boundary_uses_speech_duration():
    policy = ListeningPolicy(min_utterance_ms=500, silence_window_ms=3000)

    # Speech lasting exactly 500 ms counts as genuine
    state = listening(0, policy)
    state, _ = reduce(state, speech(500, 0.0))
    state, _ = reduce(state, speech(3501, 0.0))
    assert state.state is ConversationState.RESPONDING

    # 499 ms is a false trigger
    state = listening(0, policy)
    state, _ = reduce(state, speech(499, 0.0))
    state, _ = reduce(state, speech(3500, 0.0))
    assert state.state is ConversationState.DETECTION


def test_policy_thresholds_are_tunable():
    policy = ListeningPolicy(vad_threshold=0.5, silence_window_ms=100, min_utterance_ms=0)
    state = listening(0, policy)

    state, _ = reduce(state, speech(32, 0.6))
    assert state.not_speaking_since_ms is None

    state, _ = reduce(state, speech(64, 0.4))
    state, _ = reduce(state, speech(200, 0.4))

    assert state.state is ConversationState.RESPONDING


# ---------------------------------------------------------------------
# 4. RESPONDING
# ---------------------------------------------------------------------

def responding() -> ConversationSnapshot:
    state = listening(0)
    state, _, ts = feed(state, FRAME_MS, [1.0] * 31)
    state, _, _ = feed(state, ts, [0.0] * 96)
    assert state.state is ConversationState.RESPONDING
    return state


def test_frames_are_discarded_while_responding():
    state = responding()

    new_state, commands = reduce(state, speech(99_999, 1.0))

    assert new_state == state
    assert effects(commands) == []


def test_finished_conversation_continues_in_listening():
    state = responding()

    new_state, commands = reduce(state, finished(20_000, carry_on=True))

    assert new_state.state is ConversationState.LISTENING
    assert new_state.listening_since_ms == 20_000
    assert new_state.not_speaking_since_ms is None
    assert effects(commands) == [ClearUtterance]


def test_finished_conversation_releases_attention_on_return_to_detection():
    state = responding()

    new_state, commands = reduce(state, finished(20_000, carry_on=False))

    assert new_state.state is ConversationState.DETECTION
    assert new_state.listening_since_ms is None
    assert effects(commands) == [ClearUtterance, ReleaseAttention]


# ---------------------------------------------------------------------
# 5. Stop / engine failure / disconnect
# ---------------------------------------------------------------------

def test_stop_while_listening_abandons_conversation():
    state = listening(0)
    state, _, _ = feed(state, FRAME_MS, [1.0] * 5)

    new_state, commands = reduce(state, stop(500))

    assert new_state.state is ConversationState.DETECTION
    assert effects(commands) == [StopBackend, ClearUtterance, ReleaseAttention]


def test_stop_while_responding_abandons_conversation():
    new_state, commands = reduce(responding(), stop(20_000))

    assert new_state.state is ConversationState.DETECTION
    assert effects(commands) == [StopBackend, ClearUtterance, ReleaseAttention]


def test_stop_in_detection_is_ignored():
    state = ConversationSnapshot(speaker_id=SPEAKER)

    new_state, commands = reduce(state, stop())

    assert new_state == state
    assert effects(commands) == []


def test_engine_failure_skips_frame_without_state_change():
    state = listening(0)
    event = EngineFailed(EventType.ENGINE_FAILED, 32, engine="vad", reason="boom")

    new_state, commands = reduce(state, event)

    assert new_state == state
    assert effects(commands) == []
    assert decisions(commands) == ["engine_failed"]


def test_disconnect_mid_listening_dispatches_nothing_and_releases():
    state = listening(0)
    state, _, _ = feed(state, FRAME_MS, [1.0] * 20)

    new_state, commands = reduce(state, disconnected(1000))

    kinds = effects(commands)
    assert DispatchUtterance not in kinds
    assert ClearUtterance in kinds
    assert kinds[-1] is ReleaseAttention
    assert new_state.closed
    assert new_state.state is ConversationState.DETECTION


def test_disconnect_while_responding_stops_backend():
    new_state, commands = reduce(responding(), disconnected(20_000))

    assert effects(commands) == [StopBackend, ClearUtterance, ReleaseAttention]
    assert new_state.closed


def test_closed_session_ignores_everything():
    state, _ = reduce(ConversationSnapshot(speaker_id=SPEAKER), disconnected())

    new_state, commands = reduce(state, granted(5))

    assert new_state == state
    assert effects(commands) == []
    assert decisions(commands) == ["ignore"]
