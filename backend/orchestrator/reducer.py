"""
Pure conversation reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs (timestamps ride on events).
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

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
    Event,
    ResponseFinished,
    SpeechFrame,
    StopRequested,
    WakeWordDetected,
)
from orchestrator.state_dataclass import ConversationSnapshot


Transition = tuple[ConversationSnapshot, tuple[Command, ...]]


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: ConversationSnapshot,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "speaker_id": state.speaker_id,
            "state": state.state.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "buffered_frames": state.buffered_frames,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(state: ConversationSnapshot, event: Event, reason: str) -> Transition:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _transition(
    old: ConversationSnapshot,
    new: ConversationSnapshot,
    event: Event,
    source: str,
    commands: tuple[Command, ...],
) -> Transition:
    return new, _logs_last(commands + (
        _log(
            new,
            event,
            "state_changed",
            {
                "from_state": old.state.value,
                "to_state": new.state.value,
                "source": source,
            },
        ),
    ))


def _to_detection(state: ConversationSnapshot) -> ConversationSnapshot:
    return replace(
        state,
        state=ConversationState.DETECTION,
        listening_since_ms=None,
        not_speaking_since_ms=None,
        buffered_frames=0,
    )


def _to_listening(state: ConversationSnapshot, now_ms: int) -> ConversationSnapshot:
    return replace(
        state,
        state=ConversationState.LISTENING,
        listening_since_ms=now_ms,
        not_speaking_since_ms=None,
        buffered_frames=0,
    )


# =============================================================================
# Reducer
# =============================================================================

def reduce(state: ConversationSnapshot, event: Event) -> Transition:
    """
    Pure reducer for one speaker's conversation state machine.

    Given the current snapshot and a single event, returns:
    - the next snapshot
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Closed sessions ignore everything
    """
    if state.closed:
        return _ignore(state, event, "session_closed")

    # ------------------------------------------------------------------
    # State-independent events
    # ------------------------------------------------------------------
    if isinstance(event, Disconnected):
        return _on_disconnected(state, event)

    if isinstance(event, EngineFailed):
        # Frame skipped; no state change
        return state, (
            _log(state, event, "engine_failed", {
                "engine": event.engine,
                "reason": event.reason,
            }),
        )

    if state.state is ConversationState.DETECTION:
        return _reduce_detection(state, event)

    if state.state is ConversationState.LISTENING:
        return _reduce_listening(state, event)

    if state.state is ConversationState.RESPONDING:
        return _reduce_responding(state, event)

    return _ignore(state, event, "unknown_state")


# ---------------------------------------------------------------------
# DETECTION
# ---------------------------------------------------------------------

def _reduce_detection(state: ConversationSnapshot, event: Event) -> Transition:
    if isinstance(event, WakeWordDetected):
        new_state = replace(state, wake_detections=state.wake_detections + 1)
        return new_state, (
            AcquireAttention(),
            _log(new_state, event, "wake_word_detected", {
                "keyword_index": event.keyword_index,
            }),
        )

    if isinstance(event, AttentionGranted):
        new_state = _to_listening(state, event.ts_ms)
        return _transition(
            state,
            new_state,
            event,
            "attention_granted",
            (
                ClearUtterance(),
                ResetBackend(),
                PlayCue(cue=Cue.ACKNOWLEDGE),
            ),
        )

    if isinstance(event, AttentionDenied):
        return _ignore(state, event, "attention_held_elsewhere")

    if isinstance(event, StopRequested):
        return _ignore(state, event, "not_in_conversation")

    return _ignore(state, event, "not_applicable_in_detection")


# ---------------------------------------------------------------------
# LISTENING
# ---------------------------------------------------------------------

def _reduce_listening(state: ConversationSnapshot, event: Event) -> Transition:
    if isinstance(event, SpeechFrame):
        return _on_speech_frame(state, event)

    if isinstance(event, StopRequested):
        return _on_stop(state, event)

    return _ignore(state, event, "not_applicable_in_listening")


def _on_speech_frame(state: ConversationSnapshot, event: SpeechFrame) -> Transition:
    policy = state.policy
    now = event.ts_ms

    commands: tuple[Command, ...] = ()
    if event.pcm is not None:
        commands = (AppendUtterance(pcm=event.pcm),)

    not_speaking_since = state.not_speaking_since_ms
    if event.confidence >= policy.vad_threshold:
        not_speaking_since = None
    elif not_speaking_since is None:
        not_speaking_since = now

    updated = replace(
        state,
        not_speaking_since_ms=not_speaking_since,
        buffered_frames=state.buffered_frames + len(commands),
    )

    if not_speaking_since is None or now - not_speaking_since <= policy.silence_window_ms:
        return updated, commands

    listening_since = state.listening_since_ms if state.listening_since_ms is not None else now
    # (now - listening_since) - (now - not_speaking_since)
    speech_ms = not_speaking_since - listening_since
    details = {
        "speech_ms": speech_ms,
        "silence_ms": now - not_speaking_since,
        "buffered_frames": updated.buffered_frames,
    }

    if speech_ms < policy.min_utterance_ms:
        new_state = replace(_to_detection(updated), false_triggers=state.false_triggers + 1)
        return _transition(
            updated,
            new_state,
            event,
            "false_trigger",
            commands + (
                ClearUtterance(),
                ReleaseAttention(),
                _log(updated, event, "false_trigger", details),
            ),
        )

    new_state = replace(
        updated,
        state=ConversationState.RESPONDING,
        not_speaking_since_ms=None,
        buffered_frames=0,
        utterances_dispatched=state.utterances_dispatched + 1,
    )
    return _transition(
        updated,
        new_state,
        event,
        "endpoint_detected",
        commands + (
            DispatchUtterance(),
            PlayCue(cue=Cue.WAITING),
            _log(updated, event, "utterance_dispatched", details),
        ),
    )


# ---------------------------------------------------------------------
# RESPONDING
# ---------------------------------------------------------------------

def _reduce_responding(state: ConversationSnapshot, event: Event) -> Transition:
    if isinstance(event, ResponseFinished):
        if event.continue_conversation:
            return _transition(
                state,
                _to_listening(state, event.ts_ms),
                event,
                "response_finished_continue",
                (ClearUtterance(),),
            )

        # Attention is held until the reply has finished playing
        return _transition(
            state,
            _to_detection(state),
            event,
            "response_finished_released",
            (ClearUtterance(), ReleaseAttention()),
        )

    if isinstance(event, StopRequested):
        return _on_stop(state, event)

    if isinstance(event, SpeechFrame):
        return _ignore(state, event, "frame_discarded_while_responding")

    return _ignore(state, event, "not_applicable_in_responding")


# ---------------------------------------------------------------------
# Shared transitions
# ---------------------------------------------------------------------

def _on_stop(state: ConversationSnapshot, event: Event) -> Transition:
    return _transition(
        state,
        _to_detection(state),
        event,
        "stop_requested",
        (
            StopBackend(),
            ClearUtterance(),
            ReleaseAttention(),
        ),
    )


def _on_disconnected(state: ConversationSnapshot, event: Disconnected) -> Transition:
    commands: tuple[Command, ...] = ()
    if state.state is ConversationState.RESPONDING:
        commands = (StopBackend(),)
    if state.state is not ConversationState.DETECTION:
        # Partial utterances are never dispatched
        commands = commands + (ClearUtterance(),)
    commands = commands + (ReleaseAttention(),)

    new_state = replace(_to_detection(state), closed=True)
    return _transition(state, new_state, event, "disconnected", commands)
