"""
Deployment settings for the relay, read once from the environment.

Behavioral constants stay in spec.py. Only what differs between
deployments (credentials, model choices, wake words) and the endpointing
thresholds operators tune per room are overridable here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import (
    MIN_UTTERANCE_MS,
    RESPONDING_POLL_MS,
    SILENCE_WINDOW_MS,
    VAD_SPEAKING_THRESHOLD,
    WAKEWORD_SCORE_THRESHOLD,
    ListeningPolicy,
)


DEFAULT_ASSISTANT_INSTRUCTIONS = (
    "You are a voice assistant sitting in a group voice channel. "
    "Answer briefly and conversationally; your reply is spoken aloud. "
    'When the user is done talking to you, end your reply with '
    '@{"tool": "end_conversation"}.'
)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class AppConfig:
    """
    Frozen settings handed to create_app().

    Tests construct it directly instead of going through the environment.
    """

    env: str

    # Conversational backend
    openai_api_key: str | None
    llm_model: str
    transcription_model: str
    assistant_instructions: str

    # JSONL event log on stdout
    enable_json_logs: bool

    # Wake-word engine; model names in keyword-index order
    wakeword_models: tuple[str, ...]
    wakeword_threshold: float

    # Endpointing
    vad_threshold: float
    silence_window_ms: int
    min_utterance_ms: int
    responding_poll_ms: int

    def listening_policy(self) -> ListeningPolicy:
        return ListeningPolicy(
            vad_threshold=self.vad_threshold,
            silence_window_ms=self.silence_window_ms,
            min_utterance_ms=self.min_utterance_ms,
            responding_poll_ms=self.responding_poll_ms,
        )

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Build the config from process environment variables.

        Raises:
            ValueError naming the variable when a number does not parse.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            llm_model=os.environ.get("LLM_MODEL", "gpt-4o-mini"),
            transcription_model=os.environ.get("TRANSCRIPTION_MODEL", "whisper-1"),
            assistant_instructions=os.environ.get(
                "ASSISTANT_INSTRUCTIONS", DEFAULT_ASSISTANT_INSTRUCTIONS
            ),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
            wakeword_models=_env_list("WAKEWORD_MODELS", "hey_jarvis"),
            wakeword_threshold=_env_float("WAKEWORD_THRESHOLD", WAKEWORD_SCORE_THRESHOLD),
            vad_threshold=_env_float("VAD_THRESHOLD", VAD_SPEAKING_THRESHOLD),
            silence_window_ms=_env_int("SILENCE_WINDOW_MS", SILENCE_WINDOW_MS),
            min_utterance_ms=_env_int("MIN_UTTERANCE_MS", MIN_UTTERANCE_MS),
            responding_poll_ms=_env_int("RESPONDING_POLL_MS", RESPONDING_POLL_MS),
        )
