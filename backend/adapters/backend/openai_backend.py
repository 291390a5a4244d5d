"""
OpenAI conversational backend.

Role in the system:
- Receives one complete utterance (WAV) per exchange.
- Transcribes it with the audio transcription API.
- Composes a reply with the chat completions API over a bounded,
  per-conversation context.
- Returns BackendReply, or None for "no answer".

Architectural constraints:
- No attention handling, no playback, no endpointing.
- No retries; a failed request is surfaced as BackendError and the
  speaker runtime treats it as "no answer".
- One exchange in flight at a time (the arbitrator's backend lock
  serializes callers); stop() cancels it.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import openai

from adapters.backend.base import BackendError, BackendReply, ConversationalBackend
from audio.utterance import Utterance
from context.conversation import ConversationContext
from context.serialization import parse_reply, serialize_for_llm
from observability.logger import log_event
from observability.metrics import timed


def _now_ms() -> int:
    return int(time.time() * 1000)


class OpenAIConversationalBackend(ConversationalBackend):
    """
    Transcribe-then-complete backend on top of `openai.AsyncOpenAI`.
    """

    def __init__(
        self,
        *,
        client: Any,
        llm_model: str,
        transcription_model: str,
        instructions: str,
        context: ConversationContext | None = None,
    ) -> None:
        """
        Args:
            client:
                Vendor client (openai.AsyncOpenAI or compatible).
            llm_model:
                Chat completion model identifier.
            transcription_model:
                Audio transcription model identifier.
            instructions:
                System prompt text.
        """
        self._client = client
        self._llm_model = llm_model
        self._transcription_model = transcription_model
        self._instructions = instructions
        self._context = context if context is not None else ConversationContext()

        self._inflight: asyncio.Task[BackendReply | None] | None = None
        self._stop_requested = False

    # ------------------------------------------------------------------
    # ConversationalBackend
    # ------------------------------------------------------------------

    async def respond(self, utterance: Utterance) -> BackendReply | None:
        self._stop_requested = False
        task = asyncio.create_task(self._exchange(utterance))
        self._inflight = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._stop_requested:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "BACKEND_EXCHANGE_STOPPED",
                    "speaker_id": utterance.speaker_id,
                })
                return None
            raise
        finally:
            self._inflight = None
            self._stop_requested = False

    async def is_responding(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def stop(self) -> None:
        task = self._inflight
        if task is None or task.done():
            return
        self._stop_requested = True
        task.cancel()

    async def reset(self) -> None:
        self._context.clear()

    @property
    def context(self) -> ConversationContext:
        return self._context

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _exchange(self, utterance: Utterance) -> BackendReply | None:
        transcript = await self._transcribe(utterance)

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "BACKEND_TRANSCRIPT",
            "speaker_id": utterance.speaker_id,
            "transcript_len": len(transcript),
            "utterance_ms": utterance.duration_ms,
        })

        if not transcript:
            return None

        raw = await self._complete(utterance.speaker_id, transcript)
        parsed = parse_reply(raw)

        if not parsed.text and not parsed.end_conversation:
            return None

        self._context.add_exchange(
            speaker_id=utterance.speaker_id,
            user_text=transcript,
            assistant_text=parsed.text,
        )

        return BackendReply(text=parsed.text, end_conversation=parsed.end_conversation)

    async def _transcribe(self, utterance: Utterance) -> str:
        try:
            with timed("backend_transcription_ms", speaker_id=utterance.speaker_id):
                result = await self._client.audio.transcriptions.create(
                    model=self._transcription_model,
                    file=("utterance.wav", utterance.to_wav(), "audio/wav"),
                )
        except openai.OpenAIError as exc:
            raise BackendError(f"transcription failed: {type(exc).__name__}: {exc}") from exc

        return (getattr(result, "text", "") or "").strip()

    async def _complete(self, speaker_id: int, transcript: str) -> str:
        messages = serialize_for_llm(
            system_prompt=self._instructions,
            context=self._context,
            speaker_id=speaker_id,
            user_text=transcript,
        )

        try:
            with timed("backend_completion_ms", speaker_id=speaker_id):
                completion = await self._client.chat.completions.create(
                    model=self._llm_model,
                    messages=messages,
                )
        except openai.OpenAIError as exc:
            raise BackendError(f"completion failed: {type(exc).__name__}: {exc}") from exc

        try:
            return completion.choices[0].message.content or ""
        except (AttributeError, IndexError) as exc:
            raise BackendError(f"malformed completion: {type(exc).__name__}: {exc}") from exc
