# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from types import SimpleNamespace

import numpy as np
import openai
import pytest

from adapters.backend.base import BackendError
from adapters.backend.openai_backend import OpenAIConversationalBackend
from audio.utterance import Utterance
from spec import ENGINE_SAMPLE_RATE_HZ


# ---------------------------------------------------------------------
# Fake vendor client
# ---------------------------------------------------------------------

class FakeTranscriptions:
    def __init__(self, text: str = "", error: Exception | None = None, gate: asyncio.Event | None = None):
        self.text = text
        self.error = error
        self.gate = gate
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


class FakeCompletions:
    def __init__(self, content: str = "", error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(transcriptions: FakeTranscriptions, completions: FakeCompletions):
    return SimpleNamespace(
        audio=SimpleNamespace(transcriptions=transcriptions),
        chat=SimpleNamespace(completions=completions),
    )


def make_backend(transcript: str = "what time is it", reply: str = "Noon.", **kwargs):
    transcriptions = FakeTranscriptions(
        text=transcript, error=kwargs.get("asr_error"), gate=kwargs.get("gate")
    )
    completions = FakeCompletions(content=reply, error=kwargs.get("llm_error"))
    backend = OpenAIConversationalBackend(
        client=fake_client(transcriptions, completions),
        llm_model="test-llm",
        transcription_model="test-asr",
        instructions="Be brief.",
    )
    return backend, transcriptions, completions


def utterance(speaker_id: int = 7) -> Utterance:
    return Utterance(
        speaker_id=speaker_id,
        samples=np.zeros(1600, dtype=np.int16),
        sample_rate_hz=ENGINE_SAMPLE_RATE_HZ,
    )


# ---------------------------------------------------------------------
# Exchanges
# ---------------------------------------------------------------------

def test_reply_is_returned_and_context_recorded():
    backend, transcriptions, completions = make_backend()

    reply = asyncio.run(backend.respond(utterance()))

    assert reply is not None
    assert reply.text == "Noon."
    assert reply.end_conversation is False

    assert transcriptions.calls[0]["model"] == "test-asr"
    name, wav, mime = transcriptions.calls[0]["file"]
    assert name.endswith(".wav") and wav[:4] == b"RIFF" and mime == "audio/wav"

    messages = completions.calls[0]["messages"]
    assert messages[0] == {"role": "system", "content": "Be brief."}
    assert messages[-1] == {"role": "user", "content": "what time is it", "name": "speaker_7"}

    assert [t.role for t in backend.context.turns] == ["user", "assistant"]


def test_empty_transcript_means_no_answer():
    backend, _, completions = make_backend(transcript="   ")

    assert asyncio.run(backend.respond(utterance())) is None
    assert completions.calls == []
    assert backend.context.turns == ()


def test_empty_reply_means_no_answer():
    backend, _, _ = make_backend(reply="")

    assert asyncio.run(backend.respond(utterance())) is None


def test_end_conversation_directive_is_parsed():
    backend, _, _ = make_backend(reply='Goodbye! @{"tool": "end_conversation"}')

    reply = asyncio.run(backend.respond(utterance()))

    assert reply.text == "Goodbye!"
    assert reply.end_conversation is True


def test_previous_exchange_is_sent_as_context():
    backend, _, completions = make_backend()

    async def scenario():
        await backend.respond(utterance(1))
        await backend.respond(utterance(2))

    asyncio.run(scenario())

    second = completions.calls[1]["messages"]
    assert [m["role"] for m in second] == ["system", "user", "assistant", "user"]
    assert second[1]["name"] == "speaker_1"
    assert second[3]["name"] == "speaker_2"


def test_reset_clears_context():
    backend, _, _ = make_backend()

    async def scenario():
        await backend.respond(utterance())
        await backend.reset()

    asyncio.run(scenario())

    assert backend.context.turns == ()


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------

def test_transcription_failure_is_backend_error():
    backend, _, _ = make_backend(asr_error=openai.OpenAIError("asr down"))

    with pytest.raises(BackendError):
        asyncio.run(backend.respond(utterance()))


def test_completion_failure_is_backend_error():
    backend, _, _ = make_backend(llm_error=openai.OpenAIError("llm down"))

    with pytest.raises(BackendError):
        asyncio.run(backend.respond(utterance()))

    assert backend.context.turns == ()


# ---------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------

def test_stop_preempts_inflight_exchange():
    async def scenario():
        gate = asyncio.Event()
        backend, _, completions = make_backend(gate=gate)

        task = asyncio.create_task(backend.respond(utterance()))
        while not await backend.is_responding():
            await asyncio.sleep(0)

        await backend.stop()
        result = await task
        return result, await backend.is_responding(), completions

    result, responding, completions = asyncio.run(scenario())

    assert result is None
    assert responding is False
    assert completions.calls == []


def test_stop_without_inflight_exchange_is_noop():
    backend, _, _ = make_backend()

    asyncio.run(backend.stop())

    assert asyncio.run(backend.is_responding()) is False
