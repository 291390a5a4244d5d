"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (OpenAI client, backend, arbitrator,
  playback cue channel, ingestion demultiplexer)
- Register routes
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from adapters.backend.base import ConversationalBackend
from adapters.backend.openai_backend import OpenAIConversationalBackend
from adapters.engines.openwakeword_engine import OpenWakeWordEngine, ensure_models_downloaded
from adapters.playback.cue_channel import CueChannelPlayback
from audio.vad import EnergyVAD
from config import AppConfig
from observability import logger
from orchestrator.attention import AttentionArbitrator
from server.routes import register_routes
from session.gateway import EngineFactory, IngestionDemultiplexer
from spec import ENGINE_SAMPLE_RATE_HZ, OPENWAKEWORD_FRAME_LENGTH


def create_app(
    config: AppConfig | None = None,
    *,
    backend: ConversationalBackend | None = None,
    engine_factory: EngineFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with fake backends / engines
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    logger.set_enabled(config.enable_json_logs)

    if backend is None:
        backend = build_backend(config)
    # The bundled openwakeword engines need their models on disk
    download_models_at_startup = engine_factory is None
    if engine_factory is None:
        engine_factory = build_engine_factory(config)

    arbitrator = AttentionArbitrator(backend)
    playback = CueChannelPlayback()
    demux = IngestionDemultiplexer(
        arbitrator=arbitrator,
        playback=playback,
        engine_factory=engine_factory,
        policy=config.listening_policy(),
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if download_models_at_startup:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, ensure_models_downloaded)
        yield
        await demux.shutdown()

    app = FastAPI(title="Wake Word Relay API", lifespan=lifespan)

    app.state.config = config
    app.state.backend = backend
    app.state.playback = playback
    app.state.demux = demux

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app


def build_backend(config: AppConfig) -> ConversationalBackend:
    """Build the OpenAI-backed conversational backend (one per process)."""
    if not config.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable not set")

    return OpenAIConversationalBackend(
        client=AsyncOpenAI(api_key=config.openai_api_key),
        llm_model=config.llm_model,
        transcription_model=config.transcription_model,
        instructions=config.assistant_instructions,
    )


def build_engine_factory(config: AppConfig) -> EngineFactory:
    """
    Per-speaker engine pair: openWakeWord for detection, energy VAD sized
    to the same 80 ms frames.
    """
    def factory() -> tuple[OpenWakeWordEngine, EnergyVAD]:
        wake = OpenWakeWordEngine(
            models=config.wakeword_models,
            threshold=config.wakeword_threshold,
        )
        vad = EnergyVAD(
            sample_rate=ENGINE_SAMPLE_RATE_HZ,
            frame_length=OPENWAKEWORD_FRAME_LENGTH,
        )
        return wake, vad

    return factory
