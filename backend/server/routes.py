"""
Route registration for the wake word relay API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Bridge the transport WebSocket to the ingestion demultiplexer
- Send playback cues back over the same WebSocket
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from adapters.playback.cue_channel import CueChannelPlayback
from observability.logger import log_event
from protocol.binary import BinaryProtocolError, decode_ingest_frame
from session.gateway import IngestionDemultiplexer
from spec import SSRC_MAX


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.websocket("/ws/voice")
    async def voice_bridge(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        """
        One transport bridge connection carrying every speaker stream.

        Inbound:
        - binary: ssrc-tagged stereo PCM16 packets
        - text: SPEAKING / DISCONNECT / STOP / PLAYBACK_DONE control messages
        Outbound:
        - text: CUE messages
        """
        await ws.accept()

        demux: IngestionDemultiplexer = app.state.demux
        playback: CueChannelPlayback = app.state.playback

        log_event({"ts_ms": _now_ms(), "event_type": "BRIDGE_CONNECTED"})

        cue_task = asyncio.create_task(_send_cues(ws, playback))
        reason = "client_disconnect"

        try:
            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect()

                if msg.get("bytes") is not None:
                    await _on_binary(demux, msg["bytes"])
                elif msg.get("text") is not None:
                    await _on_json(demux, playback, msg["text"])

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            reason = "server_error"
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "WS_FATAL_ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            cue_task.cancel()
            await asyncio.gather(cue_task, return_exceptions=True)
            await demux.shutdown()
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "BRIDGE_DISCONNECTED",
                "reason": reason,
            })


# ------------------------------------------------------------------
# Inbound
# ------------------------------------------------------------------

async def _on_binary(demux: IngestionDemultiplexer, payload: bytes) -> None:
    try:
        frame = decode_ingest_frame(payload)
    except BinaryProtocolError as e:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "BINARY_DECODE_ERROR",
            "error": str(e),
            "payload_len": len(payload),
        })
        return

    await demux.on_voice_packet(frame.ssrc, frame.samples)


async def _on_json(
    demux: IngestionDemultiplexer,
    playback: CueChannelPlayback,
    payload: str,
) -> None:
    """Route one control message; malformed messages are logged and dropped."""
    try:
        data: Any = json.loads(payload)
    except json.JSONDecodeError as e:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "JSON_DECODE_ERROR",
            "error": str(e),
            "payload_preview": payload[:100],
        })
        return

    if not isinstance(data, dict):
        _log_malformed(payload, "not_an_object")
        return

    msg_type = data.get("type")

    try:
        if msg_type == "SPEAKING":
            user_id = data.get("user_id")
            await demux.on_speaking_state(
                None if user_id is None else str(user_id),
                _parse_ssrc(data["ssrc"]),
                bool(data.get("speaking", True)),
            )
        elif msg_type == "DISCONNECT":
            await demux.on_client_disconnect(str(data["user_id"]))
        elif msg_type == "STOP":
            demux.stop_conversation()
        elif msg_type == "PLAYBACK_DONE":
            playback.mark_finished()
        else:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "UNKNOWN_MESSAGE_TYPE",
                "msg_type": msg_type,
            })
    except (KeyError, TypeError, ValueError) as e:
        _log_malformed(payload, f"{type(e).__name__}: {e}")


def _parse_ssrc(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"ssrc must be an integer, got {type(value).__name__}")
    if value < 0 or value > SSRC_MAX:
        raise ValueError(f"ssrc out of range: {value}")
    return value


def _log_malformed(payload: str, reason: str) -> None:
    log_event({
        "ts_ms": _now_ms(),
        "event_type": "MALFORMED_CONTROL_MESSAGE",
        "reason": reason,
        "payload_preview": payload[:100],
    })


# ------------------------------------------------------------------
# Outbound
# ------------------------------------------------------------------

async def _send_cues(ws: WebSocket, playback: CueChannelPlayback) -> None:
    """Forward playback cues to the bridge until cancelled."""
    while True:
        cue = await playback.next_cue()
        await ws.send_text(json.dumps(cue.to_message()))
