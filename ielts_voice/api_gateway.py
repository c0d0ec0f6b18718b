import base64
import binascii
import uuid

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import BaseModel, ValidationError

from .event_streamer import (
    AUDIO_CHUNK,
    END_SESSION,
    START_SESSION,
    ClientMessage,
    ErrorEvent,
    serialize_event,
)
from .services import VoiceServices

SESSION_GONE = "Session not found. Please start a new session."


async def websocket_endpoint(websocket: WebSocket):
    voice: VoiceServices = websocket.app.state.voice
    await websocket.accept()
    connection_id = uuid.uuid4().hex

    async def emit(event: BaseModel) -> None:
        try:
            await websocket.send_text(serialize_event(event))
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.warning(f"Could not deliver {getattr(event, 'type', 'event')} to {connection_id}: {e}")

    with logger.contextualize(connection_id=connection_id):
        logger.info("Voice client connected.")
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = ClientMessage.model_validate_json(data)
                except ValidationError:
                    await emit(ErrorEvent(message="Invalid message"))
                    continue

                if msg.type == START_SESSION:
                    await voice.orchestrator.start_session(emit, owner_id=connection_id)
                elif msg.type == AUDIO_CHUNK:
                    await _handle_audio_chunk(voice, msg, connection_id, emit)
                elif msg.type == END_SESSION:
                    if not _owns(voice, msg.session_id, connection_id):
                        await emit(ErrorEvent(message=SESSION_GONE, recoverable=False))
                        continue
                    if not await voice.end_session(msg.session_id, emit):
                        await emit(ErrorEvent(message=SESSION_GONE, recoverable=False))
                else:
                    await emit(ErrorEvent(message=f"Unknown message type: {msg.type}"))
        except WebSocketDisconnect:
            logger.info("Voice client disconnected.")
        finally:
            voice.drop_connection(connection_id)


def _owns(voice: VoiceServices, session_id: str | None, connection_id: str) -> bool:
    if not session_id:
        return False
    session = voice.registry.get(session_id)
    return session is not None and session.owner_id == connection_id


async def _handle_audio_chunk(voice: VoiceServices, msg: ClientMessage, connection_id: str, emit) -> None:
    if not msg.session_id:
        await emit(ErrorEvent(message="No session ID provided"))
        return
    if not _owns(voice, msg.session_id, connection_id):
        logger.warning(f"Audio chunk for unknown session {msg.session_id}.")
        await emit(ErrorEvent(message=SESSION_GONE, recoverable=False))
        return
    if not msg.audio:
        logger.debug("Ignoring audio chunk without audio data.")
        return
    try:
        chunk = base64.b64decode(msg.audio, validate=True)
    except (binascii.Error, ValueError):
        await emit(ErrorEvent(message="Audio must be base64 encoded"))
        return
    voice.add_chunk(msg.session_id, chunk)
