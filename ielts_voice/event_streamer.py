from pydantic import BaseModel
import json
from typing import Literal, Optional

# Inbound

class ClientMessage(BaseModel):
    type: str
    session_id: Optional[str] = None
    audio: Optional[str] = None

START_SESSION = "start-session"
AUDIO_CHUNK = "audio-chunk"
END_SESSION = "end-session"

# Outbound

class SessionStartedEvent(BaseModel):
    type: Literal["session-started"] = "session-started"
    session_id: str
    message: str
    audio: Optional[str] = None

class TurnResponseEvent(BaseModel):
    type: Literal["turn-response"] = "turn-response"
    message: str
    audio: Optional[str] = None
    user_transcript: str
    fallback: bool = False

class SessionEndedEvent(BaseModel):
    type: Literal["session-ended"] = "session-ended"
    session_id: str
    feedback: str
    audio: Optional[str] = None

class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    recoverable: bool = True

def serialize_event(event: BaseModel) -> str:
    """Serialize a Pydantic event model to JSON string for WebSocket transmission."""
    return json.dumps(event.model_dump())
