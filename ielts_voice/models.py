from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone


class Role(str, Enum):
    EXAMINER = "examiner"
    USER = "user"


class HistoryEntry(BaseModel):
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def as_chat_message(self) -> dict:
        """Map onto the chat-completions role vocabulary."""
        return {
            "role": "assistant" if self.role == Role.EXAMINER else "user",
            "content": self.content,
        }


class ConversationContext(BaseModel):
    topics_discussed: List[str] = []
    candidate_interests: List[str] = []
    strengths: List[str] = []


class SessionDetails(BaseModel):
    session_id: str
    history_length: int
    context: ConversationContext
    turn_in_progress: bool
    created_at: datetime
    last_activity_at: datetime


class RealtimeSessionRequest(BaseModel):
    voice: Optional[str] = None
    instructions: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    openai: str
    firestore: str
    active_sessions: int
