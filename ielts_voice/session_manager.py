"""Registry of live speaking-practice conversations.

The registry is the only owner of conversation history and the derived
context. Lookups for unknown ids return ``None`` and mutations on unknown
ids are logged no-ops; callers decide how to react.
"""

import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from loguru import logger

from .models import ConversationContext, HistoryEntry, Role

TOPIC_KEYWORDS = [
    "work", "study", "hobby", "travel", "family", "food",
    "music", "sport", "book", "movie", "technology", "education",
]
INTEREST_MARKERS = ["like", "enjoy", "love", "favorite", "interested", "passion"]
STRENGTH_KEYWORDS = {
    "fluency": ["fluent", "confident", "clear"],
    "vocabulary": ["vocabulary", "words", "express"],
}

_TOKEN_STRIP = re.compile(r"^[^\w']+|[^\w']+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationSession:
    """One ongoing voice conversation.

    Attributes:
        session_id: Registry key handed to the client.
        owner_id: Connection that started the session; only it may use it.
        history: Ordered examiner/user entries, trimmed to ``history_limit``.
        transcript: Every entry of the conversation, never trimmed; feeds the summary.
        context: Topics, interests and strengths picked up from user turns.
    """
    def __init__(self, session_id: str, owner_id: Optional[str], history_limit: int):
        self.session_id: str = session_id
        self.owner_id: Optional[str] = owner_id
        self.history_limit: int = history_limit
        self.history: List[HistoryEntry] = []
        self.transcript: List[HistoryEntry] = []
        self.context: ConversationContext = ConversationContext()
        self.created_at: datetime = _utcnow()
        self.last_activity_at: datetime = self.created_at

    def append(self, role: Role, content: str) -> HistoryEntry:
        entry = HistoryEntry(role=role, content=content)
        self.history.append(entry)
        self.transcript.append(entry)
        if len(self.history) > self.history_limit:
            del self.history[: len(self.history) - self.history_limit]
        self.touch()
        return entry

    def recent_history(self, limit: int) -> List[HistoryEntry]:
        if limit <= 0:
            return []
        return list(self.history[-limit:])

    def touch(self) -> None:
        self.last_activity_at = _utcnow()


class SessionRegistry:
    def __init__(self, history_limit: int = 50):
        self.history_limit = max(2, history_limit)
        self._sessions: Dict[str, ConversationSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def create_session(self, greeting: str, owner_id: Optional[str] = None) -> str:
        """Create a session seeded with the examiner's opening line and return its id."""
        session_id = uuid.uuid4().hex
        while session_id in self._sessions:
            session_id = uuid.uuid4().hex

        session = ConversationSession(session_id, owner_id, self.history_limit)
        session.append(Role.EXAMINER, greeting)
        self._sessions[session_id] = session
        logger.info(f"Session {session_id} created (owner={owner_id}).")
        return session_id

    def get(self, session_id: str) -> Optional[ConversationSession]:
        return self._sessions.get(session_id)

    def append_user_message(self, session_id: str, text: str) -> Optional[HistoryEntry]:
        return self._append(session_id, Role.USER, text)

    def append_examiner_message(self, session_id: str, text: str) -> Optional[HistoryEntry]:
        return self._append(session_id, Role.EXAMINER, text)

    def _append(self, session_id: str, role: Role, text: str) -> Optional[HistoryEntry]:
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Dropping {role.value} message for unknown session {session_id}.")
            return None
        return session.append(role, text)

    def update_context(self, session_id: str, utterance: str) -> None:
        """Annotate the session context from one user utterance.

        Keyword matching is case-insensitive and substring based. Topics are
        recorded in order of first appearance in the utterance; for each
        interest marker the word right before it is taken as the interest.
        Nothing already recorded is added twice.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Cannot update context for unknown session {session_id}.")
            return

        context = session.context
        message = utterance.lower()

        found = [(message.find(topic), topic) for topic in TOPIC_KEYWORDS if topic in message]
        for _, topic in sorted(found):
            if topic not in context.topics_discussed:
                context.topics_discussed.append(topic)

        words = [_TOKEN_STRIP.sub("", word) for word in message.split()]
        for marker in INTEREST_MARKERS:
            index = next((i for i, word in enumerate(words) if marker in word), -1)
            if index > 0:
                interest = words[index - 1]
                if interest and interest not in context.candidate_interests:
                    context.candidate_interests.append(interest)

        for strength, keywords in STRENGTH_KEYWORDS.items():
            if any(keyword in message for keyword in keywords) and strength not in context.strengths:
                context.strengths.append(strength)

        session.touch()

    def destroy_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.info(f"Session {session_id} destroyed.")
        return True

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def sessions_owned_by(self, owner_id: str) -> List[str]:
        return [sid for sid, s in self._sessions.items() if s.owner_id == owner_id]

    def idle_sessions(self, max_idle: timedelta) -> List[str]:
        cutoff = _utcnow() - max_idle
        return [sid for sid, s in self._sessions.items() if s.last_activity_at < cutoff]
