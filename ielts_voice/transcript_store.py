import asyncio
from datetime import datetime, timezone

from firebase_admin import firestore
from loguru import logger

from .models import ConversationContext, HistoryEntry


class TranscriptStore:
    """
    Mirrors every conversation into Firestore so the full transcript survives
    even though the in-memory history is capped. Writes are best effort: a
    failure is logged and never interrupts the conversation.
    """
    def __init__(self, db, collection: str = "speaking_sessions"):
        self.db = db
        self.collection = collection

    def _get_session_ref(self, session_id: str):
        return self.db.collection(self.collection).document(session_id)

    async def _write(self, action: str, session_id: str, fn, payload: dict) -> bool:
        try:
            await asyncio.to_thread(fn, payload)
            return True
        except Exception as e:
            logger.error(f"Firestore {action} failed for session {session_id}: {e}")
            return False

    async def open_session(self, session_id: str, greeting: HistoryEntry) -> bool:
        now = datetime.now(timezone.utc)
        ref = self._get_session_ref(session_id)
        return await self._write("create", session_id, ref.set, {
            "session_id": session_id,
            "started_at": now,
            "last_message_at": now,
            "is_active": True,
            "message_count": 1,
            "transcript": [greeting.model_dump(mode="json")],
        })

    async def append(self, session_id: str, entry: HistoryEntry) -> bool:
        ref = self._get_session_ref(session_id)
        return await self._write("append", session_id, ref.update, {
            "transcript": firestore.ArrayUnion([entry.model_dump(mode="json")]),
            "last_message_at": datetime.now(timezone.utc),
            "message_count": firestore.Increment(1),
        })

    async def close_session(self, session_id: str, feedback: str, context: ConversationContext) -> bool:
        ref = self._get_session_ref(session_id)
        return await self._write("close", session_id, ref.update, {
            "is_active": False,
            "feedback": feedback,
            "context": context.model_dump(),
            "ended_at": datetime.now(timezone.utc),
        })
