import asyncio
import os
from datetime import timedelta
from typing import List, Optional

import firebase_admin
import httpx
from firebase_admin import credentials, firestore
from loguru import logger

from .chunk_accumulator import ChunkAccumulator
from .config import Settings
from .openai_services import OpenAIDialogue, OpenAISpeech, OpenAITranscriber, build_openai_client
from .orchestrator import ConversationOrchestrator, Emitter
from .session_manager import SessionRegistry
from .transcript_store import TranscriptStore


def init_firestore(settings: Settings):
    """
    Initialize Firebase Admin and return a Firestore client.
    Uses the service account at FIREBASE_CREDENTIALS when present, ADC otherwise.
    """
    if not firebase_admin._apps:
        path = settings.firebase_credentials
        if path and os.path.exists(path):
            logger.info(f"Found service account at {path}")
            firebase_admin.initialize_app(credentials.Certificate(path))
        else:
            logger.info("No service account file found, using ADC.")
            firebase_admin.initialize_app()
        logger.info("Firebase Admin initialized.")
    return firestore.client()


class VoiceServices:
    """
    Owns everything a voice conversation needs for the lifetime of the app:
    the session registry, the chunk accumulator, the turn orchestrator and
    the clients they talk through. Built in the FastAPI lifespan; tests build
    their own with fake services.
    """
    def __init__(
        self,
        settings: Settings,
        transcriber,
        dialogue,
        synthesizer,
        transcript_store: Optional[TranscriptStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        openai_client=None,
    ):
        self.settings = settings
        self.registry = SessionRegistry(history_limit=settings.history_limit)
        self.orchestrator = ConversationOrchestrator(
            self.registry,
            transcriber,
            dialogue,
            synthesizer,
            settings,
            transcript_store=transcript_store,
        )
        self.accumulator = ChunkAccumulator(
            self.orchestrator.handle_utterance,
            debounce_seconds=settings.debounce_seconds,
            min_bytes=settings.min_audio_bytes,
        )
        self.transcript_store = transcript_store
        self.http_client = http_client or httpx.AsyncClient(timeout=30)
        self.openai_client = openai_client
        self._reaper: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "VoiceServices":
        client = build_openai_client(settings)
        transcript_store = None
        if settings.firestore_enabled:
            try:
                transcript_store = TranscriptStore(init_firestore(settings))
            except Exception as e:
                logger.critical(f"Failed to initialize Firestore, transcripts will not be persisted: {e}")
        return cls(
            settings,
            transcriber=OpenAITranscriber(
                client,
                model=settings.transcription_model,
                language=settings.transcription_language,
                upload_dir=settings.upload_dir,
            ),
            dialogue=OpenAIDialogue(client, model=settings.chat_model),
            synthesizer=OpenAISpeech(
                client,
                model=settings.tts_model,
                voice=settings.tts_voice,
                response_format=settings.tts_format,
            ),
            transcript_store=transcript_store,
            openai_client=client,
        )

    async def start(self) -> None:
        if self._reaper is None:
            self._reaper = asyncio.create_task(self._reap_forever())
        logger.info("Voice services started.")

    async def shutdown(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None
        await self.accumulator.aclose()
        for session_id in self.registry.session_ids():
            self.drop_session(session_id)
        await self.http_client.aclose()
        if self.openai_client is not None:
            await self.openai_client.close()
        logger.info("Voice services stopped.")

    def add_chunk(self, session_id: str, data: bytes) -> None:
        session = self.registry.get(session_id)
        if session is not None:
            session.touch()
        self.accumulator.add_chunk(session_id, data)

    async def end_session(self, session_id: str, emit: Optional[Emitter] = None) -> bool:
        # Unflushed audio is dropped; turns already flushed finish before the summary.
        self.accumulator.discard(session_id)
        return await self.orchestrator.end_session(session_id, emit)

    def drop_session(self, session_id: str) -> None:
        self.accumulator.discard(session_id)
        self.orchestrator.forget(session_id)

    def drop_connection(self, owner_id: str) -> None:
        for session_id in self.registry.sessions_owned_by(owner_id):
            logger.info(f"Connection {owner_id} closed, dropping session {session_id}.")
            self.drop_session(session_id)

    def reap_idle_sessions(self) -> List[str]:
        idle = timedelta(minutes=self.settings.session_idle_minutes)
        reaped = []
        for session_id in self.registry.idle_sessions(idle):
            if self.orchestrator.is_turn_in_progress(session_id):
                continue
            logger.info(f"Session {session_id} idle for more than {idle}, reaping.")
            self.drop_session(session_id)
            reaped.append(session_id)
        return reaped

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.reaper_interval_seconds)
            try:
                self.reap_idle_sessions()
            except Exception as e:
                logger.error(f"Idle session reaper failed: {e}")
