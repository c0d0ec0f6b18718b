import asyncio
import base64
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from loguru import logger
from pydantic import BaseModel

from .config import Settings
from .event_streamer import ErrorEvent, SessionEndedEvent, SessionStartedEvent, TurnResponseEvent
from .openai_services import AudioStorageError, ServiceError
from .prompts import (
    FALLBACK_FEEDBACK,
    GREETING_USER_PROMPT,
    UNCLEAR_AUDIO_REPROMPT,
    UNCLEAR_AUDIO_TRANSCRIPT,
    get_fallback_greeting,
    get_fallback_reply,
    get_greeting_system_prompt,
    get_summary_prompt,
    get_turn_system_prompt,
)
from .session_manager import SessionRegistry
from .transcript_store import TranscriptStore

Emitter = Callable[[BaseModel], Awaitable[None]]
T = TypeVar("T")

GREETING_MAX_TOKENS = 150
REPLY_MAX_TOKENS = 120
SUMMARY_MAX_TOKENS = 700


class ConversationOrchestrator:
    """
    Drives the examiner side of a voice conversation:
    1. Start: greeting, session creation, greeting audio.
    2. Turn: transcribe -> update context -> generate reply -> synthesize -> deliver.
    3. End: performance summary, then the session is destroyed.

    Turns for one session run strictly one after another under a per-session
    lock; different sessions never wait on each other. Remote failures inside
    a turn never reach the client as errors: a canned reply is delivered
    instead and history is left untouched.
    """
    def __init__(
        self,
        registry: SessionRegistry,
        transcriber,
        dialogue,
        synthesizer,
        settings: Settings,
        transcript_store: Optional[TranscriptStore] = None,
    ):
        self.registry = registry
        self.transcriber = transcriber
        self.dialogue = dialogue
        self.synthesizer = synthesizer
        self.settings = settings
        self.transcript_store = transcript_store
        self._locks: Dict[str, asyncio.Lock] = {}
        self._channels: Dict[str, Emitter] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def is_turn_in_progress(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return bool(lock and lock.locked())

    async def _call(self, stage: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.settings.service_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ServiceError(f"{stage} timed out after {self.settings.service_timeout_seconds}s") from e

    async def _speak(self, text: str) -> Optional[str]:
        """Best-effort synthesis; returns base64 audio or None so the client can use a local voice."""
        try:
            audio = await self._call("speech synthesis", self.synthesizer.synthesize(text))
        except ServiceError as e:
            logger.warning(f"Speech synthesis unavailable, sending text only: {e}")
            return None
        except Exception as e:
            logger.exception(f"Speech synthesis failed unexpectedly, sending text only: {e}")
            return None
        return base64.b64encode(audio).decode("ascii")

    async def start_session(self, emit: Emitter, owner_id: Optional[str] = None) -> str:
        messages = [
            {"role": "system", "content": get_greeting_system_prompt()},
            {"role": "user", "content": GREETING_USER_PROMPT},
        ]
        try:
            greeting = await self._call(
                "greeting",
                self.dialogue.complete(messages, max_tokens=GREETING_MAX_TOKENS, temperature=0.7),
            )
        except ServiceError as e:
            logger.warning(f"Greeting generation failed, using a canned greeting: {e}")
            greeting = get_fallback_greeting()

        session_id = self.registry.create_session(greeting, owner_id=owner_id)
        self._channels[session_id] = emit
        audio = await self._speak(greeting)

        await emit(SessionStartedEvent(session_id=session_id, message=greeting, audio=audio))

        session = self.registry.get(session_id)
        if self.transcript_store and session:
            await self.transcript_store.open_session(session_id, session.history[0])
        return session_id

    async def handle_utterance(self, session_id: str, audio: bytes) -> None:
        """Entry point for a flushed utterance. Queues behind any turn already running for the session."""
        async with self._lock_for(session_id):
            with logger.contextualize(session_id=session_id):
                await self._run_turn(session_id, audio)

    async def _run_turn(self, session_id: str, audio: bytes) -> None:
        emit = self._channels.get(session_id)
        session = self.registry.get(session_id)
        if session is None or emit is None:
            logger.warning(f"Dropping {len(audio)} bytes of audio: session {session_id} is gone.")
            if emit is not None:
                await emit(ErrorEvent(message="Session not found. Please start a new session.", recoverable=False))
            return

        try:
            transcript = await self._call("transcription", self.transcriber.transcribe(audio))
        except AudioStorageError as e:
            logger.error(f"Could not stage audio for transcription: {e}")
            await emit(ErrorEvent(message="Could not process that audio. Please try speaking again.", recoverable=True))
            return
        except ServiceError as e:
            logger.error(f"Transcription failed: {e}")
            await self._deliver_fallback(session_id, emit, None)
            return
        except Exception as e:
            logger.exception(f"Unexpected transcription failure: {e}")
            await self._deliver_fallback(session_id, emit, None)
            return

        transcript = transcript.strip()
        logger.info(f"User said: {transcript!r}")
        if len(transcript) < self.settings.min_transcript_chars:
            await emit(TurnResponseEvent(
                message=UNCLEAR_AUDIO_REPROMPT,
                audio=None,
                user_transcript=UNCLEAR_AUDIO_TRANSCRIPT,
                fallback=True,
            ))
            return

        self.registry.update_context(session_id, transcript)

        messages = [{"role": "system", "content": get_turn_system_prompt(session.context)}]
        messages.extend(entry.as_chat_message() for entry in session.recent_history(self.settings.history_window))
        messages.append({"role": "user", "content": transcript})

        try:
            reply = await self._call(
                "reply generation",
                self.dialogue.complete(messages, max_tokens=REPLY_MAX_TOKENS, temperature=0.7),
            )
            reply_audio = await self._call("speech synthesis", self.synthesizer.synthesize(reply))
        except ServiceError as e:
            logger.error(f"Turn failed, delivering fallback reply: {e}")
            await self._deliver_fallback(session_id, emit, transcript)
            return
        except Exception as e:
            logger.exception(f"Unexpected failure while answering, delivering fallback reply: {e}")
            await self._deliver_fallback(session_id, emit, transcript)
            return

        if self.registry.get(session_id) is None:
            logger.warning("Session ended while the reply was being generated; discarding it.")
            return

        user_entry = self.registry.append_user_message(session_id, transcript)
        examiner_entry = self.registry.append_examiner_message(session_id, reply)

        await emit(TurnResponseEvent(
            message=reply,
            audio=base64.b64encode(reply_audio).decode("ascii"),
            user_transcript=transcript,
            fallback=False,
        ))

        if self.transcript_store:
            for entry in (user_entry, examiner_entry):
                if entry is not None:
                    await self.transcript_store.append(session_id, entry)

    async def _deliver_fallback(self, session_id: str, emit: Emitter, transcript: Optional[str]) -> None:
        session = self.registry.get(session_id)
        reply = get_fallback_reply(session.context if session else None)
        audio = await self._speak(reply)
        await emit(TurnResponseEvent(
            message=reply,
            audio=audio,
            user_transcript=transcript or "[Audio processed]",
            fallback=True,
        ))

    async def end_session(self, session_id: str, emit: Optional[Emitter] = None) -> bool:
        """
        Summarise and close a session. Waits for turns already queued for the
        session to finish first. Returns False when the session is unknown.
        """
        if self.registry.get(session_id) is None:
            return False

        async with self._lock_for(session_id):
            with logger.contextualize(session_id=session_id):
                session = self.registry.get(session_id)
                if session is None:
                    return False
                emit = emit or self._channels.get(session_id)

                messages = [{"role": "user", "content": get_summary_prompt(session.transcript, session.context)}]
                try:
                    feedback = await self._call(
                        "summary",
                        self.dialogue.complete(messages, max_tokens=SUMMARY_MAX_TOKENS, temperature=0.4),
                    )
                except ServiceError as e:
                    logger.warning(f"Summary generation failed, using canned feedback: {e}")
                    feedback = FALLBACK_FEEDBACK

                audio = await self._speak(feedback)
                if emit is not None:
                    await emit(SessionEndedEvent(session_id=session_id, feedback=feedback, audio=audio))

                if self.transcript_store:
                    await self.transcript_store.close_session(session_id, feedback, session.context)

                self.registry.destroy_session(session_id)
                self._channels.pop(session_id, None)

        self._locks.pop(session_id, None)
        return True

    def forget(self, session_id: str) -> None:
        """Drop a session without a summary (disconnect or idle expiry)."""
        self.registry.destroy_session(session_id)
        self._channels.pop(session_id, None)
        self._locks.pop(session_id, None)
