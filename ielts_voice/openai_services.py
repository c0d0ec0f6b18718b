import asyncio
import os
import tempfile
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI
from loguru import logger

from .config import Settings


class ServiceError(Exception):
    """A remote AI service call failed or returned nothing usable."""


class AudioStorageError(Exception):
    """Buffered audio could not be written out for transcription."""


def build_openai_client(settings: Settings) -> Optional[AsyncOpenAI]:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set. Voice turns will use fallback replies.")
        return None
    return AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.service_timeout_seconds)


def _require(client: Optional[AsyncOpenAI]) -> AsyncOpenAI:
    if client is None:
        raise ServiceError("OpenAI client is not configured")
    return client


class OpenAITranscriber:
    """Whisper transcription of one buffered utterance.

    The audio goes through a temporary file in ``upload_dir`` which is removed
    whether or not the request succeeds.
    """
    def __init__(self, client: Optional[AsyncOpenAI], model: str = "whisper-1", language: str = "en",
                 upload_dir: str = "uploads", suffix: str = ".webm"):
        self.client = client
        self.model = model
        self.language = language
        self.upload_dir = upload_dir
        self.suffix = suffix

    def _write_temp_file(self, audio: bytes) -> str:
        try:
            os.makedirs(self.upload_dir, exist_ok=True)
            fd, path = tempfile.mkstemp(prefix="streaming_audio_", suffix=self.suffix, dir=self.upload_dir)
        except OSError as e:
            raise AudioStorageError(f"Could not create temporary audio file: {e}") from e
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(audio)
        except OSError as e:
            self._remove(path)
            raise AudioStorageError(f"Could not write temporary audio file: {e}") from e
        return path

    @staticmethod
    def _remove(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary audio file {path}: {e}")

    async def transcribe(self, audio: bytes) -> str:
        client = _require(self.client)
        path = await asyncio.to_thread(self._write_temp_file, audio)
        try:
            with open(path, "rb") as f:
                result = await client.audio.transcriptions.create(
                    file=f,
                    model=self.model,
                    language=self.language,
                )
        except openai.OpenAIError as e:
            raise ServiceError(f"Transcription failed: {e}") from e
        except OSError as e:
            raise AudioStorageError(f"Could not read temporary audio file: {e}") from e
        finally:
            self._remove(path)

        return (getattr(result, "text", "") or "").strip()


class OpenAIDialogue:
    def __init__(self, client: Optional[AsyncOpenAI], model: str = "gpt-4o-mini"):
        self.client = client
        self.model = model

    async def complete(self, messages: List[Dict[str, str]], max_tokens: int, temperature: float) -> str:
        client = _require(self.client)
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as e:
            raise ServiceError(f"Chat completion failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise ServiceError("Chat completion returned an empty reply")
        return content.strip()


class OpenAISpeech:
    def __init__(self, client: Optional[AsyncOpenAI], model: str = "tts-1", voice: str = "alloy",
                 response_format: str = "mp3"):
        self.client = client
        self.model = model
        self.voice = voice
        self.response_format = response_format

    async def synthesize(self, text: str) -> bytes:
        client = _require(self.client)
        try:
            response = await client.audio.speech.create(
                model=self.model,
                voice=self.voice,
                input=text,
                response_format=self.response_format,
            )
        except openai.OpenAIError as e:
            raise ServiceError(f"Speech synthesis failed: {e}") from e

        audio = response.content
        if not audio:
            raise ServiceError("Speech synthesis returned no audio")
        return audio
