import asyncio
from typing import List, Optional

import pytest

from ielts_voice.config import Settings
from ielts_voice.openai_services import ServiceError


class FakeTranscriber:
    """Returns scripted transcripts; the last one repeats once the script runs out."""
    def __init__(self, texts=("I work as a teacher",), delay: float = 0.0, error: Optional[Exception] = None):
        self.texts = list(texts)
        self.delay = delay
        self.error = error
        self.calls: List[bytes] = []
        self.active = 0
        self.max_active = 0

    async def transcribe(self, audio: bytes) -> str:
        self.calls.append(audio)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if len(self.texts) > 1:
                return self.texts.pop(0)
            return self.texts[0]
        finally:
            self.active -= 1


class FakeDialogue:
    def __init__(self, reply: str = "A teacher! What subject do you teach?", fail: bool = False, delay: float = 0.0):
        self.reply = reply
        self.fail = fail
        self.delay = delay
        self.calls: List[dict] = []

    async def complete(self, messages, max_tokens: int, temperature: float) -> str:
        self.calls.append({"messages": messages, "max_tokens": max_tokens, "temperature": temperature})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ServiceError("dialogue unavailable")
        return self.reply


class FakeSynthesizer:
    def __init__(self, audio: bytes = b"ID3-fake-mp3", fail: bool = False):
        self.audio = audio
        self.fail = fail
        self.calls: List[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.calls.append(text)
        if self.fail:
            raise ServiceError("tts unavailable")
        return self.audio


class EventRecorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str):
        return [e for e in self.events if e.type == event_type]

    async def wait_for(self, event_type: str, count: int = 1, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self.of_type(event_type)) < count:
            if loop.time() > deadline:
                raise AssertionError(f"Timed out waiting for {count} {event_type} event(s): {self.events}")
            await asyncio.sleep(0.005)
        return self.of_type(event_type)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        openai_api_key=None,
        firestore_enabled=False,
        debounce_ms=20,
        min_audio_bytes=1024,
        service_timeout_seconds=1.0,
        upload_dir=str(tmp_path / "uploads"),
        log_dir="",
    )


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def dialogue():
    return FakeDialogue()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def recorder():
    return EventRecorder()
