"""Tests for the OpenAI transcription, chat and speech adapters using stand-in clients."""

import os
from types import SimpleNamespace

import httpx
import openai
import pytest

from ielts_voice.openai_services import (
    AudioStorageError,
    OpenAIDialogue,
    OpenAISpeech,
    OpenAITranscriber,
    ServiceError,
)


def connection_error(path: str) -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", f"https://api.openai.com/v1{path}"))


class FakeTranscriptions:
    def __init__(self, text: str = " I work as a teacher ", error: Exception = None):
        self.text = text
        self.error = error
        self.seen = []

    async def create(self, file, model, language):
        self.seen.append({
            "path": file.name,
            "existed": os.path.exists(file.name),
            "content": file.read(),
            "model": model,
            "language": language,
        })
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


class FakeCompletions:
    def __init__(self, content="Nice! What do you teach?", error: Exception = None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


class FakeSpeech:
    def __init__(self, content: bytes = b"ID3-audio", error: Exception = None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=self.content)


def fake_client(transcriptions=None, completions=None, speech=None):
    return SimpleNamespace(
        audio=SimpleNamespace(transcriptions=transcriptions, speech=speech),
        chat=SimpleNamespace(completions=completions),
    )


@pytest.mark.asyncio
async def test_transcribe_uploads_audio_and_removes_temp_file(tmp_path):
    transcriptions = FakeTranscriptions()
    transcriber = OpenAITranscriber(fake_client(transcriptions=transcriptions), upload_dir=str(tmp_path))

    text = await transcriber.transcribe(b"webm-bytes")

    assert text == "I work as a teacher"
    [call] = transcriptions.seen
    assert call["existed"] is True
    assert call["content"] == b"webm-bytes"
    assert call["model"] == "whisper-1"
    assert call["language"] == "en"
    assert os.path.basename(call["path"]).startswith("streaming_audio_")
    assert not os.path.exists(call["path"])
    assert os.listdir(tmp_path) == []


@pytest.mark.asyncio
async def test_transcribe_failure_still_removes_temp_file(tmp_path):
    transcriptions = FakeTranscriptions(error=connection_error("/audio/transcriptions"))
    transcriber = OpenAITranscriber(fake_client(transcriptions=transcriptions), upload_dir=str(tmp_path))

    with pytest.raises(ServiceError):
        await transcriber.transcribe(b"webm-bytes")

    assert not os.path.exists(transcriptions.seen[0]["path"])
    assert os.listdir(tmp_path) == []


@pytest.mark.asyncio
async def test_transcribe_reports_unwritable_upload_dir(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    transcriptions = FakeTranscriptions()
    transcriber = OpenAITranscriber(
        fake_client(transcriptions=transcriptions),
        upload_dir=str(blocker / "uploads"),
    )

    with pytest.raises(AudioStorageError):
        await transcriber.transcribe(b"webm-bytes")
    assert transcriptions.seen == []


@pytest.mark.asyncio
async def test_unreadable_staged_file_is_a_storage_error(tmp_path):
    transcriptions = FakeTranscriptions()
    transcriber = OpenAITranscriber(fake_client(transcriptions=transcriptions), upload_dir=str(tmp_path))
    transcriber._write_temp_file = lambda audio: str(tmp_path / "vanished.webm")

    with pytest.raises(AudioStorageError):
        await transcriber.transcribe(b"webm-bytes")
    assert transcriptions.seen == []


@pytest.mark.asyncio
async def test_missing_client_raises_service_error(tmp_path):
    with pytest.raises(ServiceError):
        await OpenAITranscriber(None, upload_dir=str(tmp_path)).transcribe(b"audio")
    with pytest.raises(ServiceError):
        await OpenAIDialogue(None).complete([], max_tokens=10, temperature=0.5)
    with pytest.raises(ServiceError):
        await OpenAISpeech(None).synthesize("hello")


@pytest.mark.asyncio
async def test_dialogue_passes_parameters_and_strips_reply():
    completions = FakeCompletions(content="  Nice! What do you teach?\n")
    dialogue = OpenAIDialogue(fake_client(completions=completions), model="gpt-4o-mini")
    messages = [{"role": "user", "content": "I work as a teacher"}]

    reply = await dialogue.complete(messages, max_tokens=120, temperature=0.7)

    assert reply == "Nice! What do you teach?"
    assert completions.kwargs == {
        "model": "gpt-4o-mini",
        "messages": messages,
        "max_tokens": 120,
        "temperature": 0.7,
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, "", "   "])
async def test_dialogue_empty_reply_is_an_error(content):
    dialogue = OpenAIDialogue(fake_client(completions=FakeCompletions(content=content)))

    with pytest.raises(ServiceError):
        await dialogue.complete([], max_tokens=10, temperature=0.5)


@pytest.mark.asyncio
async def test_dialogue_api_error_is_wrapped():
    dialogue = OpenAIDialogue(fake_client(completions=FakeCompletions(error=connection_error("/chat/completions"))))

    with pytest.raises(ServiceError):
        await dialogue.complete([], max_tokens=10, temperature=0.5)


@pytest.mark.asyncio
async def test_speech_returns_audio_bytes():
    speech = FakeSpeech()
    synthesizer = OpenAISpeech(fake_client(speech=speech), voice="alloy")

    audio = await synthesizer.synthesize("Hello there")

    assert audio == b"ID3-audio"
    assert speech.kwargs == {"model": "tts-1", "voice": "alloy", "input": "Hello there", "response_format": "mp3"}


@pytest.mark.asyncio
async def test_speech_failures_are_wrapped():
    with pytest.raises(ServiceError):
        await OpenAISpeech(fake_client(speech=FakeSpeech(error=connection_error("/audio/speech")))).synthesize("hi")
    with pytest.raises(ServiceError):
        await OpenAISpeech(fake_client(speech=FakeSpeech(content=b""))).synthesize("hi")
