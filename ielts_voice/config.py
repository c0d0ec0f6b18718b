from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the voice practice service.

    Defaults mirror what the examiner used in production; every field can be
    overridden with the upper-case environment variable of the same name or
    from a ``.env`` file.
    """

    openai_api_key: Optional[str] = None
    chat_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"
    transcription_language: str = "en"
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"
    tts_format: str = "mp3"
    realtime_model: str = "gpt-4o-realtime-preview-2024-12-17"
    realtime_voice: str = "verse"

    # Streaming audio segmentation
    debounce_ms: int = 500
    min_audio_bytes: int = 1024
    min_transcript_chars: int = 2

    # Conversation memory
    history_window: int = 6
    history_limit: int = 50

    service_timeout_seconds: float = 20.0
    session_idle_minutes: int = 20
    reaper_interval_seconds: int = 60

    upload_dir: str = "uploads"

    firestore_enabled: bool = False
    firebase_credentials: Optional[str] = None

    log_level: str = "INFO"
    log_dir: str = "logs"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("openai_api_key", "firebase_credentials", mode="before")
    @classmethod
    def blank_as_missing(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
