from typing import Any, Dict, Optional

import httpx
from loguru import logger

from .config import Settings
from .prompts import get_realtime_instructions

REALTIME_SESSIONS_URL = "https://api.openai.com/v1/realtime/sessions"


class RealtimeSessionError(Exception):
    pass


def build_realtime_payload(settings: Settings, voice: Optional[str] = None,
                           instructions: Optional[str] = None) -> Dict[str, Any]:
    return {
        "model": settings.realtime_model,
        "voice": voice or settings.realtime_voice,
        "modalities": ["text", "audio"],
        "instructions": instructions or get_realtime_instructions(),
        "turn_detection": {
            "type": "server_vad",
            "threshold": 0.3,
            "prefix_padding_ms": 300,
            "silence_duration_ms": 1000,
        },
        "temperature": 0.8,
    }


async def create_realtime_session(
    client: httpx.AsyncClient,
    settings: Settings,
    voice: Optional[str] = None,
    instructions: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Mint an ephemeral Realtime session so the browser can talk to the model
    directly. The response carries the short-lived ``client_secret``.
    """
    if not settings.openai_api_key:
        raise RealtimeSessionError("OPENAI_API_KEY not configured")

    payload = build_realtime_payload(settings, voice=voice, instructions=instructions)
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }
    try:
        r = await client.post(REALTIME_SESSIONS_URL, headers=headers, json=payload)
        r.raise_for_status()
        data = r.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"Realtime session request rejected: {e.response.status_code} {e.response.text}")
        raise RealtimeSessionError(f"Realtime API returned {e.response.status_code}") from e
    except (httpx.RequestError, ValueError) as e:
        logger.error(f"Realtime session request failed: {e}")
        raise RealtimeSessionError(str(e)) from e

    if not data.get("client_secret"):
        logger.warning("Realtime session created without a client_secret.")
    logger.info(f"Realtime session created: {data.get('id')}")
    return data
