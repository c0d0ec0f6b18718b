from fastapi import APIRouter, Depends, HTTPException, Request

from ..models import RealtimeSessionRequest, SessionDetails
from ..realtime import RealtimeSessionError, create_realtime_session
from ..services import VoiceServices

router = APIRouter(prefix="/voice", tags=["Voice"])


def get_voice(request: Request) -> VoiceServices:
    return request.app.state.voice


@router.post("/realtime-session")
async def realtime_session(req: RealtimeSessionRequest | None = None, voice: VoiceServices = Depends(get_voice)):
    """
    Create an ephemeral OpenAI Realtime session for browser-side voice practice.
    """
    if not voice.settings.openai_api_key:
        raise HTTPException(status_code=500, detail="OPENAI_API_KEY not configured")

    req = req or RealtimeSessionRequest()
    try:
        session = await create_realtime_session(
            voice.http_client,
            voice.settings,
            voice=req.voice,
            instructions=req.instructions,
        )
    except RealtimeSessionError as e:
        raise HTTPException(status_code=502, detail=f"Failed to create Realtime session: {e}")
    return {**session, "success": True, "message": "Session created successfully"}


@router.get("/sessions/{session_id}", response_model=SessionDetails)
async def get_session(session_id: str, voice: VoiceServices = Depends(get_voice)):
    session = voice.registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionDetails(
        session_id=session.session_id,
        history_length=len(session.history),
        context=session.context,
        turn_in_progress=voice.orchestrator.is_turn_in_progress(session_id),
        created_at=session.created_at,
        last_activity_at=session.last_activity_at,
    )
