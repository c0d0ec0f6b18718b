import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager
from typing import Optional
from loguru import logger

from .api_gateway import websocket_endpoint
from .config import Settings, get_settings
from .logging_config import logging_middleware, setup_logging
from .models import HealthResponse
from .routers import voice
from .services import VoiceServices


def create_app(settings: Optional[Settings] = None, services: Optional[VoiceServices] = None) -> FastAPI:
    """
    Build the API. Tests pass ready-made services; otherwise they are
    constructed from settings when the app starts.
    """
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_dir or None)
        app.state.voice = services or VoiceServices.from_settings(settings)
        await app.state.voice.start()
        yield
        await app.state.voice.shutdown()

    app = FastAPI(
        title="IELTS Speaking Practice API",
        description="""
        Voice conversation practice with an AI IELTS examiner.
        Audio is streamed over a WebSocket, segmented on pauses, transcribed,
        answered and spoken back.
        """,
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(logging_middleware)

    app.include_router(voice.router)
    app.add_api_websocket_route("/ws/voice", websocket_endpoint)

    @app.get("/health", tags=["System"], summary="Health Check", response_model=HealthResponse)
    async def health_check(request: Request):
        """
        Report configuration of the external services and live session count.
        """
        state = request.app.state.voice
        return HealthResponse(
            status="online",
            openai="configured" if state.settings.openai_api_key else "missing",
            firestore="enabled" if state.transcript_store else "disabled",
            active_sessions=len(state.registry),
        )

    logger.debug("Application created.")
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("ielts_voice.main:app", host="0.0.0.0", port=8000, reload=True)
