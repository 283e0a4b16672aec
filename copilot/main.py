"""FastAPI control surface for Overlay Copilot."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from copilot.backends import create_backend
from copilot.capture.audio import list_audio_devices
from copilot.capture.sources import CaptureSource
from copilot.capture.transcript import TranscriptBuffer
from copilot.config import Config
from copilot.controller import SessionController
from copilot.errors import (
    AssistError,
    BackendError,
    BackendErrorKind,
    CaptureUnavailable,
    EmptyRequest,
    InvalidSample,
    OverlayUnavailable,
    PermissionDenied,
    SessionBusy,
    SessionClosed,
    SessionNotReady,
    SettingsNotSaved,
    StaleChatHandle,
    StreamAcquisitionFailed,
)
from copilot.notifications import Notifier
from copilot.overlay import OverlayCoordinator, ProcessTransport
from copilot.session import AISession
from copilot.settings import SettingsStore

logger = logging.getLogger(__name__)


# Request models
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartRequest(CamelModel):
    api_key: Optional[str] = None
    custom_context: str = ""
    source_id: Optional[str] = None
    auto_sample: Optional[bool] = None
    settings: Optional[Dict[str, Any]] = None


class AskRequest(CamelModel):
    question: Optional[str] = None
    include_context: bool = True


class TestConnectionRequest(CamelModel):
    api_key: Optional[str] = None


class PositionRequest(CamelModel):
    x: int
    y: int


class SizeRequest(CamelModel):
    width: int
    height: int


class TranscriptRequest(CamelModel):
    stream: str = "mic"
    text: str
    is_final: bool = True


_STATUS_CODES = {
    EmptyRequest: 400,
    InvalidSample: 400,
    PermissionDenied: 403,
    SessionBusy: 409,
    SessionNotReady: 409,
    SessionClosed: 409,
    StaleChatHandle: 409,
    SettingsNotSaved: 500,
    CaptureUnavailable: 503,
    StreamAcquisitionFailed: 503,
    OverlayUnavailable: 503,
}


def status_for(exc: AssistError) -> int:
    if isinstance(exc, BackendError):
        if exc.kind == BackendErrorKind.INVALID_KEY:
            return 401
        if exc.kind == BackendErrorKind.QUOTA_EXCEEDED:
            return 429
        return 502
    for cls in type(exc).__mro__:
        if cls in _STATUS_CODES:
            return _STATUS_CODES[cls]
    return 500


def build_controller() -> SessionController:
    """Wire the production collaborators."""
    settings_store = SettingsStore(Config.settings_path())
    settings_store.load()
    return SessionController(
        session=AISession(create_backend()),
        overlay=OverlayCoordinator(ProcessTransport()),
        capture=CaptureSource(),
        settings_store=settings_store,
        notifier=Notifier(),
        transcripts=TranscriptBuffer(),
    )


def create_app(controller: Optional[SessionController] = None) -> FastAPI:
    controller = controller or build_controller()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        missing = Config.validate()
        if missing:
            logger.warning("Missing or invalid configuration: %s", "; ".join(missing))
        yield
        await controller.shutdown()

    app = FastAPI(title="Overlay Copilot", lifespan=lifespan)
    app.state.controller = controller

    # CORS for the local control UI
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AssistError)
    async def assist_error_handler(request: Request, exc: AssistError):
        event = controller.notifier.error(exc)
        return JSONResponse(
            status_code=status_for(exc),
            content={"success": False, "error": event["message"], "kind": event["kind"]},
        )

    @app.exception_handler(ValidationError)
    async def settings_validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"success": False, "error": "Invalid settings", "detail": json.loads(exc.json())},
        )

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "session": controller.session.state.value,
            "active": controller.active,
            "overlayVisible": controller.overlay.visible,
            "audioLevel": controller.audio_level,
            "missingConfig": Config.validate(),
        }

    # Overlay lifecycle
    @app.post("/overlay/start")
    async def overlay_start():
        state = await controller.show_overlay()
        return {"success": True, "state": state.to_dict() if state else None}

    @app.post("/overlay/stop")
    async def overlay_stop():
        await controller.hide_overlay()
        return {"success": True}

    @app.post("/overlay/position")
    async def overlay_position(request: PositionRequest):
        await controller.reposition(request.x, request.y)
        return {"success": True}

    @app.post("/overlay/size")
    async def overlay_size(request: SizeRequest):
        await controller.resize(request.width, request.height)
        return {"success": True}

    # Capture sources
    @app.get("/sources")
    async def get_sources():
        sources = await controller.list_sources()
        return [s.to_dict() for s in sources]

    @app.get("/audio/devices")
    async def audio_devices():
        return {"devices": [d.to_dict() for d in list_audio_devices()]}

    # Settings
    @app.get("/settings")
    async def get_settings():
        return controller.get_settings().to_dict()

    @app.post("/settings")
    async def update_settings(partial: Dict[str, Any]):
        settings = await controller.update_settings(partial)
        return {"success": True, "settings": settings.to_dict()}

    # Session
    @app.post("/session/start")
    async def session_start(request: StartRequest):
        if request.settings:
            await controller.update_settings(request.settings)
        state = await controller.start(
            api_key=request.api_key,
            custom_context=request.custom_context,
            source_id=request.source_id,
            auto_sample=request.auto_sample,
        )
        return {
            "success": True,
            "profile": controller.session.profile.value,
            "state": state.to_dict() if state else None,
        }

    @app.post("/session/stop")
    async def session_stop():
        await controller.stop()
        return {"success": True}

    @app.post("/session/ask")
    async def session_ask(request: AskRequest):
        turn = await controller.ask(request.question, request.include_context)
        return {"success": True, "turn": turn.to_dict()}

    @app.post("/session/test-connection")
    async def session_test_connection(request: TestConnectionRequest):
        text = await controller.test_connection(request.api_key)
        return {"success": True, "response": text}

    @app.get("/session/history")
    async def session_history():
        return {"history": controller.history()}

    @app.delete("/session/history")
    async def session_clear_history():
        controller.clear_history()
        return {"success": True}

    # Transcript input from the external speech-to-text service
    @app.post("/transcript")
    async def transcript(request: TranscriptRequest):
        event = controller.add_transcript(request.stream, request.text, request.is_final)
        return {"success": True, "event": event.to_dict() if event else None}

    @app.get("/notifications/stream")
    async def notifications_stream():
        """Stream responses and errors via Server-Sent Events."""

        async def event_generator():
            while True:
                event = controller.notifier.get()
                if event:
                    yield f"data: {json.dumps(event)}\n\n"
                    continue
                # Send heartbeat to keep connection alive
                yield ": heartbeat\n\n"
                await asyncio.sleep(1.0)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable buffering for nginx
            }
        )

    return app


app = create_app()
