"""
FastAPI application exposing the model router over HTTP, SSE and WebSocket.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from mise.config import Settings, settings
from mise.errors import (
    BackendError,
    NotFoundError,
    PersistenceError,
    RouterError,
    ValidationError,
)
from mise.models import ChatEvent, ChatRequest, ChatResponse, SessionCreateRequest, utcnow
from mise.router import AIRouter
from mise.session_cache import Clock
from mise.transports import send_events, sse_stream


logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (ValidationError, 400, "Invalid request"),
    (NotFoundError, 404, "Not found"),
    (BackendError, 502, "Generation failed"),
    (PersistenceError, 500, "Session storage failed"),
)


def status_for(error: RouterError) -> Tuple[int, str]:
    """HTTP status and summary for a router error."""
    for kind, status, summary in ERROR_STATUS:
        if isinstance(error, kind):
            return status, summary
    return 500, "Request failed"


def create_app(
    config: Optional[Settings] = None,
    *,
    client=None,
    clock: Clock = utcnow,
) -> FastAPI:
    """Build the app around one router instance owned by its lifespan."""
    config = config or settings
    router = AIRouter.from_settings(config, client=client, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the session store and run cache maintenance while serving."""
        await router.start()
        yield
        await router.stop()

    app = FastAPI(
        title="Mise AI Router",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.router = router

    @app.exception_handler(RouterError)
    async def router_error_handler(request: Request, exc: RouterError):
        status, summary = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"error": summary, "details": str(exc)})

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api")
    async def api_info():
        return {
            "name": "Mise AI API",
            "version": "1.0.0",
            "endpoints": {
                "models": "GET /api/models - List available AI models",
                "chat": "POST /api/chat - Send chat message (non-streaming)",
                "chatStream": "POST /api/chat/stream - Send chat message (streaming)",
                "sessions": "GET /api/sessions - List conversation sessions",
                "session": "GET /api/sessions/{id} - Get specific session",
                "createSession": "POST /api/sessions - Create session",
                "deleteSession": "DELETE /api/sessions/{id} - Delete session",
                "websocket": "WS /ws - Streaming chat over WebSocket",
            },
        }

    @app.get("/api/models")
    async def list_models():
        return {"models": await router.list_models()}

    @app.post("/api/chat", response_model=ChatResponse)
    async def chat(body: ChatRequest):
        """One-shot chat: returns the full response."""
        return await router.chat(body.query, body.session_id, body.model)

    @app.post("/api/chat/stream")
    async def chat_stream(body: ChatRequest):
        """Streaming chat as Server-Sent Events."""
        events = await router.open_stream(body.query, body.session_id, body.model)
        return StreamingResponse(
            sse_stream(events),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.get("/api/sessions")
    async def list_sessions():
        sessions = await router.list_sessions()
        return {"sessions": [s.model_dump(mode="json") for s in sessions]}

    @app.post("/api/sessions", status_code=201)
    async def create_session(body: Optional[SessionCreateRequest] = None):
        session = await router.create_session(body.topic if body else None)
        return {"session": session.model_dump(mode="json")}

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        session = await router.get_session(session_id)
        return {"session": session.model_dump(mode="json")}

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str):
        await router.delete_session(session_id)
        return {"message": "Session deleted successfully"}

    async def handle_socket_request(websocket: WebSocket, raw: str):
        try:
            request = ChatRequest.model_validate_json(raw)
            events = await router.open_stream(
                request.query,
                request.session_id,
                request.model,
                stream=request.stream,
            )
        except PydanticValidationError as e:
            await websocket.send_json(ChatEvent.failed(f"Invalid request: {e}").to_payload())
            return
        except RouterError as e:
            await websocket.send_json(ChatEvent.failed(str(e)).to_payload())
            return
        await send_events(websocket, events)

    @app.websocket("/ws")
    async def websocket_chat(websocket: WebSocket):
        """WebSocket endpoint: one JSON chat request per frame."""
        await websocket.accept()
        logger.info("Client connected")
        try:
            while True:
                raw = await websocket.receive_text()
                await handle_socket_request(websocket, raw)
        except WebSocketDisconnect:
            logger.info("Client disconnected")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3001)
