"""Main entry point for the Jinny voice chat relay."""
import asyncio
import json
import logging
import os
import uuid
from typing import Any, Dict, Optional
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from config import (
    PORT,
    LOG_LEVEL,
    LOG_FORMAT,
    CORS_ORIGINS,
    STATIC_DIR,
    CONTEXT_MAX_AGE_SECONDS,
    CONTEXT_SWEEP_INTERVAL_SECONDS,
)
from logger import setup_logging
from models import events
from models.events import EventEnvelope, ErrorPayload, SessionPayload
from services.context_store import ContextStore
from services.model_router import ModelRouter
from services.llm_client import LLMClient
from services.session_handler import SessionHandler

if LOG_FORMAT == "json":
    setup_logging(LOG_LEVEL)

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Jinny",
    description="Real-time voice chat relay to hosted LLM providers",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
context_store: ContextStore = None
model_router: ModelRouter = None
llm_client: LLMClient = None
sweeper_task: Optional[asyncio.Task] = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global context_store, model_router, llm_client, sweeper_task

    logger.info("Initializing Jinny services...")

    try:
        context_store = ContextStore()
        logger.info("Initialized ContextStore")

        model_router = ModelRouter()
        logger.info("Initialized ModelRouter")

        llm_client = LLMClient()
        logger.info("Initialized LLMClient")

        sweeper_task = asyncio.create_task(
            context_store.run_sweeper(CONTEXT_SWEEP_INTERVAL_SECONDS, CONTEXT_MAX_AGE_SECONDS)
        )

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the sweeper and drop pending evictions."""
    if sweeper_task is not None:
        sweeper_task.cancel()
    if context_store is not None:
        context_store.shutdown()
    logger.info("Jinny services stopped")


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "jinny",
        "version": "1.0.0",
        "models": model_router.available_models() if model_router else [],
        "active_contexts": len(context_store) if context_store else 0
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, session_id: Optional[str] = Query(None)):
    """
    Bidirectional event channel for one client.

    Protocol (both directions): {"event": "<name>", "data": <payload>}
        Client -> Server: transcript {final, model?}, reset-context, load-context {...}
        Server -> Client: session {session_id}, gpt-response {text, model},
                          error {message, details}, context-reset {message}

    A client that reconnects with the session_id it was given resumes its
    context, provided the disconnect grace period has not elapsed.
    """
    await websocket.accept()

    connection_id = session_id or _generate_connection_id()
    context_store.attach(connection_id)
    logger.info(f"A user connected: {connection_id}")

    async def send(event: str, data: Dict[str, Any]) -> None:
        await websocket.send_json(EventEnvelope(event=event, data=data).model_dump())

    handler = SessionHandler(
        connection_id=connection_id,
        send=send,
        context_store=context_store,
        model_router=model_router,
        llm_client=llm_client
    )

    try:
        await send(events.SESSION, SessionPayload(session_id=connection_id).model_dump())

        while True:
            message = await websocket.receive_text()

            try:
                envelope = EventEnvelope.model_validate(json.loads(message))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Malformed message from {connection_id}: {e}")
                await send(
                    events.ERROR,
                    ErrorPayload(message="Malformed message.", details="INVALID_PAYLOAD").model_dump()
                )
                continue

            await handler.handle_event(envelope.event, envelope.data)
    except WebSocketDisconnect:
        pass
    finally:
        handler.handle_disconnect()


def _generate_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex[:12]}"


# Static UI bundle, mounted last so API routes take precedence
if os.path.isdir(STATIC_DIR):
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Jinny on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
