"""WebSocket event names and payload models."""
from typing import Any, Optional
from pydantic import BaseModel

# Inbound events
TRANSCRIPT = "transcript"
RESET_CONTEXT = "reset-context"
LOAD_CONTEXT = "load-context"

# Outbound events
SESSION = "session"
GPT_RESPONSE = "gpt-response"
ERROR = "error"
CONTEXT_RESET = "context-reset"


class EventEnvelope(BaseModel):
    """Frame carried in both directions: ``{"event": ..., "data": ...}``."""
    event: str
    data: Any = None


class TranscriptPayload(BaseModel):
    """Speech-to-text result sent by the client."""
    final: Optional[str] = None
    model: Optional[str] = None


class GptResponsePayload(BaseModel):
    text: str
    model: str


class ErrorPayload(BaseModel):
    message: str
    details: str


class ContextResetPayload(BaseModel):
    message: str


class SessionPayload(BaseModel):
    session_id: str
