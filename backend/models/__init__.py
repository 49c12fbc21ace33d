"""Data models for the Jinny voice chat relay."""
from .conversation import ConversationContext, Role, Turn
from .model_config import ModelConfig
from .events import (
    EventEnvelope,
    TranscriptPayload,
    GptResponsePayload,
    ErrorPayload,
    ContextResetPayload,
    SessionPayload,
)

__all__ = [
    "ConversationContext",
    "Role",
    "Turn",
    "ModelConfig",
    "EventEnvelope",
    "TranscriptPayload",
    "GptResponsePayload",
    "ErrorPayload",
    "ContextResetPayload",
    "SessionPayload",
]
