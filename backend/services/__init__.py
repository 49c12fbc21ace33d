"""Services for the Jinny voice chat relay."""
from .context_store import ContextStore
from .model_router import ModelRouter, UnknownModelError
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError, GroqProvider, OpenAIProvider
from .session_handler import SessionHandler

__all__ = ['ContextStore', 'ModelRouter', 'UnknownModelError', 'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError', 'GroqProvider', 'OpenAIProvider', 'SessionHandler']
