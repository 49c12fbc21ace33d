"""Per-connection event handling: transcripts in, model replies out."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from models import events
from models.conversation import Role
from models.events import (
    TranscriptPayload,
    GptResponsePayload,
    ErrorPayload,
    ContextResetPayload,
)
from services.context_store import ContextStore
from services.llm_client import (
    LLMClient,
    LLMClientError,
    RATE_LIMIT_ERROR,
    CONNECTION_ERROR,
    TIMEOUT_ERROR,
    UNKNOWN_ERROR,
)
from services.model_router import ModelRouter, UnknownModelError
from config import DISCONNECT_EVICTION_DELAY_SECONDS

logger = logging.getLogger(__name__)

SendFunc = Callable[[str, Dict[str, Any]], Awaitable[None]]

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request."

# Client-facing messages per LLM error code; anything else gets the generic one
ERROR_MESSAGES = {
    RATE_LIMIT_ERROR: "Rate limit exceeded. Please try again in a moment.",
    CONNECTION_ERROR: "Unable to connect to AI service. Please try again later.",
    TIMEOUT_ERROR: "The AI service took too long to respond. Please try again.",
}

UNKNOWN_MODEL_CODE = "UNKNOWN_MODEL"
INVALID_PAYLOAD_CODE = "INVALID_PAYLOAD"


class SessionHandler:
    """
    Bridges one client connection to the context store and the LLM client.

    Transcripts from the same connection are handled one at a time: a
    transcript that arrives while a reply is pending waits for it, so the
    context always alternates user and assistant turns in arrival order.
    """

    def __init__(
        self,
        connection_id: str,
        send: SendFunc,
        context_store: ContextStore,
        model_router: ModelRouter,
        llm_client: LLMClient,
        eviction_delay_seconds: float = DISCONNECT_EVICTION_DELAY_SECONDS
    ):
        """
        Initialize the handler for a connection.

        Args:
            connection_id: Identity used as the context store key
            send: Coroutine called as ``send(event, data)`` to emit to the client
            context_store: Shared context store
            model_router: Model table used to resolve ``payload.model``
            llm_client: Client that performs the generation
            eviction_delay_seconds: Grace period before the context is dropped on close
        """
        self.connection_id = connection_id
        self._send = send
        self.context_store = context_store
        self.model_router = model_router
        self.llm_client = llm_client
        self.eviction_delay_seconds = eviction_delay_seconds
        self._transcript_lock = asyncio.Lock()

    async def handle_event(self, event: str, data: Any) -> None:
        """Route one inbound event to its handler."""
        if event == events.TRANSCRIPT:
            await self.handle_transcript(data)
        elif event == events.RESET_CONTEXT:
            await self.handle_reset_context()
        elif event == events.LOAD_CONTEXT:
            await self.handle_load_context(data)
        else:
            logger.warning(f"Unknown event '{event}' from {self.connection_id}")
            await self._emit_error(f"Unknown event: {event}", INVALID_PAYLOAD_CODE)

    async def handle_transcript(self, data: Any) -> None:
        """
        Generate a reply to a speech transcript.

        Whitespace-only transcripts are ignored. The user turn is recorded
        before the model is resolved, so an unknown model or a failed
        generation leaves it in the context without an assistant turn.
        """
        try:
            payload = TranscriptPayload.model_validate(data or {})
        except ValidationError as e:
            logger.warning(f"Invalid transcript payload from {self.connection_id}: {e}")
            await self._emit_error("Invalid transcript payload.", INVALID_PAYLOAD_CODE)
            return

        text = (payload.final or "").strip()
        if not text:
            return

        async with self._transcript_lock:
            logger.info(f"Received transcript from {self.connection_id} with model: {payload.model}")

            turns = self.context_store.append(self.connection_id, Role.USER, text)

            try:
                model_config = self.model_router.select_model(payload.model)
            except UnknownModelError as e:
                await self._emit_error("The requested model is not available.", UNKNOWN_MODEL_CODE)
                logger.warning(f"{e} (connection {self.connection_id})")
                return

            try:
                response = await self.llm_client.generate(turns, model_config)
            except LLMClientError as e:
                logger.error(
                    f"LLM client error for {self.connection_id}: {e.error.code} - {e.error.message}",
                    extra={"connection_id": self.connection_id, "error_code": e.error.code}
                )
                await self._emit_error(
                    ERROR_MESSAGES.get(e.error.code, GENERIC_ERROR_MESSAGE),
                    e.error.code
                )
                return
            except Exception as e:
                logger.error(
                    f"Unexpected error generating reply for {self.connection_id}: {e}",
                    exc_info=True,
                    extra={"connection_id": self.connection_id}
                )
                await self._emit_error(GENERIC_ERROR_MESSAGE, UNKNOWN_ERROR)
                return

            self.context_store.append(self.connection_id, Role.ASSISTANT, response.text)

            logger.debug(f"Final response for {self.connection_id}: {response.text[:100]}")
            await self._send(
                events.GPT_RESPONSE,
                GptResponsePayload(text=response.text, model=model_config.model_id).model_dump()
            )

    async def handle_reset_context(self) -> None:
        self.context_store.reset(self.connection_id)
        await self._send(
            events.CONTEXT_RESET,
            ContextResetPayload(message="Conversation context has been reset").model_dump()
        )

    async def handle_load_context(self, data: Any) -> None:
        """Merge saved preference data; anything but a JSON object is ignored."""
        if not isinstance(data, dict):
            logger.warning(
                f"Ignoring load-context from {self.connection_id}: expected object, got {type(data).__name__}"
            )
            return

        merged = self.context_store.set_preferences(self.connection_id, data)
        logger.info(f"Loaded {len(merged)} preference key(s) for {self.connection_id}")

    def handle_disconnect(self) -> None:
        """Release this connection; the last one to close starts the eviction grace period."""
        self.context_store.release(self.connection_id, self.eviction_delay_seconds)
        logger.info(f"User disconnected: {self.connection_id}")

    async def _emit_error(self, message: str, details: Optional[str] = None) -> None:
        await self._send(
            events.ERROR,
            ErrorPayload(message=message, details=details or UNKNOWN_ERROR).model_dump()
        )
