"""LLM Client dispatching chat completions to the Groq and OpenAI APIs."""
import time
from dataclasses import dataclass
from typing import List, Optional, Dict, Any
import groq
import openai
from groq import AsyncGroq
from openai import AsyncOpenAI
import logging

from models.conversation import Turn
from models.model_config import ModelConfig, Provider
from config import GROQ_API_KEY, OPENAI_API_KEY

logger = logging.getLogger(__name__)

# Error codes carried by LLMError.code
RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
TIMEOUT_ERROR = "TIMEOUT_ERROR"
CONNECTION_ERROR = "CONNECTION_ERROR"
MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
API_ERROR = "API_ERROR"
UNKNOWN_PROVIDER = "UNKNOWN_PROVIDER"
UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from LLM operations."""
    code: str
    message: str
    details: Dict[str, Any]


class LLMClientError(Exception):
    """Custom exception for LLM client errors with structured error information."""

    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(error.message)


class BaseProvider:
    """
    Common request/response handling for OpenAI-compatible chat APIs.

    Subclasses name the SDK module whose exception classes are translated
    and build the SDK client. The client is created on first use, so a
    missing API key only fails the calls routed to that provider.
    """

    name = ""
    api_key_env = ""
    sdk = None  # SDK module exposing RateLimitError, APIError, ...

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key
        self._client = None

    def _create_client(self):
        raise NotImplementedError

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise LLMClientError(LLMError(
                    code=AUTHENTICATION_ERROR,
                    message=f"{self.api_key_env} is not configured.",
                    details={"provider": self.name}
                ))
            self._client = self._create_client()
            logger.info(f"{type(self).__name__} client initialized")
        return self._client

    def build_request(self, messages: List[Dict[str, str]], config: ModelConfig) -> Dict[str, Any]:
        """Request parameters shared by every provider; streaming is always off."""
        return {
            "model": config.model_id,
            "messages": messages,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "top_p": config.top_p,
            "stream": False,
        }

    async def generate(self, turns: List[Turn], config: ModelConfig) -> LLMResponse:
        """
        Generate a reply for the given conversation window.

        Args:
            turns: Conversation turns, system turn first
            config: Model parameters to call with

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            LLMClientError: Structured error with code, message, and details
        """
        client = self._get_client()
        messages = [turn.to_message() for turn in turns]
        request = self.build_request(messages, config)
        start_time = time.time()

        logger.debug(
            f"{self.name} request: model={config.model_id}, messages={len(messages)}, "
            f"temperature={config.temperature}, max_tokens={config.max_tokens}"
        )

        try:
            completion = await client.chat.completions.create(**request)
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            raise self._translate_error(e, config.model_id, latency_ms) from e

        latency_ms = int((time.time() - start_time) * 1000)
        text = self._extract_text(completion, config.model_id, latency_ms)

        usage = getattr(completion, "usage", None)
        tokens_input = getattr(usage, "prompt_tokens", 0) or 0
        tokens_output = getattr(usage, "completion_tokens", 0) or 0

        logger.info(
            f"Generated response: provider={self.name}, model={config.model_id}, "
            f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
            f"latency={latency_ms}ms"
        )

        return LLMResponse(
            text=text,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_ms=latency_ms,
            model_used=config.model_id
        )

    def _extract_text(self, completion: Any, model: str, latency_ms: int) -> str:
        choices = getattr(completion, "choices", None)
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None) if message is not None else None

        if content is None:
            error = LLMError(
                code=MALFORMED_RESPONSE,
                message=f"Invalid response from {self.name} API.",
                details={
                    "provider": self.name,
                    "model": model,
                    "latency_ms": latency_ms,
                    "has_choices": bool(choices)
                }
            )
            logger.error(
                f"Malformed response: provider={self.name}, model={model}, choices={bool(choices)}",
                extra={"error_code": error.code, "error_details": error.details}
            )
            raise LLMClientError(error)

        return content

    def _translate_error(self, e: Exception, model: str, latency_ms: int) -> LLMClientError:
        """Map an SDK exception onto a structured LLMClientError."""
        sdk = self.sdk
        details = {
            "provider": self.name,
            "model": model,
            "latency_ms": latency_ms,
            "original_error": str(e)
        }

        if isinstance(e, sdk.RateLimitError):
            code = RATE_LIMIT_ERROR
            message = "Rate limit exceeded. Please try again in a moment."
            details["retry_after"] = 60
        elif isinstance(e, sdk.AuthenticationError):
            code = AUTHENTICATION_ERROR
            message = "Authentication failed. Please check your API key."
        elif isinstance(e, sdk.APITimeoutError):
            code = TIMEOUT_ERROR
            message = "Request timed out. Please try again."
        elif isinstance(e, sdk.APIConnectionError):
            code = CONNECTION_ERROR
            message = f"Unable to connect to {self.name} API."
        elif isinstance(e, sdk.APIError):
            code = API_ERROR
            message = f"{self.name} API error: {str(e)}"
        else:
            code = UNKNOWN_ERROR
            message = f"Unexpected error during generation: {str(e)}"
            details["error_type"] = type(e).__name__

        error = LLMError(code=code, message=message, details=details)
        logger.error(
            f"{code}: provider={self.name}, model={model}, latency={latency_ms}ms, error={e}",
            exc_info=e,
            extra={"error_code": error.code, "error_details": error.details}
        )
        return LLMClientError(error)


class GroqProvider(BaseProvider):
    """Groq-hosted models (Llama family)."""

    name = Provider.GROQ.value
    api_key_env = "GROQ_API_KEY"
    sdk = groq

    def __init__(self, api_key: Optional[str] = None):
        super().__init__(api_key or GROQ_API_KEY)

    def _create_client(self):
        return AsyncGroq(api_key=self.api_key)


class OpenAIProvider(BaseProvider):
    """OpenAI-hosted models; the only provider that takes sampling penalties."""

    name = Provider.OPENAI.value
    api_key_env = "OPENAI_API_KEY"
    sdk = openai

    def __init__(self, api_key: Optional[str] = None):
        super().__init__(api_key or OPENAI_API_KEY)

    def _create_client(self):
        return AsyncOpenAI(api_key=self.api_key)

    def build_request(self, messages: List[Dict[str, str]], config: ModelConfig) -> Dict[str, Any]:
        request = super().build_request(messages, config)
        if config.presence_penalty is not None:
            request["presence_penalty"] = config.presence_penalty
        if config.frequency_penalty is not None:
            request["frequency_penalty"] = config.frequency_penalty
        return request


class LLMClient:
    """Dispatches generation requests to the provider named by the model config."""

    def __init__(self, providers: Optional[Dict[Provider, BaseProvider]] = None):
        """
        Initialize the client.

        Args:
            providers: Provider instances keyed by provider tag
                (defaults to Groq and OpenAI with keys from the environment)
        """
        if providers is None:
            providers = {
                Provider.GROQ: GroqProvider(),
                Provider.OPENAI: OpenAIProvider(),
            }
        self.providers = providers
        logger.info(f"LLMClient initialized with providers: {', '.join(p.value for p in self.providers)}")

    async def generate(self, turns: List[Turn], model_config: ModelConfig) -> LLMResponse:
        """
        Generate a reply with the provider selected by ``model_config.provider``.

        Raises:
            LLMClientError: If the provider is unknown or the call fails
        """
        provider = self.providers.get(model_config.provider)
        if provider is None:
            raise LLMClientError(LLMError(
                code=UNKNOWN_PROVIDER,
                message=f"No provider registered for '{model_config.provider.value}'.",
                details={"provider": model_config.provider.value, "model": model_config.model_id}
            ))

        return await provider.generate(turns, model_config)
