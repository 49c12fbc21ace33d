"""Model configuration data models."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Provider(str, Enum):
    """Hosted completion services a model can be routed to."""
    OPENAI = "openai"
    GROQ = "groq"


@dataclass(frozen=True)
class ModelConfig:
    """Static call parameters for one selectable model."""
    model_id: str
    provider: Provider
    max_tokens: int
    temperature: float
    top_p: float = 1.0
    presence_penalty: Optional[float] = None  # OpenAI only
    frequency_penalty: Optional[float] = None  # OpenAI only

    def __post_init__(self):
        # Raises ValueError for an unsupported provider tag
        object.__setattr__(self, "provider", Provider(self.provider))
