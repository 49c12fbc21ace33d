"""
Model Router for the Jinny voice chat relay.

This module resolves the model id a client asks for against the fixed table of
model configurations loaded at startup. Clients may only select a model by name;
the call parameters themselves are never client-controlled.
"""

import logging
from typing import Dict, List, Mapping, Optional

from models.model_config import ModelConfig
from config import AI_MODELS, DEFAULT_MODEL

logger = logging.getLogger(__name__)


class UnknownModelError(KeyError):
    """Raised when a client requests a model id that is not configured."""

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(model_id)

    def __str__(self) -> str:
        return f"Unknown model: {self.model_id}"


class ModelRouter:
    """
    Lookup table from model id to immutable ModelConfig.

    Provider tags must name a Provider member; any other tag in the table is
    rejected when the router is built.
    """

    def __init__(
        self,
        models: Optional[Mapping[str, Mapping]] = None,
        default_model: str = DEFAULT_MODEL
    ):
        """
        Build the model table.

        Args:
            models: Raw table keyed by model id (defaults to config.AI_MODELS)
            default_model: Model used when the client does not name one

        Raises:
            ValueError: If a provider is unsupported or the default is missing
        """
        raw_models = AI_MODELS if models is None else models
        self._models: Dict[str, ModelConfig] = {}

        for model_id, params in raw_models.items():
            try:
                self._models[model_id] = ModelConfig(model_id=model_id, **params)
            except ValueError as e:
                raise ValueError(f"Unsupported provider '{params['provider']}' for model {model_id}") from e

        if default_model not in self._models:
            raise ValueError(f"Default model '{default_model}' is not in the model table")

        self.default_model = default_model
        logger.info(f"ModelRouter initialized with models: {', '.join(self._models)}")

    def select_model(self, requested: Optional[str] = None) -> ModelConfig:
        """
        Resolve the model a client asked for.

        Args:
            requested: Model id from the transcript payload, may be None or empty

        Returns:
            ModelConfig for the requested model, or the default model

        Raises:
            UnknownModelError: If a non-empty id is not in the table
        """
        if not requested:
            logger.debug(f"No model requested, using default {self.default_model}")
            return self._models[self.default_model]

        config = self._models.get(requested)
        if config is None:
            logger.warning(f"Requested unknown model: {requested}")
            raise UnknownModelError(requested)

        return config

    def available_models(self) -> List[str]:
        return list(self._models)
