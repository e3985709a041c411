"""Embedding model access through LiteLLM.

All embedding calls made by the indexing engine route through this module.
LiteLLM's built-in retry is used (num_retries, exponential backoff) and each
call is bounded by a per-call timeout. Provider failures of any kind surface
as EmbeddingError so a pass can abort with a typed reason.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Protocol

import litellm

from knowdex.config import EmbeddingCfg

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
}

# Fallbacks for models litellm does not describe.
_FALLBACK_DIMENSIONS: dict[str, int] = {
    "openai/text-embedding-3-small": 1536,
    "openai/text-embedding-3-large": 3072,
    "openai/text-embedding-ada-002": 1536,
    "ollama/nomic-embed-text": 768,
    "ollama/mxbai-embed-large": 1024,
}
_FALLBACK_TOKEN_LIMITS: dict[str, int] = {
    "openai/text-embedding-3-small": 8191,
    "openai/text-embedding-3-large": 8191,
    "openai/text-embedding-ada-002": 8191,
    "ollama/nomic-embed-text": 2048,
    "ollama/mxbai-embed-large": 512,
}
_DEFAULT_DIMENSIONS = 1536
_DEFAULT_TOKEN_LIMIT = 8191


class EmbeddingError(RuntimeError):
    """Raised when the embedding model cannot produce vectors.

    Attributes:
        model: The model string the call was made with.
    """

    def __init__(self, message: str, *, model: str = "") -> None:
        super().__init__(message)
        self.model = model


class EmbeddingModel(Protocol):
    """Maps text to fixed-dimension vectors."""

    model_name: str
    dimensions: int

    def embed(self, text: str) -> list[float]: ...

    def embed_all(self, texts: Sequence[str]) -> list[list[float]]: ...


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama) or unknown provider

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def model_dimensions(model: str) -> int:
    """Return the output vector size of *model*."""
    try:
        info = litellm.get_model_info(model)
        size = info.get("output_vector_size")
        if size:
            return int(size)
    except Exception:
        logger.debug("litellm has no model info for %s", model)
    return _FALLBACK_DIMENSIONS.get(model, _DEFAULT_DIMENSIONS)


def model_token_limit(model: str) -> int:
    """Return the maximum input tokens accepted by *model*."""
    try:
        info = litellm.get_model_info(model)
        limit = info.get("max_input_tokens") or info.get("max_tokens")
        if limit:
            return int(limit)
    except Exception:
        logger.debug("litellm has no model info for %s", model)
    return _FALLBACK_TOKEN_LIMITS.get(model, _DEFAULT_TOKEN_LIMIT)


class LiteLLMEmbeddingModel:
    """EmbeddingModel implemented with litellm.embedding()."""

    def __init__(self, cfg: EmbeddingCfg) -> None:
        self.model_name = cfg.model
        self.dimensions = cfg.dimensions or model_dimensions(cfg.model)
        self.timeout = cfg.timeout
        self.num_retries = cfg.num_retries
        self._key_checked = False

    def embed(self, text: str) -> list[float]:
        return self.embed_all([text])[0]

    def embed_all(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* in one provider call.

        Raises:
            EmbeddingError: On a missing API key, any provider failure after
                retries, or a malformed response.
        """
        if not texts:
            return []
        if not self._key_checked:
            try:
                validate_api_key(self.model_name)
            except EnvironmentError as exc:
                raise EmbeddingError(str(exc), model=self.model_name) from exc
            self._key_checked = True

        try:
            response = litellm.embedding(
                model=self.model_name,
                input=list(texts),
                timeout=self.timeout,
                num_retries=self.num_retries,
            )
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding call to '{self.model_name}' failed: {exc}", model=self.model_name
            ) from exc

        vectors = [list(item["embedding"]) for item in response.data]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"'{self.model_name}' returned {len(vectors)} vectors for {len(texts)} inputs",
                model=self.model_name,
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"'{self.model_name}' returned {len(vector)}-dimensional vectors; "
                    f"expected {self.dimensions}. Set embedding.dimensions in knowdex.yaml.",
                    model=self.model_name,
                )
        return vectors
