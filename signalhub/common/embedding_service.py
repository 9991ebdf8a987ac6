"""
Embedding Service

Embedding provider for SignalHub. Uses the OpenAI embeddings API by
default; ``femb`` mode embeds on-device with fastembed.

Provider failures surface as typed errors:
- QuotaExceededError: rate limit or quota (never retried here)
- TransientProviderError: network, timeout or 5xx (retried with backoff)
- ContentValidationError: empty or rejected input (skip the item)
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

import numpy as np

from .errors import (
    ConfigurationError,
    ContentValidationError,
    QuotaExceededError,
    TransientProviderError,
)

logger = logging.getLogger("signalhub.common.embedding_service")

T = TypeVar("T")

# OpenAI rejects inputs above ~8k tokens; trim well before that
MAX_INPUT_CHARS = 30000


class EmbeddingService:
    """
    Embedding service for SignalHub.

    Not a singleton: build one per process and pass it to the cache,
    classifier and retriever.
    """

    def __init__(
        self,
        mode: str = "openai",
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        dimensions: Optional[int] = None,
    ):
        self._mode = mode
        self._model = model
        self._dimensions = dimensions
        self._client = None

        if mode == "openai":
            if not api_key:
                logger.info("OpenAI API key not provided, embedding service unavailable")
                return
            try:
                from openai import OpenAI

                self._client = OpenAI(api_key=api_key)
                logger.info("Initialized OpenAI embeddings with model=%s", model)
            except ImportError:
                logger.warning("openai package not installed")
            except Exception as e:
                logger.warning("Failed to initialize OpenAI client: %s", e)
            return

        if mode == "femb":
            try:
                from fastembed import TextEmbedding

                self._client = TextEmbedding(model_name=model)
                logger.info("Initialized fastembed with model=%s", model)
            except ImportError:
                logger.warning("fastembed package not installed")
            except Exception as e:
                logger.warning("Failed to initialize fastembed model %s: %s", model, e)
            return

        raise ConfigurationError(f"Unsupported embedding mode: {mode}")

    @property
    def is_available(self) -> bool:
        """Check if embedding service is available"""
        return self._client is not None

    @property
    def model(self) -> str:
        return self._model

    def _embed_openai(self, texts: List[str]) -> List[List[float]]:
        import openai

        try:
            response = self._client.embeddings.create(model=self._model, input=texts)
        except openai.RateLimitError as e:
            raise QuotaExceededError(f"Embedding quota exceeded: {e}") from e
        except (openai.APITimeoutError, openai.APIConnectionError, openai.InternalServerError) as e:
            raise TransientProviderError(f"Embedding provider unavailable: {e}") from e
        except openai.BadRequestError as e:
            raise ContentValidationError(f"Embedding input rejected: {e}") from e
        except openai.AuthenticationError as e:
            raise ConfigurationError(f"Embedding provider rejected credentials: {e}") from e

        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            List of embedding vectors, in input order
        """
        if not self._client:
            raise ConfigurationError("Embedding provider not initialized")

        if not texts:
            return []

        if any(not t or not t.strip() for t in texts):
            raise ContentValidationError("Cannot embed empty text")

        texts = [t[:MAX_INPUT_CHARS] for t in texts]

        if self._mode == "openai":
            embeddings = self._embed_openai(texts)
        else:
            embeddings = list(self._client.embed(texts))

        # Ensure consistent return type
        embeddings = [e.tolist() if isinstance(e, np.ndarray) else list(e) for e in embeddings]

        if self._dimensions is not None:
            for vector in embeddings:
                if len(vector) != self._dimensions:
                    raise ContentValidationError(
                        f"Provider returned {len(vector)} dimensions, expected {self._dimensions}"
                    )
        return embeddings

    def embed_single(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Raises:
            ContentValidationError: if text is empty
        """
        if not text or not text.strip():
            raise ContentValidationError("Cannot embed empty text")

        return self.embed([text])[0]

    async def aembed(self, texts: List[str]) -> List[List[float]]:
        """Async wrapper; the blocking provider call runs in a worker thread"""
        return await asyncio.to_thread(self.embed, texts)

    async def aembed_single(self, text: str) -> List[float]:
        return await asyncio.to_thread(self.embed_single, text)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 1.0,
) -> T:
    """
    Run ``operation``, retrying TransientProviderError with exponential backoff.

    Quota and validation errors propagate on the first failure since
    retrying with the same credential or input cannot help.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Retries after the first try
        base_delay: Delay before the first retry, in seconds; doubles each time
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except TransientProviderError as e:
            if attempt >= attempts:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning("Transient provider error (%s), retrying in %.1fs", e, delay)
            await asyncio.sleep(delay)
            attempt += 1
