"""Tests for the embedding provider wrapper, error mapping and retry."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from signalhub.common.embedding_service import EmbeddingService, with_retry
from signalhub.common.errors import (
    ConfigurationError,
    ContentValidationError,
    QuotaExceededError,
    TransientProviderError,
)
from signalhub.correlate.fallback import run_with_fallback

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def service_with_client(client, dimensions=None):
    service = EmbeddingService(api_key=None, dimensions=dimensions)
    service._client = client
    return service


def fake_client(vectors=None, error=None):
    client = MagicMock()
    if error is not None:
        client.embeddings.create.side_effect = error
    else:
        # provider may return items out of order
        data = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
        client.embeddings.create.return_value = SimpleNamespace(data=list(reversed(data)))
    return client


class TestEmbeddingService:
    def test_unavailable_without_key(self):
        service = EmbeddingService(api_key=None)
        assert service.is_available is False
        with pytest.raises(ConfigurationError):
            service.embed(["text"])

    def test_unsupported_mode(self):
        with pytest.raises(ConfigurationError):
            EmbeddingService(mode="word2vec")

    def test_results_in_input_order(self):
        service = service_with_client(fake_client([[1.0, 0.0], [0.0, 1.0]]))
        assert service.embed(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]

    def test_empty_text_rejected(self):
        service = service_with_client(fake_client([[1.0]]))
        with pytest.raises(ContentValidationError):
            service.embed_single("   ")
        with pytest.raises(ContentValidationError):
            service.embed(["ok", ""])

    def test_dimension_mismatch(self):
        service = service_with_client(fake_client([[1.0, 2.0]]), dimensions=3)
        with pytest.raises(ContentValidationError):
            service.embed(["a"])

    @pytest.mark.parametrize("error, expected", [
        (openai.RateLimitError("slow down", response=httpx.Response(429, request=REQUEST), body=None), QuotaExceededError),
        (openai.APIConnectionError(request=REQUEST), TransientProviderError),
        (openai.BadRequestError("too long", response=httpx.Response(400, request=REQUEST), body=None), ContentValidationError),
        (openai.AuthenticationError("bad key", response=httpx.Response(401, request=REQUEST), body=None), ConfigurationError),
    ])
    def test_provider_errors_mapped(self, error, expected):
        service = service_with_client(fake_client(error=error))
        with pytest.raises(expected):
            service.embed(["a"])

    @pytest.mark.asyncio
    async def test_async_wrappers(self):
        service = service_with_client(fake_client([[0.5, 0.5]]))
        assert await service.aembed_single("a") == [0.5, 0.5]


class TestRetry:
    @pytest.mark.asyncio
    async def test_transient_errors_retried(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientProviderError("503")
            return "ok"

        assert await with_retry(flaky, base_delay=0) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        async def down():
            raise TransientProviderError("503")

        with pytest.raises(TransientProviderError):
            await with_retry(down, attempts=2, base_delay=0)

    @pytest.mark.asyncio
    async def test_quota_not_retried(self):
        calls = []

        async def quota():
            calls.append(1)
            raise QuotaExceededError("quota")

        with pytest.raises(QuotaExceededError):
            await with_retry(quota, base_delay=0)
        assert len(calls) == 1


class TestRunWithFallback:
    @pytest.mark.asyncio
    async def test_preferred_value(self):
        async def preferred():
            return "semantic"

        async def fallback():
            return "keyword"

        outcome = await run_with_fallback(preferred, fallback)
        assert outcome.value == "semantic"
        assert outcome.used_fallback is False

    @pytest.mark.asyncio
    async def test_provider_error_uses_fallback(self, caplog):
        async def preferred():
            raise QuotaExceededError("quota")

        async def fallback():
            return "keyword"

        outcome = await run_with_fallback(preferred, fallback, label="discord:1")
        assert outcome.value == "keyword"
        assert outcome.used_fallback is True
        assert isinstance(outcome.error, QuotaExceededError)
        assert "Falling back for discord:1" in caplog.text

    @pytest.mark.asyncio
    async def test_programming_errors_propagate(self):
        async def preferred():
            raise KeyError("bug")

        async def fallback():
            return "keyword"

        with pytest.raises(KeyError):
            await run_with_fallback(preferred, fallback)
