"""Shared fixtures: a deterministic embedding provider, a temp store and cache."""

import pytest

from signalhub.common.similarity import extract_words

MODEL = "text-embedding-3-small"
DIMENSIONS = 16


class FakeEmbeddingService:
    """Bag-of-words vectors: texts with the same word set embed identically."""

    def __init__(self, dimensions=DIMENSIONS, error=None, model=MODEL):
        self.dimensions = dimensions
        self.error = error
        self.calls = []
        self.model = model
        self.is_available = True

    def vector(self, text):
        vec = [0.0] * self.dimensions
        for word in sorted(extract_words(text)):
            vec[sum(ord(c) for c in word) % self.dimensions] += 1.0
        return vec

    def embed(self, texts):
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [self.vector(t) for t in texts]

    def embed_single(self, text):
        return self.embed([text])[0]

    async def aembed(self, texts):
        return self.embed(texts)

    async def aembed_single(self, text):
        return self.embed_single(text)


@pytest.fixture
def fake_embedder():
    return FakeEmbeddingService()


@pytest.fixture
def store(tmp_path):
    from signalhub.common.store import SQLiteStore

    s = SQLiteStore(str(tmp_path / "signalhub.db"))
    s.init_db()
    return s


@pytest.fixture
def cache(store, tmp_path):
    from signalhub.common.embedding_cache import EmbeddingCache

    return EmbeddingCache(MODEL, store=store, cache_dir=str(tmp_path / "cache"), dimensions=DIMENSIONS)
