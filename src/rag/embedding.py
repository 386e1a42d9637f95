import asyncio
import logging
import os
from functools import lru_cache

import httpx
import numpy as np

from src.rag.cache import CacheManager
from src.rag.corpus import normalize_vector

logger = logging.getLogger(__name__)

# Provider selection: "openai" (HTTP embeddings API) or "local" (sentence-transformers)
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "openai")

# The corpus was embedded with this model; the query must use the same one.
DEFAULT_EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-large")
DEFAULT_EMBEDDING_API_URL = os.environ.get(
    "EMBEDDING_API_URL", "https://api.openai.com/v1/embeddings"
)
DEFAULT_TIMEOUT = float(os.environ.get("EMBEDDING_TIMEOUT_SECONDS", "30"))

# Local model configuration
DEFAULT_LOCAL_MODEL = os.environ.get(
    "EMBEDDING_MODEL_HF", "sentence-transformers/all-MiniLM-L6-v2"
)
QUERY_PREFIX = os.environ.get("EMBEDDING_QUERY_PREFIX", "")


class EmbeddingProviderError(Exception):
    """The question could not be embedded. Carries the provider status when known."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QueryEmbedder:
    """Base query embedder: cache lookup, provider call, unit normalization."""

    model_name: str = ""

    def __init__(self, cache: CacheManager | None = None) -> None:
        self.cache = cache

    @property
    def is_configured(self) -> bool:
        return True

    async def embed(self, question: str) -> np.ndarray:
        if self.cache is not None:
            cached = await self.cache.get(self.model_name, question)
            if cached is not None:
                return normalize_vector(cached)

        raw = await self._embed_raw(question)
        vector = normalize_vector(raw)

        if self.cache is not None:
            await self.cache.set(self.model_name, question, vector.tolist())
        return vector

    async def _embed_raw(self, question: str) -> list[float]:
        raise NotImplementedError


# ============================================
# OpenAI-compatible HTTP provider
# ============================================


class OpenAIEmbeddingClient(QueryEmbedder):
    """Embeds questions through an OpenAI-compatible ``/v1/embeddings`` endpoint.

    No retries: a failed call fails the query.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_EMBEDDING_MODEL,
        api_url: str = DEFAULT_EMBEDDING_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        cache: CacheManager | None = None,
    ) -> None:
        super().__init__(cache=cache)
        self.api_key = api_key if api_key is not None else os.environ.get("OPENAI_API_KEY", "")
        self.model_name = model
        self.api_url = api_url
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _embed_raw(self, question: str) -> list[float]:
        if not self.api_key:
            raise EmbeddingProviderError("OPENAI_API_KEY is not set")

        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"model": self.model_name, "input": question},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Embedding provider returned HTTP %d", status)
            raise EmbeddingProviderError(
                f"Embedding provider error: {status} {e.response.text}",
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Embedding request failed: %s", e)
            raise EmbeddingProviderError(f"Embedding request failed: {e}") from e

        try:
            return data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingProviderError("Malformed embedding response") from e


# ============================================
# Local sentence-transformers provider
# ============================================


@lru_cache(maxsize=1)
def _load_st_model(model_name: str):
    """Load sentence-transformers model once and cache it."""
    from sentence_transformers import SentenceTransformer

    logger.info("Loading sentence-transformers model: %s", model_name)
    model = SentenceTransformer(model_name)
    logger.info("Model loaded, dimension: %d", model.get_sentence_embedding_dimension())
    return model


def _encode_sync(model, texts: list[str]) -> list[list[float]]:
    """Run model.encode synchronously; called via to_thread."""
    vectors = model.encode(texts, show_progress_bar=False)
    return [v.tolist() for v in vectors]


class LocalEmbeddingGenerator(QueryEmbedder):
    """Embeds questions with a local sentence-transformers model.

    The corpus embeddings must come from the same model for scores to mean
    anything; use this with a corpus built for it.
    """

    def __init__(
        self,
        model_name: str | None = None,
        query_prefix: str = QUERY_PREFIX,
        cache: CacheManager | None = None,
    ) -> None:
        super().__init__(cache=cache)
        self.model_name = model_name or DEFAULT_LOCAL_MODEL
        self.query_prefix = query_prefix
        self._st_model = None

    def _get_model(self):
        """Lazy-load the sentence-transformers model."""
        if self._st_model is None:
            self._st_model = _load_st_model(self.model_name)
        return self._st_model

    async def _embed_raw(self, question: str) -> list[float]:
        try:
            model = self._get_model()
            vectors = await asyncio.to_thread(_encode_sync, model, [self.query_prefix + question])
        except (OSError, RuntimeError) as e:
            raise EmbeddingProviderError(f"Local embedding failed: {e}") from e
        return vectors[0]


def create_embedder(
    provider: str | None = None,
    cache: CacheManager | None = None,
) -> QueryEmbedder:
    """Build the configured query embedder."""
    name = (provider or EMBEDDING_PROVIDER).lower()
    if name == "local":
        return LocalEmbeddingGenerator(cache=cache)
    if name == "openai":
        return OpenAIEmbeddingClient(cache=cache)
    raise ValueError(f"Unknown EMBEDDING_PROVIDER: {name}")
