from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from wikirank.shared.cache import ResultCache, make_cache_key
from wikirank.shared.config import EmbeddingConfig
from wikirank.shared.observability import get_logger

logger = get_logger(__name__)


class EmbeddingServiceError(RuntimeError):
    """Raised when an embedding HTTP call fails."""


class HttpEmbeddingService:
    """Async client for an OpenAI-compatible ``/v1/embeddings`` endpoint.

    Implements the ``EmbeddingService`` protocol. Query embeddings are
    optionally memoised in a ``ResultCache`` since users repeat queries.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[ResultCache] = None,
    ) -> None:
        self._model = model
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._cache = cache

    @classmethod
    def from_config(
        cls, cfg: EmbeddingConfig, cache: Optional[ResultCache] = None
    ) -> "HttpEmbeddingService":
        return cls(
            base_url=cfg.base_url,
            model=cfg.model_name,
            timeout=cfg.timeout_seconds,
            cache=cache,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _handle_error(self, response: httpx.Response) -> None:
        try:
            body = response.text
        except Exception:
            body = "<unavailable>"
        raise EmbeddingServiceError(
            f"Embedding service HTTP {response.status_code}: {body}"
        )

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Return dense embeddings using /v1/embeddings."""

        payload: Dict[str, Any] = {
            "model": self._model,
            "input": texts,
            "encoding_format": "float",
        }
        try:
            response = await self._client.post("/v1/embeddings", json=payload)
        except httpx.HTTPError as e:
            raise EmbeddingServiceError(f"Embedding service unreachable: {e}") from e
        if response.status_code != 200:
            self._handle_error(response)

        data = response.json()["data"]
        return [[float(x) for x in item["embedding"]] for item in data]

    async def embed(self, text: str) -> List[float]:
        key = make_cache_key("embedding", {"model": self._model, "text": text})
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return list(cached)

        vectors = await self.embed_batch([text])
        if not vectors:
            raise EmbeddingServiceError("Embedding service returned no vectors")
        vector = vectors[0]
        if self._cache is not None:
            self._cache.set(key, tuple(vector))
        logger.debug("Query embedded", dims=len(vector), model=self._model)
        return vector


__all__ = ["HttpEmbeddingService", "EmbeddingServiceError"]
