"""
Qdrant-backed VectorIndex.

Qdrant returns similarities (higher is better); the search core works with
distances (lower is better), so cosine scores are converted with
``distance = 1 - score`` which yields the [0, 2] range the distance
threshold expects.
"""

from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import FieldCondition, Filter, MatchValue

from wikirank.query.backends import BackendUnavailableError, VectorHit
from wikirank.shared.config import VectorStoreConfig
from wikirank.shared.models import Document
from wikirank.shared.observability import get_logger

logger = get_logger(__name__)


def build_filter(filters: Optional[Dict[str, Any]]) -> Optional[Filter]:
    """Payload equality filter; None when there is nothing to filter on."""
    if not filters:
        return None
    conditions = [
        FieldCondition(key=key, match=MatchValue(value=value))
        for key, value in filters.items()
    ]
    return Filter(must=conditions)


class QdrantVectorIndex:
    """VectorIndex over one Qdrant collection."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str,
        *,
        query_vector_name: Optional[str] = None,
    ):
        self.client = client
        self.collection_name = collection_name
        self.query_vector_name = query_vector_name

    @classmethod
    def from_config(cls, cfg: VectorStoreConfig) -> "QdrantVectorIndex":
        client = AsyncQdrantClient(host=cfg.host, port=cfg.port, timeout=int(cfg.timeout_seconds))
        return cls(client, cfg.collection_name)

    async def query(
        self,
        embedding: Sequence[float],
        limit: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorHit]:
        query_kwargs: Dict[str, Any] = {
            "collection_name": self.collection_name,
            "query": list(embedding),
            "limit": limit,
            "query_filter": build_filter(filter),
            "with_payload": True,
        }
        if self.query_vector_name:
            query_kwargs["using"] = self.query_vector_name

        try:
            response = await self.client.query_points(**query_kwargs)
        except Exception as exc:
            logger.error(
                "Qdrant query failed",
                collection=self.collection_name,
                error=str(exc),
            )
            raise BackendUnavailableError("qdrant", str(exc)) from exc

        hits = []
        for point in response.points:
            payload = point.payload or {}
            doc_id = payload.get("id", point.id)
            hits.append(
                VectorHit(
                    id=str(doc_id),
                    distance=1.0 - float(point.score),
                    document=Document.from_payload(doc_id, payload),
                )
            )
        return hits

    async def close(self) -> None:
        await self.client.close()
