"""
Backend protocols consumed by the retrieval orchestrator.

The search core never talks to a concrete ANN index, lexical engine or
embedding model. Adapters (see ``wikirank.providers``) implement these
protocols; tests use in-memory or stub implementations.

Adapters signal failure by raising. ``BackendError`` and its subclasses are
the preferred types, but the orchestrator isolates any exception raised by a
single path.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from wikirank.shared.models import Document


class BackendError(RuntimeError):
    """A retrieval backend failed to answer."""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class BackendUnavailableError(BackendError):
    """Backend is not reachable or not initialised."""


class BackendTimeoutError(BackendError):
    """Backend did not answer within its time budget."""


@dataclass(frozen=True)
class VectorHit:
    """One ANN result. ``distance``: smaller is more similar."""

    id: str
    distance: float
    document: Document


@dataclass(frozen=True)
class LexicalHit:
    """One lexical result. ``document`` may be absent and is then enriched
    through the metadata store."""

    id: str
    score: float
    document: Optional[Document] = None


@runtime_checkable
class VectorIndex(Protocol):
    """Approximate nearest-neighbour index over document embeddings."""

    async def query(
        self,
        embedding: Sequence[float],
        limit: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorHit]:
        """
        Return up to ``limit`` hits ordered by ascending distance.

        Args:
            embedding: Query vector
            limit: Maximum number of hits
            filter: Optional payload equality filter, e.g. ``{"logical_id": "123"}``
        """
        ...


@runtime_checkable
class LexicalIndex(Protocol):
    """Keyword (BM25-style) index. May need a slow warm-up before first use."""

    def is_ready(self) -> bool:
        ...

    async def initialize(self) -> None:
        """Build or load the index. Safe to call more than once."""
        ...

    async def query(self, text: str, limit: int) -> List[LexicalHit]:
        """Return up to ``limit`` hits ordered by descending score."""
        ...


@runtime_checkable
class EmbeddingService(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


@runtime_checkable
class MetadataStore(Protocol):
    """Document lookup by id, plus a literal title search used as a fallback
    when the lexical index is unavailable."""

    async def batch_get(self, ids: Sequence[str]) -> Dict[str, Document]:
        ...

    async def find_by_title(self, text: str, limit: int) -> List[Document]:
        ...
