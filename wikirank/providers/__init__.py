# Backend adapters for the search core
from .embeddings import EmbeddingServiceError, HttpEmbeddingService
from .memory import InMemoryLexicalIndex, InMemoryMetadataStore, InMemoryVectorIndex
from .qdrant import QdrantVectorIndex

__all__ = [
    "HttpEmbeddingService",
    "EmbeddingServiceError",
    "InMemoryVectorIndex",
    "InMemoryLexicalIndex",
    "InMemoryMetadataStore",
    "QdrantVectorIndex",
]
