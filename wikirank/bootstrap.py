"""
Process startup for the search core.

Loads configuration, validates it, configures structured logging and the
metrics service info, then wires the production adapters (Qdrant vector
index, HTTP embedding service) into a HybridSearchEngine. Any adapter can be
passed in to replace the default one.
"""

from typing import Optional

from wikirank.providers.embeddings import HttpEmbeddingService
from wikirank.providers.qdrant import QdrantVectorIndex
from wikirank.query.backends import (
    EmbeddingService,
    LexicalIndex,
    MetadataStore,
    VectorIndex,
)
from wikirank.query.hybrid_search import HybridSearchEngine
from wikirank.shared.config import (
    Config,
    Settings,
    init_config,
    validate_config_at_startup,
)
from wikirank.shared.observability import get_logger, setup_logging, setup_metrics


def create_engine(
    config: Optional[Config] = None,
    settings: Optional[Settings] = None,
    *,
    vector_index: Optional[VectorIndex] = None,
    lexical_index: Optional[LexicalIndex] = None,
    metadata_store: Optional[MetadataStore] = None,
    embedder: Optional[EmbeddingService] = None,
) -> HybridSearchEngine:
    """
    Build a ready-to-serve search engine.

    Args:
        config: Loaded configuration; read from ``config/<ENV>.yaml`` when omitted
        settings: Environment settings; read from the environment when omitted
        vector_index: Defaults to a QdrantVectorIndex over ``vector_store``
        lexical_index: Optional lexical backend
        metadata_store: Optional metadata backend for enrichment and rescue
        embedder: Defaults to an HttpEmbeddingService over ``embedding``

    Raises:
        ValueError: If the configuration fails startup validation
    """
    if config is None:
        config, loaded_settings = init_config()
        settings = settings or loaded_settings
    settings = settings or Settings()

    validate_config_at_startup(config, settings)
    setup_logging(config.app.log_level)
    setup_metrics(config.app.name, config.app.version, settings.env)
    logger = get_logger(__name__)

    if vector_index is None:
        vector_index = QdrantVectorIndex.from_config(config.vector_store)
    if embedder is None:
        embedder = HttpEmbeddingService.from_config(config.embedding)

    engine = HybridSearchEngine(
        vector_index=vector_index,
        lexical_index=lexical_index,
        metadata_store=metadata_store,
        embedder=embedder,
        config=config,
    )
    logger.info(
        "Search engine ready",
        env=settings.env,
        collection=config.vector_store.collection_name,
        log_level=config.app.log_level,
    )
    return engine


__all__ = ["create_engine"]
