"""
Tests for engine startup wiring.
"""

import pytest
import structlog

from wikirank.bootstrap import create_engine
from wikirank.providers.embeddings import HttpEmbeddingService
from wikirank.providers.qdrant import QdrantVectorIndex
from wikirank.query.hybrid_search import HybridSearchEngine
from wikirank.shared.config import Settings
from wikirank.shared.observability import get_metrics


class TestCreateEngine:
    def test_default_adapters_come_from_config(self, config):
        config.vector_store.collection_name = "wiki-pages"
        engine = create_engine(config, Settings())

        assert isinstance(engine, HybridSearchEngine)
        vector_index = engine.orchestrator.vector_index
        assert isinstance(vector_index, QdrantVectorIndex)
        assert vector_index.collection_name == "wiki-pages"
        assert isinstance(engine.embedder, HttpEmbeddingService)

    def test_logging_and_metrics_configured(self, config):
        config.app.name = "wikirank-startup"
        create_engine(config, Settings())

        assert structlog.is_configured()
        assert "wikirank-startup" in get_metrics().decode("utf-8")

    @pytest.mark.asyncio
    async def test_injected_adapters_are_used(
        self, config, vector_index, lexical_index, metadata_store, embedder
    ):
        engine = create_engine(
            config,
            Settings(),
            vector_index=vector_index,
            lexical_index=lexical_index,
            metadata_store=metadata_store,
            embedder=embedder,
        )

        response = await engine.search("教室削除", top_k=3)
        assert response.results[0].title == "164_教室削除機能"

    def test_invalid_config_fails_fast(self, config):
        composite = config.search.composite
        composite.vector_weight = 0.0
        composite.lexical_weight = 0.0
        composite.title_weight = 0.0
        composite.label_weight = 0.0

        with pytest.raises(ValueError, match="composite"):
            create_engine(config, Settings())
