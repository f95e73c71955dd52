"""
Hybrid Search Engine
Combines dense and lexical retrieval, exact-title rescue, RRF fusion and
two-tier composite ranking behind a TTL result cache.

Pipeline:
    normalise/extract keywords -> cache lookup -> embed expanded query
    -> retrieve (vector || lexical) -> title rescue -> keyword/hybrid scoring
    -> RRF -> composite -> dedup/filters -> top_k -> cache write
"""

import asyncio
import copy
import time
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional

from wikirank.query.backends import (
    EmbeddingService,
    LexicalIndex,
    MetadataStore,
    VectorIndex,
)
from wikirank.query.candidates import RankedDocument, SearchResponse
from wikirank.query.filters import ResultFilter
from wikirank.query.fusion import merge_by_id, rrf_fuse
from wikirank.query.keywords import KeywordExtractor, Tokenizer, Vocabulary
from wikirank.query.orchestrator import (
    LabelFilterOptions,
    RetrievalOrchestrator,
    SearchOptions,
)
from wikirank.query.ranking import CompositeRanker
from wikirank.query.scoring import CandidateScorer
from wikirank.query.title_rescue import TitleRescueEngine
from wikirank.shared.cache import SearchCaches, make_cache_key
from wikirank.shared.config import Config, get_config
from wikirank.shared.observability import get_logger, new_correlation_id
from wikirank.shared.observability.metrics import (
    search_latency_ms,
    search_requests_total,
    search_results_returned,
)

logger = get_logger(__name__)

__all__ = ["HybridSearchEngine", "SearchOptions", "LabelFilterOptions"]


class HybridSearchEngine:
    """
    Single entry point of the search core.

    Backends and caches are injected; the engine owns no global state, so
    several engines (e.g. per corpus) can live in one process.
    """

    def __init__(
        self,
        vector_index: Optional[VectorIndex],
        lexical_index: Optional[LexicalIndex] = None,
        metadata_store: Optional[MetadataStore] = None,
        embedder: Optional[EmbeddingService] = None,
        config: Optional[Config] = None,
        caches: Optional[SearchCaches] = None,
        tokenizer: Optional[Tokenizer] = None,
        collections: Optional[Mapping[str, VectorIndex]] = None,
    ):
        self.config = config if config is not None else get_config()
        self.embedder = embedder
        self.caches = caches or SearchCaches.from_config(self.config.cache)

        search_cfg = self.config.search
        self.vocabulary = Vocabulary(self.config.vocabulary)
        self.extractor = KeywordExtractor(
            self.vocabulary, self.config.keywords, tokenizer=tokenizer
        )
        self.orchestrator = RetrievalOrchestrator(
            vector_index,
            lexical_index,
            metadata_store,
            config=search_cfg.retrieval,
            collections=collections,
        )
        self.title_rescue = TitleRescueEngine(
            self.vocabulary,
            lexical_index=lexical_index,
            metadata_store=metadata_store,
            cache=self.caches.title if self.caches.title_enabled else None,
            config=search_cfg.title_rescue,
        )
        self.scorer = CandidateScorer(
            self.vocabulary,
            config=search_cfg.keyword_scoring,
            title_config=search_cfg.title_match,
            max_distance=search_cfg.retrieval.max_distance,
        )
        self.ranker = CompositeRanker(self.vocabulary, search_cfg.composite)
        self.result_filter = ResultFilter(search_cfg.filters)

        logger.info(
            "HybridSearchEngine initialized",
            vector=vector_index is not None,
            lexical=lexical_index is not None,
            metadata=metadata_store is not None,
            embedder=embedder is not None,
            collections=sorted(self.orchestrator.collections),
        )

    async def search(
        self,
        query: Any,
        top_k: Optional[int] = None,
        options: Optional[SearchOptions] = None,
    ) -> SearchResponse:
        """
        Rank documents for a free-text query.

        Args:
            query: Raw user query; non-strings are treated as empty
            top_k: Number of results (defaults to search.default_top_k)
            options: Label filters, lexical toggle, collection, parent id

        Returns:
            SearchResponse with at most ``top_k`` results, each with a
            composite score and a unique logical document id. Backend
            failures degrade the result and are listed in diagnostics.
        """
        start_time = time.time()
        correlation_id = new_correlation_id()
        options = options or SearchOptions()
        top_k = self.config.search.default_top_k if top_k is None else max(1, int(top_k))

        keyword_set = self.extractor.extract(query)
        cache_key = make_cache_key(
            "search",
            {
                "query": keyword_set.normalized_query,
                "top_k": top_k,
                "options": options.cache_params(),
            },
        )
        use_cache = self.caches.search_enabled and not options.bypass_cache
        if use_cache:
            cached = self.caches.search.get(cache_key)
            if cached is not None:
                search_requests_total.labels(cache="hit").inc()
                logger.info(
                    "Search served from cache",
                    query=keyword_set.normalized_query,
                    results=len(cached.results),
                )
                return replace(copy.deepcopy(cached), cache_hit=True)
        search_requests_total.labels(cache="miss").inc()

        diagnostics: Dict[str, Any] = {
            "correlation_id": correlation_id,
            "keywords": list(keyword_set.keywords),
            "errors": {},
            "timings_ms": {},
        }

        embedding = await self._embed(keyword_set, diagnostics)

        retrieval = await self.orchestrator.retrieve(embedding, keyword_set, top_k, options)
        diagnostics["errors"].update(retrieval.errors)
        diagnostics["timings_ms"].update(retrieval.timings_ms)
        diagnostics.update(
            vector_candidates=retrieval.vector_count,
            lexical_candidates=retrieval.lexical_count,
            lexical_skipped=retrieval.lexical_skipped,
            vector_fallback=retrieval.fallback,
        )

        pool = list(retrieval.candidates)
        rescue_start = time.time()
        try:
            rescued = await self.title_rescue.rescue(
                keyword_set,
                (c.id for c in pool),
                lexical_ready=options.use_lexical_index and self.orchestrator.lexical_ready(),
                excluded_labels=self.orchestrator.excluded_labels(options),
            )
        except Exception as e:
            logger.warning("Title rescue failed", error=str(e))
            diagnostics["errors"]["title_rescue"] = str(e)
            rescued = []
        diagnostics["timings_ms"]["title_rescue"] = round((time.time() - rescue_start) * 1000, 2)
        diagnostics["title_rescued"] = len(rescued)
        pool.extend(rescued)

        rank_start = time.time()
        scored = self.scorer.score_all(merge_by_id(pool), keyword_set)
        fused = rrf_fuse(scored, self.config.search.fusion)
        ranked = self.ranker.rank(fused, keyword_set)
        filters = options.label_filters
        kept, removed = self.result_filter.apply(
            ranked,
            include_meeting_notes=filters.include_meeting_notes,
            include_deprecated=filters.include_deprecated,
        )
        diagnostics["timings_ms"]["ranking"] = round((time.time() - rank_start) * 1000, 2)
        diagnostics["fused"] = len(fused)
        diagnostics["filtered"] = removed

        results = [
            RankedDocument.from_candidate(candidate, rank)
            for rank, candidate in enumerate(kept[:top_k], start=1)
        ]
        response = SearchResponse(
            results=results,
            query=keyword_set.normalized_query,
            keywords=list(keyword_set.keywords),
            cache_hit=False,
            diagnostics=diagnostics,
        )

        latency = (time.time() - start_time) * 1000
        diagnostics["timings_ms"]["total"] = round(latency, 2)

        # Degraded answers are not cached so a recovered backend is used next time.
        # The cache holds its own copy; callers may mutate what they receive.
        if use_cache and not diagnostics["errors"] and not retrieval.lexical_skipped:
            self.caches.search.set(cache_key, copy.deepcopy(response))

        search_latency_ms.observe(latency)
        search_results_returned.observe(len(results))
        logger.info(
            "Search completed",
            query=keyword_set.normalized_query,
            results=len(results),
            candidates=len(pool),
            errors=list(diagnostics["errors"]),
            latency_ms=round(latency, 2),
        )
        return response

    async def _embed(self, keyword_set, diagnostics: Dict[str, Any]):
        if self.embedder is None or not keyword_set.normalized_query:
            return None
        text = keyword_set.expanded_query or keyword_set.normalized_query
        start = time.time()
        try:
            return await asyncio.wait_for(
                self.embedder.embed(text),
                timeout=self.config.search.retrieval.backend_timeout_seconds,
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            diagnostics["errors"]["embedding"] = message
            logger.warning("Embedding failed, continuing lexical-only", error=message)
            return None
        finally:
            diagnostics["timings_ms"]["embedding"] = round((time.time() - start) * 1000, 2)

    def clear_caches(self) -> None:
        self.caches.clear()

    def cache_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.caches.stats()
