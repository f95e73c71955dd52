"""
Concurrent retrieval over the vector and lexical backends.

Both paths are started together and joined with
``asyncio.gather(..., return_exceptions=True)``; each runs under its own
timeout. A path that raises or times out is logged, counted and reported in
``RetrievalResult.errors`` while the other path's candidates are still used.
When both fail the result is simply empty.

The lexical index may need a slow warm-up. The first query that finds it
not ready starts a single shared ``initialize()`` task and polls for
readiness for a bounded time; if the index is still cold the lexical path is
skipped for that query, which is a degradation and not an error.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence

from pydantic import Field

from wikirank.query.backends import (
    BackendTimeoutError,
    LexicalIndex,
    MetadataStore,
    VectorIndex,
)
from wikirank.query.candidates import Candidate, SourceType
from wikirank.query.keywords import KeywordSet, fold_text
from wikirank.shared.config import RetrievalConfig
from wikirank.shared.models import Document, RankBaseModel
from wikirank.shared.observability import get_logger
from wikirank.shared.observability.metrics import (
    lexical_warmup_skipped_total,
    retrieval_backend_errors_total,
    retrieval_candidates,
    retrieval_latency_ms,
    vector_fallback_total,
)

logger = get_logger(__name__)

VECTOR = "vector"
LEXICAL = "lexical"


class LabelFilterOptions(RankBaseModel):
    include_meeting_notes: bool = False
    include_archived: bool = False
    include_deprecated: bool = False
    exclude_labels: List[str] = Field(default_factory=list)


class SearchOptions(RankBaseModel):
    label_filters: LabelFilterOptions = Field(default_factory=LabelFilterOptions)
    use_lexical_index: bool = True
    collection: str = "confluence"
    parent_id: Optional[str] = None
    bypass_cache: bool = False

    def cache_params(self) -> Dict[str, Any]:
        params = self.model_dump(exclude={"bypass_cache"})
        params["label_filters"]["exclude_labels"] = sorted(
            set(params["label_filters"]["exclude_labels"])
        )
        return params


@dataclass
class RetrievalResult:
    candidates: List[Candidate] = field(default_factory=list)
    vector_count: int = 0
    lexical_count: int = 0
    lexical_ready: bool = False
    lexical_skipped: bool = False
    fallback: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)
    timings_ms: Dict[str, float] = field(default_factory=dict)


class RetrievalOrchestrator:
    """Fans a query out to the vector and lexical backends."""

    def __init__(
        self,
        vector_index: Optional[VectorIndex],
        lexical_index: Optional[LexicalIndex] = None,
        metadata_store: Optional[MetadataStore] = None,
        config: Optional[RetrievalConfig] = None,
        collections: Optional[Mapping[str, VectorIndex]] = None,
    ):
        self.vector_index = vector_index
        self.lexical_index = lexical_index
        self.metadata_store = metadata_store
        self.config = config or RetrievalConfig()
        self.collections = dict(collections or {})
        self._warmup_task: Optional[asyncio.Task] = None

    def excluded_labels(self, options: SearchOptions) -> FrozenSet[str]:
        labels_cfg = self.config.labels
        filters = options.label_filters
        excluded = set(labels_cfg.always_excluded) | set(filters.exclude_labels)
        if not filters.include_meeting_notes:
            excluded.update(labels_cfg.meeting_labels)
        if not filters.include_archived:
            excluded.update(labels_cfg.archive_labels)
        return frozenset(fold_text(label) for label in excluded)

    def vector_index_for(self, collection: str) -> Optional[VectorIndex]:
        return self.collections.get(collection, self.vector_index)

    def lexical_ready(self) -> bool:
        return self.lexical_index is not None and self.lexical_index.is_ready()

    async def retrieve(
        self,
        embedding: Optional[Sequence[float]],
        keyword_set: KeywordSet,
        top_k: int,
        options: Optional[SearchOptions] = None,
    ) -> RetrievalResult:
        """
        Run both retrieval paths concurrently.

        Args:
            embedding: Query embedding, or None to skip the vector path
            keyword_set: Extracted keywords driving the lexical path
            top_k: Requested result count (sizes the over-fetch windows)
            options: Caller search options

        Returns:
            RetrievalResult with vector candidates first, then lexical ones.
            Never raises for backend failures.
        """
        options = options or SearchOptions()
        result = RetrievalResult()
        excluded = self.excluded_labels(options)

        paths = []
        names = []
        if embedding is not None and self.vector_index_for(options.collection) is not None:
            paths.append(self._run_vector(embedding, top_k, options, excluded, result))
            names.append(VECTOR)
        if options.use_lexical_index and self.lexical_index is not None and not keyword_set.is_empty:
            paths.append(self._run_lexical(keyword_set, top_k, excluded, result))
            names.append(LEXICAL)

        outcomes = await asyncio.gather(*paths, return_exceptions=True)

        per_path: Dict[str, List[Candidate]] = {VECTOR: [], LEXICAL: []}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                message = str(outcome) or type(outcome).__name__
                result.errors[name] = message
                retrieval_backend_errors_total.labels(backend=name).inc()
                logger.warning("Retrieval path failed", backend=name, error=message)
                continue
            per_path[name] = outcome

        result.vector_count = len(per_path[VECTOR])
        result.lexical_count = len(per_path[LEXICAL])
        result.candidates = per_path[VECTOR] + per_path[LEXICAL]
        retrieval_candidates.labels(source=VECTOR).observe(result.vector_count)
        retrieval_candidates.labels(source=LEXICAL).observe(result.lexical_count)

        if names and len(result.errors) == len(names):
            logger.error(
                "All retrieval backends failed, returning empty result",
                errors=result.errors,
            )
        return result

    # ----- vector path -----

    async def _run_vector(self, embedding, top_k, options, excluded, result) -> List[Candidate]:
        start = time.time()
        try:
            return await self._with_timeout(
                VECTOR, self._vector_path(embedding, top_k, options, excluded, result)
            )
        finally:
            elapsed = (time.time() - start) * 1000
            result.timings_ms[VECTOR] = round(elapsed, 2)
            retrieval_latency_ms.labels(backend=VECTOR).observe(elapsed)

    async def _vector_path(self, embedding, top_k, options, excluded, result) -> List[Candidate]:
        index = self.vector_index_for(options.collection)
        limit = top_k * self.config.over_fetch_factor
        structural = {"logical_id": options.parent_id} if options.parent_id else None

        hits = await index.query(embedding, limit, structural)
        candidates = [
            self._vector_candidate(h)
            for h in hits
            if h.distance <= self.config.max_distance
            and not self._is_excluded(h.document, excluded)
        ]
        if candidates or not options.parent_id:
            return candidates

        # Structural fallback: the filter alone, then the URL-embedded id.
        # No distance threshold here, but excluded labels stay excluded.
        for stage, key in (("filter_only", "logical_id"), ("url_id", "url_id")):
            hits = await index.query(embedding, limit, {key: options.parent_id})
            candidates = [
                self._vector_candidate(h)
                for h in hits
                if not self._is_excluded(h.document, excluded)
            ]
            vector_fallback_total.labels(stage=stage, result="hit" if candidates else "miss").inc()
            if candidates:
                result.fallback = stage
                logger.info(
                    "Vector fallback matched",
                    stage=stage,
                    parent_id=options.parent_id,
                    hits=len(candidates),
                )
                return candidates
        return []

    @staticmethod
    def _vector_candidate(hit) -> Candidate:
        return Candidate(
            document=hit.document,
            source_type=SourceType.VECTOR,
            distance=hit.distance,
            effective_distance=hit.distance,
        )

    # ----- lexical path -----

    async def _run_lexical(self, keyword_set, top_k, excluded, result) -> List[Candidate]:
        start = time.time()
        try:
            ready = await self.ensure_lexical_ready()
            result.lexical_ready = ready
            if not ready:
                result.lexical_skipped = True
                lexical_warmup_skipped_total.inc()
                logger.warning(
                    "Lexical index not ready, skipping lexical retrieval",
                    waited_s=self.config.lexical_warmup_timeout_seconds,
                )
                return []
            return await self._with_timeout(
                LEXICAL, self._lexical_path(keyword_set, top_k, excluded)
            )
        finally:
            elapsed = (time.time() - start) * 1000
            result.timings_ms[LEXICAL] = round(elapsed, 2)
            retrieval_latency_ms.labels(backend=LEXICAL).observe(elapsed)

    async def _lexical_path(self, keyword_set: KeywordSet, top_k: int, excluded) -> List[Candidate]:
        limit = self.config.lexical_limit(top_k)
        keywords = list(keyword_set.keywords)
        outcomes = await asyncio.gather(
            *(self.lexical_index.query(k, limit) for k in keywords),
            return_exceptions=True,
        )

        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if failures and len(failures) == len(outcomes):
            raise failures[0]
        for keyword, outcome in zip(keywords, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Lexical keyword query failed", keyword=keyword, error=str(outcome))

        # Accumulate per document across keywords, first-seen order
        scores: "OrderedDict[str, float]" = OrderedDict()
        matched: Dict[str, List[str]] = {}
        documents: Dict[str, Document] = {}
        for keyword, outcome in zip(keywords, outcomes):
            if isinstance(outcome, BaseException):
                continue
            for hit in outcome:
                scores[hit.id] = scores.get(hit.id, 0.0) + hit.score
                kws = matched.setdefault(hit.id, [])
                if keyword not in kws:
                    kws.append(keyword)
                if hit.document is not None:
                    documents.setdefault(hit.id, hit.document)

        missing = [doc_id for doc_id in scores if doc_id not in documents]
        if missing and self.metadata_store is not None:
            documents.update(await self.metadata_store.batch_get(missing))

        candidates = []
        for doc_id, score in scores.items():
            doc = documents.get(doc_id)
            if doc is None or self._is_excluded(doc, excluded):
                continue
            candidates.append(
                Candidate(
                    document=doc,
                    source_type=SourceType.LEXICAL,
                    lexical_score=score,
                    matched_keywords=list(matched[doc_id]),
                )
            )
        return candidates

    async def ensure_lexical_ready(self) -> bool:
        """Start (once) and wait a bounded time for lexical index warm-up."""
        index = self.lexical_index
        if index is None:
            return False
        if index.is_ready():
            return True

        task = self._warmup_task
        if task is None or (task.done() and not index.is_ready()):
            logger.info("Starting lexical index warm-up")
            task = asyncio.create_task(index.initialize())
            task.add_done_callback(_log_warmup_outcome)
            self._warmup_task = task

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.lexical_warmup_timeout_seconds
        while True:
            if index.is_ready():
                return True
            if task.done():
                return index.is_ready()
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.config.lexical_warmup_poll_seconds)

    # ----- helpers -----

    async def _with_timeout(self, backend: str, coro):
        timeout = self.config.backend_timeout_seconds
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(backend, f"no answer within {timeout}s") from e

    @staticmethod
    def _is_excluded(document: Document, excluded: FrozenSet[str]) -> bool:
        if not excluded:
            return False
        return any(fold_text(label) in excluded for label in document.labels)


def _log_warmup_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.warning("Lexical index warm-up cancelled")
    elif task.exception() is not None:
        logger.warning("Lexical index warm-up failed", error=str(task.exception()))
    else:
        logger.info("Lexical index warm-up finished")
