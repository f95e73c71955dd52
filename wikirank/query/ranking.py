"""
Two-tier composite ranking.

The top ``top_n`` candidates by RRF (tier ``full``) get a weighted blend of
four normalised signals:

    composite = 0.3*vector + 0.4*lexical + 0.2*title + 0.1*label

plus a small boost for domain terms shared by query and title, times a
domain penalty for meeting/archive/generic pages. Everything below the cut
(tier ``simple``) gets ``rrf * proxy_factor``. Each signal is non-decreasing
in the evidence it measures, so improving one signal never lowers a
candidate's composite score.
"""

import time
from typing import List, Optional, Sequence

from wikirank.query.candidates import Candidate, ScoringTier
from wikirank.query.keywords import KeywordSet, Vocabulary, fold_text
from wikirank.shared.config import CompositeConfig
from wikirank.shared.observability import get_logger
from wikirank.shared.observability.metrics import (
    ranking_candidates_total,
    ranking_latency_ms,
    ranking_tier_total,
)

logger = get_logger(__name__)


class CompositeRanker:
    """Assigns ``composite_score`` and ``scoring_tier`` to fused candidates."""

    def __init__(self, vocabulary: Vocabulary, config: Optional[CompositeConfig] = None):
        self.vocabulary = vocabulary
        self.config = config or CompositeConfig()

    def rank(self, candidates: Sequence[Candidate], keyword_set: KeywordSet) -> List[Candidate]:
        """
        Score and sort candidates.

        Args:
            candidates: Output of RRF fusion, sorted by descending rrf
            keyword_set: Query keywords (for the domain boost)

        Returns:
            Candidates sorted by descending composite score, ties by rrf then id
        """
        if not candidates:
            return []

        start_time = time.time()
        cfg = self.config
        by_rrf = sorted(candidates, key=lambda c: (-c.rrf_score, c.id))
        full, simple = by_rrf[: cfg.top_n], by_rrf[cfg.top_n:]

        for candidate in full:
            self._score_full(candidate, keyword_set)
        for candidate in simple:
            candidate.composite_score = candidate.rrf_score * cfg.proxy_factor
            candidate.scoring_tier = ScoringTier.SIMPLE

        ranked = list(full) + list(simple)
        ranked.sort(key=lambda c: (-c.composite_score, -c.rrf_score, c.id))

        latency = (time.time() - start_time) * 1000
        ranking_latency_ms.observe(latency)
        ranking_candidates_total.observe(len(ranked))
        ranking_tier_total.labels(tier=ScoringTier.FULL.value).inc(len(full))
        ranking_tier_total.labels(tier=ScoringTier.SIMPLE.value).inc(len(simple))
        logger.debug(
            "Composite ranking complete",
            full=len(full),
            simple=len(simple),
            latency_ms=round(latency, 2),
        )
        return ranked

    def vector_signal(self, candidate: Candidate) -> float:
        distance = candidate.ranking_distance
        if distance is None:
            return 0.0
        return 1.0 - min(max(distance, 0.0) / self.config.max_vector_distance, 1.0)

    def lexical_signal(self, candidate: Candidate) -> float:
        # Without a lexical-index score the keyword score stands in
        raw = candidate.lexical_score if candidate.lexical_score > 0 else candidate.keyword_score
        return min(max(raw, 0.0) / self.config.max_lexical_score, 1.0)

    def domain_boost(self, candidate: Candidate, keyword_set: KeywordSet) -> float:
        title = fold_text(candidate.document.title)
        shared = sum(
            1
            for k in keyword_set.keywords
            if k in self.vocabulary.domain_terms and k in title
        )
        return min(shared * self.config.domain_boost_per_term, self.config.domain_boost_cap)

    def domain_penalty(self, candidate: Candidate) -> float:
        cfg = self.config
        doc = candidate.document
        title = fold_text(doc.title)
        labels = [fold_text(label) for label in doc.labels]
        factor = 1.0
        penalty_terms = self.vocabulary.penalty_terms
        if any(t in title for t in penalty_terms) or any(
            t in label for label in labels for t in penalty_terms
        ):
            factor *= cfg.penalty_term_factor
        if any(t in title for t in self.vocabulary.generic_title_terms):
            factor *= cfg.generic_document_factor
        if any(t in title for t in self.vocabulary.out_of_scope_terms):
            factor *= cfg.out_of_scope_factor
        return factor

    def _score_full(self, candidate: Candidate, keyword_set: KeywordSet) -> None:
        cfg = self.config
        breakdown = candidate.breakdown
        breakdown.vector = cfg.vector_weight * self.vector_signal(candidate)
        breakdown.lexical = cfg.lexical_weight * self.lexical_signal(candidate)
        breakdown.title = cfg.title_weight * candidate.title_match_ratio
        breakdown.label = cfg.label_weight * candidate.label_score
        breakdown.domain_boost = self.domain_boost(candidate, keyword_set)
        breakdown.domain_penalty = self.domain_penalty(candidate)

        base = breakdown.vector + breakdown.lexical + breakdown.title + breakdown.label
        candidate.composite_score = (base + breakdown.domain_boost) * breakdown.domain_penalty
        candidate.scoring_tier = ScoringTier.FULL
