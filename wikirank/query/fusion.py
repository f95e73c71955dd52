"""
Reciprocal Rank Fusion (RRF) over the vector, lexical and title-rescue lists.

RRF formula: score = sum_s(weight_s / (k + rank_s))
where k is a constant (default 60) and rank_s is the 1-based rank in list s.

Reference: Cormack et al. "Reciprocal Rank Fusion outperforms Condorcet
and individual Rank Learning Methods"
"""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from wikirank.query.candidates import Candidate, SourceType
from wikirank.shared.config import FusionConfig
from wikirank.shared.observability import get_logger

logger = get_logger(__name__)

VECTOR = "vector"
LEXICAL = "lexical"
TITLE_EXACT = "title-exact"


def merge_by_id(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Collapse candidates for the same chunk id, keeping first-seen order."""
    merged: Dict[str, Candidate] = {}
    for candidate in candidates:
        existing = merged.get(candidate.id)
        if existing is None:
            merged[candidate.id] = candidate
        else:
            existing.merge(candidate)
    return list(merged.values())


def _vector_order(candidates: Sequence[Candidate]) -> List[Candidate]:
    with_distance = [
        c
        for c in candidates
        if c.distance is not None and c.source_type != SourceType.TITLE_EXACT
    ]
    return sorted(with_distance, key=lambda c: (c.ranking_distance, c.id))


def _lexical_order(candidates: Sequence[Candidate]) -> List[Candidate]:
    with_score = [c for c in candidates if c.lexical_score > 0]
    return sorted(with_score, key=lambda c: (-c.lexical_score, c.id))


def _sort_key(candidate: Candidate) -> tuple:
    hybrid = candidate.hybrid_score if candidate.hybrid_score is not None else float("inf")
    return (-candidate.rrf_score, hybrid, candidate.id)


def rrf_fuse(
    candidates: Sequence[Candidate],
    config: Optional[FusionConfig] = None,
) -> List[Candidate]:
    """
    Assign ``rrf_score`` and ``source_ranks`` to every candidate, then
    deduplicate by (logical id, normalised title) and sort.

    Every candidate appears in at least one source list, so with positive
    source weights every surviving candidate has a positive rrf score.

    Returns:
        Candidates sorted by descending rrf, ties by ascending hybrid score
        then id
    """
    cfg = config or FusionConfig()
    pool = merge_by_id(candidates)
    if not pool:
        return []

    lists = {
        VECTOR: _vector_order(pool),
        LEXICAL: _lexical_order(pool),
        TITLE_EXACT: [c for c in pool if c.source_type == SourceType.TITLE_EXACT],
    }

    scores: Dict[str, float] = defaultdict(float)
    for source, ordered in lists.items():
        weight = cfg.source_weights.get(source, 1.0)
        for rank, candidate in enumerate(ordered, start=1):
            candidate.source_ranks[source] = rank
            scores[candidate.id] += weight / (cfg.rrf_k + rank)

    for candidate in pool:
        if not candidate.source_ranks:
            # No distance and no lexical score: rank it last in its own source
            source = candidate.source_type.value
            rank = len(pool)
            candidate.source_ranks[source] = rank
            scores[candidate.id] += cfg.source_weights.get(source, 1.0) / (cfg.rrf_k + rank)
        candidate.rrf_score = scores[candidate.id]

    fused = dedup_candidates(pool)
    fused.sort(key=_sort_key)
    logger.debug(
        "RRF fusion complete",
        candidates=len(pool),
        after_dedup=len(fused),
        vector=len(lists[VECTOR]),
        lexical=len(lists[LEXICAL]),
        title_exact=len(lists[TITLE_EXACT]),
    )
    return fused


def dedup_candidates(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Keep the higher-rrf candidate per (logical id, normalised title)."""
    best: Dict[tuple, Candidate] = {}
    for candidate in candidates:
        key = candidate.dedup_key
        current = best.get(key)
        if current is None or _sort_key(candidate) < _sort_key(current):
            best[key] = candidate
    return list(best.values())
