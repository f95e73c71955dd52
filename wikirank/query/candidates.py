"""
Scoring records carried through the ranking pipeline.

A ``Candidate`` is created by retrieval (vector, lexical or title rescue) and
is then mutated in place by each scoring stage. ``RankedDocument`` is the
frozen, caller-facing projection produced at the end of the pipeline.
"""

import re
import unicodedata
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from wikirank.shared.models import Document


class SourceType(str, Enum):
    VECTOR = "vector"
    LEXICAL = "lexical"
    HYBRID = "hybrid"
    TITLE_EXACT = "title-exact"


class ScoringTier(str, Enum):
    FULL = "full"
    SIMPLE = "simple"


_TITLE_NOISE = re.compile(r"[\s　\-_・/|:：]+")


def normalize_title(title: str) -> str:
    """Case/width/whitespace-insensitive form used in dedup keys."""
    folded = unicodedata.normalize("NFKC", title or "").lower()
    return _TITLE_NOISE.sub("", folded)


@dataclass
class ScoreBreakdown:
    """Per-signal contributions to the composite score."""

    vector: float = 0.0
    lexical: float = 0.0
    title: float = 0.0
    label: float = 0.0
    domain_boost: float = 0.0
    domain_penalty: float = 1.0
    title_boost_factor: float = 1.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class Candidate:
    """A document under consideration plus every score computed for it."""

    document: Document
    source_type: SourceType
    distance: Optional[float] = None
    effective_distance: Optional[float] = None
    lexical_score: float = 0.0
    matched_keywords: List[str] = field(default_factory=list)

    # Scoring metadata
    keyword_score: float = 0.0
    keyword_match_counts: Dict[str, int] = field(default_factory=dict)
    label_score: float = 0.0
    label_matches: int = 0
    title_match_ratio: float = 0.0
    hybrid_score: Optional[float] = None
    rrf_score: float = 0.0
    composite_score: Optional[float] = None
    scoring_tier: Optional[ScoringTier] = None
    source_ranks: Dict[str, int] = field(default_factory=dict)
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)

    @property
    def id(self) -> str:
        return self.document.id

    @property
    def logical_id(self) -> str:
        return self.document.logical_id

    @property
    def dedup_key(self) -> tuple:
        return (self.document.logical_id, normalize_title(self.document.title))

    @property
    def ranking_distance(self) -> Optional[float]:
        """Distance after title boost, falling back to the raw distance."""
        if self.effective_distance is not None:
            return self.effective_distance
        return self.distance

    def merge(self, other: "Candidate") -> None:
        """Fold another candidate for the same chunk into this one."""
        if other.distance is not None and (
            self.distance is None or other.distance < self.distance
        ):
            self.distance = other.distance
            self.effective_distance = other.effective_distance
        self.lexical_score = max(self.lexical_score, other.lexical_score)
        for kw in other.matched_keywords:
            if kw not in self.matched_keywords:
                self.matched_keywords.append(kw)
        sources = {self.source_type, other.source_type}
        if SourceType.HYBRID in sources or {
            SourceType.LEXICAL,
            SourceType.VECTOR,
        } <= sources:
            self.source_type = SourceType.HYBRID


@dataclass(frozen=True)
class RankedDocument:
    """Caller-facing search result."""

    id: str
    logical_id: str
    title: str
    content: str
    labels: List[str]
    url: str
    last_updated: Optional[str]
    category: Optional[str]
    status: Optional[str]
    score: float
    rrf_score: float
    source: str
    scoring_tier: str
    title_match_ratio: float
    distance: Optional[float]
    lexical_score: float
    matched_keywords: List[str]
    score_breakdown: Dict[str, float]
    rank: int

    @classmethod
    def from_candidate(cls, candidate: Candidate, rank: int) -> "RankedDocument":
        doc = candidate.document
        return cls(
            id=doc.id,
            logical_id=doc.logical_id,
            title=doc.title,
            content=doc.content,
            labels=sorted(doc.labels),
            url=doc.url,
            last_updated=doc.last_updated,
            category=doc.category,
            status=doc.status,
            score=float(candidate.composite_score or 0.0),
            rrf_score=candidate.rrf_score,
            source=candidate.source_type.value,
            scoring_tier=(candidate.scoring_tier or ScoringTier.SIMPLE).value,
            title_match_ratio=candidate.title_match_ratio,
            distance=candidate.distance,
            lexical_score=candidate.lexical_score,
            matched_keywords=list(candidate.matched_keywords),
            score_breakdown=candidate.breakdown.to_dict(),
            rank=rank,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResponse:
    results: List[RankedDocument]
    query: str
    keywords: List[str]
    cache_hit: bool = False
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.results)
