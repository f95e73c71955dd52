"""
Keyword, label and hybrid scoring of retrieved candidates.

All three scores are computed per candidate before fusion:

- keyword score: weighted count of keyword hits in title, labels and content
- label score: how well plain and structured labels match the query (0-1)
- hybrid score: the vector distance shrunk by keyword and label evidence
  (lower is better)
"""

from typing import Dict, Iterable, Optional, Tuple

from wikirank.query.candidates import Candidate
from wikirank.query.keywords import KeywordSet, Vocabulary, fold_text
from wikirank.query.title_rescue import apply_title_boost, title_match_ratio
from wikirank.shared.config import KeywordScoringConfig, TitleMatchConfig
from wikirank.shared.models import Document

# Structured label weights; their sum normalises the structured part to 1.0
DOMAIN_MATCH = 2.0
FEATURE_MATCH = 1.5
TAG_MATCH = 0.5
CATEGORY_MATCH = 0.3
APPROVED_BONUS = 0.2
STRUCTURED_MAX = DOMAIN_MATCH + FEATURE_MATCH + TAG_MATCH + CATEGORY_MATCH + APPROVED_BONUS

PLAIN_LABEL_SHARE = 0.2
STRUCTURED_LABEL_SHARE = 0.8


def _either_contains(value: str, keywords: Iterable[str]) -> bool:
    return any(k in value or value in k for k in keywords)


def label_score(document: Document, keywords: Tuple[str, ...]) -> float:
    """
    Label relevance in [0, 1].

    Plain labels contribute up to 20% (share of keywords contained in some
    label). Structured labels (domain, feature, tags, category, approved
    status) contribute up to 80%.
    """
    if not keywords:
        return 0.0

    score = 0.0
    labels = [fold_text(label) for label in document.labels]
    if labels:
        matched = sum(1 for k in keywords if any(k in label for label in labels))
        score += matched / len(keywords) * PLAIN_LABEL_SHARE

    if not (document.domain or document.feature or document.category):
        return min(score, 1.0)

    structured = 0.0
    if document.domain and _either_contains(fold_text(document.domain), keywords):
        structured += DOMAIN_MATCH
    if document.feature and _either_contains(fold_text(document.feature), keywords):
        structured += FEATURE_MATCH
    tags = [fold_text(t) for t in document.tags]
    if tags and any(_either_contains(tag, keywords) for tag in tags):
        structured += TAG_MATCH
    if document.category and _either_contains(fold_text(document.category), keywords):
        structured += CATEGORY_MATCH
    if (document.status or "").lower() == "approved":
        structured += APPROVED_BONUS
    score += min(structured / STRUCTURED_MAX, 1.0) * STRUCTURED_LABEL_SHARE
    return min(score, 1.0)


class CandidateScorer:
    """Fills keyword, label, title and hybrid scores on candidates in place."""

    def __init__(
        self,
        vocabulary: Vocabulary,
        config: Optional[KeywordScoringConfig] = None,
        title_config: Optional[TitleMatchConfig] = None,
        max_distance: float = 2.0,
    ):
        self.vocabulary = vocabulary
        self.config = config or KeywordScoringConfig()
        self.title_config = title_config or TitleMatchConfig()
        self.max_distance = max_distance

    def keyword_weight(self, keyword: str, keyword_set: KeywordSet) -> float:
        cfg = self.config
        weight = (
            cfg.high_priority_weight
            if keyword_set.is_high_priority(keyword)
            else cfg.low_priority_weight
        )
        # Domain terms keep full weight even when they double as generic words
        if keyword in self.vocabulary.domain_terms:
            return weight
        if keyword in self.vocabulary.generic_document_terms:
            weight *= cfg.generic_document_weight
        elif keyword in self.vocabulary.generic_function_terms:
            weight *= cfg.generic_function_weight
        return weight

    def keyword_score(
        self, document: Document, keyword_set: KeywordSet
    ) -> Tuple[float, Dict[str, int], int]:
        """
        Returns:
            (score, per-keyword match counts, number of keywords hitting a label)
        """
        cfg = self.config
        title = fold_text(document.title)
        labels = [fold_text(label) for label in document.labels]
        content = fold_text(document.content)

        score = 0.0
        counts: Dict[str, int] = {}
        label_matches = 0
        for keyword in keyword_set.keywords:
            weight = self.keyword_weight(keyword, keyword_set)
            matches = 0
            if keyword in title:
                score += cfg.title_weight * weight
                matches += 1
            if any(keyword in label for label in labels):
                score += cfg.label_weight * weight
                label_matches += 1
                matches += 1
            occurrences = min(content.count(keyword), cfg.content_occurrence_cap)
            if occurrences:
                score += cfg.content_weight * weight * occurrences
                matches += occurrences
            if matches:
                counts[keyword] = matches
        return score, counts, label_matches

    def hybrid_score(self, candidate: Candidate) -> float:
        cfg = self.config
        distance = candidate.ranking_distance
        if distance is None:
            distance = self.max_distance
        score = distance / (
            1.0
            + cfg.hybrid_keyword_weight * candidate.keyword_score
            + cfg.hybrid_label_weight * candidate.label_matches
        )
        doc = candidate.document
        if doc.is_multi_chunk and doc.chunk_index == 0:
            score *= cfg.first_chunk_discount
        return score

    def score(self, candidate: Candidate, keyword_set: KeywordSet) -> Candidate:
        doc = candidate.document
        kw_score, counts, label_matches = self.keyword_score(doc, keyword_set)
        candidate.keyword_score = kw_score
        candidate.keyword_match_counts = counts
        candidate.label_matches = label_matches
        for keyword in counts:
            if keyword not in candidate.matched_keywords:
                candidate.matched_keywords.append(keyword)
        candidate.label_score = label_score(doc, keyword_set.keywords)
        candidate.title_match_ratio = title_match_ratio(
            doc.title, keyword_set.keywords, self.vocabulary, self.title_config
        )
        apply_title_boost(candidate, self.title_config)
        candidate.hybrid_score = self.hybrid_score(candidate)
        return candidate

    def score_all(self, candidates: Iterable[Candidate], keyword_set: KeywordSet) -> list:
        return [self.score(c, keyword_set) for c in candidates]
