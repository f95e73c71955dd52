"""
Title matching and exact-title rescue.

``title_match_ratio`` measures how well a document title covers the query
keywords. It is used twice: to shrink the effective distance of strongly
matching vector candidates (``apply_title_boost``) and as the title signal of
the composite score.

``TitleRescueEngine`` guarantees that a page whose title is (almost exactly)
the query does not get lost just because the ANN index ranked it outside the
over-fetch window. Each rescue sub-search is cached and time-boxed on its own;
a slow or failing lookup drops only that lookup.
"""

import asyncio
import re
from typing import FrozenSet, Iterable, List, Optional, Sequence, Set

from wikirank.query.backends import LexicalIndex, MetadataStore
from wikirank.query.candidates import Candidate, SourceType
from wikirank.query.keywords import KeywordSet, Vocabulary, fold_text
from wikirank.shared.cache import ResultCache, make_cache_key
from wikirank.shared.config import TitleMatchConfig, TitleRescueConfig
from wikirank.shared.models import Document
from wikirank.shared.observability import get_logger
from wikirank.shared.observability.metrics import (
    title_rescue_added_total,
    title_rescue_lookups_total,
)

logger = get_logger(__name__)

_BRACKET_TAG = re.compile(r"【[^】]*】|\[[^\]]*\]|\([^)]*\)|「[^」]*」|<[^>]*>")
_NON_CONTENT = re.compile(r"[\s\d\W_]+", re.UNICODE)


def _strip_terms(text: str, terms: Iterable[str]) -> str:
    # Longest first so "詳細閲覧" is removed before "詳細"
    for term in sorted(terms, key=len, reverse=True):
        if term:
            text = text.replace(term, " ")
    return text


def count_residual_chars(text: str, generic_terms: Iterable[str]) -> int:
    """Characters left once generic fillers, digits and punctuation are gone."""
    stripped = _strip_terms(text, generic_terms)
    return len(_NON_CONTENT.sub("", stripped))


def title_match_ratio(
    title: str,
    keywords: Sequence[str],
    vocabulary: Vocabulary,
    config: Optional[TitleMatchConfig] = None,
) -> float:
    """
    Fraction of keywords found in the title, corrected for phrase structure.

    - some keywords missing: plain hit ratio
    - whole keyword sequence present (with or without spaces, either order):
      ``sequence_floor`` minus a small penalty per leftover title character,
      never below ``sequence_min``
    - all keywords present but scattered: ``scattered_floor`` minus a penalty
      per character interposed between them
    - either way, never below the ratio of a title missing one keyword
    - a compound domain term formed by the query appears in the title: at
      least ``compound_floor``

    Returns:
        Ratio in [0, 1]
    """
    cfg = config or TitleMatchConfig()
    folded = fold_text(title)
    if not folded or not keywords:
        return 0.0

    hits = [k for k in keywords if k in folded]
    ratio = len(hits) / len(keywords)
    generic = vocabulary.generic_terms

    if len(hits) == len(keywords):
        sequence = _find_sequence(folded, keywords)
        if sequence is not None:
            leftover = count_residual_chars(folded.replace(sequence, " ", 1), generic)
            penalty = min(cfg.sequence_max_penalty, leftover * cfg.sequence_penalty_per_char)
            ratio = max(cfg.sequence_min, cfg.sequence_floor - penalty)
        else:
            interposed = _interposed_chars(folded, keywords, generic)
            penalty = min(cfg.scattered_max_penalty, interposed * cfg.scattered_penalty_per_char)
            ratio = cfg.scattered_floor - penalty
        # Matching every keyword never scores below matching all but one
        ratio = max(ratio, (len(keywords) - 1) / len(keywords))

    joined = "".join(keywords)
    for term in vocabulary.compound_terms:
        if term in folded and (term in joined or term in keywords):
            ratio = max(ratio, cfg.compound_floor)
            break

    return max(0.0, min(1.0, ratio))


def _find_sequence(folded_title: str, keywords: Sequence[str]) -> Optional[str]:
    variants = []
    for ordered in (list(keywords), list(reversed(keywords))):
        variants.append("".join(ordered))
        variants.append(" ".join(ordered))
    for variant in variants:
        if variant in folded_title:
            return variant
    return None


def _interposed_chars(folded_title: str, keywords: Sequence[str], generic_terms) -> int:
    untagged = _BRACKET_TAG.sub(" ", folded_title)
    positions = [(untagged.find(k), k) for k in keywords]
    if any(pos < 0 for pos, _ in positions):
        # A keyword only occurs inside a bracketed tag; measure the raw title
        untagged = folded_title
        positions = [(untagged.find(k), k) for k in keywords]
    start = min(pos for pos, _ in positions)
    end = max(pos + len(k) for pos, k in positions)
    between = _strip_terms(untagged[start:end], keywords)
    return count_residual_chars(between, generic_terms)


def apply_title_boost(candidate: Candidate, config: Optional[TitleMatchConfig] = None) -> None:
    """Shrink the effective distance of candidates whose title matches well."""
    cfg = config or TitleMatchConfig()
    if candidate.distance is None:
        return
    ratio = candidate.title_match_ratio
    factor = 1.0
    if ratio >= cfg.strong_threshold:
        factor = 1.0 + (cfg.strong_boost - 1.0) * ratio
    elif ratio >= cfg.partial_threshold:
        factor = 1.0 + (cfg.partial_boost - 1.0) * ratio
    candidate.effective_distance = candidate.distance / factor
    candidate.breakdown.title_boost_factor = factor


def generate_title_candidates(keywords: Sequence[str], limit: int = 10) -> List[str]:
    """Pairwise concatenations (both orders) first, then single keywords."""
    out: List[str] = []
    seen: Set[str] = set()

    def push(value: str) -> None:
        if value and value not in seen:
            seen.add(value)
            out.append(value)

    for i, first in enumerate(keywords):
        for second in keywords[i + 1:]:
            push(first + second)
            push(second + first)
    for keyword in keywords:
        push(keyword)
    return out[:limit]


def is_near_exact_title(title: str, text: str, vocabulary: Vocabulary, max_leftover: int) -> bool:
    folded = fold_text(title)
    needle = fold_text(text)
    if not needle or needle not in folded:
        return False
    rest = _BRACKET_TAG.sub(" ", folded.replace(needle, " ", 1))
    return count_residual_chars(rest, vocabulary.generic_terms) <= max_leftover


class TitleRescueEngine:
    """Adds exact-title matches the ANN window may have missed."""

    def __init__(
        self,
        vocabulary: Vocabulary,
        lexical_index: Optional[LexicalIndex] = None,
        metadata_store: Optional[MetadataStore] = None,
        cache: Optional[ResultCache] = None,
        config: Optional[TitleRescueConfig] = None,
    ):
        self.vocabulary = vocabulary
        self.lexical_index = lexical_index
        self.metadata_store = metadata_store
        self.cache = cache
        self.config = config or TitleRescueConfig()

    async def rescue(
        self,
        keyword_set: KeywordSet,
        existing_ids: Iterable[str],
        lexical_ready: bool,
        excluded_labels: FrozenSet[str] = frozenset(),
    ) -> List[Candidate]:
        """
        Run one time-boxed lookup per title candidate string.

        Args:
            keyword_set: Extracted query keywords
            existing_ids: Document ids already in the candidate pool
            lexical_ready: Whether the lexical index may be queried
            excluded_labels: Folded labels that disqualify a document

        Returns:
            New ``title-exact`` candidates, in candidate-string order
        """
        if not self.config.enabled or keyword_set.is_empty:
            return []
        use_lexical = lexical_ready and self.lexical_index is not None
        if not use_lexical and self.metadata_store is None:
            return []

        texts = generate_title_candidates(keyword_set.keywords, self.config.max_candidates)
        outcomes = await asyncio.gather(
            *(self._timed_lookup(text, use_lexical) for text in texts),
            return_exceptions=True,
        )

        known = set(existing_ids)
        added: List[Candidate] = []
        for text, outcome in zip(texts, outcomes):
            if isinstance(outcome, BaseException):
                result = "timeout" if isinstance(outcome, asyncio.TimeoutError) else "error"
                title_rescue_lookups_total.labels(result=result).inc()
                logger.warning(
                    "Title rescue lookup failed",
                    candidate=text,
                    error=str(outcome) or type(outcome).__name__,
                )
                continue
            title_rescue_lookups_total.labels(result="ok").inc()
            for doc in outcome:
                if doc.id in known or any(
                    fold_text(label) in excluded_labels for label in doc.labels
                ):
                    continue
                known.add(doc.id)
                folded = fold_text(doc.title)
                added.append(
                    Candidate(
                        document=doc,
                        source_type=SourceType.TITLE_EXACT,
                        distance=self.config.exact_distance,
                        matched_keywords=[k for k in keyword_set.keywords if k in folded],
                    )
                )

        if added:
            title_rescue_added_total.inc(len(added))
            logger.info(
                "Title rescue added candidates",
                added=len(added),
                ids=[c.id for c in added[:10]],
            )
        return added

    async def _timed_lookup(self, text: str, use_lexical: bool) -> List[Document]:
        return await asyncio.wait_for(
            self._cached_lookup(text, use_lexical), timeout=self.config.timeout_seconds
        )

    async def _cached_lookup(self, text: str, use_lexical: bool) -> List[Document]:
        key = make_cache_key(
            "title", {"text": text, "mode": "lexical" if use_lexical else "metadata"}
        )
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)
        docs = await self._lookup(text, use_lexical)
        if self.cache is not None:
            self.cache.set(key, tuple(docs))
        return docs

    async def _lookup(self, text: str, use_lexical: bool) -> List[Document]:
        limit = self.config.lookup_limit
        if not use_lexical:
            return list(await self.metadata_store.find_by_title(text, limit))

        hits = await self.lexical_index.query(text, limit)
        docs = {h.id: h.document for h in hits if h.document is not None}
        missing = [h.id for h in hits if h.document is None]
        if missing and self.metadata_store is not None:
            docs.update(await self.metadata_store.batch_get(missing))
        ordered = [docs[h.id] for h in hits if h.id in docs]
        return [
            d
            for d in ordered
            if is_near_exact_title(d.title, text, self.vocabulary, self.config.max_leftover_chars)
        ]
