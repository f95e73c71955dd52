"""
Post-ranking dedup and quality filters.

Applied in order to the composite-ranked list:

1. one candidate per logical document
2. content floor (too short to answer anything)
3. meeting notes, unless requested
4. deprecated pages, unless requested
5. excluded title patterns

Filters only drop candidates; relative order is preserved. Each filter logs
and counts what it removed.
"""

import fnmatch
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from wikirank.query.candidates import Candidate
from wikirank.shared.config import FilterConfig
from wikirank.shared.observability import get_logger
from wikirank.shared.observability.metrics import filter_removed_total

logger = get_logger(__name__)


def _dedup_rank_key(candidate: Candidate) -> tuple:
    composite = candidate.composite_score if candidate.composite_score is not None else 0.0
    distance = candidate.ranking_distance
    return (-composite, distance if distance is not None else float("inf"), candidate.id)


class ResultFilter:
    """Dedup plus content-quality and taxonomy filters."""

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config or FilterConfig()
        self._meeting_patterns = [
            re.compile(p, re.IGNORECASE) for p in self.config.meeting_title_patterns
        ]
        self._meeting_categories = {c.lower() for c in self.config.meeting_categories}
        self._deprecated = {s.lower() for s in self.config.deprecated_statuses}

    def apply(
        self,
        candidates: Sequence[Candidate],
        include_meeting_notes: bool = False,
        include_deprecated: bool = False,
    ) -> Tuple[List[Candidate], Dict[str, int]]:
        """
        Run every filter in order.

        Returns:
            (surviving candidates, removed count per filter)
        """
        removed: Dict[str, int] = {}
        current = self.dedup_by_document(candidates)
        removed["dedup"] = len(candidates) - len(current)

        steps: List[Tuple[str, Callable[[Candidate], bool]]] = [
            ("content_floor", self.is_too_short),
        ]
        if not include_meeting_notes:
            steps.append(("meeting_notes", self.is_meeting_note))
        if not include_deprecated:
            steps.append(("deprecated", self.is_deprecated))
        steps.append(("title_pattern", self.is_excluded_title))

        for name, predicate in steps:
            kept = [c for c in current if not predicate(c)]
            removed[name] = len(current) - len(kept)
            current = kept

        for name, count in removed.items():
            if count:
                filter_removed_total.labels(filter=name).inc(count)
        logger.debug("Filters applied", kept=len(current), removed=removed)
        return current, removed

    def dedup_by_document(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        """One candidate per logical id: best composite, then lowest distance."""
        best: Dict[str, Candidate] = {}
        for candidate in candidates:
            current = best.get(candidate.logical_id)
            if current is None or _dedup_rank_key(candidate) < _dedup_rank_key(current):
                best[candidate.logical_id] = candidate
        winners = {id(c) for c in best.values()}
        return [c for c in candidates if id(c) in winners]

    def is_too_short(self, candidate: Candidate) -> bool:
        return len(candidate.document.content.strip()) < self.config.min_content_length

    def is_meeting_note(self, candidate: Candidate) -> bool:
        doc = candidate.document
        if doc.category:
            return doc.category.lower() in self._meeting_categories
        return any(p.search(doc.title) for p in self._meeting_patterns)

    def is_deprecated(self, candidate: Candidate) -> bool:
        status = candidate.document.status
        return bool(status) and status.lower() in self._deprecated

    def is_excluded_title(self, candidate: Candidate) -> bool:
        title = candidate.document.title
        return any(
            fnmatch.fnmatchcase(title, pattern)
            for pattern in self.config.excluded_title_patterns
        )
