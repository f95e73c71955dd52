"""
Query normalisation and keyword extraction.

The extractor turns a raw user query into an ordered, de-duplicated keyword
list split into high and low priority sets. Segmentation is delegated to a
``Tokenizer``; the default ``ScriptRunTokenizer`` splits on script
boundaries (Latin/digits, Han, Katakana, Hiragana) and breaks long Han or
Katakana runs with a longest-match pass over the configured vocabulary, so
"教室削除" yields "教室" and "削除". A morphological analyser can be injected
instead without touching the rest of the pipeline.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, List, Optional, Protocol, Tuple

from wikirank.shared.config import KeywordConfig, VocabularyConfig
from wikirank.shared.observability import get_logger

logger = get_logger(__name__)

_ZERO_WIDTH = re.compile("[\u200b-\u200d\u2060\ufeff]")
_BRACKETS = re.compile(r"[()（）\[\]［］{}｛｝「」『』【】〈〉《》<>＜＞\"“”]")
_WHITESPACE = re.compile(r"\s+")

_TOKEN_RUNS = re.compile(
    r"(?P<latin>[A-Za-z0-9](?:[A-Za-z0-9&+_.\-]*[A-Za-z0-9])?)"
    r"|(?P<han>[\u3400-\u4dbf\u4e00-\u9fff\u3005\u3006\u30f6]+)"
    r"|(?P<kata>[\u30a1-\u30fa\u30fc]+)"
    r"|(?P<hira>[\u3041-\u3096\u309d\u309e]+)"
)
_LATIN = re.compile(r"^[A-Za-z0-9&+_.\-]+$")


def fold_term(term: str) -> str:
    """Canonical comparison form: NFKC, Latin lower-cased."""
    folded = unicodedata.normalize("NFKC", term).strip()
    return folded.lower() if _LATIN.match(folded) else folded


def fold_text(text: str) -> str:
    """Comparison form for titles, labels and content."""
    return unicodedata.normalize("NFKC", text or "").lower()


class Tokenizer(Protocol):
    def tokenize(self, text: str) -> List[str]:
        ...


class QueryNormalizer:
    """Strips invisible characters and bracket punctuation, collapses spaces."""

    def normalize(self, raw: Any) -> str:
        if not isinstance(raw, str):
            return ""
        text = unicodedata.normalize("NFKC", raw)
        text = _ZERO_WIDTH.sub("", text)
        text = _BRACKETS.sub(" ", text)
        return _WHITESPACE.sub(" ", text).strip()


class ScriptRunTokenizer:
    """Script-run segmenter with dictionary longest-match splitting."""

    def __init__(self, dictionary: Iterable[str] = (), keep_hiragana: bool = False):
        words = {fold_term(w) for w in dictionary if w and len(w) >= 2}
        self._dictionary = frozenset(words)
        self._max_word = max((len(w) for w in words), default=0)
        self.keep_hiragana = keep_hiragana

    def tokenize(self, text: str) -> List[str]:
        tokens: List[str] = []
        for match in _TOKEN_RUNS.finditer(text or ""):
            kind = match.lastgroup
            run = match.group(0)
            if kind == "hira":
                if self.keep_hiragana:
                    tokens.append(run)
            elif kind in ("han", "kata"):
                tokens.extend(self._split_run(run))
            else:
                tokens.append(run)
        return tokens

    def _split_run(self, run: str) -> List[str]:
        if not self._dictionary or len(run) < 2:
            return [run]
        pieces: List[str] = []
        pending = ""
        i = 0
        while i < len(run):
            word = self._longest_at(run, i)
            if word:
                if pending:
                    pieces.append(pending)
                    pending = ""
                pieces.append(word)
                i += len(word)
            else:
                pending += run[i]
                i += 1
        if pending:
            pieces.append(pending)
        return pieces

    def _longest_at(self, run: str, start: int) -> Optional[str]:
        upper = min(len(run), start + self._max_word)
        for end in range(upper, start + 1, -1):
            candidate = run[start:end]
            if candidate in self._dictionary:
                return candidate
        return None


class Vocabulary:
    """Folded term sets used by extraction and the scoring stages."""

    def __init__(self, cfg: VocabularyConfig):
        def fold(words: Iterable[str]) -> FrozenSet[str]:
            return frozenset(fold_term(w) for w in words if w)

        self.stop_words = fold(cfg.stop_words)
        self.negative_words = fold(cfg.negative_words)
        self.domain_terms = fold(cfg.domain_terms)
        self.compound_terms = fold(cfg.compound_terms)
        self.generic_function_terms = fold(cfg.generic_function_terms)
        self.generic_document_terms = fold(cfg.generic_document_terms)
        self.penalty_terms = fold(cfg.penalty_terms)
        self.generic_title_terms = fold(cfg.generic_title_terms)
        self.out_of_scope_terms = fold(cfg.out_of_scope_terms)
        self.synonyms = {fold_term(k): [fold_term(s) for s in v] for k, v in cfg.synonyms.items()}

    @property
    def generic_terms(self) -> FrozenSet[str]:
        return self.generic_function_terms | self.generic_document_terms

    def segmentation_dictionary(self) -> FrozenSet[str]:
        # Compound terms are deliberately absent so they split into their parts
        return (
            self.domain_terms
            | self.generic_terms
            | self.penalty_terms
            | self.negative_words
            | self.stop_words
            | frozenset(self.synonyms)
        )

    def is_excluded(self, term: str) -> bool:
        return term in self.stop_words or term in self.negative_words


@dataclass(frozen=True)
class KeywordSet:
    normalized_query: str
    keywords: Tuple[str, ...] = ()
    high_priority: FrozenSet[str] = field(default_factory=frozenset)
    low_priority: FrozenSet[str] = field(default_factory=frozenset)
    expanded_query: str = ""

    @classmethod
    def empty(cls, normalized_query: str = "") -> "KeywordSet":
        return cls(normalized_query=normalized_query, expanded_query=normalized_query)

    @property
    def is_empty(self) -> bool:
        return not self.keywords

    def is_high_priority(self, keyword: str) -> bool:
        return keyword in self.high_priority


class KeywordExtractor:
    """Raw query -> KeywordSet. Never raises."""

    def __init__(
        self,
        vocabulary: Vocabulary,
        config: Optional[KeywordConfig] = None,
        tokenizer: Optional[Tokenizer] = None,
        normalizer: Optional[QueryNormalizer] = None,
    ):
        self.vocabulary = vocabulary
        self.config = config or KeywordConfig()
        self.normalizer = normalizer or QueryNormalizer()
        self.tokenizer = tokenizer or ScriptRunTokenizer(
            vocabulary.segmentation_dictionary()
        )

    def extract(self, raw: Any) -> KeywordSet:
        normalized = self.normalizer.normalize(raw)
        if not normalized:
            return KeywordSet.empty()

        try:
            tokens = self.tokenizer.tokenize(normalized)
        except Exception as e:
            logger.warning("Tokenizer failed, continuing without keywords", error=str(e))
            return KeywordSet.empty(normalized)

        keywords: List[str] = []
        seen = set()
        for token in tokens:
            term = fold_term(token)
            if len(term) < self.config.min_keyword_length:
                continue
            if self.vocabulary.is_excluded(term) or term in seen:
                continue
            seen.add(term)
            keywords.append(term)
            if len(keywords) >= self.config.max_keywords:
                break

        if not keywords:
            return KeywordSet.empty(normalized)

        vocab = self.vocabulary
        high = {
            k for k in keywords if k in vocab.domain_terms or k in vocab.compound_terms
        }
        high.update(keywords[: self.config.high_priority_count])
        low = frozenset(keywords) - high

        expansions = []
        for k in keywords:
            for synonym in vocab.synonyms.get(k, ()):
                if synonym not in seen and synonym not in expansions:
                    expansions.append(synonym)
        expanded = " ".join([normalized] + expansions)

        keyword_set = KeywordSet(
            normalized_query=normalized,
            keywords=tuple(keywords),
            high_priority=frozenset(high),
            low_priority=low,
            expanded_query=expanded,
        )
        logger.debug(
            "Keywords extracted",
            keywords=list(keyword_set.keywords),
            high_priority=sorted(keyword_set.high_priority),
        )
        return keyword_set
