# Query pipeline package
from .candidates import Candidate, RankedDocument, SearchResponse, SourceType
from .hybrid_search import HybridSearchEngine
from .keywords import KeywordExtractor, KeywordSet, QueryNormalizer
from .orchestrator import LabelFilterOptions, SearchOptions

__all__ = [
    "HybridSearchEngine",
    "SearchOptions",
    "LabelFilterOptions",
    "SearchResponse",
    "RankedDocument",
    "Candidate",
    "SourceType",
    "KeywordExtractor",
    "KeywordSet",
    "QueryNormalizer",
]
