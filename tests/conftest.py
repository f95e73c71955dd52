# Shared fixtures for the wikirank test-suite (in-memory backends only)

import os
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["ENV"] = "development"

from wikirank.providers.memory import (  # noqa: E402
    InMemoryLexicalIndex,
    InMemoryMetadataStore,
    InMemoryVectorIndex,
)
from wikirank.query.hybrid_search import HybridSearchEngine  # noqa: E402
from wikirank.query.keywords import KeywordExtractor, Vocabulary  # noqa: E402
from wikirank.shared.cache import SearchCaches  # noqa: E402
from wikirank.shared.config import Config  # noqa: E402
from wikirank.shared.models import Document  # noqa: E402

FILLER = "この文書は運用担当者向けの補足説明と参考資料をまとめたものです。"

EMBEDDING_TERMS = [
    "教室", "削除", "求人", "会員", "退会", "コピー",
    "管理", "一覧", "議事録", "機能", "クラス", "授業",
]


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BagOfTermsEmbedder:
    """Deterministic embedder: one dimension per known term."""

    def __init__(self, terms: Optional[List[str]] = None):
        self.terms = terms or EMBEDDING_TERMS
        self.calls: List[str] = []

    def vector(self, text: str) -> List[float]:
        return [1.0 if term in text else 0.0 for term in self.terms]

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return self.vector(text)


class FailingEmbedder:
    async def embed(self, text: str) -> List[float]:
        raise RuntimeError("embedding service down")


def long_content(text: str) -> str:
    return text + FILLER * 4


def make_doc(doc_id: str, title: str, content: Optional[str] = None, **kwargs) -> Document:
    kwargs.setdefault("logical_id", doc_id)
    kwargs["labels"] = frozenset(kwargs.get("labels", ()))
    kwargs["tags"] = frozenset(kwargs.get("tags", ()))
    return Document(
        id=doc_id,
        title=title,
        content=long_content(title) if content is None else content,
        **kwargs,
    )


def build_corpus() -> List[Document]:
    return [
        make_doc(
            "d-class-delete",
            "164_教室削除機能",
            long_content("教室削除機能の仕様。教室を削除すると紐づく求人も非公開になります。"),
            labels=["教室", "削除"],
            domain="教室",
            feature="削除",
            category="spec",
            status="approved",
            url="https://wiki.example.com/pages/1001",
        ),
        make_doc("d-class-admin", "教室管理画面", long_content("教室の一覧と編集を行う管理画面。")),
        make_doc("d-job-delete", "求人削除機能", long_content("求人を削除する機能の仕様。")),
        make_doc("d-member-withdraw", "会員退会フロー", long_content("会員が退会する流れ。")),
        make_doc("d-class-list", "教室一覧", long_content("登録済み教室の一覧表示。")),
        make_doc(
            "d-meeting",
            "2024-01-10 教室削除 議事録",
            long_content("教室削除についての打ち合わせ内容。"),
        ),
        make_doc("d-short", "教室削除メモ", "教室削除の手順メモ"),
        make_doc(
            "d-deprecated",
            "旧 教室削除仕様",
            long_content("旧方式の教室削除仕様。"),
            status="deprecated",
        ),
        make_doc(
            "d-copy#0",
            "教室コピー機能",
            long_content("教室コピー機能の概要。"),
            logical_id="d-copy",
            chunk_index=0,
            chunk_count=2,
        ),
        make_doc(
            "d-copy#1",
            "教室コピー機能",
            long_content("教室コピー時に複製される項目。"),
            logical_id="d-copy",
            chunk_index=1,
            chunk_count=2,
        ),
        make_doc(
            "d-archive",
            "教室削除 (アーカイブ)",
            long_content("過去の教室削除資料。"),
            labels=["アーカイブ"],
        ),
    ]


def make_test_config() -> Config:
    config = Config()
    retrieval = config.search.retrieval
    retrieval.lexical_warmup_timeout_seconds = 2.0
    retrieval.lexical_warmup_poll_seconds = 0.01
    retrieval.backend_timeout_seconds = 2.0
    config.search.title_rescue.timeout_seconds = 1.0
    return config


@pytest.fixture
def config() -> Config:
    return make_test_config()


@pytest.fixture
def vocabulary(config) -> Vocabulary:
    return Vocabulary(config.vocabulary)


@pytest.fixture
def extractor(vocabulary, config) -> KeywordExtractor:
    return KeywordExtractor(vocabulary, config.keywords)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def doc_factory() -> Callable[..., Document]:
    return make_doc


@pytest.fixture
def corpus() -> List[Document]:
    return build_corpus()


@pytest.fixture
def embedder() -> BagOfTermsEmbedder:
    return BagOfTermsEmbedder()


@pytest.fixture
def vector_index(corpus, embedder) -> InMemoryVectorIndex:
    return InMemoryVectorIndex(
        (doc, embedder.vector(doc.title + " " + doc.content)) for doc in corpus
    )


@pytest.fixture
def lexical_index(corpus) -> InMemoryLexicalIndex:
    return InMemoryLexicalIndex(corpus)


@pytest.fixture
def metadata_store(corpus) -> InMemoryMetadataStore:
    return InMemoryMetadataStore(corpus)


@pytest.fixture
def engine_factory(config, vector_index, lexical_index, metadata_store, embedder):
    """Build a HybridSearchEngine over the sample corpus; kwargs override parts."""

    def build(**overrides) -> HybridSearchEngine:
        cfg = overrides.pop("config", config)
        params = dict(
            vector_index=vector_index,
            lexical_index=lexical_index,
            metadata_store=metadata_store,
            embedder=embedder,
            config=cfg,
            caches=SearchCaches.from_config(cfg.cache),
        )
        params.update(overrides)
        return HybridSearchEngine(**params)

    return build
