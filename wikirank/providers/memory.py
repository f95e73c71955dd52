"""
In-process backends.

Used for small corpora, local development and the test-suite:

- ``InMemoryVectorIndex``: exact cosine search with numpy
- ``InMemoryLexicalIndex``: BM25 (rank_bm25) over title, labels and content,
  built lazily by ``initialize()`` in a worker thread
- ``InMemoryMetadataStore``: id lookup and literal title search
"""

import asyncio
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from rank_bm25 import BM25Plus

from wikirank.query.backends import BackendUnavailableError, LexicalHit, VectorHit
from wikirank.query.keywords import ScriptRunTokenizer, Tokenizer, fold_text
from wikirank.shared.models import Document
from wikirank.shared.observability import get_logger

logger = get_logger(__name__)

_CJK = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff]")


def _payload_matches(document: Document, filters: Optional[Dict]) -> bool:
    if not filters:
        return True
    payload = document.to_payload()
    payload["id"] = document.id
    return all(str(payload.get(key)) == str(value) for key, value in filters.items())


class InMemoryVectorIndex:
    """Brute-force cosine index. Distance is ``1 - cosine`` (range [0, 2])."""

    def __init__(self, entries: Iterable[Tuple[Document, Sequence[float]]] = ()):
        self._documents: List[Document] = []
        self._vectors: List[np.ndarray] = []
        for document, vector in entries:
            self.add(document, vector)

    def add(self, document: Document, vector: Sequence[float]) -> None:
        arr = np.asarray(vector, dtype=np.float32)
        norm = np.linalg.norm(arr)
        self._documents.append(document)
        self._vectors.append(arr / norm if norm > 0 else arr)

    def __len__(self) -> int:
        return len(self._documents)

    async def query(
        self,
        embedding: Sequence[float],
        limit: int,
        filter: Optional[Dict] = None,
    ) -> List[VectorHit]:
        if not self._documents or limit <= 0:
            return []
        query = np.asarray(embedding, dtype=np.float32)
        norm = np.linalg.norm(query)
        if norm > 0:
            query = query / norm
        matrix = np.vstack(self._vectors)
        distances = 1.0 - matrix @ query

        order = np.argsort(distances, kind="stable")
        hits: List[VectorHit] = []
        for idx in order:
            document = self._documents[int(idx)]
            if not _payload_matches(document, filter):
                continue
            hits.append(
                VectorHit(id=document.id, distance=float(distances[idx]), document=document)
            )
            if len(hits) >= limit:
                break
        return hits


class InMemoryLexicalIndex:
    """BM25 index that starts cold and is built by ``initialize()``.

    CJK tokens are additionally indexed as character bigrams so that a
    keyword matches inside longer unsegmented words.
    """

    def __init__(
        self,
        documents: Iterable[Document] = (),
        tokenizer: Optional[Tokenizer] = None,
        include_documents: bool = True,
    ):
        self._documents: List[Document] = list(documents)
        self._tokenizer = tokenizer or ScriptRunTokenizer(keep_hiragana=True)
        self.include_documents = include_documents
        self._bm25: Optional[BM25Plus] = None
        self._term_sets: List[frozenset] = []
        self._lock: Optional[asyncio.Lock] = None

    def terms(self, text: str) -> List[str]:
        out: List[str] = []
        for token in self._tokenizer.tokenize(fold_text(text)):
            out.append(token)
            if len(token) > 2 and _CJK.search(token):
                out.extend(token[i:i + 2] for i in range(len(token) - 1))
        return out

    def is_ready(self) -> bool:
        return self._bm25 is not None

    async def initialize(self) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self.is_ready():
                return
            await asyncio.to_thread(self._build)

    def _build(self) -> None:
        corpus = [
            self.terms(" ".join([doc.title, " ".join(sorted(doc.labels)), doc.content]))
            for doc in self._documents
        ]
        self._term_sets = [frozenset(terms) for terms in corpus]
        # BM25Plus cannot handle an empty corpus
        self._bm25 = BM25Plus(corpus if corpus else [[""]])
        logger.info("Lexical index built", documents=len(self._documents))

    async def query(self, text: str, limit: int) -> List[LexicalHit]:
        if not self.is_ready():
            raise BackendUnavailableError("lexical", "index not initialised")
        query_terms = self.terms(text)
        if not query_terms or not self._documents:
            return []
        wanted = set(query_terms)
        scores = self._bm25.get_scores(query_terms)

        matching = [i for i, terms in enumerate(self._term_sets) if terms & wanted]
        matching.sort(key=lambda i: (-float(scores[i]), self._documents[i].id))
        hits = []
        for i in matching[:limit]:
            document = self._documents[i]
            hits.append(
                LexicalHit(
                    id=document.id,
                    score=float(scores[i]),
                    document=document if self.include_documents else None,
                )
            )
        return hits


class InMemoryMetadataStore:
    """Document lookup by id plus literal (case-folded) title search."""

    def __init__(self, documents: Iterable[Document] = ()):
        self._documents: Dict[str, Document] = {doc.id: doc for doc in documents}

    def add(self, document: Document) -> None:
        self._documents[document.id] = document

    async def batch_get(self, ids: Sequence[str]) -> Dict[str, Document]:
        return {i: self._documents[i] for i in ids if i in self._documents}

    async def find_by_title(self, text: str, limit: int) -> List[Document]:
        needle = fold_text(text)
        if not needle:
            return []
        matches = [d for d in self._documents.values() if needle in fold_text(d.title)]
        return matches[:limit]
