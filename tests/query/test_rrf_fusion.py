"""
Tests for Reciprocal Rank Fusion and candidate deduplication.
"""

import pytest

from wikirank.query.candidates import Candidate, SourceType
from wikirank.query.fusion import dedup_candidates, merge_by_id, rrf_fuse
from wikirank.shared.config import FusionConfig


@pytest.fixture
def make_candidate(doc_factory):
    def build(doc_id, source, distance=None, lexical=0.0, title=None, logical_id=None):
        doc = doc_factory(doc_id, title or f"title {doc_id}", logical_id=logical_id or doc_id)
        return Candidate(
            document=doc,
            source_type=source,
            distance=distance,
            lexical_score=lexical,
        )

    return build


class TestMergeById:
    def test_vector_and_lexical_become_hybrid(self, make_candidate):
        vec = make_candidate("a", SourceType.VECTOR, distance=0.4)
        vec.matched_keywords = ["教室"]
        lex = make_candidate("a", SourceType.LEXICAL, lexical=3.0)
        lex.matched_keywords = ["教室", "削除"]

        merged = merge_by_id([vec, lex])

        assert len(merged) == 1
        assert merged[0].source_type == SourceType.HYBRID
        assert merged[0].distance == pytest.approx(0.4)
        assert merged[0].lexical_score == pytest.approx(3.0)
        assert merged[0].matched_keywords == ["教室", "削除"]

    def test_keeps_smaller_distance(self, make_candidate):
        far = make_candidate("a", SourceType.VECTOR, distance=0.9)
        near = make_candidate("a", SourceType.TITLE_EXACT, distance=0.3)
        merged = merge_by_id([far, near])
        assert merged[0].distance == pytest.approx(0.3)
        assert merged[0].source_type == SourceType.VECTOR


class TestRRFFusion:
    def test_scores_and_order(self, make_candidate):
        candidates = [
            make_candidate("A", SourceType.VECTOR, distance=0.1),
            make_candidate("B", SourceType.VECTOR, distance=0.5),
            make_candidate("B", SourceType.LEXICAL, lexical=5.0),
            make_candidate("C", SourceType.LEXICAL, lexical=3.0),
        ]

        fused = rrf_fuse(candidates)
        by_id = {c.id: c for c in fused}

        assert [c.id for c in fused] == ["B", "A", "C"]
        assert by_id["A"].rrf_score == pytest.approx(1 / 61)
        assert by_id["B"].rrf_score == pytest.approx(1 / 62 + 1 / 61)
        assert by_id["C"].rrf_score == pytest.approx(1 / 62)
        assert by_id["B"].source_ranks == {"vector": 2, "lexical": 1}

    def test_every_candidate_gets_positive_score(self, make_candidate):
        candidates = [
            make_candidate("A", SourceType.VECTOR, distance=0.2),
            make_candidate("L", SourceType.LEXICAL, lexical=0.0),
            make_candidate("T", SourceType.TITLE_EXACT, distance=0.3),
        ]
        fused = rrf_fuse(candidates)

        assert len(fused) == 3
        assert all(c.rrf_score > 0 for c in fused)
        assert next(c for c in fused if c.id == "L").source_ranks == {"lexical": 3}
        assert next(c for c in fused if c.id == "T").source_ranks == {"title-exact": 1}

    def test_union_of_sources_each_fused_once(self, make_candidate):
        vector = [make_candidate(f"v{i}", SourceType.VECTOR, distance=i / 10) for i in range(4)]
        lexical = [make_candidate(f"l{i}", SourceType.LEXICAL, lexical=4.0 - i) for i in range(3)]
        shared = make_candidate("v1", SourceType.LEXICAL, lexical=9.0)

        fused = rrf_fuse(merge_by_id(vector + lexical + [shared]))
        ids = [c.id for c in fused]

        assert sorted(ids) == sorted({"v0", "v1", "v2", "v3", "l0", "l1", "l2"})
        assert len(ids) == len(set(ids))

    def test_title_exact_not_ranked_as_vector(self, make_candidate):
        candidates = [
            make_candidate("T", SourceType.TITLE_EXACT, distance=0.3),
            make_candidate("V", SourceType.VECTOR, distance=0.6),
        ]
        fused = rrf_fuse(candidates)
        by_id = {c.id: c for c in fused}
        assert by_id["V"].source_ranks == {"vector": 1}

    def test_source_weights(self, make_candidate):
        candidates = [
            make_candidate("V", SourceType.VECTOR, distance=0.1),
            make_candidate("L", SourceType.LEXICAL, lexical=9.0),
        ]
        config = FusionConfig(source_weights={"vector": 1.0, "lexical": 2.0, "title-exact": 1.0})
        fused = rrf_fuse(candidates, config)
        assert [c.id for c in fused] == ["L", "V"]

    def test_ties_broken_by_hybrid_score_then_id(self, make_candidate):
        first = make_candidate("b", SourceType.VECTOR, distance=0.5)
        second = make_candidate("a", SourceType.LEXICAL, lexical=1.0)
        first.hybrid_score = 0.2
        second.hybrid_score = 0.4

        fused = rrf_fuse([first, second])
        assert fused[0].rrf_score == pytest.approx(fused[1].rrf_score)
        assert [c.id for c in fused] == ["b", "a"]

        first.hybrid_score = second.hybrid_score = 0.3
        assert [c.id for c in rrf_fuse([first, second])] == ["a", "b"]

    def test_empty(self):
        assert rrf_fuse([]) == []


class TestDedup:
    def test_chunks_with_same_title_collapse(self, make_candidate):
        c0 = make_candidate("p#0", SourceType.VECTOR, distance=0.2, title="教室コピー機能", logical_id="p")
        c1 = make_candidate("p#1", SourceType.VECTOR, distance=0.4, title="教室コピー機能", logical_id="p")
        fused = rrf_fuse([c0, c1])
        assert [c.id for c in fused] == ["p#0"]

    def test_title_normalisation(self, make_candidate):
        a = make_candidate("x1", SourceType.VECTOR, title="教室 コピー", logical_id="x")
        b = make_candidate("x2", SourceType.VECTOR, title="教室コピー", logical_id="x")
        a.rrf_score, b.rrf_score = 0.01, 0.02
        assert [c.id for c in dedup_candidates([a, b])] == ["x2"]

    def test_distinct_titles_kept(self, make_candidate):
        a = make_candidate("x1", SourceType.VECTOR, title="概要", logical_id="x")
        b = make_candidate("x2", SourceType.VECTOR, title="詳細", logical_id="x")
        assert len(dedup_candidates([a, b])) == 2
