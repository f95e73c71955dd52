import pytest

from wikirank.shared.models import Document, coerce_labels, extract_url_id


@pytest.mark.parametrize(
    "raw, expected",
    [
        (["教室", " 削除 ", ""], {"教室", "削除"}),
        ('["教室", "求人"]', {"教室", "求人"}),
        ("教室, 求人,,", {"教室", "求人"}),
        ("", set()),
        (None, set()),
    ],
)
def test_coerce_labels(raw, expected):
    assert coerce_labels(raw) == frozenset(expected)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://wiki.example.com/pages/viewpage.action?pageId=12345", "12345"),
        ("https://wiki.example.com/spaces/DEV/pages/678/Title", "678"),
        ("https://jira.example.com/browse/CTJ-42", "CTJ-42"),
        ("https://example.com/about", None),
        ("", None),
    ],
)
def test_extract_url_id(url, expected):
    assert extract_url_id(url) == expected


class TestDocumentFromPayload:
    def test_canonical_fields(self):
        doc = Document.from_payload(
            7,
            {
                "title": "教室削除機能",
                "content": "本文",
                "labels": '["教室"]',
                "url": "https://wiki.example.com/pages/7",
                "status": "approved",
                "confidence": "0.8",
                "chunk_index": "1",
                "chunk_count": 3,
                "logical_id": "page-7",
            },
        )
        assert doc.id == "7"
        assert doc.logical_id == "page-7"
        assert doc.labels == frozenset({"教室"})
        assert doc.confidence == pytest.approx(0.8)
        assert doc.chunk_index == 1
        assert doc.is_multi_chunk
        assert doc.url_id == "7"

    def test_defaults_for_missing_fields(self):
        doc = Document.from_payload("a", {})
        assert doc.logical_id == "a"
        assert doc.title == ""
        assert doc.labels == frozenset()
        assert doc.chunk_count == 1
        assert doc.confidence is None
        assert not doc.is_multi_chunk

    def test_payload_round_trip_keeps_identity(self):
        original = Document(
            id="x",
            logical_id="lx",
            title="求人管理",
            content="内容",
            labels=frozenset({"求人"}),
            url="https://wiki.example.com/pages/99",
            domain="求人",
        )
        payload = original.to_payload()
        assert payload["url_id"] == "99"
        assert Document.from_payload("x", payload) == original
