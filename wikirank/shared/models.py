"""
Canonical corpus record shared by every stage of the search core.

Backends hand back heterogeneous payloads (a vector row, a lexical hit, a
metadata lookup). ``Document.from_payload`` is the one place that turns those
into a single shape so scoring code never has to probe alternative field names.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict

_URL_ID_PATTERNS = (
    re.compile(r"[?&]pageId=(\d+)"),
    re.compile(r"/pages/(\d+)"),
    re.compile(r"/browse/([A-Z][A-Z0-9]+-\d+)"),
)


class RankBaseModel(BaseModel):
    model_config = ConfigDict(
        protected_namespaces=(),  # allow fields like model_name
        arbitrary_types_allowed=True,
    )


def coerce_labels(value: Any) -> FrozenSet[str]:
    """Accept labels as list/tuple/set, JSON array string or comma string."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return frozenset()
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return frozenset(str(v).strip() for v in parsed if str(v).strip())
        return frozenset(part.strip() for part in text.split(",") if part.strip())
    if isinstance(value, Iterable):
        return frozenset(str(v).strip() for v in value if v is not None and str(v).strip())
    return frozenset({str(value)})


def extract_url_id(url: Optional[str]) -> Optional[str]:
    """Return the page/issue id embedded in a wiki or ticket URL, if any."""
    if not url:
        return None
    for pattern in _URL_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Document:
    """One retrievable row: a whole page or one chunk of it."""

    id: str
    logical_id: str
    title: str
    content: str
    labels: FrozenSet[str] = field(default_factory=frozenset)
    url: str = ""
    last_updated: Optional[str] = None

    # Taxonomy (structured label) fields
    category: Optional[str] = None
    status: Optional[str] = None
    confidence: Optional[float] = None
    domain: Optional[str] = None
    feature: Optional[str] = None
    tags: FrozenSet[str] = field(default_factory=frozenset)

    # Chunking
    chunk_index: int = 0
    chunk_count: int = 1

    @property
    def url_id(self) -> Optional[str]:
        return extract_url_id(self.url)

    @property
    def is_multi_chunk(self) -> bool:
        return self.chunk_count > 1

    @classmethod
    def from_payload(cls, doc_id: Any, payload: Mapping[str, Any]) -> "Document":
        """Build a Document from a backend payload using canonical keys.

        ``logical_id`` defaults to the row id for unchunked documents.
        """
        doc_id = str(doc_id)
        logical_id = payload.get("logical_id")
        return cls(
            id=doc_id,
            logical_id=str(logical_id) if logical_id not in (None, "") else doc_id,
            title=str(payload.get("title") or ""),
            content=str(payload.get("content") or ""),
            labels=coerce_labels(payload.get("labels")),
            url=str(payload.get("url") or ""),
            last_updated=_opt_str(payload.get("last_updated")),
            category=_opt_str(payload.get("category")),
            status=_opt_str(payload.get("status")),
            confidence=_opt_float(payload.get("confidence")),
            domain=_opt_str(payload.get("domain")),
            feature=_opt_str(payload.get("feature")),
            tags=coerce_labels(payload.get("tags")),
            chunk_index=_int_or(payload.get("chunk_index"), 0),
            chunk_count=max(1, _int_or(payload.get("chunk_count"), 1)),
        )

    def to_payload(self) -> dict:
        """Inverse of ``from_payload`` (used by the in-memory and Qdrant adapters)."""
        return {
            "logical_id": self.logical_id,
            "title": self.title,
            "content": self.content,
            "labels": sorted(self.labels),
            "url": self.url,
            "url_id": self.url_id,
            "last_updated": self.last_updated,
            "category": self.category,
            "status": self.status,
            "confidence": self.confidence,
            "domain": self.domain,
            "feature": self.feature,
            "tags": sorted(self.tags),
            "chunk_index": self.chunk_index,
            "chunk_count": self.chunk_count,
        }
