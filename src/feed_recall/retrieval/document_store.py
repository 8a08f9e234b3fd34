"""In-memory article index with field-weighted lexical and vector search."""

from __future__ import annotations

import math
import re
import threading
from collections import Counter
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from feed_recall.retrieval.embedder import cosine_similarity
from feed_recall.types import DocScore

_TOKEN_PATTERN = re.compile(r"\w+", flags=re.UNICODE)

DEFAULT_FIELD_WEIGHTS: dict[str, float] = {
    "title": 1.0,
    "category": 1.0,
    "feed_title": 1.0,
    "tags": 0.4,
    "summary": 0.4,
    "author": 0.2,
    "body": 0.1,
}


def tokenize(text: str) -> list[str]:
    return [token.lower() for token in _TOKEN_PATTERN.findall(text)]


@dataclass(slots=True, frozen=True)
class ArticleDocument:
    doc_id: int
    title: str
    feed_id: int | None = None
    feed_title: str = ""
    category: str = ""
    tags: tuple[str, ...] = ()
    summary: str = ""
    author: str = ""
    body: str = ""
    published_at: datetime | None = None

    def fields(self) -> dict[str, str]:
        return {
            "title": self.title,
            "category": self.category,
            "feed_title": self.feed_title,
            "tags": " ".join(self.tags),
            "summary": self.summary,
            "author": self.author,
            "body": self.body,
        }

    def metadata(self) -> dict[str, Any]:
        meta: dict[str, Any] = {"title": self.title}
        if self.feed_id is not None:
            meta["feedId"] = self.feed_id
        if self.feed_title:
            meta["feedTitle"] = self.feed_title
        if self.category:
            meta["category"] = self.category
        if self.author:
            meta["author"] = self.author
        return meta


@dataclass(slots=True)
class _IndexedDocument:
    document: ArticleDocument
    term_counts: dict[str, Counter[str]]
    lengths: dict[str, int]
    embedding: list[float] | None = None
    terms: set[str] = field(default_factory=set)


class InMemoryDocumentStore:
    """BM25F over the article fields plus brute-force cosine search.

    Title-like fields weigh highest and the body lowest (see
    `DEFAULT_FIELD_WEIGHTS`). Both searches can be restricted to a set of feed
    ids (`feed_ids=None` means no restriction).
    """

    def __init__(
        self,
        *,
        field_weights: Mapping[str, float] | None = None,
        k1: float = 1.2,
        b: float = 0.75,
    ) -> None:
        self.field_weights = dict(field_weights or DEFAULT_FIELD_WEIGHTS)
        self.k1 = k1
        self.b = b
        self._docs: dict[int, _IndexedDocument] = {}
        self._doc_freq: Counter[str] = Counter()
        self._lock = threading.RLock()

    def upsert(self, document: ArticleDocument, embedding: Sequence[float] | None = None) -> None:
        term_counts = {name: Counter(tokenize(text)) for name, text in document.fields().items()}
        indexed = _IndexedDocument(
            document=document,
            term_counts=term_counts,
            lengths={name: sum(counts.values()) for name, counts in term_counts.items()},
            embedding=list(embedding) if embedding is not None else None,
            terms={term for counts in term_counts.values() for term in counts},
        )
        with self._lock:
            previous = self._docs.get(document.doc_id)
            if previous is not None:
                self._doc_freq.subtract(previous.terms)
            self._doc_freq.update(indexed.terms)
            self._docs[document.doc_id] = indexed

    def get(self, doc_id: int) -> ArticleDocument | None:
        with self._lock:
            indexed = self._docs.get(doc_id)
        return indexed.document if indexed else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._docs)

    def lexical_search(
        self, query: str, k: int, feed_ids: Collection[int] | None = None
    ) -> list[DocScore]:
        terms = list(dict.fromkeys(tokenize(query)))
        if not terms or k <= 0:
            return []
        with self._lock:
            docs = [d for d in self._docs.values() if _in_scope(d.document, feed_ids)]
            total = len(self._docs)
            idf = {term: self._idf(self._doc_freq.get(term, 0), total) for term in terms}
            avg_lengths = self._average_lengths()

        hits: list[DocScore] = []
        for indexed in docs:
            score = 0.0
            for term in terms:
                weighted_tf = self._weighted_tf(indexed, term, avg_lengths)
                if weighted_tf > 0:
                    score += idf[term] * weighted_tf / (self.k1 + weighted_tf)
            if score > 0:
                hits.append(_hit(indexed.document, score, "lexical"))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:k]

    def semantic_search(
        self,
        embedding: Sequence[float],
        k: int,
        *,
        threshold: float = 0.0,
        feed_ids: Collection[int] | None = None,
    ) -> list[DocScore]:
        if k <= 0:
            return []
        query = list(embedding)
        with self._lock:
            docs = [
                d
                for d in self._docs.values()
                if d.embedding is not None and _in_scope(d.document, feed_ids)
            ]
        hits = []
        for indexed in docs:
            similarity = cosine_similarity(query, indexed.embedding or [])
            if similarity > threshold:
                hits.append(_hit(indexed.document, similarity, "vector"))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:k]

    def _weighted_tf(
        self, indexed: _IndexedDocument, term: str, avg_lengths: Mapping[str, float]
    ) -> float:
        total = 0.0
        for name, weight in self.field_weights.items():
            tf = indexed.term_counts.get(name, Counter()).get(term, 0)
            if tf == 0:
                continue
            avg = avg_lengths.get(name) or 1.0
            norm = 1.0 - self.b + self.b * (indexed.lengths.get(name, 0) / avg)
            total += weight * tf / norm
        return total

    def _average_lengths(self) -> dict[str, float]:
        if not self._docs:
            return {}
        return {
            name: sum(d.lengths.get(name, 0) for d in self._docs.values()) / len(self._docs)
            for name in self.field_weights
        }

    @staticmethod
    def _idf(doc_freq: int, total: int) -> float:
        return math.log(1.0 + (total - doc_freq + 0.5) / (doc_freq + 0.5))


def _in_scope(document: ArticleDocument, feed_ids: Collection[int] | None) -> bool:
    return feed_ids is None or document.feed_id in feed_ids


def _hit(document: ArticleDocument, score: float, source: str) -> DocScore:
    return DocScore(
        doc_id=document.doc_id,
        score=score,
        published_at=document.published_at,
        source=source,
        metadata=document.metadata(),
    )
