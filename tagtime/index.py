"""
In-memory full-text index for tagtime.

Contains the SearchIndex class: an inverted index over the title, content,
tags and folder fields with BM25 scoring, per-field boosts, prefix and
fuzzy (edit distance) term expansion, and a JSON-compatible export format.
"""

import math
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Any, Callable

from .models import IndexedDocument
from .tokenizer import process_term, tokenize, tokenize_query

FIELDS = ("title", "content", "tags", "folder")
STORE_FIELDS = ("title", "folder", "modified", "tags")
DEFAULT_BOOST = {"title": 3.0, "tags": 2.0, "folder": 1.5, "content": 1.0}

# BM25+ parameters
BM25_K = 1.2
BM25_B = 0.7
BM25_D = 0.5

# Weights of derived terms relative to an exact match
PREFIX_WEIGHT = 0.375
FUZZY_WEIGHT = 0.45
MAX_FUZZY = 6


@dataclass
class SearchHit:
    """A ranked match returned by SearchIndex.search."""

    id: str
    score: float
    terms: list[str]
    query_terms: list[str]
    match: dict[str, list[str]]
    title: str = ""
    folder: str = ""
    modified: float = 0.0
    tags: list[str] = field(default_factory=list)

    @property
    def matched_fields(self) -> list[str]:
        """Fields that contained at least one matched term, in field order."""
        seen = {f for fields in self.match.values() for f in fields}
        return [f for f in FIELDS if f in seen]


@dataclass
class _Accumulator:
    score: float = 0.0
    query_terms: list[str] = field(default_factory=list)
    match: dict[str, list[str]] = field(default_factory=dict)


def levenshtein_within(a: str, b: str, max_distance: int) -> int | None:
    """Return the edit distance between a and b, or None if it exceeds max_distance."""
    if a == b:
        return 0
    if abs(len(a) - len(b)) > max_distance:
        return None
    if len(a) > len(b):
        a, b = b, a

    prev_row = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        curr_row = [i]
        row_min = i
        for j, cb in enumerate(b, start=1):
            cost = prev_row[j - 1] + (ca != cb)
            value = min(prev_row[j] + 1, curr_row[j - 1] + 1, cost)
            curr_row.append(value)
            if value < row_min:
                row_min = value
        if row_min > max_distance:
            return None
        prev_row = curr_row

    distance = prev_row[-1]
    return distance if distance <= max_distance else None


def max_edit_distance(term: str, fuzzy: float) -> int:
    """Translate a fuzzy setting into an edit distance for one term.

    Values below 1 are a fraction of the term length, capped at MAX_FUZZY;
    values of 1 or more are an absolute distance.
    """
    if fuzzy <= 0:
        return 0
    if fuzzy < 1:
        return min(MAX_FUZZY, int(len(term) * fuzzy + 0.5))
    return int(fuzzy)


def bm25_score(term_freq: int, matching: int, total: int, field_length: int, avg_field_length: float) -> float:
    """BM25+ score of one term in one field of one document."""
    inv_doc_freq = math.log(1 + (total - matching + 0.5) / (matching + 0.5))
    norm = BM25_K * (1 - BM25_B + BM25_B * field_length / avg_field_length) if avg_field_length else BM25_K
    return inv_doc_freq * (BM25_D + term_freq * (BM25_K + 1) / (term_freq + norm))


class SearchIndex:
    """Inverted index keyed by document id.

    Postings map term -> field id -> {short doc id: term frequency}.
    Documents are replaced by discarding and re-adding them.
    """

    def __init__(
        self,
        fields: tuple[str, ...] = FIELDS,
        store_fields: tuple[str, ...] = STORE_FIELDS,
        boost: dict[str, float] | None = None,
    ):
        self.fields = tuple(fields)
        self.store_fields = tuple(store_fields)
        self.boost = {**DEFAULT_BOOST, **(boost or {})}
        self._index: dict[str, dict[int, dict[int, int]]] = {}
        self._document_ids: dict[int, str] = {}
        self._short_ids: dict[str, int] = {}
        self._field_length: dict[int, list[int]] = {}
        self._total_field_length: list[int] = [0] * len(self.fields)
        self._stored_fields: dict[int, dict[str, Any]] = {}
        self._doc_terms: dict[int, set[str]] = {}
        self._next_id = 0
        self._vocabulary: list[str] | None = None

    @property
    def document_count(self) -> int:
        return len(self._document_ids)

    @property
    def term_count(self) -> int:
        return len(self._index)

    def has(self, doc_id: str) -> bool:
        return doc_id in self._short_ids

    def get_stored_fields(self, doc_id: str) -> dict[str, Any] | None:
        short_id = self._short_ids.get(doc_id)
        if short_id is None:
            return None
        return dict(self._stored_fields[short_id])

    def _terms_for(self, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            value = " ".join(str(v) for v in value)
        terms = []
        for token in tokenize(str(value)):
            term = process_term(token)
            if term:
                terms.append(term)
        return terms

    def add(self, document: IndexedDocument) -> None:
        """Index a document. Its id must not be present already."""
        if document.id in self._short_ids:
            raise ValueError(f"Duplicate document id: {document.id}")

        short_id = self._next_id
        self._next_id += 1
        self._document_ids[short_id] = document.id
        self._short_ids[document.id] = short_id

        lengths = []
        doc_terms: set[str] = set()
        for field_id, field_name in enumerate(self.fields):
            terms = self._terms_for(getattr(document, field_name, None))
            lengths.append(len(terms))
            self._total_field_length[field_id] += len(terms)
            for term in terms:
                postings = self._index.setdefault(term, {}).setdefault(field_id, {})
                postings[short_id] = postings.get(short_id, 0) + 1
                doc_terms.add(term)

        self._field_length[short_id] = lengths
        self._doc_terms[short_id] = doc_terms
        self._stored_fields[short_id] = {
            name: getattr(document, name) for name in self.store_fields
        }
        self._vocabulary = None

    def discard(self, doc_id: str) -> None:
        """Remove a document and all of its postings."""
        short_id = self._short_ids.pop(doc_id, None)
        if short_id is None:
            raise KeyError(f"Document not in index: {doc_id}")

        for term in self._doc_terms.pop(short_id, set()):
            field_postings = self._index.get(term)
            if field_postings is None:
                continue
            for field_id in list(field_postings):
                postings = field_postings[field_id]
                postings.pop(short_id, None)
                if not postings:
                    del field_postings[field_id]
            if not field_postings:
                del self._index[term]

        for field_id, length in enumerate(self._field_length.pop(short_id)):
            self._total_field_length[field_id] -= length
        del self._document_ids[short_id]
        del self._stored_fields[short_id]
        self._vocabulary = None

    def _sorted_vocabulary(self) -> list[str]:
        if self._vocabulary is None:
            self._vocabulary = sorted(self._index)
        return self._vocabulary

    def _prefix_terms(self, prefix: str) -> list[str]:
        vocabulary = self._sorted_vocabulary()
        matches = []
        for i in range(bisect_left(vocabulary, prefix), len(vocabulary)):
            if not vocabulary[i].startswith(prefix):
                break
            matches.append(vocabulary[i])
        return matches

    def _fuzzy_terms(self, term: str, max_distance: int) -> list[tuple[str, int]]:
        matches = []
        for candidate in self._sorted_vocabulary():
            distance = levenshtein_within(term, candidate, max_distance)
            if distance is not None:
                matches.append((candidate, distance))
        return matches

    def _avg_field_length(self, field_id: int) -> float:
        count = len(self._document_ids)
        return self._total_field_length[field_id] / count if count else 0.0

    def _score_term(
        self,
        query_term: str,
        term: str,
        weight: float,
        boosts: dict[str, float],
        results: dict[int, _Accumulator],
    ) -> None:
        field_postings = self._index.get(term)
        if not field_postings:
            return

        total = len(self._document_ids)
        # Fixed field order keeps score sums reproducible
        for field_id in sorted(field_postings):
            field_name = self.fields[field_id]
            field_boost = boosts.get(field_name, 1.0)
            if not field_boost:
                continue
            postings = field_postings[field_id]
            avg_length = self._avg_field_length(field_id)
            for short_id, term_freq in postings.items():
                field_length = self._field_length[short_id][field_id]
                score = bm25_score(term_freq, len(postings), total, field_length, avg_length)
                acc = results.setdefault(short_id, _Accumulator())
                acc.score += weight * field_boost * score
                if query_term not in acc.query_terms:
                    acc.query_terms.append(query_term)
                fields = acc.match.setdefault(term, [])
                if field_name not in fields:
                    fields.append(field_name)

    def _query_terms(self, query: str) -> list[str]:
        terms = []
        for token in tokenize_query(query):
            term = process_term(token)
            if term and term not in terms:
                terms.append(term)
        return terms

    def search(
        self,
        query: str,
        fuzzy: float | bool = False,
        prefix: bool = False,
        boost: dict[str, float] | None = None,
        filter_fn: Callable[[SearchHit], bool] | None = None,
    ) -> list[SearchHit]:
        """Run a query and return hits sorted by descending score.

        Args:
            query: Free text; terms are combined with OR
            fuzzy: False, a fraction of term length (< 1), or an edit distance (>= 1)
            prefix: Also match indexed terms that start with a query term
            boost: Per-field boost overrides
            filter_fn: Predicate applied to each hit before ranking
        """
        boosts = {**self.boost, **(boost or {})}
        fuzzy_factor = 0.0 if fuzzy is False else float(fuzzy)
        results: dict[int, _Accumulator] = {}

        for query_term in self._query_terms(query):
            derived: dict[str, float] = {}
            if query_term in self._index:
                derived[query_term] = 1.0

            if prefix:
                for term in self._prefix_terms(query_term):
                    distance = len(term) - len(query_term)
                    if not distance:
                        continue
                    derived[term] = PREFIX_WEIGHT * len(term) / (len(term) + 0.3 * distance)

            max_distance = max_edit_distance(query_term, fuzzy_factor)
            if max_distance:
                for term, distance in self._fuzzy_terms(query_term, max_distance):
                    if not distance or term in derived:
                        continue
                    derived[term] = FUZZY_WEIGHT * len(term) / (len(term) + distance)

            for term, weight in derived.items():
                self._score_term(query_term, term, weight, boosts, results)

        hits = []
        for short_id, acc in results.items():
            stored = self._stored_fields[short_id]
            hit = SearchHit(
                id=self._document_ids[short_id],
                score=acc.score * len(acc.query_terms),
                terms=list(acc.match),
                query_terms=acc.query_terms,
                match=acc.match,
                title=stored.get("title") or "",
                folder=stored.get("folder") or "",
                modified=stored.get("modified") or 0.0,
                tags=list(stored.get("tags") or []),
            )
            if filter_fn is not None and not filter_fn(hit):
                continue
            hits.append(hit)

        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    # ============== Serialization ==============

    def to_dict(self) -> dict[str, Any]:
        """Export the index as JSON-compatible data."""
        return {
            "fields": list(self.fields),
            "storeFields": list(self.store_fields),
            "nextId": self._next_id,
            "documentIds": {str(k): v for k, v in self._document_ids.items()},
            "fieldLength": {str(k): v for k, v in self._field_length.items()},
            "storedFields": {str(k): v for k, v in self._stored_fields.items()},
            "index": [
                [term, {
                    str(field_id): {str(k): tf for k, tf in postings.items()}
                    for field_id, postings in field_postings.items()
                }]
                for term, field_postings in self._index.items()
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], boost: dict[str, float] | None = None) -> "SearchIndex":
        """Rebuild an index exported with to_dict.

        Raises:
            ValueError: If the data was produced with a different field layout
        """
        index = cls(boost=boost)
        if tuple(data["fields"]) != index.fields or tuple(data["storeFields"]) != index.store_fields:
            raise ValueError("Index field layout does not match")

        index._next_id = int(data["nextId"])
        index._document_ids = {int(k): v for k, v in data["documentIds"].items()}
        index._short_ids = {v: k for k, v in index._document_ids.items()}
        index._field_length = {int(k): list(v) for k, v in data["fieldLength"].items()}
        index._stored_fields = {int(k): dict(v) for k, v in data["storedFields"].items()}

        for short_id, lengths in index._field_length.items():
            for field_id, length in enumerate(lengths):
                index._total_field_length[field_id] += length
            index._doc_terms[short_id] = set()

        for term, field_postings in data["index"]:
            restored = {}
            for field_id, postings in field_postings.items():
                restored[int(field_id)] = {int(k): int(tf) for k, tf in postings.items()}
                for short_id in restored[int(field_id)]:
                    index._doc_terms[short_id].add(term)
            index._index[term] = restored

        return index
