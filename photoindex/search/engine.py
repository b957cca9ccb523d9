"""
Semantic search over stored photo embeddings, with a keyword fallback over
LLM descriptions when no embedding is available for the query
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from ..db.records import SearchResult, Skip
from ..db.store import PhotoStore
from ..exceptions import InvalidInputError
from ..utils.logging import StructuredLogger

logger = logging.getLogger(__name__)

Vector = Union[Sequence[float], np.ndarray]
Embedder = Callable[[str], Vector]


def cosine_similarity(a: Vector, b: Vector) -> float:
    """
    Cosine similarity of two vectors, computed in float64

    Returns 0.0 when the vectors differ in length, are empty, either has zero
    norm, or the result is not finite. Otherwise the value is clamped to [-1, 1].
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.size == 0 or a.size != b.size:
        return 0.0

    dot_aa = float(np.dot(a, a))
    dot_bb = float(np.dot(b, b))
    if dot_aa == 0.0 or dot_bb == 0.0:
        return 0.0

    denominator = dot_aa * dot_bb
    if math.isfinite(denominator):
        denominator = math.sqrt(denominator)
    else:
        denominator = math.sqrt(dot_aa) * math.sqrt(dot_bb)

    value = float(np.dot(a, b)) / denominator
    if not math.isfinite(value):
        return 0.0
    return max(-1.0, min(1.0, value))


def _validate_limit(limit: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise InvalidInputError(f"limit must be a positive integer, got {limit!r}")


@dataclass
class SearchReport:
    """Ranked results of one query together with the records that were skipped"""
    results: List[SearchResult] = field(default_factory=list)
    skipped: List[Skip] = field(default_factory=list)
    candidates: int = 0


class SemanticSearchEngine:
    """
    Rank photos against a query embedding or a keyword query

    Embeddings are compared only within one model. Records whose stored bytes
    are malformed, whose dimensionality differs from the query, or whose values
    are non-finite or all zero are never ranked; they are reported as skips.
    """

    def __init__(self, store: PhotoStore, config: Optional[Dict] = None,
                 embedder: Optional[Embedder] = None):
        """
        Initialize search engine

        Args:
            store: Photo/embedding persistence
            config: Configuration dictionary (uses the 'search' section)
            embedder: Optional text-to-embedding function for `find`
        """
        self.store = store
        self.config = (config or {}).get('search', {})
        self.model_name = self.config.get('model_name', 'default')
        self.default_limit = self.config.get('limit', 20)
        self.min_similarity = self.config.get('min_similarity')
        self.embedder = embedder
        self.run_log = StructuredLogger(__name__)

    def search(self, query_embedding: Vector, model_name: Optional[str] = None,
               limit: Optional[int] = None, min_similarity: Optional[float] = None) -> SearchReport:
        """
        Rank stored embeddings by cosine similarity to query_embedding

        Args:
            query_embedding: Query vector
            model_name: Embedding model to search, defaults to search.model_name
            limit: Maximum number of results, defaults to search.limit
            min_similarity: Drop results below this similarity, defaults to
                search.min_similarity (None disables the filter)

        Returns:
            SearchReport ordered by similarity descending, then photo id

        Raises:
            InvalidInputError: for a non-positive limit, an empty, non-finite or
                zero-norm query, or when no stored embedding of the model has the
                query's dimensionality
        """
        model_name = model_name or self.model_name
        limit = self.default_limit if limit is None else limit
        if min_similarity is None:
            min_similarity = self.min_similarity
        _validate_limit(limit)

        query = np.asarray(query_embedding, dtype=np.float64)
        if query.ndim != 1 or query.size == 0:
            raise InvalidInputError("Query embedding must be a non-empty 1-D vector")
        if not np.all(np.isfinite(query)):
            raise InvalidInputError("Query embedding contains NaN or infinite values")
        if not np.any(query):
            raise InvalidInputError("Query embedding has zero norm")

        report = SearchReport()
        scored = []
        matching_dimension = 0
        records = self.store.query_embeddings(model_name)
        report.candidates = len(records)

        for record in records:
            try:
                vector = record.vector()
            except InvalidInputError as e:
                report.skipped.append(Skip(record.photo_id, str(e)))
                continue
            if vector.size != query.size:
                report.skipped.append(Skip(
                    record.photo_id, f"dimension {vector.size} does not match query dimension {query.size}"
                ))
                continue
            matching_dimension += 1
            if not np.all(np.isfinite(vector)):
                report.skipped.append(Skip(record.photo_id, "non-finite embedding"))
                continue
            if not np.any(vector):
                report.skipped.append(Skip(record.photo_id, "zero-norm embedding"))
                continue
            similarity = cosine_similarity(query, vector)
            if min_similarity is not None and similarity < min_similarity:
                continue
            scored.append((similarity, record.photo_id))

        if records and matching_dimension == 0:
            raise InvalidInputError(
                f"No {model_name} embedding has the query dimensionality {query.size}"
            )

        scored.sort(key=lambda item: (-item[0], item[1]))
        for similarity, photo_id in scored:
            if len(report.results) >= limit:
                break
            photo = self.store.get_photo(photo_id)
            if photo is None:
                report.skipped.append(Skip(photo_id, "photo record missing"))
                continue
            report.results.append(SearchResult(
                photo_id=photo.id,
                path=photo.path,
                filename=photo.filename,
                similarity=similarity,
                description=photo.description,
            ))

        self._log_report("vector", model_name, report)
        return report

    def search_text(self, query: str, limit: Optional[int] = None) -> SearchReport:
        """
        Case-insensitive keyword search over photo descriptions

        Photos are ranked by how many query words occur in their description,
        then by photo id. similarity is None on every result.

        Raises:
            InvalidInputError: for a non-positive limit or a query with no words
        """
        limit = self.default_limit if limit is None else limit
        _validate_limit(limit)
        words = (query or '').lower().split()
        if not words:
            raise InvalidInputError("Text query must contain at least one word")

        report = SearchReport()
        hits = []
        for photo in self.store.query_photos():
            if not photo.description:
                continue
            report.candidates += 1
            description = photo.description.lower()
            count = sum(1 for word in words if word in description)
            if count:
                hits.append((count, photo))

        hits.sort(key=lambda item: (-item[0], item[1].id))
        report.results = [
            SearchResult(
                photo_id=photo.id,
                path=photo.path,
                filename=photo.filename,
                similarity=None,
                description=photo.description,
            )
            for _, photo in hits[:limit]
        ]
        self._log_report("text", None, report)
        return report

    def semantic_search(self, query_embedding: Vector, model_name: Optional[str] = None,
                        limit: Optional[int] = None,
                        min_similarity: Optional[float] = None) -> List[SearchResult]:
        return self.search(query_embedding, model_name, limit, min_similarity).results

    def text_search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        return self.search_text(query, limit).results

    def find(self, query: str, limit: Optional[int] = None) -> SearchReport:
        """
        Search with a text query, through embeddings when possible

        Uses the embedder and vector search when an embedder is configured and
        the model has stored embeddings; falls back to keyword search otherwise.
        """
        if self.embedder is not None and self.store.count_embeddings(self.model_name):
            return self.search(self.embedder(query), limit=limit)
        logger.debug("No embedder or embeddings available, using keyword search")
        return self.search_text(query, limit)

    def _log_report(self, kind: str, model_name: Optional[str], report: SearchReport) -> None:
        if report.skipped:
            self.run_log.warning(
                "Records skipped during search",
                kind=kind, model=model_name,
                skipped=[{'photo_id': s.photo_id, 'reason': s.reason} for s in report.skipped],
            )
        self.run_log.debug(
            "Search complete",
            kind=kind, model=model_name, candidates=report.candidates, results=len(report.results),
        )
