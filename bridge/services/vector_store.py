"""
In-memory vector store with linear-scan cosine similarity search.
"""

import math
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from ..models.core import EmbeddingRecord
from ..utils.errors import OperationCancelledError
from ..utils.logging_config import get_logger
from ..utils.storage import ExperienceStorage
from ..utils.timestamp_utils import utc_now

logger = get_logger(__name__)


class VectorStoreError(Exception):
    """Custom exception for vector store errors."""
    pass


@dataclass
class SimilarityResult:
    id: str
    similarity: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0 when either vector has zero norm or the lengths differ.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    # Rounding can push identical vectors slightly past 1
    return max(-1.0, min(1.0, similarity))


def _is_valid_vector(vector: Optional[Sequence[float]]) -> bool:
    return bool(vector) and all(isinstance(v, (int, float)) and math.isfinite(v) for v in vector)


class VectorStore:
    """Vectors keyed by experience id.

    Writes are serialized by a lock; reads work on a snapshot so a scan never
    observes a half-applied write.
    """

    def __init__(self, storage: Optional[ExperienceStorage] = None, dimension: Optional[int] = None):
        """
        Initialize the vector store.

        Args:
            storage: Storage collaborator used by `load` and `persist`
            dimension: Expected dimensionality; mismatching vectors are skipped in scans
        """
        self.storage = storage
        self.dimension = dimension
        self._vectors: Dict[str, EmbeddingRecord] = {}
        self._lock = threading.Lock()

    def _snapshot(self) -> Dict[str, EmbeddingRecord]:
        with self._lock:
            return dict(self._vectors)

    def upsert(self, source_id: str, vector: Sequence[float]) -> None:
        """Insert or replace the vector for an id."""
        if not source_id:
            raise VectorStoreError('Vector id cannot be empty')
        with self._lock:
            self._vectors[source_id] = EmbeddingRecord(source_id=source_id, vector=[float(v) for v in vector], generated=utc_now())

    def remove(self, source_id: str) -> bool:
        with self._lock:
            return self._vectors.pop(source_id, None) is not None

    def get(self, source_id: str) -> Optional[List[float]]:
        with self._lock:
            record = self._vectors.get(source_id)
        return list(record.vector) if record else None

    def has(self, source_id: str) -> bool:
        with self._lock:
            return source_id in self._vectors

    def count(self) -> int:
        with self._lock:
            return len(self._vectors)

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._vectors)

    def load(self, storage: Optional[ExperienceStorage] = None) -> int:
        """
        Replace the store's contents with the embeddings held by storage.

        Args:
            storage: Storage collaborator, defaults to the one given at construction

        Returns:
            Number of vectors loaded
        """
        storage = storage or self.storage
        if storage is None:
            raise VectorStoreError('No storage configured for vector store')
        if self.storage is None:
            self.storage = storage

        loaded = {}
        for record in storage.list_all_embeddings():
            if not record.source_id or not record.vector:
                logger.debug(f'Skipping empty embedding for {record.source_id!r}')
                continue
            loaded[record.source_id] = record

        with self._lock:
            self._vectors = loaded
        logger.info(f'Loaded {len(loaded)} vectors into vector store')
        return len(loaded)

    def persist(self) -> None:
        """Write all vectors back through the storage collaborator."""
        if self.storage is None:
            raise VectorStoreError('No storage configured for vector store')
        records = list(self._snapshot().values())
        self.storage.save_embeddings(records)
        logger.debug(f'Persisted {len(records)} vectors')

    def similar_to(self,
                   query_vector: Sequence[float],
                   limit: int = 50,
                   threshold: float = 0.0,
                   should_cancel: Optional[Callable[[], bool]] = None) -> List[SimilarityResult]:
        """
        Find stored vectors most similar to the query vector.

        Args:
            query_vector: Vector to compare against
            limit: Maximum number of results
            threshold: Minimum similarity to keep
            should_cancel: Checked between candidates; aborts the scan when it returns True

        Returns:
            Results sorted by descending similarity

        Raises:
            OperationCancelledError: If the scan was cancelled
        """
        if not _is_valid_vector(query_vector):
            return []

        results = []
        for source_id, record in self._snapshot().items():
            if should_cancel and should_cancel():
                raise OperationCancelledError('Vector scan cancelled')
            vector = record.vector
            if not _is_valid_vector(vector):
                continue
            if len(vector) != len(query_vector) or (self.dimension and len(vector) != self.dimension):
                continue
            similarity = cosine_similarity(query_vector, vector)
            if similarity >= threshold:
                results.append(SimilarityResult(source_id, similarity))

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    def similar_to_id(self, source_id: str, limit: int = 50, threshold: float = 0.0) -> List[SimilarityResult]:
        """Find vectors similar to a stored one, excluding the id itself."""
        vector = self.get(source_id)
        if vector is None:
            return []
        results = self.similar_to(vector, limit=limit + 1, threshold=threshold)
        return [r for r in results if r.id != source_id][:limit]

    def health_stats(self) -> Dict[str, object]:
        """Report counts of valid and invalid vectors and the dimensions seen."""
        snapshot = self._snapshot()
        dimensions: Dict[int, int] = {}
        invalid = 0
        for record in snapshot.values():
            if not _is_valid_vector(record.vector):
                invalid += 1
                continue
            dimensions[len(record.vector)] = dimensions.get(len(record.vector), 0) + 1
        return {
            'total': len(snapshot),
            'valid': len(snapshot) - invalid,
            'invalid': invalid,
            'dimensions': dimensions,
            'expected_dimension': self.dimension,
        }

    def remove_invalid(self, expected_dimension: Optional[int] = None) -> int:
        """
        Drop vectors that are empty, non-finite or of the wrong dimensionality.

        Returns:
            Number of vectors removed
        """
        expected = expected_dimension or self.dimension
        with self._lock:
            invalid = [source_id for source_id, record in self._vectors.items()
                       if not _is_valid_vector(record.vector) or (expected and len(record.vector) != expected)]
            for source_id in invalid:
                del self._vectors[source_id]
        if invalid:
            logger.info(f'Removed {len(invalid)} invalid vectors')
        return len(invalid)
