"""
Memory Management Service for unified retrieval, clustering and evolution operations.
"""

from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..models.core import Experience
from ..models.patterns import ClusteringResult, EvolutionEvent, Pattern, PatternUpdate
from ..utils.config import AppConfig
from ..utils.config import config as default_config
from ..utils.errors import OperationCancelledError
from ..utils.logging_config import get_logger
from ..utils.storage import ExperienceStorage, JsonFileStorage, StorageError
from .embedding_service import EmbeddingService
from .pattern_discovery import PatternDiscoveryService
from .pattern_evolution import PatternEvolutionService
from .scoring import RelevanceBreakdown, ScoredExperience
from .search import SearchError, SearchResponse, SearchService, TemporalParser
from .vector_store import VectorStore, VectorStoreError

logger = get_logger(__name__)


class MemoryManagementError(Exception):
    """Custom exception for memory management errors."""
    pass


class MemoryManagementService:
    """Unified service wiring search, clustering and evolution tracking to a storage collaborator."""

    def __init__(self,
                 storage: Optional[ExperienceStorage] = None,
                 config: Optional[AppConfig] = None,
                 embedding_service: Optional[EmbeddingService] = None,
                 parse_temporal: Optional[TemporalParser] = None,
                 evolution: Optional[PatternEvolutionService] = None):
        """
        Initialize the memory management service.

        Args:
            storage: Storage collaborator, a JSON file store at the configured path if None
            config: AppConfig instance, uses default if None
            embedding_service: Pre-built embedding service
            parse_temporal: Optional natural-language date parser used by search
            evolution: Pre-built evolution tracker
        """
        self.config = config or default_config
        self.storage = storage or JsonFileStorage(self.config.storage.data_file)
        self.embedding_service = embedding_service or EmbeddingService(self.config.embedding)

        dimension = self.embedding_service.dimensionality() if self.embedding_service.is_semantic else None
        self.vector_store = VectorStore(self.storage, dimension=dimension)
        try:
            self.vector_store.load()
        except StorageError as e:
            logger.warning(f'Failed to load stored embeddings: {e}')

        self.search_service = SearchService(self.storage,
                                            self.embedding_service,
                                            self.vector_store,
                                            config=self.config.search,
                                            clustering_config=self.config.clustering,
                                            parse_temporal=parse_temporal)
        self.discovery = PatternDiscoveryService(self.config.clustering)
        self.evolution = evolution or PatternEvolutionService(self.config.evolution)
        self._patterns: Dict[str, Pattern] = {}

        logger.info('Initialized MemoryManagementService')

    def _records(self) -> List[Experience]:
        try:
            return self.storage.list_all_records()
        except StorageError as e:
            logger.error(f'Error loading records: {e}')
            raise MemoryManagementError(f'Failed to load records: {e}')

    def _persist(self) -> None:
        try:
            self.vector_store.persist()
        except (StorageError, VectorStoreError) as e:
            logger.error(f'Error persisting embeddings: {e}')
            raise MemoryManagementError(f'Failed to persist embeddings: {e}')

    def search(self,
               query=None,
               filters=None,
               sort: str = 'relevance',
               group_by: Optional[str] = None,
               limit: Optional[int] = None,
               offset: int = 0,
               should_cancel: Optional[Callable[[], bool]] = None) -> SearchResponse:
        """Search experiences; see SearchService.search.

        Raises:
            ConfigurationError: If sort, group_by, paging or filters are invalid
            MemoryManagementError: If records cannot be loaded
        """
        try:
            return self.search_service.search(query,
                                              filters=filters,
                                              sort=sort,
                                              group_by=group_by,
                                              limit=limit,
                                              offset=offset,
                                              should_cancel=should_cancel)
        except SearchError as e:
            raise MemoryManagementError(f'Search failed: {e}')

    def cluster(self,
                records: Optional[Sequence[Experience]] = None,
                options: Optional[Dict] = None,
                should_cancel: Optional[Callable[[], bool]] = None) -> ClusteringResult:
        """Cluster records (all stored records when None) into patterns and outliers.

        Args:
            records: Experiences to cluster
            options: Overrides for clustering settings
            should_cancel: Checked between candidates

        Returns:
            ClusteringResult with patterns, outliers and statistics
        """
        records = self._records() if records is None else list(records)
        vectors = {record.id: self.vector_store.get(record.id) for record in records if self.vector_store.has(record.id)}
        return self.discovery.discover(records, vectors, options=options, should_cancel=should_cancel)

    def track_evolution(self, updates: Sequence[PatternUpdate], current_patterns: Sequence[Pattern]) -> List[EvolutionEvent]:
        """Feed pattern updates to the evolution tracker and return the emitted events."""
        return self.evolution.process_updates(updates, current_patterns)

    def refresh_patterns(self, options: Optional[Dict] = None) -> Tuple[ClusteringResult, List[EvolutionEvent]]:
        """
        Re-cluster all records and track how patterns changed since the previous refresh.

        New pattern ids are reported as `add`, changed membership or coherence as
        `modify`, and vanished patterns as `remove`.

        Returns:
            The clustering result and the evolution events it caused
        """
        result = self.cluster(options=options)
        current = {pattern.id: pattern for pattern in result.patterns}

        updates = []
        for pattern_id, pattern in current.items():
            previous = self._patterns.get(pattern_id)
            if previous is None:
                updates.append(PatternUpdate('add', pattern_id, list(pattern.member_ids)))
            elif previous.member_ids != pattern.member_ids or previous.coherence != pattern.coherence:
                changed = sorted(set(previous.member_ids) ^ set(pattern.member_ids))
                updates.append(PatternUpdate('modify', pattern_id, changed))
        for pattern_id, previous in self._patterns.items():
            if pattern_id not in current:
                updates.append(PatternUpdate('remove', pattern_id, list(previous.member_ids)))

        events = self.track_evolution(updates, result.patterns)
        self._patterns = current
        return result, events

    def index_experience(self, experience: Experience) -> bool:
        """
        Embed an experience and store its vector.

        Returns:
            True if a vector was stored, False when no embedding was available
        """
        vector = self.embedding_service.try_embed(experience.content)
        if vector is None:
            logger.debug(f'No embedding stored for experience {experience.id}')
            return False
        self.vector_store.upsert(experience.id, vector)
        self._persist()
        return True

    def update_experience(self, experience: Experience) -> bool:
        """Re-embed an edited experience, dropping a stale vector when no new one is available."""
        if self.index_experience(experience):
            return True
        if self.vector_store.remove(experience.id):
            self._persist()
        return False

    def delete_experience(self, experience_id: str) -> bool:
        """Drop an experience's vector. Returns False if none was stored."""
        removed = self.vector_store.remove(experience_id)
        if removed:
            self._persist()
        return removed

    def rebuild_embeddings(self, should_cancel: Optional[Callable[[], bool]] = None) -> Dict[str, int]:
        """
        Regenerate vectors for every stored record and drop orphaned or invalid ones.

        Returns:
            Counts of embedded, failed and removed vectors

        Raises:
            OperationCancelledError: If cancelled; nothing is persisted in that case
        """
        records = self._records()
        self.embedding_service.clear_cache()
        vectors = {}
        failed = 0
        for record in records:
            if should_cancel and should_cancel():
                raise OperationCancelledError('Embedding rebuild cancelled')
            vector = self.embedding_service.try_embed(record.content)
            if vector is None:
                failed += 1
                continue
            vectors[record.id] = vector

        self.vector_store.clear()
        for source_id, vector in vectors.items():
            self.vector_store.upsert(source_id, vector)
        removed = self.vector_store.remove_invalid(self.vector_store.dimension)
        self._persist()

        stats = {'embedded': len(vectors) - removed, 'failed': failed, 'removed': removed}
        logger.info(f'Rebuilt embeddings: {stats}')
        return stats

    def find_similar(self, experience_id: str, limit: int = 10, threshold: float = 0.0) -> List[ScoredExperience]:
        """Experiences whose vectors are closest to the given experience's vector."""
        records = {record.id: record for record in self._records()}
        results = []
        for match in self.vector_store.similar_to_id(experience_id, limit=limit, threshold=threshold):
            record = records.get(match.id)
            if record is None:
                continue
            results.append(ScoredExperience(record, RelevanceBreakdown(score=max(0.0, match.similarity),
                                                                       semantic_similarity=match.similarity)))
        return results
