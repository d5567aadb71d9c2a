"""
Search orchestration: dimension filtering, structured filters, semantic
similarity, unified scoring, sorting, paging and grouping.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..models.core import Experience
from ..utils.config import ClusteringConfig, SearchConfig
from ..utils.config import config as default_config
from ..utils.errors import ConfigurationError
from ..utils.logging_config import get_logger
from ..utils.storage import ExperienceStorage, StorageError
from ..utils.timestamp_utils import ensure_utc, utc_now
from .dimension_filter import PredicateQuery, Query, TextQuery, TokenQuery, describe_expression, is_dimensional, matches, parse_query
from .embedding_service import EmbeddingService
from .grouping import GROUP_KEYS, ResultGroup, group_results
from .scoring import ScoredExperience, rank, score_experience, validate_weights
from .vector_store import VectorStore

logger = get_logger(__name__)

SORT_KEYS = ('relevance', 'created', 'occurred')

DateRange = Tuple[Optional[datetime], Optional[datetime]]
TemporalParser = Callable[[str], Optional[DateRange]]


class SearchError(Exception):
    """Custom exception for search errors."""
    pass


@dataclass
class SearchFilters:
    """Structured filters on record metadata.

    With `strict` (the default) a record must satisfy every supplied filter.
    Otherwise records are kept and the satisfied fraction feeds the
    filter relevance signal.
    """
    experiencers: List[str] = field(default_factory=list)
    perspectives: List[str] = field(default_factory=list)
    processing: List[str] = field(default_factory=list)
    created_range: Optional[DateRange] = None
    occurred_range: Optional[DateRange] = None
    reflects_on: Optional[str] = None
    strict: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchFilters':
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError('filters', f'unknown keys {sorted(unknown)}')
        values = dict(data)
        if isinstance(values.get('experiencers'), str):
            values['experiencers'] = [values['experiencers']]
        return cls(**values)

    def checks(self) -> List[Callable[[Experience], bool]]:
        """One predicate per supplied filter."""
        checks = []
        if self.experiencers:
            checks.append(lambda e: (e.experiencer or '') in self.experiencers)
        if self.perspectives:
            checks.append(lambda e: (e.perspective or '') in self.perspectives)
        if self.processing:
            checks.append(lambda e: (e.processing or '') in self.processing)
        if self.created_range:
            checks.append(lambda e: _in_range(e.created, self.created_range))
        if self.occurred_range:
            checks.append(lambda e: _in_range(e.best_timestamp, self.occurred_range))
        if self.reflects_on:
            checks.append(lambda e: self.reflects_on in e.reflects)
        return checks


def _in_range(value: datetime, date_range: DateRange) -> bool:
    start, end = date_range
    if start is not None and value < ensure_utc(start):
        return False
    if end is not None and value > ensure_utc(end):
        return False
    return True


@dataclass
class SearchStats:
    total_records: int = 0
    after_dimension_filter: int = 0
    after_structured_filters: int = 0
    semantic_candidates: int = 0
    total_matches: int = 0
    returned: int = 0
    query_type: str = 'text'
    dimension_filter: str = ''
    semantic_available: bool = False


@dataclass
class SearchResponse:
    results: List[ScoredExperience]
    stats: SearchStats
    groups: Optional[List[ResultGroup]] = None


class SearchService:
    """Ranks stored experiences against a query."""

    def __init__(self,
                 storage: ExperienceStorage,
                 embedding_service: EmbeddingService,
                 vector_store: VectorStore,
                 config: Optional[SearchConfig] = None,
                 clustering_config: Optional[ClusteringConfig] = None,
                 parse_temporal: Optional[TemporalParser] = None):
        """
        Initialize the search service.

        Args:
            storage: Storage collaborator providing records
            embedding_service: Service used to embed query text
            vector_store: Store holding experience vectors
            config: SearchConfig instance, uses default if None
            clustering_config: Settings used for similarity grouping
            parse_temporal: Optional natural-language date parser returning (start, end)

        Raises:
            ConfigurationError: If the scoring weights are invalid
        """
        self.storage = storage
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.config = config or default_config.search
        self.clustering_config = clustering_config or default_config.clustering
        self.parse_temporal = parse_temporal
        validate_weights(self.config.weights)

    def _semantic_scores(self, query: Query, stats: SearchStats, should_cancel) -> Dict[str, float]:
        if is_dimensional(query) or not query.text.strip():
            return {}
        query_vector = self.embedding_service.try_embed(query.text)
        if query_vector is None:
            logger.debug('Semantic signal unavailable for this query')
            return {}
        stats.semantic_available = True
        results = self.vector_store.similar_to(query_vector,
                                               limit=max(self.vector_store.count(), 1),
                                               threshold=self.config.semantic_threshold,
                                               should_cancel=should_cancel)
        return {r.id: r.similarity for r in results}

    def _temporal_range(self, query: Query) -> Optional[DateRange]:
        if self.parse_temporal is None or not query.text.strip():
            return None
        try:
            return self.parse_temporal(query.text)
        except (ValueError, TypeError) as e:
            logger.warning(f'Temporal parsing failed for query {query.text!r}: {e}')
            return None

    def search(self,
               query: Union[str, Sequence[str], Dict[str, Any], Query, None] = None,
               filters: Union[SearchFilters, Dict[str, Any], None] = None,
               sort: str = 'relevance',
               group_by: Optional[str] = None,
               limit: Optional[int] = None,
               offset: int = 0,
               should_cancel: Optional[Callable[[], bool]] = None,
               now: Optional[datetime] = None) -> SearchResponse:
        """
        Search stored experiences.

        Args:
            query: Raw query (text, dimension tokens or a predicate) or a parsed Query
            filters: Structured metadata filters
            sort: One of SORT_KEYS
            group_by: Optional grouping key, one of GROUP_KEYS
            limit: Page size, defaults to the configured limit
            offset: Number of ranked results to skip
            should_cancel: Checked during vector scans
            now: Reference time for recency

        Returns:
            SearchResponse with the ranked page, statistics and optional groups

        Raises:
            ConfigurationError: If sort, group_by, limit, offset or filters are invalid
        """
        if sort not in SORT_KEYS:
            raise ConfigurationError('sort', f"unknown key '{sort}', expected one of {', '.join(SORT_KEYS)}")
        if group_by is not None and group_by not in GROUP_KEYS:
            raise ConfigurationError('group_by', f"unknown key '{group_by}', expected one of {', '.join(GROUP_KEYS)}")
        limit = self.config.default_limit if limit is None else limit
        if limit < 0:
            raise ConfigurationError('limit', f'must not be negative, got {limit}')
        if offset < 0:
            raise ConfigurationError('offset', f'must not be negative, got {offset}')
        if isinstance(filters, dict):
            filters = SearchFilters.from_dict(filters)

        parsed = query if isinstance(query, (TextQuery, TokenQuery, PredicateQuery)) else parse_query(query)
        now = now or utc_now()

        stats = SearchStats(query_type=type(parsed).__name__, dimension_filter=describe_expression(parsed.expression))
        try:
            records = self.storage.list_all_records()
        except StorageError as e:
            logger.error(f'Error loading records for search: {e}')
            raise SearchError(f'Failed to load records: {e}')
        stats.total_records = len(records)

        candidates = [record for record in records if matches(record, parsed)]
        stats.after_dimension_filter = len(candidates)

        temporal_range = self._temporal_range(parsed)
        if temporal_range:
            candidates = [record for record in candidates if _in_range(record.best_timestamp, temporal_range)]

        checks = filters.checks() if filters else []
        filter_scores: Dict[str, Optional[float]] = {}
        kept = []
        for record in candidates:
            if not checks:
                filter_scores[record.id] = None
                kept.append(record)
                continue
            fraction = sum(1 for check in checks if check(record)) / len(checks)
            if filters.strict and fraction < 1.0:
                continue
            filter_scores[record.id] = fraction
            kept.append(record)
        candidates = kept
        stats.after_structured_filters = len(candidates)

        semantic = self._semantic_scores(parsed, stats, should_cancel)
        stats.semantic_candidates = sum(1 for record in candidates if record.id in semantic)

        scored = []
        has_text = bool(parsed.text.strip())
        for record in candidates:
            similarity = semantic.get(record.id)
            relevance = score_experience(record,
                                         parsed,
                                         semantic_similarity=similarity,
                                         filter_relevance=filter_scores.get(record.id),
                                         weights=self.config.weights,
                                         now=now,
                                         half_life_days=self.config.recency_half_life_days)
            # Text queries need some evidence beyond recency
            if has_text and relevance.text_match == 0 and similarity is None and parsed.expression is None:
                continue
            scored.append(ScoredExperience(record, relevance))

        ranked = rank(scored)
        if sort == 'created':
            ranked.sort(key=lambda s: s.experience.created, reverse=True)
        elif sort == 'occurred':
            ranked.sort(key=lambda s: s.experience.best_timestamp, reverse=True)

        stats.total_matches = len(ranked)
        page = ranked[offset:offset + limit]
        stats.returned = len(page)

        groups = None
        if group_by:
            vectors = {}
            if group_by == 'similarity':
                vectors = {s.experience.id: self.vector_store.get(s.experience.id) for s in page
                           if self.vector_store.has(s.experience.id)}
            groups = group_results(page, group_by, vectors=vectors, config=self.clustering_config)

        logger.info(f'Search returned {stats.returned} of {stats.total_matches} matches from {stats.total_records} records')
        return SearchResponse(results=page, stats=stats, groups=groups)
