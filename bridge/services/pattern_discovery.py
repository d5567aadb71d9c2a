"""
Hard clustering of experiences into patterns.

Every experience belongs to at most one pattern. A candidate joins a cluster
only when it is similar to every current member, which keeps clusters tight
at the cost of leaving borderline experiences as outliers.
"""

import math
import re
import time
from collections import Counter
from dataclasses import replace
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..models.core import Experience
from ..models.patterns import ClusteringResult, ClusteringStats, Pattern
from ..utils.config import ClusteringConfig
from ..utils.config import config as default_config
from ..utils.errors import ConfigurationError, OperationCancelledError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .vector_store import cosine_similarity

logger = get_logger(__name__)

KEYWORD_MIN_LENGTH = 5
MAX_KEYWORDS = 5
KEYWORD_STOPWORDS = {'feeling', 'about', 'through', 'would', 'could', 'should'}


class PatternDiscoveryError(Exception):
    """Custom exception for pattern discovery errors."""
    pass


def _validate_options(options: ClusteringConfig) -> None:
    if not -1.0 <= options.similarity_threshold <= 1.0:
        raise ConfigurationError('clustering.similarity_threshold', f'must be within [-1, 1], got {options.similarity_threshold}')
    if options.min_cluster_size < 1:
        raise ConfigurationError('clustering.min_cluster_size', f'must be at least 1, got {options.min_cluster_size}')
    if options.max_cluster_size < options.min_cluster_size:
        raise ConfigurationError('clustering.max_cluster_size', 'must not be smaller than min_cluster_size')
    if options.max_clusters < 0:
        raise ConfigurationError('clustering.max_clusters', f'must not be negative, got {options.max_clusters}')


def _usable(vector: Optional[Sequence[float]]) -> bool:
    if not vector:
        return False
    if not all(math.isfinite(v) for v in vector):
        return False
    return any(v != 0 for v in vector)


def extract_keywords(experiences: Sequence[Experience], limit: int = MAX_KEYWORDS) -> List[str]:
    """Most frequent longer words across the members, ignoring words seen only once."""
    frequency: Counter = Counter()
    for experience in experiences:
        for word in (experience.content or '').lower().split():
            if len(word) < KEYWORD_MIN_LENGTH or word in KEYWORD_STOPWORDS:
                continue
            clean = re.sub(r'[^a-z]', '', word)
            if len(clean) >= KEYWORD_MIN_LENGTH:
                frequency[clean] += 1
    return [word for word, count in frequency.most_common() if count > 1][:limit]


def generate_name(keywords: Sequence[str], size: int) -> str:
    top = ' '.join(keywords[:3])
    return f'{top} ({size})' if top else f'Pattern {size} experiences'


def calculate_centroid(vectors: Sequence[Sequence[float]]) -> List[float]:
    if not vectors:
        return []
    return np.mean(np.asarray(vectors, dtype=float), axis=0).tolist()


def calculate_coherence(vectors: Sequence[Sequence[float]]) -> float:
    """Mean pairwise cosine similarity; 1 for a single member."""
    if len(vectors) < 2:
        return 1.0
    total = 0.0
    pairs = 0
    for i in range(len(vectors)):
        for j in range(i + 1, len(vectors)):
            total += cosine_similarity(vectors[i], vectors[j])
            pairs += 1
    return total / pairs


def quality_signature(experiences: Sequence[Experience]) -> Dict[str, int]:
    """Count of members carrying each dimension token."""
    counts: Counter = Counter()
    for experience in experiences:
        counts.update(experience.quality_tokens())
    return dict(sorted(counts.items()))


class PatternDiscoveryService:
    """Discovers patterns among experiences with usable embeddings."""

    def __init__(self, config: Optional[ClusteringConfig] = None):
        """
        Initialize pattern discovery.

        Args:
            config: ClusteringConfig instance, uses default if None
        """
        self.config = config or default_config.clustering
        _validate_options(self.config)

    def discover(self,
                 experiences: Sequence[Experience],
                 vectors: Mapping[str, Sequence[float]],
                 options: Optional[Dict] = None,
                 should_cancel: Optional[Callable[[], bool]] = None) -> ClusteringResult:
        """
        Partition experiences into patterns and outliers.

        Args:
            experiences: Experiences to cluster
            vectors: Embedding vectors keyed by experience id
            options: Overrides for any ClusteringConfig field
            should_cancel: Checked between candidates; aborts without publishing partial results

        Returns:
            ClusteringResult with patterns, outliers and statistics

        Raises:
            ConfigurationError: If an option is unknown or out of range
            OperationCancelledError: If clustering was cancelled
        """
        start = time.perf_counter()
        settings = self.config
        if options:
            unknown = set(options) - set(ClusteringConfig.__dataclass_fields__)
            if unknown:
                raise ConfigurationError('clustering options', f'unknown keys {sorted(unknown)}')
            settings = replace(self.config, **options)
            _validate_options(settings)

        usable: List[Experience] = []
        outliers: List[Experience] = []
        dimensions = Counter(len(vectors[e.id]) for e in experiences if _usable(vectors.get(e.id)))
        expected_dimension = dimensions.most_common(1)[0][0] if dimensions else None
        for experience in experiences:
            vector = vectors.get(experience.id)
            if _usable(vector) and len(vector) == expected_dimension:
                usable.append(experience)
            else:
                logger.debug(f'Experience {experience.id} has no usable embedding, treating as outlier')
                outliers.append(experience)

        clusters = self._hard_cluster(usable, vectors, settings, should_cancel)

        patterns: List[Pattern] = []
        members: Dict[str, List[Experience]] = {}
        clustered_ids = set()
        for cluster in clusters:
            try:
                pattern = self._create_pattern(cluster, vectors)
            except (ValueError, TypeError) as e:
                logger.error(f'Error building pattern from cluster seeded by {cluster[0].id}: {e}')
                raise PatternDiscoveryError(f'Failed to build pattern: {e}')
            patterns.append(pattern)
            members[pattern.id] = cluster
            clustered_ids.update(e.id for e in cluster)
        outliers.extend(e for e in usable if e.id not in clustered_ids)

        elapsed_ms = (time.perf_counter() - start) * 1000
        stats = ClusteringStats(total_experiences=len(experiences),
                                patterns_found=len(patterns),
                                outliers_count=len(outliers),
                                average_pattern_size=sum(p.size for p in patterns) / len(patterns) if patterns else 0.0,
                                average_coherence=sum(p.coherence for p in patterns) / len(patterns) if patterns else 0.0,
                                clustering_time_ms=elapsed_ms)

        logger.info(f'Clustered {len(experiences)} experiences into {len(patterns)} patterns with {len(outliers)} outliers')
        return ClusteringResult(patterns=patterns, outliers=outliers, stats=stats, members=members)

    def _hard_cluster(self,
                      experiences: List[Experience],
                      vectors: Mapping[str, Sequence[float]],
                      settings: ClusteringConfig,
                      should_cancel: Optional[Callable[[], bool]]) -> List[List[Experience]]:
        ordered = sorted(experiences, key=lambda e: (e.best_timestamp, e.id))
        clusters: List[List[Experience]] = []
        assigned = set()

        for seed in ordered:
            if len(clusters) >= settings.max_clusters:
                break
            if seed.id in assigned:
                continue

            cluster = [seed]
            assigned.add(seed.id)
            for candidate in ordered:
                if should_cancel and should_cancel():
                    raise OperationCancelledError('Clustering cancelled')
                if len(cluster) >= settings.max_cluster_size:
                    break
                if candidate.id in assigned:
                    continue
                # Must be similar to every member, not just the seed
                similarities = [cosine_similarity(vectors[candidate.id], vectors[member.id]) for member in cluster]
                if min(similarities) >= settings.similarity_threshold:
                    cluster.append(candidate)
                    assigned.add(candidate.id)

            if len(cluster) >= settings.min_cluster_size:
                clusters.append(cluster)
                logger.debug(f'Created cluster {len(clusters)} with {len(cluster)} experiences')
            else:
                assigned.difference_update(e.id for e in cluster)

        return clusters

    def _create_pattern(self, cluster: List[Experience], vectors: Mapping[str, Sequence[float]]) -> Pattern:
        cluster_vectors = [vectors[e.id] for e in cluster]
        keywords = extract_keywords(cluster)
        # Keyed by the seed, the earliest member
        return Pattern(id=f'pattern_{cluster[0].id}',
                       name=generate_name(keywords, len(cluster)),
                       member_ids=[e.id for e in cluster],
                       centroid=calculate_centroid(cluster_vectors),
                       coherence=calculate_coherence(cluster_vectors),
                       keywords=keywords,
                       quality_signature=quality_signature(cluster),
                       created=utc_now())
