"""
Grouping of ranked search results.

Every function partitions its input: each result lands in exactly one group
and the group sizes sum to the input size.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..utils.config import ClusteringConfig
from ..utils.errors import ConfigurationError
from ..utils.timestamp_utils import utc_day
from .pattern_discovery import PatternDiscoveryService
from .scoring import ScoredExperience

UNKNOWN_LABEL = 'Unknown'
GROUP_KEYS = ('experiencer', 'perspective', 'date', 'qualities', 'similarity')


@dataclass
class ResultGroup:
    label: str
    items: List[ScoredExperience]
    common_tokens: List[str] = field(default_factory=list)
    pattern_id: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.items)


def _bucket(results: Sequence[ScoredExperience], key: Callable[[ScoredExperience], str]) -> Dict[str, List[ScoredExperience]]:
    buckets: Dict[str, List[ScoredExperience]] = {}
    for result in results:
        buckets.setdefault(key(result), []).append(result)
    return buckets


def _common_tokens(items: Sequence[ScoredExperience]) -> List[str]:
    if not items:
        return []
    common = set(items[0].experience.quality_tokens())
    for item in items[1:]:
        common &= set(item.experience.quality_tokens())
    return sorted(common)


def group_by_experiencer(results: Sequence[ScoredExperience]) -> List[ResultGroup]:
    buckets = _bucket(results, lambda r: r.experience.experiencer or UNKNOWN_LABEL)
    groups = [ResultGroup(label, items) for label, items in buckets.items()]
    return sorted(groups, key=lambda g: g.count, reverse=True)


def group_by_perspective(results: Sequence[ScoredExperience]) -> List[ResultGroup]:
    buckets = _bucket(results, lambda r: r.experience.perspective or UNKNOWN_LABEL)
    groups = [ResultGroup(label, items) for label, items in buckets.items()]
    return sorted(groups, key=lambda g: g.count, reverse=True)


def group_by_date(results: Sequence[ScoredExperience]) -> List[ResultGroup]:
    """Group by UTC calendar day of `occurred`, falling back to `created`, oldest day first."""
    buckets = _bucket(results, lambda r: utc_day(r.experience.best_timestamp).isoformat())
    return [ResultGroup(label, buckets[label]) for label in sorted(buckets)]


def group_by_quality_signature(results: Sequence[ScoredExperience]) -> List[ResultGroup]:
    """Group by the exact set of non-absent quality tokens, largest group first."""
    buckets = _bucket(results, lambda r: ', '.join(r.experience.quality_tokens()) or 'no qualities')
    groups = [ResultGroup(label, items, common_tokens=_common_tokens(items)) for label, items in buckets.items()]
    return sorted(groups, key=lambda g: g.count, reverse=True)


def group_by_similarity(results: Sequence[ScoredExperience],
                        vectors: Mapping[str, Sequence[float]],
                        config: Optional[ClusteringConfig] = None) -> List[ResultGroup]:
    """
    Group results by hard clustering of their embeddings.

    Outliers become singleton groups so the grouping still covers every result.

    Args:
        results: Ranked results
        vectors: Embedding vectors keyed by experience id
        config: Clustering settings, uses default if None

    Returns:
        Cluster groups in discovery order followed by singleton groups
    """
    by_id = {r.experience.id: r for r in results}
    clustering = PatternDiscoveryService(config).discover([r.experience for r in results], vectors)

    groups = []
    for pattern in clustering.patterns:
        items = [by_id[member_id] for member_id in pattern.member_ids]
        groups.append(ResultGroup(pattern.name, items, common_tokens=_common_tokens(items), pattern_id=pattern.id))
    for outlier in clustering.outliers:
        item = by_id[outlier.id]
        groups.append(ResultGroup(outlier.id, [item], common_tokens=_common_tokens([item])))
    return groups


def group_results(results: Sequence[ScoredExperience],
                  key: str,
                  vectors: Optional[Mapping[str, Sequence[float]]] = None,
                  config: Optional[ClusteringConfig] = None) -> List[ResultGroup]:
    """
    Group results by the given key.

    Raises:
        ConfigurationError: If the key is not one of GROUP_KEYS
    """
    if key == 'experiencer':
        return group_by_experiencer(results)
    if key == 'perspective':
        return group_by_perspective(results)
    if key == 'date':
        return group_by_date(results)
    if key == 'qualities':
        return group_by_quality_signature(results)
    if key == 'similarity':
        return group_by_similarity(results, vectors or {}, config)
    raise ConfigurationError('group_by', f"unknown key '{key}', expected one of {', '.join(GROUP_KEYS)}")
