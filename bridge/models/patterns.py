"""
Data models for discovered patterns and their evolution over time.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal

from ..utils.timestamp_utils import utc_now
from .core import Experience

LifecycleStage = Literal['emerging', 'growing', 'mature', 'stable', 'declining', 'dormant']
TrendDirection = Literal['increasing', 'decreasing', 'stable', 'volatile']
EventType = Literal['birth', 'growth', 'merge', 'split', 'decline', 'revival', 'death']
Severity = Literal['minor', 'moderate', 'major', 'critical']
UpdateType = Literal['add', 'modify', 'remove', 'merge', 'split']


@dataclass
class Pattern:
    """A hard cluster of experiences that represents a recurring theme.

    Member sets are disjoint across the patterns of one clustering pass.
    """
    id: str
    name: str
    member_ids: List[str]
    centroid: List[float]
    coherence: float
    keywords: List[str] = field(default_factory=list)
    quality_signature: Dict[str, int] = field(default_factory=dict)
    created: datetime = field(default_factory=utc_now)

    @property
    def size(self) -> int:
        return len(self.member_ids)


@dataclass
class PatternSnapshot:
    """State of a pattern at one point in time."""
    timestamp: datetime
    coherence: float
    member_count: int
    quality_signature: Dict[str, int] = field(default_factory=dict)
    theme_tags: List[str] = field(default_factory=list)
    triggers: List[str] = field(default_factory=list)

    @classmethod
    def of(cls, pattern: Pattern, timestamp: datetime, trigger: str) -> 'PatternSnapshot':
        return cls(timestamp=timestamp,
                   coherence=pattern.coherence,
                   member_count=pattern.size,
                   quality_signature=dict(pattern.quality_signature),
                   theme_tags=list(pattern.keywords),
                   triggers=[trigger])


@dataclass
class TrendData:
    direction: TrendDirection = 'stable'
    magnitude: float = 0.0  # 0-1
    velocity: float = 0.0  # change per snapshot
    confidence: float = 0.0  # 0-1, R squared of the fit


@dataclass
class PatternTrends:
    coherence: TrendData = field(default_factory=TrendData)
    growth: TrendData = field(default_factory=TrendData)
    quality_evolution: Dict[str, TrendData] = field(default_factory=dict)
    thematic_drift: float = 0.0


@dataclass
class PatternStability:
    overall: float = 0.5
    coherence_stability: float = 0.5
    membership_stability: float = 0.5
    temporal_stability: float = 0.5
    thematic_stability: float = 0.5
    likely_stable: bool = False
    risk_factors: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class StageTransition:
    from_stage: LifecycleStage
    to_stage: LifecycleStage
    timestamp: datetime
    trigger: str
    coherence: float = 0.0  # pattern coherence when the transition happened


@dataclass
class PatternLifecycle:
    stage: LifecycleStage
    age: float = 0.0  # days since the first snapshot, derived from history
    stage_transitions: List[StageTransition] = field(default_factory=list)


@dataclass
class PatternEvolution:
    """Longitudinal state of one pattern."""
    pattern_id: str
    lifecycle: PatternLifecycle
    history: List[PatternSnapshot]
    trends: PatternTrends = field(default_factory=PatternTrends)
    stability: PatternStability = field(default_factory=PatternStability)
    last_evolution: datetime = field(default_factory=utc_now)


@dataclass
class EvolutionEvent:
    type: EventType
    pattern_id: str
    timestamp: datetime
    severity: Severity
    description: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PatternUpdate:
    """A change reported by the caller for one pattern."""
    type: UpdateType
    pattern_id: str
    affected_ids: List[str] = field(default_factory=list)
    confidence: float = 1.0


@dataclass
class PatternPrediction:
    likely_stage: LifecycleStage
    days_to_transition: float
    risk_factors: List[str]
    recommendations: List[str]
    confidence: float


@dataclass
class EcosystemStats:
    total_patterns: int
    active_patterns: int
    patterns_in_decline: int
    average_age: float
    lifecycle_distribution: Dict[str, int]
    stability_distribution: Dict[str, int]
    recent_events: List[EvolutionEvent]


@dataclass
class ClusteringStats:
    total_experiences: int
    patterns_found: int
    outliers_count: int
    average_pattern_size: float
    average_coherence: float
    clustering_time_ms: float


@dataclass
class ClusteringResult:
    patterns: List[Pattern]
    outliers: List[Experience]
    stats: ClusteringStats
    members: Dict[str, List[Experience]] = field(default_factory=dict)  # pattern id -> members in cluster order
