"""
Unified relevance scoring.

Each candidate gets independent sub-signals (text match, semantic similarity,
dimension match, filter relevance, recency) that are merged into one composite
score. Only the signals that apply to the query take part, and the composite
is normalized by their total weight.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..models.core import Experience
from ..utils.config import ScoringWeights
from ..utils.errors import ConfigurationError
from ..utils.timestamp_utils import days_between, utc_now
from .dimension_filter import Query, is_dimensional, matches

MIN_STEM_LENGTH = 3
STEM_MATCH_SCORE = 0.8


@dataclass
class RelevanceBreakdown:
    """Sub-signals behind a composite relevance score."""
    score: float
    text_match: float = 0.0
    semantic_similarity: Optional[float] = None
    dimension_match: Optional[float] = None
    filter_relevance: Optional[float] = None
    recency: float = 0.0
    weights: Dict[str, float] = field(default_factory=dict)


@dataclass
class ScoredExperience:
    experience: Experience
    relevance: RelevanceBreakdown


def validate_weights(weights: ScoringWeights) -> None:
    """
    Check that scoring weights are usable.

    Raises:
        ConfigurationError: If any weight is negative or not finite, or all are zero
    """
    values = {'text': weights.text, 'semantic': weights.semantic, 'dimension': weights.dimension,
              'filter': weights.filter, 'recency': weights.recency}
    for name, value in values.items():
        if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
            raise ConfigurationError(f'search.weights.{name}', f'expected a non-negative number, got {value!r}')
    if sum(values.values()) <= 0:
        raise ConfigurationError('search.weights', 'at least one weight must be positive')


def _stems(word: str) -> List[str]:
    # anxiety -> anxieti / anxiet / anxious, plus plain truncations
    return [re.sub(r'y$', 'i', word), re.sub(r'ty$', 't', word), re.sub(r'iety$', 'ious', word), word[:-1], word[:-2]]


def text_match(query_text: str, content: str) -> float:
    """
    Score how well free text appears in an experience's content.

    Args:
        query_text: Query text
        content: Experience content

    Returns:
        1.0 for a full phrase match, 0.8 for a stem match, otherwise the
        fraction of query words (longer than 2 characters) found; 0 without query text
    """
    query_lower = (query_text or '').strip().lower()
    if not query_lower:
        return 0.0
    content_lower = (content or '').lower()

    if query_lower in content_lower:
        return 1.0

    for stem in _stems(query_lower):
        if len(stem) > MIN_STEM_LENGTH and stem in content_lower:
            return STEM_MATCH_SCORE

    words = [word for word in query_lower.split() if len(word) > 2]
    if not words:
        return 0.0
    return sum(1 for word in words if word in content_lower) / len(words)


def recency(created: datetime, now: Optional[datetime] = None, half_life_days: float = 90.0) -> float:
    """Exponential decay of age in days; timestamps in the future count as brand new."""
    age = max(days_between(created, now or utc_now()), 0.0)
    return math.exp(-age / half_life_days)


def score_experience(experience: Experience,
                     query: Query,
                     semantic_similarity: Optional[float] = None,
                     filter_relevance: Optional[float] = None,
                     weights: Optional[ScoringWeights] = None,
                     now: Optional[datetime] = None,
                     half_life_days: float = 90.0) -> RelevanceBreakdown:
    """
    Compute the composite relevance of one experience.

    Args:
        experience: Candidate experience
        query: Parsed query
        semantic_similarity: Cosine similarity to the query, None when unavailable
        filter_relevance: Fraction of structured filters satisfied, None when no filters were given
        weights: Signal weights, defaults to ScoringWeights()
        now: Reference time for recency
        half_life_days: Recency decay constant

    Returns:
        RelevanceBreakdown with the composite score and every sub-signal
    """
    weights = weights or ScoringWeights()
    text = query.text
    text_score = text_match(text, experience.content)
    recency_score = recency(experience.created, now, half_life_days)

    dimension_score = None
    if query.expression is not None:
        dimension_score = 1.0 if matches(experience, query) else 0.0

    # Purely dimensional queries rank on dimensions, not on vector proximity
    semantic_weight = 0.0 if is_dimensional(query) else weights.semantic

    signals = [('recency', weights.recency, recency_score)]
    if text.strip():
        signals.append(('text', weights.text, text_score))
    if semantic_similarity is not None:
        signals.append(('semantic', semantic_weight, max(0.0, semantic_similarity)))
    if dimension_score is not None:
        signals.append(('dimension', weights.dimension, dimension_score))
    if filter_relevance is not None:
        signals.append(('filter', weights.filter, filter_relevance))

    total_weight = sum(weight for _, weight, _ in signals)
    if total_weight > 0:
        used = {name: weight / total_weight for name, weight, _ in signals}
        composite = sum(used[name] * value for name, _, value in signals)
    else:
        used = {name: 0.0 for name, _, _ in signals}
        composite = 0.0

    return RelevanceBreakdown(score=min(max(composite, 0.0), 1.0),
                              text_match=text_score,
                              semantic_similarity=semantic_similarity,
                              dimension_match=dimension_score,
                              filter_relevance=filter_relevance,
                              recency=recency_score,
                              weights=used)


def rank(scored: List[ScoredExperience]) -> List[ScoredExperience]:
    """Sort by descending score, newer experiences first on ties."""
    return sorted(scored, key=lambda s: (s.relevance.score, s.experience.created.timestamp(), s.experience.id), reverse=True)
