"""
Pattern evolution tracking.

Keeps a bounded snapshot history per pattern, derives trends and stability
from it, classifies each pattern into a lifecycle stage and records the
evolution events that happen along the way.
"""

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Sequence

import numpy as np

from ..models.patterns import (EcosystemStats, EvolutionEvent, LifecycleStage, Pattern, PatternEvolution, PatternLifecycle,
                               PatternPrediction, PatternSnapshot, PatternStability, PatternTrends, PatternUpdate, Severity,
                               StageTransition, TrendData)
from ..utils.config import EvolutionConfig
from ..utils.config import config as default_config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import days_between, utc_now

logger = get_logger(__name__)

MIN_TREND_POINTS = 3
TREND_DEAD_BAND = 0.01
SIGNIFICANT_TREND = 0.3
COHERENCE_EVENT_THRESHOLD = 0.2
TEMPORAL_STABILITY = 0.7
RECENT_EVENT_DAYS = 7
SIGNIFICANT_SIZE_CHANGE = 5
SMALL_PATTERN_SIZE = 10
ACTIVE_STAGES = ('emerging', 'growing', 'mature', 'stable')


def severity_for(change: float) -> Severity:
    """Map the magnitude of a coherence change to an event severity."""
    magnitude = abs(change)
    if magnitude > 0.6:
        return 'critical'
    if magnitude > 0.4:
        return 'major'
    if magnitude > 0.2:
        return 'moderate'
    return 'minor'


def calculate_trend(values: Sequence[float]) -> TrendData:
    """
    Fit an ordinary least squares line to a sequence of values.

    Args:
        values: Values in snapshot order

    Returns:
        TrendData; neutral when fewer than three values are given
    """
    if len(values) < MIN_TREND_POINTS:
        return TrendData()

    y = np.asarray(values, dtype=float)
    x = np.arange(len(y), dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    ss_res = float(np.sum((y - (intercept + slope * x)) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r_squared = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0
    slope = float(slope)

    if abs(slope) < TREND_DEAD_BAND:
        direction = 'stable'
    else:
        direction = 'increasing' if slope > 0 else 'decreasing'

    return TrendData(direction=direction,
                     magnitude=min(abs(slope) * 10, 1.0),
                     velocity=slope,
                     confidence=min(max(0.0, r_squared), 1.0))


def _jaccard(first: Sequence[str], second: Sequence[str]) -> float:
    a, b = set(first), set(second)
    union = a | b
    return len(a & b) / len(union) if union else 1.0


def determine_initial_stage(member_count: int, coherence: float) -> LifecycleStage:
    if member_count < 3:
        return 'emerging'
    if member_count < 8 and coherence > 0.6:
        return 'growing'
    if member_count >= 8 and coherence > 0.7:
        return 'mature'
    if coherence > 0.6:
        return 'stable'
    if coherence > 0.3:
        return 'declining'
    return 'dormant'


def determine_lifecycle_stage(evolution: PatternEvolution) -> LifecycleStage:
    """Classify a tracked pattern from its latest snapshot and trends; first matching rule wins."""
    latest = evolution.history[-1]
    trends = evolution.trends
    growing = trends.growth.direction == 'increasing' and trends.growth.magnitude > SIGNIFICANT_TREND
    declining = trends.coherence.direction == 'decreasing' and trends.coherence.magnitude > SIGNIFICANT_TREND

    if latest.member_count < 3:
        return 'emerging'
    if growing and latest.member_count < 15:
        return 'growing'
    if declining:
        return 'declining'
    if latest.coherence < 0.3:
        return 'dormant'
    if evolution.lifecycle.age > 30 and latest.coherence > 0.7:
        return 'stable'
    if latest.coherence > 0.6:
        return 'mature'
    return 'stable'


def event_type_for_transition(from_stage: str, to_stage: str) -> str:
    if to_stage == 'declining':
        return 'decline'
    if to_stage == 'dormant':
        return 'death'
    if from_stage == 'dormant':
        return 'revival'
    return 'growth'


class PatternEvolutionService:
    """Tracks how patterns change across successive clustering passes."""

    def __init__(self, config: Optional[EvolutionConfig] = None, clock: Callable[[], datetime] = utc_now):
        """
        Initialize the evolution tracker.

        Args:
            config: EvolutionConfig instance, uses default if None
            clock: Source of the current time for snapshots and event windows
        """
        self.config = config or default_config.evolution
        self.clock = clock
        self._evolutions: Dict[str, PatternEvolution] = {}
        self._events: Deque[EvolutionEvent] = deque(maxlen=self.config.max_events)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def initialize(self, patterns: Sequence[Pattern]) -> List[EvolutionEvent]:
        """
        Start tracking patterns that are not tracked yet.

        Returns:
            Birth events for the newly tracked patterns
        """
        with self._lock:
            events = [self._start_tracking(pattern, 'initialization') for pattern in patterns if pattern.id not in self._evolutions]
            self._events.extend(events)
        return events

    def process_updates(self, updates: Sequence[PatternUpdate], current_patterns: Sequence[Pattern]) -> List[EvolutionEvent]:
        """
        Record a snapshot per update and emit the resulting evolution events.

        Args:
            updates: Changes reported for individual patterns
            current_patterns: Current state of the patterns

        Returns:
            Events emitted by this batch, in emission order
        """
        patterns = {pattern.id: pattern for pattern in current_patterns}
        new_events: List[EvolutionEvent] = []

        with self._lock:
            for update in updates:
                pattern = patterns.get(update.pattern_id)
                if pattern is None:
                    if update.type == 'remove' and update.pattern_id in self._evolutions:
                        new_events.extend(self._retire(update))
                    else:
                        logger.debug(f'Skipping update for unknown pattern {update.pattern_id}')
                    continue

                if update.pattern_id not in self._evolutions:
                    new_events.append(self._start_tracking(pattern, update.type))
                    continue

                evolution = self._append_snapshot(pattern, update)
                new_events.extend(self._update_events(evolution, update))
                transition = self._update_lifecycle(evolution)
                if transition:
                    new_events.append(transition)

            self._events.extend(new_events)

        if new_events:
            logger.info(f'Recorded {len(new_events)} evolution events for {len(updates)} pattern updates')
        return new_events

    def seed_history(self, pattern_id: str, snapshots: Sequence[PatternSnapshot]) -> Optional[PatternEvolution]:
        """
        Replace a pattern's history with previously recorded snapshots.

        Trends, stability and age are recomputed; the stage comes from the
        lifecycle rules applied to the seeded history.

        Returns:
            The seeded evolution, or None when no snapshots were given
        """
        if not snapshots:
            return None
        history = sorted(snapshots, key=lambda s: s.timestamp)[-self.config.max_history:]
        first = history[0]
        with self._lock:
            evolution = self._evolutions.get(pattern_id)
            if evolution is None:
                evolution = PatternEvolution(pattern_id=pattern_id,
                                             lifecycle=PatternLifecycle(stage=determine_initial_stage(first.member_count, first.coherence)),
                                             history=history)
                self._evolutions[pattern_id] = evolution
            else:
                evolution.history = list(history)
            self._refresh(evolution)
            evolution.lifecycle.stage = determine_lifecycle_stage(evolution)
        return evolution

    def get_pattern_evolution(self, pattern_id: str) -> Optional[PatternEvolution]:
        return self._evolutions.get(pattern_id)

    def get_evolution_events(self,
                             pattern_id: Optional[str] = None,
                             event_type: Optional[str] = None,
                             days: Optional[float] = None) -> List[EvolutionEvent]:
        """
        Query recorded events, newest first.

        Args:
            pattern_id: Only events for this pattern
            event_type: Only events of this type
            days: Only events from the last N days

        Returns:
            Matching events
        """
        with self._lock:
            events = list(self._events)
        if pattern_id:
            events = [e for e in events if e.pattern_id == pattern_id]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if days:
            cutoff = self.clock() - timedelta(days=days)
            events = [e for e in events if e.timestamp >= cutoff]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def get_ecosystem_stats(self) -> EcosystemStats:
        evolutions = list(self._evolutions.values())
        lifecycle_distribution: Dict[str, int] = {}
        stability_distribution = {'high': 0, 'medium': 0, 'low': 0}
        for evolution in evolutions:
            stage = evolution.lifecycle.stage
            lifecycle_distribution[stage] = lifecycle_distribution.get(stage, 0) + 1
            overall = evolution.stability.overall
            if overall > 0.7:
                stability_distribution['high'] += 1
            elif overall > 0.4:
                stability_distribution['medium'] += 1
            else:
                stability_distribution['low'] += 1

        return EcosystemStats(total_patterns=len(evolutions),
                              active_patterns=sum(1 for e in evolutions if e.lifecycle.stage in ACTIVE_STAGES),
                              patterns_in_decline=sum(1 for e in evolutions if e.lifecycle.stage == 'declining'),
                              average_age=sum(e.lifecycle.age for e in evolutions) / len(evolutions) if evolutions else 0.0,
                              lifecycle_distribution=lifecycle_distribution,
                              stability_distribution=stability_distribution,
                              recent_events=self.get_evolution_events(days=RECENT_EVENT_DAYS))

    def predict_pattern_future(self, pattern_id: str) -> Optional[PatternPrediction]:
        """
        Extrapolate a pattern's next lifecycle stage from its trends.

        Returns:
            PatternPrediction, or None for an unknown pattern
        """
        evolution = self._evolutions.get(pattern_id)
        if evolution is None:
            return None

        trends = evolution.trends
        stage = evolution.lifecycle.stage
        likely_stage = stage
        days_to_transition = 30.0
        risk_factors = list(evolution.stability.risk_factors)
        recommendations = list(evolution.stability.recommendations)

        if trends.coherence.direction == 'decreasing' and trends.coherence.magnitude > SIGNIFICANT_TREND:
            if stage in ('stable', 'mature'):
                likely_stage = 'declining'
            elif stage == 'declining':
                likely_stage = 'dormant'
            risk_factors.append('declining_coherence')
            recommendations.append('review_membership_for_outliers')

        if trends.growth.direction == 'decreasing' and stage == 'growing':
            likely_stage = 'mature'
            days_to_transition = max(7.0, 30 / abs(trends.growth.velocity))

        if evolution.stability.overall < 0.3:
            risk_factors.append('low_stability')
            recommendations.append('consider_restructuring')

        trend_confidence = (trends.coherence.confidence + trends.growth.confidence) / 2
        confidence = min(trend_confidence * len(evolution.history) / 20, 1.0)

        return PatternPrediction(likely_stage=likely_stage,
                                 days_to_transition=days_to_transition,
                                 risk_factors=list(dict.fromkeys(risk_factors)),
                                 recommendations=list(dict.fromkeys(recommendations)),
                                 confidence=confidence)

    # ------------------------------------------------------------------
    # Internals; callers hold self._lock
    # ------------------------------------------------------------------

    def _start_tracking(self, pattern: Pattern, trigger: str) -> EvolutionEvent:
        now = self.clock()
        stage = determine_initial_stage(pattern.size, pattern.coherence)
        evolution = PatternEvolution(pattern_id=pattern.id,
                                     lifecycle=PatternLifecycle(stage=stage),
                                     history=[PatternSnapshot.of(pattern, now, trigger)],
                                     stability=self._initial_stability(pattern),
                                     last_evolution=now)
        self._evolutions[pattern.id] = evolution
        logger.debug(f'Tracking pattern {pattern.id} from stage {stage}')
        return EvolutionEvent(type='birth',
                              pattern_id=pattern.id,
                              timestamp=now,
                              severity='minor',
                              description=f'Pattern {pattern.name} emerged with {pattern.size} experiences',
                              metadata={'stage': stage, 'coherence': pattern.coherence, 'member_count': pattern.size})

    def _initial_stability(self, pattern: Pattern) -> PatternStability:
        base = pattern.coherence * 0.7 + min(pattern.size / 10, 1) * 0.3
        return PatternStability(overall=base,
                                coherence_stability=pattern.coherence,
                                membership_stability=base,
                                temporal_stability=base,
                                thematic_stability=base,
                                likely_stable=base > 0.6)

    def _append_snapshot(self, pattern: Pattern, update: PatternUpdate) -> PatternEvolution:
        evolution = self._evolutions[pattern.id]
        evolution.history.append(PatternSnapshot.of(pattern, self.clock(), update.type))
        if len(evolution.history) > self.config.max_history:
            evolution.history = evolution.history[-self.config.max_history:]
        self._refresh(evolution)
        return evolution

    def _refresh(self, evolution: PatternEvolution) -> None:
        history = evolution.history
        evolution.trends = self._calculate_trends(history)
        evolution.stability = self._calculate_stability(history)
        evolution.lifecycle.age = days_between(history[0].timestamp, history[-1].timestamp)
        evolution.last_evolution = history[-1].timestamp

    def _calculate_trends(self, history: List[PatternSnapshot]) -> PatternTrends:
        if len(history) < MIN_TREND_POINTS:
            return PatternTrends()
        window = history[-self.config.trend_window:]

        quality_evolution = {}
        for token in history[-1].quality_signature:
            shares = [s.quality_signature.get(token, 0) / s.member_count if s.member_count else 0.0 for s in window]
            quality_evolution[token] = calculate_trend(shares)

        old_themes = [tag for snapshot in history[:3] for tag in snapshot.theme_tags]
        recent_themes = [tag for snapshot in history[-3:] for tag in snapshot.theme_tags]
        if not old_themes and not recent_themes:
            drift = 0.0
        elif not old_themes or not recent_themes:
            drift = 1.0
        else:
            drift = 1 - _jaccard(old_themes, recent_themes)

        return PatternTrends(coherence=calculate_trend([s.coherence for s in window]),
                             growth=calculate_trend([s.member_count for s in window]),
                             quality_evolution=quality_evolution,
                             thematic_drift=drift)

    def _calculate_stability(self, history: List[PatternSnapshot]) -> PatternStability:
        if len(history) < MIN_TREND_POINTS:
            return PatternStability(risk_factors=['insufficient_history'], recommendations=['collect_more_data'])

        window = history[-self.config.trend_window:]
        coherence = max(0.0, 1 - 2 * float(np.std([s.coherence for s in window])))
        changes = [abs(b.member_count - a.member_count) for a, b in zip(history, history[1:])]
        membership = max(0.0, 1 - (sum(changes) / len(changes)) / 5) if changes else 1.0
        thematic = _jaccard(history[0].theme_tags, history[-1].theme_tags)
        overall = (coherence + membership + TEMPORAL_STABILITY + thematic) / 4

        risk_factors = []
        if coherence < 0.5:
            risk_factors.append('coherence_volatility')
        if membership < 0.5:
            risk_factors.append('membership_churn')
        if thematic < 0.5:
            risk_factors.append('thematic_drift')

        recommendations = []
        if overall < 0.4:
            recommendations.append('review_pattern_definition')
        if coherence < 0.3:
            recommendations.append('strengthen_cohesion')

        return PatternStability(overall=overall,
                                coherence_stability=coherence,
                                membership_stability=membership,
                                temporal_stability=TEMPORAL_STABILITY,
                                thematic_stability=thematic,
                                likely_stable=overall > 0.6,
                                risk_factors=risk_factors,
                                recommendations=recommendations)

    def _update_events(self, evolution: PatternEvolution, update: PatternUpdate) -> List[EvolutionEvent]:
        current = evolution.history[-1]
        events = []

        if update.type in ('merge', 'split'):
            events.append(EvolutionEvent(type=update.type,
                                         pattern_id=evolution.pattern_id,
                                         timestamp=current.timestamp,
                                         severity='moderate',
                                         description=f'Pattern {update.type} involving {len(update.affected_ids)} experiences',
                                         metadata={'affected_ids': list(update.affected_ids), 'confidence': update.confidence}))

        if len(evolution.history) < 2:
            return events
        previous = evolution.history[-2]

        coherence_change = current.coherence - previous.coherence
        if abs(coherence_change) > COHERENCE_EVENT_THRESHOLD:
            events.append(EvolutionEvent(type='growth' if coherence_change > 0 else 'decline',
                                         pattern_id=evolution.pattern_id,
                                         timestamp=current.timestamp,
                                         severity=severity_for(coherence_change),
                                         description=f'Coherence {"increased" if coherence_change > 0 else "decreased"} by {abs(coherence_change):.2f}',
                                         metadata={'coherence_change': coherence_change, 'previous_coherence': previous.coherence}))

        size_change = current.member_count - previous.member_count
        # Small patterns report any growth, larger ones only jumps of more than 5
        if size_change > SIGNIFICANT_SIZE_CHANGE or (size_change > 0 and current.member_count < SMALL_PATTERN_SIZE):
            if size_change > 10:
                severity = 'major'
            else:
                severity = 'moderate' if size_change > SIGNIFICANT_SIZE_CHANGE else 'minor'
            events.append(EvolutionEvent(type='growth',
                                         pattern_id=evolution.pattern_id,
                                         timestamp=current.timestamp,
                                         severity=severity,
                                         description=f'Pattern grew by {size_change} experiences',
                                         metadata={'size_change': size_change, 'previous_size': previous.member_count}))

        new_themes = [tag for tag in current.theme_tags if tag not in previous.theme_tags]
        if len(new_themes) > 2:
            events.append(EvolutionEvent(type='growth',
                                         pattern_id=evolution.pattern_id,
                                         timestamp=current.timestamp,
                                         severity='minor',
                                         description=f'Thematic evolution: {len(new_themes)} new themes',
                                         metadata={'new_themes': new_themes}))
        return events

    def _update_lifecycle(self, evolution: PatternEvolution) -> Optional[EvolutionEvent]:
        current_stage = evolution.lifecycle.stage
        new_stage = determine_lifecycle_stage(evolution)
        if new_stage == current_stage:
            return None
        return self._transition(evolution, new_stage, 'automatic_detection')

    def _transition(self, evolution: PatternEvolution, new_stage: LifecycleStage, trigger: str) -> EvolutionEvent:
        lifecycle = evolution.lifecycle
        current = evolution.history[-1]
        baseline = lifecycle.stage_transitions[-1].coherence if lifecycle.stage_transitions else evolution.history[0].coherence
        transition = StageTransition(from_stage=lifecycle.stage,
                                     to_stage=new_stage,
                                     timestamp=current.timestamp,
                                     trigger=trigger,
                                     coherence=current.coherence)
        lifecycle.stage_transitions.append(transition)
        lifecycle.stage = new_stage
        logger.info(f'Pattern {evolution.pattern_id} transitioned from {transition.from_stage} to {new_stage}')

        change = current.coherence - baseline
        return EvolutionEvent(type=event_type_for_transition(transition.from_stage, new_stage),
                              pattern_id=evolution.pattern_id,
                              timestamp=current.timestamp,
                              severity=severity_for(change),
                              description=f'Pattern transitioned from {transition.from_stage} to {new_stage}',
                              metadata={'from': transition.from_stage, 'to': new_stage, 'coherence_change': change})

    def _retire(self, update: PatternUpdate) -> List[EvolutionEvent]:
        evolution = self._evolutions[update.pattern_id]
        if evolution.lifecycle.stage == 'dormant':
            return []
        evolution.last_evolution = self.clock()
        return [self._transition(evolution, 'dormant', 'removed')]
