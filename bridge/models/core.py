"""
Core data models for the experiential memory system.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.timestamp_utils import parse_timestamp, to_datetime, utc_now

QUALITY_TYPES = ('embodied', 'focus', 'mood', 'purpose', 'space', 'time', 'presence')

QUALITY_SUBTYPES = {
    'embodied': ('thinking', 'sensing'),
    'focus': ('narrow', 'broad'),
    'mood': ('open', 'closed'),
    'purpose': ('goal', 'wander'),
    'space': ('here', 'there'),
    'time': ('past', 'future'),
    'presence': ('individual', 'collective'),
}


class QualityState(str, Enum):
    """Whether a quality dimension stands out in an experience."""
    ABSENT = 'absent'
    PRESENT = 'present'
    SUBTYPE = 'subtype'


@dataclass(frozen=True)
class QualityValue:
    """Value of one quality dimension: absent, present, or a specific subtype."""
    state: QualityState
    subtype: Optional[str] = None

    @classmethod
    def absent(cls) -> 'QualityValue':
        return cls(QualityState.ABSENT)

    @classmethod
    def present(cls) -> 'QualityValue':
        return cls(QualityState.PRESENT)

    @classmethod
    def of(cls, subtype: str) -> 'QualityValue':
        return cls(QualityState.SUBTYPE, subtype.strip().lower())

    @classmethod
    def parse(cls, raw: Any) -> 'QualityValue':
        """Build a value from its stored form (False/None, True, or a subtype string)."""
        if isinstance(raw, QualityValue):
            return raw
        if raw is None or raw is False or raw == '' or raw == QualityState.ABSENT.value:
            return cls.absent()
        if raw is True or raw == QualityState.PRESENT.value:
            return cls.present()
        return cls.of(str(raw))

    @property
    def is_absent(self) -> bool:
        return self.state == QualityState.ABSENT

    def to_raw(self) -> Any:
        if self.state == QualityState.ABSENT:
            return False
        if self.state == QualityState.PRESENT:
            return True
        return self.subtype


@dataclass
class Experience:
    """A single experiential record annotated along the seven quality dimensions.

    Records are produced by the capture front-end; the engine only reads them.
    """
    id: str
    content: str
    created: datetime
    qualities: Dict[str, QualityValue] = field(default_factory=dict)
    experiencer: Optional[str] = None
    perspective: Optional[str] = None
    processing: Optional[str] = None
    reflects: List[str] = field(default_factory=list)  # Directed "reflects on" edges, cycles allowed
    occurred: Optional[datetime] = None  # When the event happened, if different from capture
    anchor: Optional[str] = None

    def quality(self, dimension: str) -> QualityValue:
        return self.qualities.get(dimension, QualityValue.absent())

    def quality_tokens(self) -> List[str]:
        """Sorted dimension tokens (`mood`, `mood.closed`) for every non-absent quality."""
        tokens = []
        for dimension in QUALITY_TYPES:
            value = self.quality(dimension)
            if value.state == QualityState.PRESENT:
                tokens.append(dimension)
            elif value.state == QualityState.SUBTYPE:
                tokens.append(f'{dimension}.{value.subtype}')
        return sorted(tokens)

    @property
    def best_timestamp(self) -> datetime:
        return self.occurred or self.created

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Experience':
        """Build an Experience from a stored document."""
        raw_qualities = data.get('qualities') or data.get('experienceQualities') or {}
        qualities = {name: QualityValue.parse(raw_qualities.get(name)) for name in QUALITY_TYPES}
        return cls(id=str(data['id']),
                   content=data.get('content') or data.get('source') or '',
                   created=parse_timestamp(data.get('created')) or to_datetime(0),
                   qualities=qualities,
                   experiencer=data.get('experiencer') or None,
                   perspective=data.get('perspective') or None,
                   processing=data.get('processing') or None,
                   reflects=list(data.get('reflects') or []),
                   occurred=parse_timestamp(data.get('occurred')),
                   anchor=data.get('anchor') or None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'content': self.content,
            'created': self.created.isoformat(),
            'qualities': {name: self.quality(name).to_raw() for name in QUALITY_TYPES},
            'experiencer': self.experiencer,
            'perspective': self.perspective,
            'processing': self.processing,
            'reflects': list(self.reflects),
            'occurred': self.occurred.isoformat() if self.occurred else None,
            'anchor': self.anchor
        }


@dataclass
class EmbeddingRecord:
    """Vector embedding of one experience; at most one per source id."""
    source_id: str
    vector: List[float]
    generated: datetime = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmbeddingRecord':
        return cls(source_id=str(data.get('source_id') or data.get('sourceId')),
                   vector=[float(v) for v in data.get('vector') or []],
                   generated=parse_timestamp(data.get('generated')) or utc_now())

    def to_dict(self) -> Dict[str, Any]:
        return {'source_id': self.source_id, 'vector': list(self.vector), 'generated': self.generated.isoformat()}
