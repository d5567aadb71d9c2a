"""
Dimension filtering over the seven experiential qualities.

Raw queries are parsed once into a closed set of query variants. Token
queries and structured predicates both compile down to a small expression
tree that is evaluated against each experience.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..models.core import QUALITY_SUBTYPES, QUALITY_TYPES, Experience, QualityState
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

BOOLEAN_OPERATORS = ('$and', '$or', '$not')


class DimensionFilterError(Exception):
    """Custom exception for dimension filter errors."""
    pass


@dataclass(frozen=True)
class PresenceFilter:
    """Matches when a quality is (or is not) present, with any subtype."""
    quality: str
    present: bool = True

    def evaluate(self, experience: Experience) -> bool:
        has_quality = not experience.quality(self.quality).is_absent
        return has_quality if self.present else not has_quality


@dataclass(frozen=True)
class ValueFilter:
    """Matches when a quality carries one of the given subtypes."""
    quality: str
    values: Tuple[str, ...]

    def evaluate(self, experience: Experience) -> bool:
        value = experience.quality(self.quality)
        return value.state == QualityState.SUBTYPE and value.subtype in self.values


@dataclass(frozen=True)
class AndExpression:
    filters: Tuple['FilterExpression', ...]

    def evaluate(self, experience: Experience) -> bool:
        return all(f.evaluate(experience) for f in self.filters)


@dataclass(frozen=True)
class OrExpression:
    filters: Tuple['FilterExpression', ...]

    def evaluate(self, experience: Experience) -> bool:
        return any(f.evaluate(experience) for f in self.filters)


@dataclass(frozen=True)
class NotExpression:
    filter: 'FilterExpression'

    def evaluate(self, experience: Experience) -> bool:
        return not self.filter.evaluate(experience)


FilterExpression = Union[PresenceFilter, ValueFilter, AndExpression, OrExpression, NotExpression]


@dataclass(frozen=True)
class TextQuery:
    """Free text; no dimension filtering."""
    text: str = ''

    @property
    def expression(self) -> Optional[FilterExpression]:
        return None


@dataclass(frozen=True)
class TokenQuery:
    """Dimension tokens combined with AND, plus any residual free text."""
    tokens: Tuple[str, ...]
    text: str = ''
    expression: Optional[FilterExpression] = field(default=None, compare=False)

    def __post_init__(self):
        if self.expression is None:
            object.__setattr__(self, 'expression', _tokens_to_expression(self.tokens))


@dataclass(frozen=True)
class PredicateQuery:
    """Structured predicate over quality dimensions."""
    expression: FilterExpression
    text: str = ''


Query = Union[TextQuery, TokenQuery, PredicateQuery]


def is_dimension_token(token: str) -> bool:
    """Check whether a string is a bare dimension or a known `dimension.subtype` token."""
    if not isinstance(token, str):
        return False
    normalized = token.strip().lower()
    if normalized in QUALITY_TYPES:
        return True
    if normalized.count('.') != 1:
        return False
    dimension, subtype = normalized.split('.')
    return subtype in QUALITY_SUBTYPES.get(dimension, ())


def _token_to_filter(token: str) -> FilterExpression:
    normalized = token.strip().lower()
    if '.' in normalized:
        dimension, subtype = normalized.split('.')
        return ValueFilter(dimension, (subtype,))
    return PresenceFilter(normalized, True)


def _tokens_to_expression(tokens: Sequence[str]) -> Optional[FilterExpression]:
    filters = [_token_to_filter(token) for token in tokens]
    if not filters:
        return None
    if len(filters) == 1:
        return filters[0]
    return AndExpression(tuple(filters))


def is_dimensional(query: Query) -> bool:
    """True when the query filters on dimensions and carries no free text."""
    return query.expression is not None and not query.text.strip()


def parse_query(raw: Any) -> Query:
    """
    Parse a raw query into one of the query variants.

    Malformed input never raises; it degrades to a text query.

    Args:
        raw: A string, a list of strings, or a predicate dict

    Returns:
        TextQuery, TokenQuery or PredicateQuery
    """
    if raw is None:
        return TextQuery('')

    if isinstance(raw, str):
        text = raw.strip()
        if is_dimension_token(text):
            return TokenQuery((text.lower(),))
        return TextQuery(text)

    if isinstance(raw, (list, tuple)):
        tokens: List[str] = []
        residual: List[str] = []
        for item in raw:
            if not isinstance(item, str):
                logger.warning(f'Ignoring non-string query item: {item!r}')
                continue
            if is_dimension_token(item):
                token = item.strip().lower()
                if token not in tokens:
                    tokens.append(token)
            elif item.strip():
                residual.append(item.strip())
        text = ' '.join(residual)
        if not tokens:
            return TextQuery(text)
        return TokenQuery(tuple(tokens), text)

    if isinstance(raw, dict):
        try:
            return PredicateQuery(parse_predicate(raw))
        except DimensionFilterError as e:
            logger.warning(f'Invalid dimension predicate, falling back to text search: {e}')
            return TextQuery('')

    logger.warning(f'Unsupported query type {type(raw).__name__}, treating as text')
    return TextQuery(str(raw))


def _parse_quality_value(quality: str, value: Any) -> Optional[FilterExpression]:
    if isinstance(value, dict) and 'present' in value:
        return PresenceFilter(quality, bool(value['present']))
    if isinstance(value, str) and value.strip():
        return ValueFilter(quality, (value.strip().lower(),))
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, str) for v in value):
        return ValueFilter(quality, tuple(v.strip().lower() for v in value))
    return None


def _parse_child(operator: str, child: Any) -> Optional[FilterExpression]:
    try:
        return parse_predicate(child)
    except DimensionFilterError as e:
        logger.warning(f'Dropping invalid sub-predicate of {operator}: {e}')
        return None


def parse_predicate(predicate: Dict[str, Any]) -> FilterExpression:
    """
    Parse a structured predicate into an expression tree.

    Keys are quality names mapped to a subtype, a list of subtypes (OR within
    the dimension) or `{"present": bool}`; `$and`, `$or` and `$not` combine
    sub-predicates. All top-level parts are combined with AND.

    Args:
        predicate: Predicate dictionary

    Returns:
        Parsed filter expression

    Raises:
        DimensionFilterError: If nothing valid remains after dropping unknown parts
    """
    if not isinstance(predicate, dict) or not predicate:
        raise DimensionFilterError('Empty filter provided')

    parts: List[FilterExpression] = []
    for key, value in predicate.items():
        if key in ('$and', '$or'):
            if not isinstance(value, (list, tuple)) or not value:
                logger.warning(f'Dropping {key}: expected a non-empty list')
                continue
            children = tuple(child for child in (_parse_child(key, item) for item in value) if child is not None)
            if not children:
                logger.warning(f'Dropping {key}: no valid sub-predicates')
                continue
            parts.append(AndExpression(children) if key == '$and' else OrExpression(children))
        elif key == '$not':
            if not isinstance(value, dict):
                logger.warning('Dropping $not: expected an object')
                continue
            child = _parse_child(key, value)
            if child is not None:
                parts.append(NotExpression(child))
        elif key in QUALITY_TYPES:
            parsed = _parse_quality_value(key, value)
            if parsed is None:
                logger.warning(f'Dropping invalid filter value for quality {key!r}: {value!r}')
                continue
            parts.append(parsed)
        else:
            logger.warning(f'Dropping unknown filter key: {key!r}')

    if not parts:
        raise DimensionFilterError('No valid filters found')
    if len(parts) == 1:
        return parts[0]
    return AndExpression(tuple(parts))


def validate_predicate(predicate: Any, path: str = '') -> List[str]:
    """
    Report structural problems of a predicate without raising.

    Args:
        predicate: Predicate to check
        path: Location prefix used in nested messages

    Returns:
        List of human-readable problems, empty when the predicate is valid
    """
    where = path or 'filter'
    if not isinstance(predicate, dict):
        return [f'{where} must be an object']
    if not predicate:
        return [f'{where} is empty']

    errors = []
    for key, value in predicate.items():
        location = f'{path}.{key}' if path else key
        if key in ('$and', '$or'):
            if not isinstance(value, (list, tuple)) or not value:
                errors.append(f'{location} must be a non-empty list')
                continue
            for index, child in enumerate(value):
                errors.extend(validate_predicate(child, f'{location}[{index}]'))
        elif key == '$not':
            errors.extend(validate_predicate(value, location))
        elif key in QUALITY_TYPES:
            if _parse_quality_value(key, value) is None:
                errors.append(f'{location} has invalid value {value!r}')
                continue
            subtypes = value if isinstance(value, (list, tuple)) else [value] if isinstance(value, str) else []
            for subtype in subtypes:
                if subtype.strip().lower() not in QUALITY_SUBTYPES[key]:
                    errors.append(f'{location} has unknown subtype {subtype!r}')
        else:
            errors.append(f'{location} is not a known quality or operator')
    return errors


def describe_expression(expression: Optional[FilterExpression]) -> str:
    """Render an expression in a compact human-readable form."""
    if expression is None:
        return 'no dimension filter'
    if isinstance(expression, PresenceFilter):
        return f'{expression.quality} {"present" if expression.present else "absent"}'
    if isinstance(expression, ValueFilter):
        if len(expression.values) == 1:
            return f'{expression.quality} = {expression.values[0]}'
        return f'{expression.quality} in ({", ".join(expression.values)})'
    if isinstance(expression, AndExpression):
        return '(' + ' AND '.join(describe_expression(f) for f in expression.filters) + ')'
    if isinstance(expression, OrExpression):
        return '(' + ' OR '.join(describe_expression(f) for f in expression.filters) + ')'
    if isinstance(expression, NotExpression):
        return f'NOT {describe_expression(expression.filter)}'
    raise DimensionFilterError(f'Unknown expression type: {type(expression).__name__}')


def matches(experience: Experience, query: Union[Query, FilterExpression, None]) -> bool:
    """
    Check whether an experience satisfies the dimension part of a query.

    Queries without an expression (plain text) match everything.
    """
    if query is None:
        return True
    expression = query.expression if isinstance(query, (TextQuery, TokenQuery, PredicateQuery)) else query
    if expression is None:
        return True
    return expression.evaluate(experience)


def filter_experiences(experiences: Iterable[Experience], query: Query) -> List[Experience]:
    """Keep the experiences matching the query's dimension expression, preserving order."""
    return [experience for experience in experiences if matches(experience, query)]
