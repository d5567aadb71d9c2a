"""
Tests for query parsing and dimension filtering.
"""

import pytest

from bridge.services.dimension_filter import (AndExpression, NotExpression, OrExpression, PredicateQuery, PresenceFilter,
                                              TextQuery, TokenQuery, ValueFilter, describe_expression, filter_experiences,
                                              is_dimension_token, is_dimensional, matches, parse_predicate, parse_query,
                                              validate_predicate, DimensionFilterError)
from conftest import make_experience


@pytest.fixture
def records():
    return [
        make_experience('closed', mood='closed', embodied='sensing'),
        make_experience('open', mood='open', purpose='goal'),
        make_experience('present', mood=True),
        make_experience('none'),
    ]


class TestParseQuery:

    def test_bare_dimension_string_is_token_query(self):
        query = parse_query('mood')
        assert isinstance(query, TokenQuery)
        assert query.tokens == ('mood',)
        assert query.text == ''

    def test_dotted_known_subtype_is_token_query(self):
        query = parse_query('Mood.Closed')
        assert isinstance(query, TokenQuery)
        assert query.tokens == ('mood.closed',)

    def test_dotted_unknown_subtype_is_text(self):
        query = parse_query('mood.grumpy')
        assert isinstance(query, TextQuery)
        assert query.text == 'mood.grumpy'

    def test_plain_text(self):
        query = parse_query('felt anxious before the launch')
        assert isinstance(query, TextQuery)
        assert query.expression is None

    def test_list_splits_tokens_and_residual_text(self):
        query = parse_query(['mood.closed', 'launch', 'embodied.sensing'])
        assert isinstance(query, TokenQuery)
        assert query.tokens == ('mood.closed', 'embodied.sensing')
        assert query.text == 'launch'
        assert not is_dimensional(query)

    def test_list_without_tokens_is_text(self):
        query = parse_query(['launch', 'anxiety'])
        assert isinstance(query, TextQuery)
        assert query.text == 'launch anxiety'

    def test_list_ignores_non_strings(self):
        query = parse_query(['mood', 42, None])
        assert isinstance(query, TokenQuery)
        assert query.tokens == ('mood',)

    def test_dict_is_predicate_query(self):
        query = parse_query({'mood': 'closed'})
        assert isinstance(query, PredicateQuery)
        assert query.expression == ValueFilter('mood', ('closed',))

    def test_invalid_dict_degrades_to_empty_text(self):
        query = parse_query({'colour': 'blue'})
        assert query == TextQuery('')

    def test_none_and_other_types_degrade_to_text(self):
        assert parse_query(None) == TextQuery('')
        assert parse_query(12) == TextQuery('12')

    def test_token_query_is_dimensional(self):
        assert is_dimensional(parse_query(['mood.closed', 'embodied.sensing']))

    def test_is_dimension_token(self):
        assert is_dimension_token('presence.collective')
        assert is_dimension_token('time')
        assert not is_dimension_token('time.now')
        assert not is_dimension_token('mood.closed.extra')
        assert not is_dimension_token(3)


class TestMatching:

    def test_bare_dimension_matches_any_subtype(self, records):
        matched = {r.id for r in filter_experiences(records, parse_query('mood'))}
        assert matched == {'closed', 'open', 'present'}

    def test_subtype_matches_exactly(self, records):
        matched = {r.id for r in filter_experiences(records, parse_query('mood.closed'))}
        assert matched == {'closed'}

    def test_bare_dimension_is_superset_of_subtypes(self, records):
        bare = {r.id for r in filter_experiences(records, parse_query('mood'))}
        for subtype in ('mood.open', 'mood.closed'):
            assert {r.id for r in filter_experiences(records, parse_query(subtype))} <= bare

    def test_tokens_combine_with_and(self, records):
        matched = {r.id for r in filter_experiences(records, parse_query(['mood.closed', 'embodied.sensing']))}
        assert matched == {'closed'}
        assert filter_experiences(records, parse_query(['mood.closed', 'purpose.goal'])) == []

    def test_text_query_matches_everything(self, records):
        assert len(filter_experiences(records, parse_query('anything'))) == len(records)

    def test_matches_accepts_expression(self, records):
        assert matches(records[0], PresenceFilter('embodied'))
        assert not matches(records[3], PresenceFilter('embodied'))
        assert matches(records[3], None)


class TestPredicates:

    def test_list_value_is_or_within_dimension(self, records):
        query = parse_query({'mood': ['open', 'closed']})
        assert {r.id for r in filter_experiences(records, query)} == {'closed', 'open'}

    def test_presence_false(self, records):
        query = parse_query({'mood': {'present': False}})
        assert {r.id for r in filter_experiences(records, query)} == {'none'}

    def test_boolean_operators(self, records):
        query = parse_query({'$or': [{'mood': 'open'}, {'embodied': 'sensing'}], '$not': {'purpose': 'goal'}})
        assert {r.id for r in filter_experiences(records, query)} == {'closed'}

    def test_unknown_keys_dropped(self):
        expression = parse_predicate({'mood': 'closed', 'colour': 'blue'})
        assert expression == ValueFilter('mood', ('closed',))

    def test_nothing_valid_raises(self):
        with pytest.raises(DimensionFilterError):
            parse_predicate({'colour': 'blue'})
        with pytest.raises(DimensionFilterError):
            parse_predicate({})

    def test_invalid_nested_operator_keeps_valid_filters(self, records):
        query = parse_query({'mood': 'open', '$or': [{'colour': 'blue'}]})
        assert query.expression == ValueFilter('mood', ('open',))
        assert [r.id for r in filter_experiences(records, query)] == ['open']

    def test_invalid_children_dropped_from_operator(self, records):
        expression = parse_predicate({'$or': [{'colour': 'blue'}, {'mood': 'closed'}], '$not': {'colour': 'red'}})
        assert expression == OrExpression((ValueFilter('mood', ('closed',)),))
        assert [r.id for r in filter_experiences(records, PredicateQuery(expression))] == ['closed']

    def test_validate_reports_problems(self):
        errors = validate_predicate({'mood': 'grumpy', 'colour': 'blue', '$and': 'nope', '$not': {'focus': 7}})
        assert len(errors) == 4
        assert any('colour' in e for e in errors)
        assert any('grumpy' in e for e in errors)

    def test_validate_accepts_valid_predicate(self):
        assert validate_predicate({'mood': ['open', 'closed'], '$not': {'time': {'present': True}}}) == []
        assert validate_predicate('mood') == ['filter must be an object']

    def test_describe_expression(self):
        expression = AndExpression((ValueFilter('mood', ('closed',)),
                                    OrExpression((PresenceFilter('focus'), ValueFilter('time', ('past', 'future')))),
                                    NotExpression(PresenceFilter('space', True))))
        assert describe_expression(expression) == \
            '(mood = closed AND (focus present OR time in (past, future)) AND NOT space present)'
        assert describe_expression(None) == 'no dimension filter'
