"""
Tests for search orchestration.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from bridge.services.embedding_service import EmbeddingService
from bridge.services.search import SearchFilters, SearchService
from bridge.services.vector_store import VectorStore
from bridge.utils.config import ClusteringConfig, SearchConfig
from bridge.utils.errors import ConfigurationError
from bridge.utils.storage import InMemoryStorage
from conftest import NOW, make_experience


@pytest.fixture
def search_service(storage, embedding_config):
    return SearchService(storage, EmbeddingService(embedding_config), VectorStore(storage), config=SearchConfig(),
                         clustering_config=ClusteringConfig())


@pytest.fixture
def semantic_service(embedding_service, fake_vectors):
    records = [
        make_experience('anxious', 'anxious before the launch', days_ago=1, mood='closed'),
        make_experience('nervous', 'nervous about the release', days_ago=2, mood='closed'),
        make_experience('calm', 'calm walk in the park', days_ago=3, mood='open'),
    ]
    storage = InMemoryStorage(records)
    store = VectorStore(dimension=3)
    for record in records:
        store.upsert(record.id, fake_vectors[record.content])
    return SearchService(storage, embedding_service, store, config=SearchConfig())


class TestDimensionSearch:

    def test_scenario_a(self, search_service):
        response = search_service.search(['mood.closed', 'embodied.sensing'], now=NOW)
        assert {r.experience.id for r in response.results} == {'exp_1', 'exp_2'}
        assert all(r.relevance.dimension_match == 1 for r in response.results)
        assert response.stats.total_records == 3
        assert response.stats.after_dimension_filter == 2
        assert response.stats.query_type == 'TokenQuery'

    def test_bare_dimension(self, search_service):
        response = search_service.search('mood', now=NOW)
        assert len(response.results) == 3

    def test_predicate(self, search_service):
        response = search_service.search({'mood': 'open'}, now=NOW)
        assert [r.experience.id for r in response.results] == ['exp_3']


class TestTextAndSemanticSearch:

    def test_text_only_requires_match(self, search_service):
        response = search_service.search('meeting', now=NOW)
        assert [r.experience.id for r in response.results] == ['exp_1']
        assert response.results[0].relevance.semantic_similarity is None
        assert not response.stats.semantic_available

    def test_failing_provider_keeps_text_search(self, storage, embedding_config):
        provider = MagicMock()
        provider.name.return_value = 'Hung'
        provider.embed.side_effect = TimeoutError('provider hung')
        service = SearchService(storage, EmbeddingService(embedding_config, provider=provider), VectorStore(storage),
                                config=SearchConfig())
        response = service.search('meeting', now=NOW)
        assert [r.experience.id for r in response.results] == ['exp_1']
        assert response.results[0].relevance.semantic_similarity is None

    def test_empty_query_lists_by_recency(self, search_service):
        response = search_service.search(None, now=NOW)
        assert [r.experience.id for r in response.results] == ['exp_1', 'exp_2', 'exp_3']

    def test_semantic_ranking(self, semantic_service):
        response = semantic_service.search('launch anxiety', now=NOW)
        ids = [r.experience.id for r in response.results]
        assert ids[0] == 'anxious'
        assert ids.index('nervous') < ids.index('calm')
        assert response.stats.semantic_available

    def test_dimension_query_skips_semantic(self, semantic_service, fake_provider):
        semantic_service.search('mood.closed', now=NOW)
        assert fake_provider.calls == []

    def test_degraded_semantic_signal(self, semantic_service):
        response = semantic_service.search('park', now=NOW)
        assert [r.experience.id for r in response.results] == ['calm']
        assert response.results[0].relevance.semantic_similarity is None


class TestFiltersSortingPaging:

    def test_strict_filters(self, storage, search_service):
        storage.add_record(make_experience('exp_4', 'tight chest again', days_ago=0, mood='closed'))
        for record in storage.list_all_records():
            record.experiencer = 'Alex' if record.id in ('exp_1', 'exp_4') else 'Sam'
        response = search_service.search('mood.closed', filters={'experiencers': ['Alex']}, now=NOW)
        assert {r.experience.id for r in response.results} == {'exp_1', 'exp_4'}
        assert all(r.relevance.filter_relevance == 1.0 for r in response.results)

    def test_soft_filters_score_fraction(self, storage, search_service):
        for record in storage.list_all_records():
            record.experiencer = 'Alex' if record.id == 'exp_1' else 'Sam'
        filters = SearchFilters(experiencers=['Alex'], created_range=(NOW - timedelta(days=10), None), strict=False)
        response = search_service.search('mood', filters=filters, now=NOW)
        fractions = {r.experience.id: r.relevance.filter_relevance for r in response.results}
        assert fractions == {'exp_1': 1.0, 'exp_2': 0.5, 'exp_3': 0.5}

    def test_unknown_filter_key(self, search_service):
        with pytest.raises(ConfigurationError):
            search_service.search('mood', filters={'colour': 'blue'})

    def test_sort_created(self, search_service):
        response = search_service.search({'mood': {'present': True}}, sort='created', now=NOW)
        assert [r.experience.id for r in response.results] == ['exp_1', 'exp_2', 'exp_3']

    def test_paging(self, search_service):
        first = search_service.search(None, limit=2, now=NOW)
        second = search_service.search(None, limit=2, offset=2, now=NOW)
        assert [r.experience.id for r in first.results] == ['exp_1', 'exp_2']
        assert [r.experience.id for r in second.results] == ['exp_3']
        assert first.stats.total_matches == 3

    def test_invalid_options(self, search_service):
        with pytest.raises(ConfigurationError):
            search_service.search('mood', sort='popularity')
        with pytest.raises(ConfigurationError):
            search_service.search('mood', group_by='color')
        with pytest.raises(ConfigurationError):
            search_service.search('mood', limit=-1)

    def test_group_by_experiencer(self, storage, search_service):
        response = search_service.search(None, group_by='experiencer', now=NOW)
        assert [(g.label, g.count) for g in response.groups] == [('Unknown', 3)]

    def test_temporal_parser_restricts_range(self, storage, embedding_config):
        service = SearchService(storage, EmbeddingService(embedding_config), VectorStore(storage),
                                config=SearchConfig(),
                                parse_temporal=lambda text: (NOW - timedelta(days=1, hours=1), NOW) if 'yesterday' in text else None)
        response = service.search(['mood', 'yesterday'], now=NOW)
        assert [r.experience.id for r in response.results] == ['exp_1']
