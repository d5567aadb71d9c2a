"""
Tests for embedding providers and the embedding service.

HTTP and boto3 calls are mocked; no network access.
"""

import io
import json
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.exceptions import ClientError

from bridge.services import embedding_providers
from bridge.services.embedding_providers import (BedrockProvider, EmbeddingProviderError, NoneProvider, OpenAIProvider,
                                                 VoyageProvider, available_provider_types, check_availability, create_provider,
                                                 register_provider)
from bridge.services.embedding_service import EmbeddingService
from bridge.utils.errors import ConfigurationError
from conftest import FakeProvider


def http_response(embedding, status=200):
    response = MagicMock()
    response.ok = status < 400
    response.status_code = status
    response.text = 'error body'
    response.json.return_value = {'data': [{'embedding': embedding}]}
    return response


def bedrock_body(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode('utf-8'))}


class TestNoneProvider:

    def test_returns_single_zero(self):
        provider = NoneProvider()
        provider.initialize()
        assert provider.embed('anything') == [0.0]
        assert provider.dimensionality() == 1
        assert provider.is_available()


class TestOpenAIProvider:

    def test_embed_posts_with_timeout_and_dimensions(self):
        session = MagicMock()
        session.post.return_value = http_response([0.1, 0.2])
        provider = OpenAIProvider(api_key='sk-test', dimension=256, timeout_seconds=7, session=session)

        assert provider.embed('hello') == [0.1, 0.2]

        _, kwargs = session.post.call_args
        assert session.post.call_args[0][0] == 'https://api.openai.com/v1/embeddings'
        assert kwargs['timeout'] == 7
        assert kwargs['json'] == {'input': 'hello', 'model': 'text-embedding-3-large', 'dimensions': 256}
        assert kwargs['headers']['Authorization'] == 'Bearer sk-test'

    def test_default_dimensions_by_model(self):
        assert OpenAIProvider(api_key='k').dimensionality() == 3072
        assert OpenAIProvider(api_key='k', model='text-embedding-3-small').dimensionality() == 1536

    def test_api_error_raises(self):
        session = MagicMock()
        session.post.return_value = http_response([], status=500)
        provider = OpenAIProvider(api_key='sk-test', session=session)
        with pytest.raises(EmbeddingProviderError, match='500'):
            provider.embed('hello')

    def test_timeout_raises_provider_error(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout('read timed out')
        provider = OpenAIProvider(api_key='sk-test', session=session)
        with pytest.raises(EmbeddingProviderError):
            provider.embed('hello')

    def test_missing_key_fails_initialize(self):
        provider = OpenAIProvider(api_key='')
        with pytest.raises(EmbeddingProviderError):
            provider.initialize()
        assert not provider.is_available()

    def test_empty_text_rejected(self):
        provider = OpenAIProvider(api_key='sk-test', session=MagicMock())
        with pytest.raises(EmbeddingProviderError):
            provider.embed('   ')


class TestVoyageProvider:

    def test_body_carries_output_dimension_and_input_type(self):
        session = MagicMock()
        session.post.return_value = http_response([0.5] * 4)
        provider = VoyageProvider(api_key='pa-test', dimension=512, input_type='document', session=session)

        provider.embed('hello')

        body = session.post.call_args[1]['json']
        assert body == {'input': 'hello', 'model': 'voyage-3-large', 'output_dimension': 512, 'input_type': 'document'}
        assert provider.dimensionality() == 512
        assert provider.name() == 'VoyageAI-voyage-3-large'


class TestBedrockProvider:

    def test_titan_embedding(self, embedding_config):
        client = MagicMock()
        client.invoke_model.return_value = bedrock_body({'embedding': [0.1, 0.2, 0.3]})
        provider = BedrockProvider(embedding_config.bedrock, client=client)
        provider.initialize()

        assert provider.embed('hello') == [0.1, 0.2, 0.3]
        request = json.loads(client.invoke_model.call_args[1]['body'])
        assert request == {'inputText': 'hello', 'dimensions': 1024}

    def test_cohere_embedding(self, embedding_config):
        client = MagicMock()
        client.invoke_model.return_value = bedrock_body({'embeddings': [[0.4, 0.5]]})
        bedrock_config = replace(embedding_config.bedrock, model_id='cohere.embed-english-v3')
        provider = BedrockProvider(bedrock_config, client=client)

        assert provider.embed('hello') == [0.4, 0.5]
        request = json.loads(client.invoke_model.call_args[1]['body'])
        assert request == {'input_type': 'search_document', 'texts': ['hello']}

    def test_cohere_rejects_other_dimensions(self, embedding_config):
        bedrock_config = replace(embedding_config.bedrock, model_id='cohere.embed-english-v3', dimension=512)
        provider = BedrockProvider(bedrock_config, client=MagicMock())
        with pytest.raises(EmbeddingProviderError):
            provider.initialize()

    def test_retries_then_succeeds(self, embedding_config):
        client = MagicMock()
        error = ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, 'InvokeModel')
        client.invoke_model.side_effect = [error, bedrock_body({'embedding': [1.0]})]
        provider = BedrockProvider(embedding_config.bedrock, client=client)

        with patch('bridge.utils.bedrock_embed.time.sleep') as sleep:
            assert provider.embed('hello') == [1.0]

        assert client.invoke_model.call_count == 2
        sleep.assert_called_once()

    def test_exhausted_retries_raise(self, embedding_config):
        client = MagicMock()
        client.invoke_model.side_effect = ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'no'}}, 'InvokeModel')
        provider = BedrockProvider(embedding_config.bedrock, client=client)

        with patch('bridge.utils.bedrock_embed.time.sleep'):
            with pytest.raises(EmbeddingProviderError):
                provider.embed('hello')
        assert client.invoke_model.call_count == embedding_config.bedrock.retry_attempts


class TestCreateProvider:

    def test_unknown_provider_raises(self, embedding_config):
        with pytest.raises(ConfigurationError) as excinfo:
            create_provider(replace(embedding_config, provider='word2vec'))
        assert excinfo.value.field == 'embedding.provider'

    def test_failed_initialize_falls_back_to_none(self, embedding_config):
        provider = create_provider(replace(embedding_config, provider='openai'))
        assert isinstance(provider, NoneProvider)

    def test_openai_with_key(self, embedding_config):
        config = replace(embedding_config, provider='OpenAI', openai=replace(embedding_config.openai, api_key='sk-test'))
        provider = create_provider(config)
        assert isinstance(provider, OpenAIProvider)
        assert provider.timeout_seconds == embedding_config.timeout_seconds


class TestEmbeddingService:

    def test_cache_hit_skips_provider(self, embedding_service, fake_provider):
        first = embedding_service.embed('launch anxiety')
        second = embedding_service.embed('launch anxiety')
        assert first == second == [1.0, 0.05, 0.0]
        assert fake_provider.calls == ['launch anxiety']
        assert embedding_service.cache_size == 1

    def test_failure_returns_fallback_and_is_not_cached(self, embedding_service, fake_provider):
        assert embedding_service.embed('unknown text') == [0.0]
        assert embedding_service.try_embed('unknown text') is None
        assert embedding_service.cache_size == 0
        assert fake_provider.calls == ['unknown text', 'unknown text']

    def test_none_provider_has_no_semantic_signal(self, embedding_config):
        service = EmbeddingService(embedding_config)
        assert not service.is_semantic
        assert service.try_embed('hello') is None
        assert service.embed('hello') == [0.0]
        assert service.provider_name == 'None'

    def test_rate_limit_spaces_cache_misses(self, embedding_config, fake_vectors):
        service = EmbeddingService(replace(embedding_config, rate_limit_ms=50), provider=FakeProvider(fake_vectors))
        with patch('bridge.services.embedding_service.time.sleep') as sleep:
            service.embed('launch anxiety')
            service.embed('calm walk in the park')
        sleep.assert_called_once()
        assert 0 < sleep.call_args[0][0] <= 0.05

    def test_cache_hits_bypass_rate_limit(self, embedding_config, fake_vectors):
        service = EmbeddingService(replace(embedding_config, rate_limit_ms=50), provider=FakeProvider(fake_vectors))
        with patch('bridge.services.embedding_service.time.sleep') as sleep:
            service.embed('launch anxiety')
            service.embed('launch anxiety')
        sleep.assert_not_called()

    def test_clear_cache(self, embedding_service, fake_provider):
        embedding_service.embed('launch anxiety')
        embedding_service.clear_cache()
        embedding_service.embed('launch anxiety')
        assert len(fake_provider.calls) == 2

    def test_embed_many_keeps_order(self, embedding_service):
        vectors = embedding_service.embed_many(['calm walk in the park', 'missing', 'launch anxiety'])
        assert vectors[0] == [0.0, 1.0, 0.0]
        assert vectors[1] is None
        assert vectors[2] == [1.0, 0.05, 0.0]


def hung_provider():
    provider = MagicMock()
    provider.name.return_value = 'Hung'
    provider.embed.side_effect = TimeoutError('provider hung')
    return provider


class TestFailuresStayInside:

    def test_malformed_http_payload(self):
        session = MagicMock()
        session.post.return_value = http_response([None, 1.0])
        provider = OpenAIProvider(api_key='sk-test', session=session)
        with pytest.raises(EmbeddingProviderError):
            provider.embed('hello')

    def test_malformed_http_payload_degrades_in_service(self, embedding_config):
        session = MagicMock()
        session.post.return_value = http_response([None, 1.0])
        service = EmbeddingService(embedding_config, provider=OpenAIProvider(api_key='sk-test', session=session))
        assert service.try_embed('hello') is None
        assert service.embed('hello') == [0.0]

    def test_malformed_bedrock_payload(self, embedding_config):
        client = MagicMock()
        client.invoke_model.return_value = bedrock_body({'embedding': ['not a number']})
        provider = BedrockProvider(embedding_config.bedrock, client=client)
        with pytest.raises(EmbeddingProviderError):
            provider.embed('hello')

    def test_unexpected_provider_exception(self, embedding_config):
        service = EmbeddingService(embedding_config, provider=hung_provider())
        assert service.try_embed('hello') is None
        assert service.embed('hello') == [0.0]
        assert service.cache_size == 0


class TestAvailability:

    def test_http_availability_makes_no_request(self):
        session = MagicMock()
        provider = OpenAIProvider(api_key='sk-test', session=session)
        assert provider.is_available()
        session.post.assert_not_called()

    def test_check_availability(self, embedding_config):
        with patch('bridge.utils.bedrock_embed.boto3.client') as client:
            results = check_availability(embedding_config)
        assert results == {'none': True, 'openai': False, 'voyage': False, 'bedrock': True}
        client.assert_called_once()

    def test_register_provider(self, monkeypatch, embedding_config, fake_vectors):
        monkeypatch.setattr(embedding_providers, '_PROVIDER_BUILDERS', dict(embedding_providers._PROVIDER_BUILDERS))
        register_provider('Fake', lambda cfg: FakeProvider(fake_vectors))

        assert 'fake' in available_provider_types()
        provider = create_provider(replace(embedding_config, provider='fake'))
        assert provider.name() == 'Fake'
        assert provider.initialized
