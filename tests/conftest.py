"""
Shared test fixtures for the Bridge test suite.

Nothing here touches the network: embedding providers are replaced by a
deterministic in-process provider keyed on the exact text.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from bridge.models.core import Experience, QualityValue
from bridge.services.embedding_providers import EmbeddingProvider, EmbeddingProviderError
from bridge.services.embedding_service import EmbeddingService
from bridge.utils.config import (AppConfig, BedrockEmbedConfig, ClusteringConfig, EmbeddingConfig, EvolutionConfig,
                                 OpenAIEmbedConfig, SearchConfig, StorageConfig, VoyageEmbedConfig)
from bridge.utils.storage import InMemoryStorage

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeProvider(EmbeddingProvider):
    """Returns preset vectors; unknown text fails like an unreachable API."""

    def __init__(self, vectors: Dict[str, List[float]], dimension: int = 3):
        super().__init__()
        self.vectors = vectors
        self.dimension = dimension
        self.calls: List[str] = []

    def initialize(self) -> None:
        self.initialized = True

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if text not in self.vectors:
            raise EmbeddingProviderError(f'no vector for {text!r}')
        return list(self.vectors[text])

    def dimensionality(self) -> int:
        return self.dimension

    def name(self) -> str:
        return 'Fake'


def make_experience(experience_id: str, content: str = '', days_ago: float = 0, **qualities) -> Experience:
    """Build an experience; quality keyword arguments take raw values (True, 'closed', ...)."""
    return Experience(id=experience_id,
                      content=content,
                      created=NOW - timedelta(days=days_ago),
                      qualities={name: QualityValue.parse(value) for name, value in qualities.items()})


def unit(index: int, size: int = 11, scale: float = 1.0) -> List[float]:
    vector = [0.0] * size
    vector[index] = scale
    return vector


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def embedding_config():
    """Embedding configuration with the no-op provider and no rate limit."""
    return EmbeddingConfig(provider='none',
                           rate_limit_ms=0,
                           timeout_seconds=5.0,
                           openai=OpenAIEmbedConfig(api_key='', model='text-embedding-3-large', base_url='https://api.openai.com/v1'),
                           voyage=VoyageEmbedConfig(api_key='', model='voyage-3-large', base_url='https://api.voyageai.com/v1'),
                           bedrock=BedrockEmbedConfig(region='us-east-1',
                                                      model_id='amazon.titan-embed-text-v2:0',
                                                      dimension=1024,
                                                      retry_attempts=2,
                                                      retry_delay=0.0))


@pytest.fixture
def app_config(embedding_config, tmp_path):
    return AppConfig(environment='test',
                     log_level='DEBUG',
                     embedding=embedding_config,
                     search=SearchConfig(),
                     clustering=ClusteringConfig(),
                     evolution=EvolutionConfig(),
                     storage=StorageConfig(data_file=str(tmp_path / 'bridge.json')))


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_vectors():
    return {
        'anxious before the launch': [1.0, 0.0, 0.0],
        'nervous about the release': [0.9, 0.1, 0.0],
        'calm walk in the park': [0.0, 1.0, 0.0],
        'launch anxiety': [1.0, 0.05, 0.0],
    }


@pytest.fixture
def fake_provider(fake_vectors):
    provider = FakeProvider(fake_vectors)
    provider.initialize()
    return provider


@pytest.fixture
def embedding_service(embedding_config, fake_provider):
    return EmbeddingService(embedding_config, provider=fake_provider)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@pytest.fixture
def scenario_a_records():
    """Two closed/sensing experiences and one open one."""
    return [
        make_experience('exp_1', 'tight chest in the meeting', days_ago=1, mood='closed', embodied='sensing'),
        make_experience('exp_2', 'shoulders locked all afternoon', days_ago=2, mood='closed', embodied='sensing'),
        make_experience('exp_3', 'curious about the new idea', days_ago=3, mood='open'),
    ]


@pytest.fixture
def storage(scenario_a_records):
    return InMemoryStorage(scenario_a_records)
