"""
Configuration management for embedding providers and the retrieval engine.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class OpenAIEmbedConfig:
    """Configuration for the OpenAI embeddings API."""
    api_key: str
    model: str
    base_url: str
    dimension: Optional[int] = None


@dataclass
class VoyageEmbedConfig:
    """Configuration for the Voyage AI embeddings API."""
    api_key: str
    model: str
    base_url: str
    dimension: int = 1024
    input_type: Optional[str] = None


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding subsystem."""
    provider: str
    rate_limit_ms: int
    timeout_seconds: float
    openai: OpenAIEmbedConfig
    voyage: VoyageEmbedConfig
    bedrock: BedrockEmbedConfig


@dataclass
class ScoringWeights:
    """Relative weights of the relevance signals."""
    text: float = 0.4
    semantic: float = 0.3
    dimension: float = 0.15
    filter: float = 0.1
    recency: float = 0.05


@dataclass
class SearchConfig:
    """Configuration for search and relevance scoring."""
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    recency_half_life_days: float = 90.0
    default_limit: int = 25
    semantic_threshold: float = 0.0


@dataclass
class ClusteringConfig:
    """Configuration for hard clustering of experiences."""
    similarity_threshold: float = 0.7
    min_cluster_size: int = 3
    max_cluster_size: int = 20
    max_clusters: int = 10


@dataclass
class EvolutionConfig:
    """Configuration for pattern evolution tracking."""
    max_history: int = 50
    trend_window: int = 10
    max_events: int = 1000


@dataclass
class StorageConfig:
    """Configuration for the flat-file storage collaborator."""
    data_file: str


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    embedding: EmbeddingConfig
    search: SearchConfig
    clustering: ClusteringConfig
    evolution: EvolutionConfig
    storage: StorageConfig


def _default_provider() -> str:
    """Infer the embedding provider from available credentials."""
    explicit = os.getenv('BRIDGE_EMBEDDING_PROVIDER')
    if explicit:
        return explicit.strip().lower()
    if os.getenv('OPENAI_API_KEY'):
        return 'openai'
    return 'none'


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    openai_dimension = os.getenv('OPENAI_DIMENSIONS')
    openai_config = OpenAIEmbedConfig(api_key=os.getenv('OPENAI_API_KEY', ''),
                                      model=os.getenv('OPENAI_MODEL', 'text-embedding-3-large'),
                                      base_url=os.getenv('OPENAI_BASE_URL', 'https://api.openai.com/v1'),
                                      dimension=int(openai_dimension) if openai_dimension else None)

    voyage_config = VoyageEmbedConfig(api_key=os.getenv('VOYAGE_API_KEY', ''),
                                      model=os.getenv('VOYAGE_MODEL', 'voyage-3-large'),
                                      base_url=os.getenv('VOYAGE_BASE_URL', 'https://api.voyageai.com/v1'),
                                      dimension=int(os.getenv('VOYAGE_DIMENSIONS', '1024')),
                                      input_type=os.getenv('VOYAGE_INPUT_TYPE') or None)

    bedrock_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                        model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                        dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                        retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                        retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    embedding_config = EmbeddingConfig(provider=_default_provider(),
                                       rate_limit_ms=int(os.getenv('BRIDGE_EMBEDDING_RATE_LIMIT_MS', '100')),
                                       timeout_seconds=float(os.getenv('EMBEDDING_TIMEOUT_SECONDS', '30')),
                                       openai=openai_config,
                                       voyage=voyage_config,
                                       bedrock=bedrock_config)

    search_config = SearchConfig(recency_half_life_days=float(os.getenv('BRIDGE_RECENCY_HALF_LIFE_DAYS', '90')),
                                 default_limit=int(os.getenv('BRIDGE_SEARCH_LIMIT', '25')))

    clustering_config = ClusteringConfig(similarity_threshold=float(os.getenv('BRIDGE_CLUSTER_THRESHOLD', '0.7')),
                                         min_cluster_size=int(os.getenv('BRIDGE_CLUSTER_MIN_SIZE', '3')),
                                         max_cluster_size=int(os.getenv('BRIDGE_CLUSTER_MAX_SIZE', '20')),
                                         max_clusters=int(os.getenv('BRIDGE_CLUSTER_MAX_CLUSTERS', '10')))

    evolution_config = EvolutionConfig(max_history=int(os.getenv('BRIDGE_EVOLUTION_MAX_HISTORY', '50')))

    storage_config = StorageConfig(data_file=os.getenv('BRIDGE_DATA_FILE', 'bridge.json'))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     embedding=embedding_config,
                     search=search_config,
                     clustering=clustering_config,
                     evolution=evolution_config,
                     storage=storage_config)


# Global configuration instance
config = load_config()
