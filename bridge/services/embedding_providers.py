"""
Pluggable embedding providers.

Every provider exposes the same capability set so the embedding service can
swap them freely and fall back to the no-op provider when one is unusable.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import requests

from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import EmbeddingConfig
from ..utils.errors import ConfigurationError
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_TEXT_LENGTH = 1_000_000

OPENAI_MODEL_DIMENSIONS = {
    'text-embedding-3-small': 1536,
    'text-embedding-3-large': 3072,
    'text-embedding-ada-002': 1536,
}


class EmbeddingProviderError(Exception):
    """Custom exception for embedding provider errors."""
    pass


class EmbeddingProvider(ABC):
    """Capability set shared by all embedding providers."""

    def __init__(self):
        self.initialized = False

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the provider (validate credentials, build clients)."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Turn text into a vector of `dimensionality()` floats."""

    @abstractmethod
    def dimensionality(self) -> int:
        ...

    @abstractmethod
    def name(self) -> str:
        ...

    def is_available(self) -> bool:
        """Whether the provider is configured and initialized; never calls the remote API."""
        try:
            if not self.initialized:
                self.initialize()
            return True
        except EmbeddingProviderError as e:
            logger.debug(f'Provider {self.name()} unavailable: {e}')
            return False

    def _validate_text(self, text: str) -> None:
        if not text or not isinstance(text, str) or not text.strip():
            raise EmbeddingProviderError('Text cannot be empty')
        if len(text) > MAX_TEXT_LENGTH:
            raise EmbeddingProviderError(f'Text exceeds maximum length of {MAX_TEXT_LENGTH} characters')


class NoneProvider(EmbeddingProvider):
    """No-op provider returning a single zero-valued scalar; keeps text and dimension search working."""

    def initialize(self) -> None:
        self.initialized = True

    def embed(self, text: str) -> List[float]:
        return [0.0]

    def dimensionality(self) -> int:
        return 1

    def name(self) -> str:
        return 'None'

    def is_available(self) -> bool:
        return True


class _HTTPEmbeddingProvider(EmbeddingProvider):
    """Shared request handling for OpenAI-compatible `/embeddings` endpoints."""

    service = 'HTTP'

    def __init__(self, api_key: str, model: str, base_url: str, timeout_seconds: float, session: Optional[requests.Session] = None):
        super().__init__()
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def initialize(self) -> None:
        if not self.api_key:
            raise EmbeddingProviderError(f'{self.service} API key is required')
        self.initialized = True

    def _request_body(self, text: str) -> Dict:
        return {'input': text, 'model': self.model}

    def embed(self, text: str) -> List[float]:
        self._validate_text(text)
        if not self.initialized:
            self.initialize()

        try:
            response = self.session.post(f'{self.base_url}/embeddings',
                                         headers={
                                             'Authorization': f'Bearer {self.api_key}',
                                             'Content-Type': 'application/json'
                                         },
                                         json=self._request_body(text),
                                         timeout=self.timeout_seconds)
        except requests.RequestException as e:
            logger.warning(f'{self.service} embedding request failed: {e}')
            raise EmbeddingProviderError(f'{self.service} embedding request failed: {e}')

        if not response.ok:
            raise EmbeddingProviderError(f'{self.service} API error: {response.status_code} - {response.text}')

        try:
            data = response.json()
            return [float(value) for value in data['data'][0]['embedding']]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingProviderError(f'Invalid response from {self.service} API: {e}')


class OpenAIProvider(_HTTPEmbeddingProvider):
    service = 'OpenAI'

    def __init__(self, api_key: str, model: str = 'text-embedding-3-large', base_url: str = 'https://api.openai.com/v1',
                 dimension: Optional[int] = None, timeout_seconds: float = 30.0, session: Optional[requests.Session] = None):
        super().__init__(api_key, model, base_url, timeout_seconds, session)
        self.dimension = dimension

    def _request_body(self, text: str) -> Dict:
        body = super()._request_body(text)
        # text-embedding-3 models support dimension reduction
        if self.dimension and 'text-embedding-3' in self.model:
            body['dimensions'] = self.dimension
        return body

    def dimensionality(self) -> int:
        if self.dimension:
            return self.dimension
        return OPENAI_MODEL_DIMENSIONS.get(self.model, 1536)

    def name(self) -> str:
        return f'OpenAI-{self.model}'


class VoyageProvider(_HTTPEmbeddingProvider):
    service = 'Voyage AI'

    def __init__(self, api_key: str, model: str = 'voyage-3-large', base_url: str = 'https://api.voyageai.com/v1',
                 dimension: int = 1024, input_type: Optional[str] = None, timeout_seconds: float = 30.0,
                 session: Optional[requests.Session] = None):
        super().__init__(api_key, model, base_url, timeout_seconds, session)
        self.dimension = dimension
        self.input_type = input_type

    def _request_body(self, text: str) -> Dict:
        body = super()._request_body(text)
        body['output_dimension'] = self.dimension
        if self.input_type:
            body['input_type'] = self.input_type
        return body

    def dimensionality(self) -> int:
        return self.dimension

    def name(self) -> str:
        return f'VoyageAI-{self.model}'


class BedrockProvider(EmbeddingProvider):
    """Amazon Bedrock Titan/Cohere embeddings through the shared Bedrock client."""

    def __init__(self, config, timeout_seconds: float = 30.0, client=None):
        super().__init__()
        self.config = config
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._bedrock: Optional[BedrockEmbed] = None

    def initialize(self) -> None:
        try:
            self._bedrock = BedrockEmbed(self.config, timeout_seconds=self.timeout_seconds, client=self._client)
        except BedrockEmbedError as e:
            raise EmbeddingProviderError(f'Bedrock provider misconfigured: {e}')
        except Exception as e:
            raise EmbeddingProviderError(f'Failed to create Bedrock client: {e}')
        self.initialized = True

    def embed(self, text: str) -> List[float]:
        self._validate_text(text)
        if not self.initialized:
            self.initialize()
        try:
            return self._bedrock.embed(text)
        except BedrockEmbedError as e:
            raise EmbeddingProviderError(str(e))

    def dimensionality(self) -> int:
        return self.config.dimension

    def name(self) -> str:
        return f'Bedrock-{self.config.model_id}'


ProviderBuilder = Callable[[EmbeddingConfig], EmbeddingProvider]

_PROVIDER_BUILDERS: Dict[str, ProviderBuilder] = {
    'none': lambda cfg: NoneProvider(),
    'openai': lambda cfg: OpenAIProvider(api_key=cfg.openai.api_key,
                                         model=cfg.openai.model,
                                         base_url=cfg.openai.base_url,
                                         dimension=cfg.openai.dimension,
                                         timeout_seconds=cfg.timeout_seconds),
    'voyage': lambda cfg: VoyageProvider(api_key=cfg.voyage.api_key,
                                         model=cfg.voyage.model,
                                         base_url=cfg.voyage.base_url,
                                         dimension=cfg.voyage.dimension,
                                         input_type=cfg.voyage.input_type,
                                         timeout_seconds=cfg.timeout_seconds),
    'bedrock': lambda cfg: BedrockProvider(cfg.bedrock, timeout_seconds=cfg.timeout_seconds),
}


def register_provider(provider_type: str, builder: ProviderBuilder) -> None:
    """Register a custom provider builder under a name."""
    _PROVIDER_BUILDERS[provider_type.lower()] = builder


def available_provider_types() -> List[str]:
    return sorted(_PROVIDER_BUILDERS)


def create_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Build and initialize the configured provider, falling back to the no-op provider.

    Args:
        config: Embedding configuration naming the provider

    Returns:
        An initialized provider

    Raises:
        ConfigurationError: If the provider name is unknown
    """
    provider_type = (config.provider or 'none').lower()
    builder = _PROVIDER_BUILDERS.get(provider_type)
    if builder is None:
        raise ConfigurationError('embedding.provider',
                                 f"unknown provider '{config.provider}', expected one of {', '.join(available_provider_types())}")

    provider = builder(config)
    try:
        provider.initialize()
    except EmbeddingProviderError as e:
        logger.warning(f'Provider {provider_type} failed to initialize, falling back to none provider: {e}')
        provider = NoneProvider()
        provider.initialize()

    logger.info(f'Initialized embedding provider: {provider.name()}')
    return provider


def check_availability(config: EmbeddingConfig) -> Dict[str, bool]:
    """Check which provider types could be used with the given configuration."""
    results = {}
    for provider_type, builder in _PROVIDER_BUILDERS.items():
        try:
            results[provider_type] = builder(config).is_available()
        except EmbeddingProviderError:
            results[provider_type] = False
    return results
