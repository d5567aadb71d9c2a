"""
Embedding service: provider selection, caching, rate limiting and fallback.
"""

import threading
import time
from typing import Dict, List, Optional

from ..utils.config import EmbeddingConfig
from ..utils.config import config as default_config
from ..utils.logging_config import get_logger
from .embedding_providers import EmbeddingProvider, EmbeddingProviderError, NoneProvider, create_provider

logger = get_logger(__name__)


class EmbeddingService:
    """Turns text into vectors through the configured provider.

    Successful embeddings are cached by exact text for the lifetime of the
    service. Cache misses are spaced by the configured minimum delay. A
    failing provider never raises out of `embed`; the no-op provider's vector
    is returned instead and is not cached.
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None, provider: Optional[EmbeddingProvider] = None):
        """
        Initialize the embedding service.

        Args:
            config: EmbeddingConfig instance, uses environment configuration if None
            provider: Pre-built provider (skips provider creation from config)

        Raises:
            ConfigurationError: If the configured provider name is unknown
        """
        self.config = config or default_config.embedding
        self.provider = provider or create_provider(self.config)
        self._fallback = NoneProvider()
        self._fallback.initialize()

        self._cache: Dict[str, List[float]] = {}
        self._cache_lock = threading.Lock()
        self._rate_lock = threading.Lock()
        self._min_interval = max(self.config.rate_limit_ms, 0) / 1000.0
        self._last_call = 0.0

        logger.info(f'Initialized embedding service with provider: {self.provider.name()}')

    def _wait_for_rate_limit(self) -> None:
        with self._rate_lock:
            elapsed = time.monotonic() - self._last_call
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_call = time.monotonic()

    def try_embed(self, text: str) -> Optional[List[float]]:
        """
        Embed text, returning None when the provider cannot produce a vector.

        Args:
            text: Text to embed

        Returns:
            Embedding vector, or None if the provider failed or is the no-op provider
        """
        if isinstance(self.provider, NoneProvider):
            return None
        if not text or not text.strip():
            return None

        with self._cache_lock:
            cached = self._cache.get(text)
        if cached is not None:
            return list(cached)

        self._wait_for_rate_limit()
        try:
            vector = self.provider.embed(text)
        except EmbeddingProviderError as e:
            logger.warning(f'Embedding failed with provider {self.provider.name()}: {e}')
            return None
        except Exception as e:
            logger.warning(f'Unexpected error from provider {self.provider.name()}: {type(e).__name__}: {e}')
            return None

        with self._cache_lock:
            self._cache[text] = vector
        return list(vector)

    def embed(self, text: str) -> List[float]:
        """
        Embed text, falling back to the no-op provider's vector on failure.

        Args:
            text: Text to embed

        Returns:
            Embedding vector (the fallback vector is `[0.0]`)
        """
        vector = self.try_embed(text)
        if vector is None:
            return self._fallback.embed(text)
        return vector

    def embed_many(self, texts: List[str]) -> List[Optional[List[float]]]:
        """Embed several texts in order; failed entries are None."""
        return [self.try_embed(text) for text in texts]

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
        logger.debug('Embedding cache cleared')

    @property
    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    @property
    def provider_name(self) -> str:
        return self.provider.name()

    @property
    def is_semantic(self) -> bool:
        """True when the active provider produces meaningful vectors."""
        return not isinstance(self.provider, NoneProvider)

    def dimensionality(self) -> int:
        return self.provider.dimensionality()
