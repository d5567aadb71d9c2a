"""
Health check utilities for the application.
"""

from typing import Any, Dict

from ..services.embedding_providers import check_availability
from .logging_config import get_logger

logger = get_logger(__name__)


def check_health(service) -> bool:
    """Check the health of all system components.

    Args:
        service: MemoryManagementService to inspect

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(service)

        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(service) -> Dict[str, Any]:
    """Get detailed health status of all components.

    The no-op embedding provider counts as healthy: text and dimension search
    keep working without vectors.

    Args:
        service: MemoryManagementService to inspect

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    embedding = service.embedding_service
    try:
        health_status['embedding_provider'] = {
            'healthy': embedding.provider.is_available(),
            'service': embedding.provider_name,
            'semantic': embedding.is_semantic,
            'dimension': embedding.dimensionality(),
            'cached_embeddings': embedding.cache_size
        }
    except Exception as e:
        health_status['embedding_provider'] = {'healthy': False, 'service': embedding.provider_name, 'error': str(e)}

    try:
        stats = service.vector_store.health_stats()
        health_status['vector_store'] = {'healthy': stats['invalid'] == 0, 'service': 'In-memory vector store', **stats}
    except Exception as e:
        health_status['vector_store'] = {'healthy': False, 'service': 'In-memory vector store', 'error': str(e)}

    try:
        records = service.storage.list_all_records()
        health_status['storage'] = {'healthy': True, 'service': type(service.storage).__name__, 'records': len(records)}
    except Exception as e:
        health_status['storage'] = {'healthy': False, 'service': type(service.storage).__name__, 'error': str(e)}

    return health_status


def get_system_info(service) -> Dict[str, Any]:
    """Get system information and configuration.

    Provider availability only checks configuration and client setup; no
    embedding request is made.

    Returns:
        Dictionary with system information
    """
    config = service.config
    return {
        'service_name': 'Bridge',
        'version': '1.0.0',
        'configuration': {
            'embedding_provider': config.embedding.provider,
            'embedding_timeout_seconds': config.embedding.timeout_seconds,
            'similarity_threshold': config.clustering.similarity_threshold,
            'recency_half_life_days': config.search.recency_half_life_days
        },
        'available_providers': check_availability(config.embedding),
        'health_status': get_health_status(service)
    }
