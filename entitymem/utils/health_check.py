"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .config import AppConfig, config
from .logging_config import get_logger

logger = get_logger(__name__)


def check_health(services=None) -> bool:
    """Check the health of all system components.

    Args:
        services: MemoryServices to inspect; defaults to the process-wide instance

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(services)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(services=None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    A disabled embedder is reported as healthy with ``enabled: False``.

    Returns:
        Dictionary with health status of each component
    """
    if services is None:
        from ..services.memory_factory import get_memory_services
        services = get_memory_services()

    health_status = {}

    # Check SQLite store
    try:
        health_status['store'] = {
            'healthy': services.store.health_check(),
            'service': 'SQLite',
            'path': services.store.db_path
        }
    except Exception as e:
        health_status['store'] = {'healthy': False, 'service': 'SQLite', 'error': str(e)}

    # Check embedder
    embedder = services.embeddings.embedder
    if embedder is None:
        health_status['embedder'] = {'healthy': True, 'service': 'Embeddings', 'enabled': False}
    else:
        try:
            health_status['embedder'] = {
                'healthy': embedder.health_check(),
                'service': 'Embeddings',
                'enabled': True,
                'model': getattr(embedder, 'model_id', type(embedder).__name__)
            }
        except Exception as e:
            health_status['embedder'] = {'healthy': False, 'service': 'Embeddings', 'enabled': True, 'error': str(e)}

    return health_status


def get_system_info(services=None, app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    app_config = app_config or (services.config if services is not None else config)
    return {
        'service_name': 'EntityMem',
        'version': '0.1.0',
        'configuration': {
            'memory_variant': app_config.memory.variant,
            'database_path': app_config.store.db_path,
            'embeddings_enabled': app_config.bedrock_embed.enabled,
            'bedrock_embed_model': app_config.bedrock_embed.model_id,
            'aws_region': app_config.bedrock_embed.region
        },
        'health_status': get_health_status(services)
    }
