"""
Health and configuration reporting for the persona graph services.
"""

from typing import Any, Callable, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import AppConfig, config
from .config_validation import get_config_status
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def _probe(service: str, factory: Callable[[], Any], **details) -> Dict[str, Any]:
    try:
        client = factory()
        try:
            healthy = client.health_check()
        finally:
            close = getattr(client, 'close', None)
            if close:
                close()
        return {'healthy': healthy, 'service': service, **details}
    except Exception as e:
        logger.warning(f'{service} health probe failed: {e}')
        return {'healthy': False, 'service': service, 'error': str(e)}


def get_health_status(app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get detailed health status of the completion, embedding, vector and graph services.

    Returns:
        Dictionary with health status of each component
    """
    cfg = app_config or config
    return {
        'bedrock_llm':
            _probe('Amazon Bedrock LLM', lambda: BedrockLLM(cfg.bedrock_llm), model=cfg.bedrock_llm.model_id),
        'bedrock_embed':
            _probe('Amazon Bedrock Embed', lambda: BedrockEmbed(cfg.bedrock_embed), model=cfg.bedrock_embed.model_id),
        'neptune':
            _probe('Amazon Neptune', lambda: NeptuneClient(cfg.neptune), endpoint=cfg.neptune.endpoint),
        'opensearch':
            _probe('Amazon OpenSearch', lambda: OpenSearchClient(cfg.opensearch), endpoint=cfg.opensearch.endpoint)
    }


def check_health(app_config: Optional[AppConfig] = None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status(app_config)
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')

    return all_healthy


def get_system_info(app_config: Optional[AppConfig] = None, include_health: bool = True) -> Dict[str, Any]:
    cfg = app_config or config
    info = {
        'service_name': 'PersonaGraph',
        'version': '1.0.0',
        'environment': cfg.environment,
        'configuration': {
            'bedrock_llm_model': cfg.bedrock_llm.model_id,
            'bedrock_embed_model': cfg.bedrock_embed.model_id,
            'opensearch_index': cfg.opensearch.index_name,
            'chunk_size': cfg.training.chunk_size,
            'chunk_overlap': cfg.training.chunk_overlap,
            'top_k': cfg.retrieval.top_k,
            'max_relations': cfg.retrieval.max_relations,
            'aws_region': cfg.bedrock_llm.region
        },
        'config_status': get_config_status()
    }
    if include_health:
        info['health_status'] = get_health_status(cfg)
    return info
