"""
Configuration readiness checks for the remote services behind training and retrieval.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ServiceConfig:
    """Environment keys a remote service needs before it can be used."""
    name: str
    required: List[str]
    optional: List[str] = field(default_factory=list)


@dataclass
class ConfigValidation:
    """Result of checking one or more services."""
    is_valid: bool
    missing_vars: List[str]
    warnings: List[str] = field(default_factory=list)


BEDROCK_COMPLETIONS = 'Amazon Bedrock (completions)'
BEDROCK_EMBEDDINGS = 'Amazon Bedrock (embeddings)'
OPENSEARCH = 'OpenSearch (vector storage)'
NEPTUNE = 'Amazon Neptune (knowledge graph)'

SERVICE_CONFIGS: List[ServiceConfig] = [
    ServiceConfig(name=BEDROCK_COMPLETIONS,
                  required=['BEDROCK_LLM_AWS_REGION', 'BEDROCK_LLM_MODEL_ID'],
                  optional=['BEDROCK_LLM_MAX_TOKENS', 'BEDROCK_LLM_TEMPERATURE']),
    ServiceConfig(name=BEDROCK_EMBEDDINGS,
                  required=['BEDROCK_EMBED_AWS_REGION', 'BEDROCK_EMBED_MODEL_ID'],
                  optional=['BEDROCK_EMBED_DIMENSION']),
    ServiceConfig(name=OPENSEARCH, required=['OPENSEARCH_ENDPOINT', 'OPENSEARCH_INDEX'], optional=['OPENSEARCH_PORT']),
    ServiceConfig(name=NEPTUNE, required=['NEPTUNE_ENDPOINT'], optional=['NEPTUNE_PORT']),
]

TRAINING_SERVICES = [BEDROCK_COMPLETIONS, BEDROCK_EMBEDDINGS, OPENSEARCH, NEPTUNE]


def validate_service_config(service_config: ServiceConfig, environ: Optional[Mapping[str, str]] = None) -> ConfigValidation:
    """Check the required environment keys of a single service.

    Args:
        service_config: Service to check
        environ: Environment mapping (defaults to os.environ)

    Returns:
        ConfigValidation listing the unset keys
    """
    environ = os.environ if environ is None else environ
    missing_vars = [name for name in service_config.required if not environ.get(name)]
    return ConfigValidation(is_valid=not missing_vars, missing_vars=missing_vars)


def validate_all_configs(environ: Optional[Mapping[str, str]] = None) -> Dict[str, ConfigValidation]:
    """Check every known service."""
    return {service.name: validate_service_config(service, environ) for service in SERVICE_CONFIGS}


def can_perform_training(environ: Optional[Mapping[str, str]] = None) -> ConfigValidation:
    """Check that embeddings, completions and both stores are configured.

    Args:
        environ: Environment mapping (defaults to os.environ)

    Returns:
        ConfigValidation with the merged list of missing keys
    """
    missing_vars = []
    for service in SERVICE_CONFIGS:
        if service.name in TRAINING_SERVICES:
            missing_vars.extend(validate_service_config(service, environ).missing_vars)

    if missing_vars:
        logger.debug(f'Training unavailable, missing configuration: {", ".join(missing_vars)}')

    return ConfigValidation(is_valid=not missing_vars, missing_vars=missing_vars)


def get_config_status(environ: Optional[Mapping[str, str]] = None) -> Dict[str, object]:
    """Summarize service readiness and whether training can run.

    Returns:
        Dictionary with overall flags, per-service results and training capability
    """
    all_configs = validate_all_configs(environ)
    training = can_perform_training(environ)

    return {
        'overall': {
            'all_services_ready': all(validation.is_valid for validation in all_configs.values()),
            'training_enabled': training.is_valid
        },
        'services': {
            name: {
                'is_valid': validation.is_valid,
                'missing_vars': validation.missing_vars
            }
            for name, validation in all_configs.items()
        },
        'capabilities': {
            'training': {
                'enabled': training.is_valid,
                'missing_config': training.missing_vars
            }
        }
    }
