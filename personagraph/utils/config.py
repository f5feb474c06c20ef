"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock completion service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    connect_timeout: int
    read_timeout: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    connect_timeout: int
    read_timeout: int


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str
    use_iam_auth: bool


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int
    service: str
    timeout: int


@dataclass
class TrainingConfig:
    """Configuration for the document training pipeline."""
    chunk_size: int
    chunk_overlap: int
    embedding_batch_size: int
    embedding_concurrency: int
    extraction_batch_size: int
    extraction_concurrency: int
    retry_attempts: int
    retry_delay: float
    call_timeout: float


@dataclass
class RetrievalConfig:
    """Configuration for context assembly."""
    top_k: int
    max_relations: int
    graph_match_limit: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    training: TrainingConfig
    retrieval: RetrievalConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '2048')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          connect_timeout=int(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
                                          read_timeout=int(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '120')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              connect_timeout=int(os.getenv('BEDROCK_EMBED_CONNECT_TIMEOUT', '10')),
                                              read_timeout=int(os.getenv('BEDROCK_EMBED_READ_TIMEOUT', '60')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'),
                                   use_iam_auth=os.getenv('NEPTUNE_USE_IAM_AUTH', 'true').lower() == 'true')

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'persona_chunks'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'es'),
                                         timeout=int(os.getenv('OPENSEARCH_TIMEOUT', '30')))

    # Training pipeline configuration
    training_config = TrainingConfig(chunk_size=int(os.getenv('TRAINING_CHUNK_SIZE', '500')),
                                     chunk_overlap=int(os.getenv('TRAINING_CHUNK_OVERLAP', '50')),
                                     embedding_batch_size=int(os.getenv('TRAINING_EMBEDDING_BATCH_SIZE', '50')),
                                     embedding_concurrency=int(os.getenv('TRAINING_EMBEDDING_CONCURRENCY', '4')),
                                     extraction_batch_size=int(os.getenv('TRAINING_EXTRACTION_BATCH_SIZE', '10')),
                                     extraction_concurrency=int(os.getenv('TRAINING_EXTRACTION_CONCURRENCY', '5')),
                                     retry_attempts=int(os.getenv('TRAINING_RETRY_ATTEMPTS', '3')),
                                     retry_delay=float(os.getenv('TRAINING_RETRY_DELAY', '1.0')),
                                     call_timeout=float(os.getenv('TRAINING_CALL_TIMEOUT', '120')))

    # Context assembly configuration
    retrieval_config = RetrievalConfig(top_k=int(os.getenv('RETRIEVAL_TOP_K', '5')),
                                       max_relations=int(os.getenv('RETRIEVAL_MAX_RELATIONS', '12')),
                                       graph_match_limit=int(os.getenv('RETRIEVAL_GRAPH_MATCH_LIMIT', '100')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     training=training_config,
                     retrieval=retrieval_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
