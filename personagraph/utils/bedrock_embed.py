"""
Amazon Bedrock embedding client wrapper with batching and error handling.
"""

import json
from typing import List

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import TransientServiceError
from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Cohere embed models accept at most 96 texts per request
COHERE_MAX_TEXTS = 96


class EmbeddingServiceError(TransientServiceError):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client.

    Does not retry; the training pipeline and retrieval callers own retry policy.
    """

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        # Create Bedrock runtime client
        self.bedrock = boto3.client(service_name='bedrock-runtime',
                                    region_name=config.region,
                                    config=BotoConfig(connect_timeout=config.connect_timeout,
                                                      read_timeout=config.read_timeout,
                                                      retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _invoke(self, data: dict) -> dict:
        """
        Make a single Bedrock API call.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            EmbeddingServiceError: If the call fails
        """
        try:
            response = self.bedrock.invoke_model(body=json.dumps(data),
                                                 modelId=self.model_id,
                                                 accept='application/json',
                                                 contentType='application/json')
            return json.loads(response.get('body').read())
        except (ClientError, BotoCoreError) as e:
            logger.warning(f'Bedrock Embed request failed: {e}')
            raise EmbeddingServiceError(f'Bedrock Embed request failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in Bedrock Embed: {e}')
            raise EmbeddingServiceError(f'Unexpected Bedrock Embed error: {e}')

    def _embed(self, texts: List[str], input_type: str) -> List[List[float]]:
        zero = [0.0] * self.output_embedding_length
        model = self.model_id.lower()

        if 'titan' in model:
            vectors = []
            for text in texts:
                if not text or not text.strip():
                    vectors.append(zero)
                    continue
                response = self._invoke({'inputText': text, 'dimensions': self.output_embedding_length})
                vectors.append(response.get('embedding', zero))
            return vectors

        if 'cohere' in model:
            if self.output_embedding_length != 1024:
                raise EmbeddingServiceError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

            vectors = []
            for start in range(0, len(texts), COHERE_MAX_TEXTS):
                batch = [text if text and text.strip() else ' ' for text in texts[start:start + COHERE_MAX_TEXTS]]
                response = self._invoke({'input_type': input_type, 'texts': batch})
                embeddings = response.get('embeddings', [])
                if len(embeddings) != len(batch):
                    raise EmbeddingServiceError(f'Expected {len(batch)} embeddings, got {len(embeddings)}')
                vectors.extend(embeddings)
            return vectors

        raise EmbeddingServiceError(f'Unsupported embedding model: {self.model_id}')

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of document texts.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text, in input order

        Raises:
            EmbeddingServiceError: If embedding generation fails
        """
        if not texts:
            return []

        vectors = self._embed(texts, 'search_document')
        logger.debug(f'Embedded {len(vectors)} document texts')
        return vectors

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Args:
            text: Query text to embed

        Returns:
            List of embedding values

        Raises:
            EmbeddingServiceError: If embedding generation fails
        """
        if not text or not text.strip():
            logger.warning('Empty text provided for query embedding')
            return [0.0] * self.output_embedding_length

        return self._embed([text], 'search_query')[0]

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_query('test')
            return len(test_embedding) == self.output_embedding_length

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
