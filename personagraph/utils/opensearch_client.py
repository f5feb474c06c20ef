"""
OpenSearch client wrapper for persona-scoped chunk storage and vector similarity search.
"""

from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import OpenSearchException
from opensearchpy.helpers import bulk
from requests_aws4auth import AWS4Auth

from ..errors import TransientServiceError
from ..models.core import Chunk, VectorHit
from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

BULK_CHUNK_SIZE = 200


class VectorStoreError(TransientServiceError):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch chunk index with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, embedder=None, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            embedder: Embedding client used to encode text queries (optional)
            client: Pre-built OpenSearch client (skips AWS auth setup)
        """
        self.config = config
        self.index_name = config.index_name
        self.embedder = embedder

        if client is not None:
            self.client = client
        else:
            # Get AWS credentials and create auth
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            self.client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                     http_auth=auth,
                                     use_ssl=True,
                                     verify_certs=True,
                                     timeout=config.timeout,
                                     connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def create_index_if_not_exists(self) -> str:
        """
        Create the chunk index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            index_body = {
                'mappings': {
                    'properties': {
                        'id': {
                            'type': 'keyword'
                        },
                        'persona_id': {
                            'type': 'keyword'
                        },
                        'upload_id': {
                            'type': 'keyword'
                        },
                        'source_url': {
                            'type': 'keyword'
                        },
                        'page_number': {
                            'type': 'integer'
                        },
                        'chunk_index': {
                            'type': 'integer'
                        },
                        'content': {
                            'type': 'text'
                        },
                        'vector': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'lucene',
                                'parameters': {
                                    'ef_construction': 128,
                                    'm': 16
                                }
                            }
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True
                    }
                }
            }

            response = self.client.indices.create(index=self.index_name, body=index_body)
            if response.get('acknowledged', False):
                logger.info(f'Created index {self.index_name}')
                return 'created'
            return 'failed'

        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise VectorStoreError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise VectorStoreError(f'Unexpected error creating index: {e}')

    @staticmethod
    def _to_document(chunk: Chunk) -> Dict[str, Any]:
        return {
            'id': chunk.id,
            'persona_id': chunk.owner_persona_id,
            'upload_id': chunk.upload_id,
            'source_url': chunk.source_url,
            'page_number': chunk.page_number,
            'chunk_index': chunk.chunk_index,
            'content': chunk.content,
            'vector': chunk.vector
        }

    def upsert(self, chunks: List[Chunk]) -> int:
        """
        Write chunks in bulk, keyed by chunk id so a re-upload overwrites.

        Args:
            chunks: Embedded chunks

        Returns:
            Number of chunks written
        """
        if not chunks:
            return 0

        actions = [{
            '_op_type': 'index',
            '_index': self.index_name,
            '_id': chunk.id,
            '_source': self._to_document(chunk)
        } for chunk in chunks]

        try:
            success, errors = bulk(self.client, actions, chunk_size=BULK_CHUNK_SIZE, raise_on_error=False)
        except OpenSearchException as e:
            logger.error(f'Error indexing chunks: {e}')
            raise VectorStoreError(f'Failed to index chunks: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing chunks: {e}')
            raise VectorStoreError(f'Unexpected error indexing chunks: {e}')

        if errors:
            logger.error(f'{len(errors)} chunk(s) failed to index, first error: {errors[0]}')
            raise VectorStoreError(f'{len(errors)} of {len(chunks)} chunks failed to index')

        logger.debug(f'Indexed {success} chunks in {self.index_name}')
        return success

    def search(self, query_vector: List[float], top_k: int = 5, persona_id: Optional[str] = None) -> List[VectorHit]:
        """
        Perform vector similarity search.

        Args:
            query_vector: Query vector for similarity search
            top_k: Number of results to return
            persona_id: Restrict to one persona's chunks; None searches the whole corpus

        Returns:
            Hits ranked by score, ties ordered by chunk id
        """
        knn_clause = {'vector': query_vector, 'k': top_k}
        if persona_id:
            # Applied inside the k-NN search: all k hits belong to this persona
            knn_clause['filter'] = {'term': {'persona_id': persona_id}}
        query = {'knn': {'vector': knn_clause}}

        search_body = {
            'size': top_k,
            'query': query,
            'sort': [{
                '_score': 'desc'
            }, {
                'id': 'asc'
            }],
            '_source': {
                'excludes': ['vector']  # Don't return embedding in results
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise VectorStoreError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise VectorStoreError(f'Unexpected error in vector search: {e}')

        results = []
        for hit in response['hits']['hits']:
            document = hit.get('_source', {})
            results.append(
                VectorHit(id=document.get('id', hit['_id']),
                          text=document.get('content', ''),
                          score=float(hit.get('_score') or 0.0),
                          source=document.get('source_url')))

        logger.debug(f'Vector search returned {len(results)} results for persona {persona_id}')
        return results

    def search_text(self, query: str, top_k: int = 5, persona_id: Optional[str] = None) -> List[VectorHit]:
        """
        Encode a text query with the embedding client and search.

        Raises:
            VectorStoreError: If no embedding client is configured or the search fails
        """
        if self.embedder is None:
            raise VectorStoreError('No embedding client configured for text search')

        query_vector = self.embedder.embed_query(query)
        return self.search(query_vector, top_k=top_k, persona_id=persona_id)

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
