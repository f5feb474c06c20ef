"""
Amazon Neptune graph database client with Gremlin Python driver and AWS SigV4 authentication.
"""

import uuid
from functools import wraps
from typing import Dict, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import T, TextP

from ..errors import TransientServiceError
from ..models.core import GraphFact, Triplet, partition_key
from .config import NeptuneConfig
from .keywords import extract_keywords
from .logging_config import get_logger
from .timestamp_utils import to_seconds_str

logger = get_logger(__name__)

ENTITY_LABEL = 'Entity'
RELATION_LABEL = 'RELATION'

# Namespace for deterministic vertex and edge ids
GRAPH_NAMESPACE = uuid.UUID('6f4a3c1e-2b7d-4e8a-9c5f-1d2e3f4a5b6c')


class GraphStoreError(TransientServiceError):
    """Custom exception for Neptune errors."""
    pass


def entity_vertex_id(name: str, persona_id: Optional[str]) -> str:
    """Vertex id for an entity; one vertex per (name, persona partition)."""
    return str(uuid.uuid5(GRAPH_NAMESPACE, f'entity:{partition_key(persona_id)}:{name}'))


def relation_edge_id(triplet: Triplet, persona_id: Optional[str]) -> str:
    """Edge id for a relation; one edge per (subject, predicate, object, persona partition)."""
    key = f'relation:{partition_key(persona_id)}:{triplet.subject}:{triplet.predicate}:{triplet.object}'
    return str(uuid.uuid5(GRAPH_NAMESPACE, key))


def retry_on_connection_error(func):
    """Decorator to reconnect once when the websocket transport was closed under us."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except GraphStoreError:
            raise
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower() and self.owns_connection:
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise GraphStoreError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise GraphStoreError(f'Failed to {func.__name__}: {e}')

    return wrapper


class NeptuneClient:
    """Persona-partitioned knowledge graph on Amazon Neptune."""

    def __init__(self, config: NeptuneConfig, g=None):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
            g: Pre-built graph traversal source (skips connecting)
        """
        self.config = config
        self.connection = None
        self.g = g
        self.owns_connection = g is None
        if self.owns_connection:
            self._connect()
            logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        headers = None
        if self.config.use_iam_auth:
            credentials = Session().get_credentials()
            if credentials is None:
                raise GraphStoreError('No AWS credentials found')
            creds = credentials.get_frozen_credentials()

            region = Session().region_name or self.config.region or 'us-east-1'

            # Create signed request for WebSocket connection
            request = AWSRequest(method='GET', url=conn_string, data=None)
            SigV4Auth(creds, 'neptune-db', region).add_auth(request)
            headers = dict(request.headers.items())

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=headers,
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def _merge_entity(self, name: str, persona_id: Optional[str], created_at: str) -> str:
        vertex_id = entity_vertex_id(name, persona_id)
        self.g.V(vertex_id).fold().coalesce(
            __.unfold(),
            __.addV(ENTITY_LABEL).property(T.id, vertex_id)
            .property('name', name)
            .property('name_lower', name.lower())
            .property('persona_id', partition_key(persona_id))
            .property('created_at', created_at)).iterate()
        return vertex_id

    def _merge_relation(self, triplet: Triplet, subject_id: str, object_id: str, persona_id: Optional[str],
                        created_at: str) -> str:
        edge_id = relation_edge_id(triplet, persona_id)
        search_text = f'{triplet.subject} {triplet.predicate} {triplet.object}'.lower()
        self.g.E(edge_id).fold().coalesce(
            __.unfold(),
            __.V(subject_id).addE(RELATION_LABEL).to(__.V(object_id))
            .property(T.id, edge_id)
            .property('predicate', triplet.predicate)
            .property('subject_name', triplet.subject)
            .property('object_name', triplet.object)
            .property('search_text', search_text)
            .property('persona_id', partition_key(persona_id))
            .property('created_at', created_at)).iterate()
        return edge_id

    @retry_on_connection_error
    def upsert(self, triplets: List[Triplet], persona_id: Optional[str]) -> int:
        """
        Merge triplets into the persona's partition.

        Entities and relations are created when absent and reused when present, so
        running the same triplets twice leaves the graph unchanged.

        Args:
            triplets: Normalized triplets
            persona_id: Owning persona; None writes to the global partition

        Returns:
            Number of triplets merged
        """
        created_at = to_seconds_str()
        merged = 0
        for triplet in triplets:
            if not triplet.is_complete():
                logger.debug(f'Skipping incomplete triplet: {triplet}')
                continue
            subject_id = self._merge_entity(triplet.subject, persona_id, created_at)
            object_id = self._merge_entity(triplet.object, persona_id, created_at)
            self._merge_relation(triplet, subject_id, object_id, persona_id, created_at)
            merged += 1

        logger.debug(f'Merged {merged} triplets for persona {partition_key(persona_id)}')
        return merged

    @retry_on_connection_error
    def search(self, query: str, persona_id: Optional[str], limit: int = 100) -> List[GraphFact]:
        """
        Keyword search over the persona's relations.

        A relation matches when its subject, predicate or object contains any keyword
        of the query. A query made only of stop words matches nothing.

        Args:
            query: Free-text query
            persona_id: Persona partition to search
            limit: Maximum raw matches

        Returns:
            Matching facts
        """
        keywords = extract_keywords(query)
        logger.debug(f'Extracted keywords: {keywords}')
        if not keywords:
            return []

        partition = partition_key(persona_id)
        rows: List[Dict[str, str]] = self.g.E().has(RELATION_LABEL, 'persona_id', partition)\
            .or_(*[__.has('search_text', TextP.containing(keyword)) for keyword in keywords])\
            .limit(limit)\
            .project('subject', 'relation', 'object')\
            .by('subject_name')\
            .by('predicate')\
            .by('object_name')\
            .to_list()

        facts = [
            GraphFact(subject=row['subject'],
                      relation=row['relation'],
                      object=row['object'],
                      persona_id=partition) for row in rows
        ]

        logger.debug(f'Graph search returned {len(facts)} facts for persona {partition}')
        return facts

    @retry_on_connection_error
    def count(self, persona_id: Optional[str]) -> Dict[str, int]:
        """Count entities and relations in a persona partition."""
        partition = partition_key(persona_id)
        entities = self.g.V().has(ENTITY_LABEL, 'persona_id', partition).count().next()
        relations = self.g.E().has(RELATION_LABEL, 'persona_id', partition).count().next()
        return {'entities': int(entities), 'relations': int(relations)}

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        # Simple query to test connectivity
        self.g.V().limit(1).count().next()
        return True
