"""
Context assembly: merge vector-similarity chunks and knowledge-graph relations into one bounded context.
"""

import asyncio
from typing import List, Optional

from ..errors import TransientServiceError
from ..models.core import GraphFact, RetrievedContext, VectorHit
from ..utils.logging_config import get_logger
from ..utils.retry import run_in_thread

logger = get_logger(__name__)

DEFAULT_TOP_K = 5
MAX_RELATIONS = 12
GRAPH_MATCH_LIMIT = 100

RELATION_PHRASES = {
    'HAS': 'includes',
    'PART_OF': 'is part of',
    'DESCRIBES': 'describes',
    'RELATES_TO': 'relates to',
}


def relation_to_text(relation: str) -> str:
    """Map a symbolic relation name to a phrase; unknown names are lower-cased."""
    return RELATION_PHRASES.get(relation, relation.lower())


def fact_to_hint(fact: GraphFact) -> str:
    return f'{fact.subject} {relation_to_text(fact.relation)} {fact.object}'


class ContextAssembler:
    """Runs vector and graph retrieval together and caps both."""

    def __init__(self,
                 vector_store,
                 graph_store,
                 top_k: int = DEFAULT_TOP_K,
                 max_relations: int = MAX_RELATIONS,
                 graph_match_limit: int = GRAPH_MATCH_LIMIT,
                 call_timeout: Optional[float] = None):
        """
        Initialize the context assembler.

        Args:
            vector_store: Store exposing search_text(query, top_k, persona_id)
            graph_store: Store exposing search(query, persona_id, limit)
            top_k: Chunks to retrieve
            max_relations: Relation hints kept after graph search
            graph_match_limit: Raw graph matches requested
            call_timeout: Deadline in seconds for each search
        """
        self.vector_store = vector_store
        self.graph_store = graph_store
        self.top_k = top_k
        self.max_relations = max_relations
        self.graph_match_limit = graph_match_limit
        self.call_timeout = call_timeout

    async def _bounded(self, fn, *args):
        return await run_in_thread(fn, *args, timeout=self.call_timeout)

    async def assemble(self, query: str, persona_id: Optional[str]) -> RetrievedContext:
        """
        Build the retrieval context for a query.

        If one of the two searches fails, the other half is still returned and the
        failure is logged; a conversational turn must still be answerable.

        Args:
            query: User question, opponent message or debate topic
            persona_id: Persona whose knowledge is searched

        Returns:
            RetrievedContext with at most top_k chunks and max_relations hints
        """
        vector_result, graph_result = await asyncio.gather(
            self._bounded(self.vector_store.search_text, query, self.top_k, persona_id),
            self._bounded(self.graph_store.search, query, persona_id, self.graph_match_limit),
            return_exceptions=True)

        chunks: List[VectorHit] = self._settle(vector_result, 'Vector search')
        facts: List[GraphFact] = self._settle(graph_result, 'Graph search')

        limited_facts = facts[:self.max_relations]
        context = RetrievedContext(query=query,
                                   persona_id=persona_id,
                                   text_chunks=chunks[:self.top_k],
                                   relation_hints=[fact_to_hint(fact) for fact in limited_facts],
                                   facts=limited_facts)

        logger.debug(f'Assembled context for persona {persona_id}: {context.chunk_count} chunks, '
                     f'{context.relation_count}/{len(facts)} relations')
        return context

    @staticmethod
    def _settle(result, label: str) -> list:
        if isinstance(result, (TransientServiceError, asyncio.TimeoutError)):
            logger.warning(f'{label} failed, continuing without it: {result!r}')
            return []
        if isinstance(result, BaseException):
            raise result
        return list(result or [])
