"""
Core data models for persona-grounded retrieval, training and debate.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

DEFAULT_PREDICATE = 'relates to'

# Partition used in the graph for uploads that are not tied to a persona
GLOBAL_PARTITION = '__global__'


def partition_key(persona_id: Optional[str]) -> str:
    """Map an optional persona id to the graph partition key."""
    return persona_id if persona_id else GLOBAL_PARTITION


@dataclass
class PageText:
    """Extracted text of one document page."""
    page_number: Optional[int]
    text: str


@dataclass
class TextWindow:
    """Chunker output: one overlapping window of a page."""
    page_number: Optional[int]
    chunk_index: int
    content: str


@dataclass
class Chunk:
    """A bounded text window from a source document, embedded and indexed for similarity search.

    Immutable once indexed; the id is derived from the upload, page and window position
    so that re-uploading the same document overwrites instead of duplicating.
    """
    id: str
    content: str
    owner_persona_id: Optional[str]
    source_url: str
    upload_id: str
    page_number: Optional[int]
    chunk_index: int
    vector: List[float] = field(default_factory=list)

    @staticmethod
    def make_id(upload_id: str, page_number: Optional[int], chunk_index: int) -> str:
        return f'{upload_id}-{page_number}-{chunk_index}'


@dataclass
class Triplet:
    """A (subject, predicate, object) assertion extracted from source text."""
    subject: str
    predicate: str
    object: str

    @classmethod
    def normalized(cls, subject: str, predicate: Optional[str], object_: str) -> 'Triplet':
        """Trim all fields and replace an empty or generic predicate with 'relates to'."""
        predicate = (predicate or '').strip()
        if not predicate or predicate.lower() == 'relationship':
            predicate = DEFAULT_PREDICATE
        return cls(subject=(subject or '').strip(), predicate=predicate, object=(object_ or '').strip())

    def is_complete(self) -> bool:
        return bool(self.subject and self.predicate and self.object)


@dataclass
class GraphFact:
    """A relation edge read back from the graph store."""
    subject: str
    relation: str
    object: str
    persona_id: str


@dataclass
class VectorHit:
    """A ranked vector search result."""
    id: str
    text: str
    score: float
    source: Optional[str]


@dataclass
class RetrievedContext:
    """Bounded context assembled for one query; never persisted."""
    query: str
    persona_id: Optional[str]
    text_chunks: List[VectorHit] = field(default_factory=list)
    relation_hints: List[str] = field(default_factory=list)
    facts: List[GraphFact] = field(default_factory=list)

    @property
    def chunk_count(self) -> int:
        return len(self.text_chunks)

    @property
    def relation_count(self) -> int:
        return len(self.relation_hints)

    def source_urls(self) -> List[str]:
        """Distinct chunk sources in ranking order."""
        urls = []
        for chunk in self.text_chunks:
            if chunk.source and chunk.source not in urls:
                urls.append(chunk.source)
        return urls

    def to_prompt(self) -> str:
        """Render the wire format consumed by the completion prompts.

        Chunks carry '(Source: url, Score: 0.000)' suffixes so that cited URLs can be
        traced back to a retrieved chunk.
        """
        formatted_chunks = '\n\n'.join(f'Chunk {i + 1}:\n{chunk.text}\n(Source: {chunk.source or "unknown"}, Score: {chunk.score:.3f})'
                                       for i, chunk in enumerate(self.text_chunks))

        formatted_relations = ''
        if self.relation_hints:
            formatted_relations = 'Relations:\n- ' + '\n- '.join(self.relation_hints)

        return f'Relevant Chunks:\n{formatted_chunks}\nRelevant Relations From Knowledge Graph:\n{formatted_relations}'


SOURCE_MARKER_PATTERN = re.compile(r'\(Source:\s*(https?://[^\s,]+),\s*Score:\s*([\d.]+)\)', re.IGNORECASE)


@dataclass
class Source:
    """A citation that is traceable to a retrieved chunk."""
    url: str
    score: Optional[str] = None


@dataclass
class GeneratedResponse:
    """Completion output with the citations that survived verification."""
    answer: str
    sources: List[Source] = field(default_factory=list)
    fallback: bool = False


@dataclass
class Persona:
    """Named character profile used to style responses and scope retrieval."""
    id: str
    name: str
    short_bio: Optional[str] = None


class AuthorKind(str, Enum):
    USER = 'user'
    PERSONA = 'persona'


@dataclass
class Message:
    """An append-only conversation turn."""
    id: str
    conversation_id: str
    content: str
    author_kind: AuthorKind
    created_at: datetime
    author_user_id: Optional[str] = None
    author_persona_id: Optional[str] = None


@dataclass
class Conversation:
    """Conversation header; a debate owns exactly one conversation."""
    id: str
    user_id: Optional[str] = None
    persona_id: Optional[str] = None
    debate_id: Optional[str] = None


@dataclass
class DebateParticipant:
    persona_id: str
    order_index: int
    role: Optional[str] = None


class DebateStatus(str, Enum):
    ACTIVE = 'active'
    STOPPED = 'stopped'


class DebateState(str, Enum):
    NOT_STARTED = 'not_started'
    IN_PROGRESS = 'in_progress'
    USER_INTERJECTED = 'user_interjected'
    COMPLETED = 'completed'


@dataclass
class Debate:
    """A two-party debate; participant count is validated at creation."""
    id: str
    topic: str
    conversation_id: str
    participants: List[DebateParticipant]
    created_by: Optional[str] = None
    max_turns: Optional[int] = None
    status: DebateStatus = DebateStatus.ACTIVE

    def ordered_participants(self) -> List[DebateParticipant]:
        return sorted(self.participants, key=lambda p: p.order_index)
