"""
Narrow interfaces to the persona, conversation and debate stores, plus in-memory implementations.
"""

import itertools
import uuid
from typing import Dict, List, Optional, Protocol

from ..models.core import AuthorKind, Conversation, Debate, DebateStatus, Message, Persona
from ..utils.timestamp_utils import utc_now


class PersonaRepository(Protocol):

    def get_persona(self, persona_id: str) -> Optional[Persona]:
        ...


class MessageStore(Protocol):

    def create_message(self,
                       conversation_id: str,
                       content: str,
                       author_user_id: Optional[str] = None,
                       author_persona_id: Optional[str] = None,
                       author_kind: Optional[AuthorKind] = None) -> Message:
        """author_kind defaults to persona when author_persona_id is set, user otherwise."""
        ...

    def list_messages(self, conversation_id: str) -> List[Message]:
        """Messages of a conversation ordered by creation time, oldest first."""
        ...


class ConversationRepository(Protocol):

    def create_conversation(self,
                            user_id: Optional[str] = None,
                            persona_id: Optional[str] = None,
                            debate_id: Optional[str] = None) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...


class DebateRepository(Protocol):

    def save_debate(self, debate: Debate) -> Debate:
        ...

    def get_debate(self, debate_id: str) -> Optional[Debate]:
        ...

    def update_status(self, debate_id: str, status: DebateStatus) -> None:
        ...


class InMemoryPersonaRepository:

    def __init__(self, personas: Optional[List[Persona]] = None):
        self._personas: Dict[str, Persona] = {p.id: p for p in personas or []}

    def add(self, persona: Persona) -> Persona:
        self._personas[persona.id] = persona
        return persona

    def get_persona(self, persona_id: str) -> Optional[Persona]:
        return self._personas.get(persona_id)


class InMemoryConversationStore:
    """Conversations and their messages."""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._sequence = itertools.count()
        self._order: Dict[str, int] = {}

    def create_conversation(self,
                            user_id: Optional[str] = None,
                            persona_id: Optional[str] = None,
                            debate_id: Optional[str] = None) -> Conversation:
        conversation = Conversation(id=str(uuid.uuid4()), user_id=user_id, persona_id=persona_id, debate_id=debate_id)
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        return conversation

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    def create_message(self,
                       conversation_id: str,
                       content: str,
                       author_user_id: Optional[str] = None,
                       author_persona_id: Optional[str] = None,
                       author_kind: Optional[AuthorKind] = None) -> Message:
        if author_kind is None:
            author_kind = AuthorKind.PERSONA if author_persona_id else AuthorKind.USER
        message = Message(id=str(uuid.uuid4()),
                          conversation_id=conversation_id,
                          content=content,
                          author_kind=author_kind,
                          created_at=utc_now(),
                          author_user_id=author_user_id,
                          author_persona_id=author_persona_id)
        self._messages.setdefault(conversation_id, []).append(message)
        self._order[message.id] = next(self._sequence)
        return message

    def list_messages(self, conversation_id: str) -> List[Message]:
        # Ties on created_at fall back to insertion order
        return sorted(self._messages.get(conversation_id, []), key=lambda m: (m.created_at, self._order[m.id]))


class InMemoryDebateRepository:

    def __init__(self):
        self._debates: Dict[str, Debate] = {}

    def save_debate(self, debate: Debate) -> Debate:
        self._debates[debate.id] = debate
        return debate

    def get_debate(self, debate_id: str) -> Optional[Debate]:
        return self._debates.get(debate_id)

    def update_status(self, debate_id: str, status: DebateStatus) -> None:
        debate = self._debates.get(debate_id)
        if debate is not None:
            debate.status = status
