"""
Debate engine: strict two-party turn taking derived from persisted message history.
"""

import asyncio
import uuid
from typing import List, Optional

from ..errors import NotFoundError, ValidationError
from ..models.core import AuthorKind, Debate, DebateParticipant, DebateState, DebateStatus, Message
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

PARTICIPANT_COUNT = 2


def persona_turn_count(messages: List[Message]) -> int:
    return sum(1 for message in messages if message.author_kind == AuthorKind.PERSONA)


def next_speaker(debate: Debate, messages: List[Message]) -> DebateParticipant:
    """
    Pick the participant who speaks next.

    The index is the number of persona-authored messages so far modulo 2 over the
    participants ordered by order_index; user messages never consume a turn.
    """
    participants = debate.ordered_participants()
    if len(participants) != PARTICIPANT_COUNT:
        raise ValidationError(f'Exactly {PARTICIPANT_COUNT} participants required, debate {debate.id} has {len(participants)}')
    return participants[persona_turn_count(messages) % PARTICIPANT_COUNT]


def debate_state(debate: Debate, messages: List[Message]) -> DebateState:
    turns = persona_turn_count(messages)

    if debate.status == DebateStatus.STOPPED:
        return DebateState.COMPLETED
    if debate.max_turns is not None and turns >= debate.max_turns:
        return DebateState.COMPLETED
    if turns == 0:
        return DebateState.NOT_STARTED
    if messages and messages[-1].author_kind == AuthorKind.USER:
        return DebateState.USER_INTERJECTED
    return DebateState.IN_PROGRESS


class DebateEngine:
    """Generates one debate turn per call; the caller drives cadence.

    Holds no per-debate state, so a turn can be retried after a crash and the
    speaker is recomputed from the stored messages.
    """

    def __init__(self, assembler, generator, debates, conversations):
        """
        Args:
            assembler: ContextAssembler
            generator: ResponseGenerator
            debates: DebateRepository
            conversations: Conversation store exposing create_conversation, create_message and list_messages
        """
        self.assembler = assembler
        self.generator = generator
        self.debates = debates
        self.conversations = conversations

    def create_debate(self,
                      topic: str,
                      participant_persona_ids: List[str],
                      created_by: Optional[str] = None,
                      max_turns: Optional[int] = None,
                      roles: Optional[List[Optional[str]]] = None) -> Debate:
        """
        Create a debate and its conversation.

        Participants receive order_index 0 and 1 in the order given.

        Raises:
            ValidationError: Empty topic, participant count other than two, duplicate participants
                or a non-positive max_turns
        """
        if not topic or not topic.strip():
            raise ValidationError('topic is required')
        if len(participant_persona_ids) != PARTICIPANT_COUNT:
            raise ValidationError(f'Exactly {PARTICIPANT_COUNT} participants required, got {len(participant_persona_ids)}')
        if len(set(participant_persona_ids)) != PARTICIPANT_COUNT:
            raise ValidationError('Debate participants must be two different personas')
        if max_turns is not None and max_turns < 1:
            raise ValidationError('max_turns must be positive')

        roles = roles or [None] * PARTICIPANT_COUNT
        debate_id = str(uuid.uuid4())
        conversation = self.conversations.create_conversation(user_id=created_by, debate_id=debate_id)
        participants = [
            DebateParticipant(persona_id=persona_id, order_index=index, role=roles[index])
            for index, persona_id in enumerate(participant_persona_ids)
        ]

        debate = self.debates.save_debate(
            Debate(id=debate_id,
                   topic=topic.strip(),
                   conversation_id=conversation.id,
                   participants=participants,
                   created_by=created_by,
                   max_turns=max_turns))

        logger.info(f'Created debate {debate.id} on "{debate.topic}" between {", ".join(participant_persona_ids)}')
        return debate

    def _get_debate(self, debate_id: str) -> Debate:
        debate = self.debates.get_debate(debate_id)
        if debate is None:
            raise NotFoundError(f'Debate {debate_id} not found')
        return debate

    def get_state(self, debate_id: str) -> DebateState:
        debate = self._get_debate(debate_id)
        return debate_state(debate, self.conversations.list_messages(debate.conversation_id))

    def stop_debate(self, debate_id: str) -> Debate:
        """Mark a debate stopped; no further turns are generated or persisted."""
        debate = self._get_debate(debate_id)
        self.debates.update_status(debate_id, DebateStatus.STOPPED)
        logger.info(f'Stopped debate {debate_id}')
        return self._get_debate(debate_id)

    def interject(self, debate_id: str, content: str, user_id: Optional[str] = None) -> Message:
        """Add a user message to a running debate; the next persona replies to it without losing its turn."""
        if not content or not content.strip():
            raise ValidationError('Message content is required')
        debate = self._get_debate(debate_id)
        if debate.status == DebateStatus.STOPPED:
            raise ValidationError(f'Debate {debate_id} was stopped')
        return self.conversations.create_message(debate.conversation_id, content, user_id, None, AuthorKind.USER)

    async def generate_turn(self, debate_id: str, seed_message: Optional[str] = None) -> Message:
        """
        Generate and persist the next turn.

        The prior message (any author) is both the retrieval query and the opponent
        message; an empty debate starts from seed_message or the topic.

        Args:
            debate_id: Debate to advance
            seed_message: Opening statement used only when the debate has no messages

        Returns:
            The persisted persona message

        Raises:
            NotFoundError: Unknown debate
            ValidationError: Debate completed or stopped while the turn was generated
        """
        debate = await asyncio.to_thread(self._get_debate, debate_id)
        messages = await asyncio.to_thread(self.conversations.list_messages, debate.conversation_id)

        if debate_state(debate, messages) == DebateState.COMPLETED:
            raise ValidationError(f'Debate {debate_id} is completed')

        speaker = next_speaker(debate, messages)
        last_message = messages[-1] if messages else None
        prompt = last_message.content if last_message else (seed_message or debate.topic)

        logger.info(f'Debate {debate_id}: turn {persona_turn_count(messages) + 1} by persona {speaker.persona_id}')

        context = await self.assembler.assemble(prompt, speaker.persona_id)
        reply = await self.generator.generate_debate_reply(prompt, context, speaker.persona_id)

        # Stopped while generating: discard the turn
        latest = await asyncio.to_thread(self._get_debate, debate_id)
        if latest.status == DebateStatus.STOPPED:
            logger.info(f'Debate {debate_id} stopped during generation, discarding turn')
            raise ValidationError(f'Debate {debate_id} was stopped')

        return await asyncio.to_thread(self.conversations.create_message,
                                       debate.conversation_id,
                                       reply.answer,
                                       None,
                                       speaker.persona_id,
                                       AuthorKind.PERSONA)
