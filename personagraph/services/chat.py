"""
Single-persona chat turn: persist the question, answer it from the persona's knowledge.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from ..errors import NotFoundError, ValidationError
from ..models.core import AuthorKind, Message, Source
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ChatTurn:
    user_message: Message
    ai_message: Message
    sources: List[Source]


class ChatService:

    def __init__(self, assembler, generator, conversations):
        self.assembler = assembler
        self.generator = generator
        self.conversations = conversations

    async def send_message(self, conversation_id: str, content: str, author_user_id: Optional[str] = None) -> ChatTurn:
        """
        Store the user's message and the persona's grounded answer.

        Raises:
            ValidationError: Empty content, or the conversation belongs to a debate
            NotFoundError: Unknown conversation
        """
        if not content or not content.strip():
            raise ValidationError('Message content is required')

        conversation = await asyncio.to_thread(self.conversations.get_conversation, conversation_id)
        if conversation is None:
            raise NotFoundError(f'Conversation {conversation_id} not found')
        if conversation.debate_id:
            raise ValidationError('This conversation belongs to a debate. Use the debate engine.')

        user_message = await asyncio.to_thread(self.conversations.create_message, conversation_id, content,
                                               author_user_id or conversation.user_id, None)

        context = await self.assembler.assemble(content, conversation.persona_id)
        response = await self.generator.generate_response(content, context, conversation.persona_id)

        ai_message = await asyncio.to_thread(self.conversations.create_message, conversation_id, response.answer, None,
                                             conversation.persona_id, AuthorKind.PERSONA)

        logger.debug(f'Chat turn stored in conversation {conversation_id} with {len(response.sources)} sources')
        return ChatTurn(user_message=user_message, ai_message=ai_message, sources=response.sources)
