"""
Persona-styled response generation with citation verification.
"""

import asyncio
import re
from typing import Dict, List, Optional, Tuple, Union

from ..errors import TransientServiceError
from ..models.core import SOURCE_MARKER_PATTERN, GeneratedResponse, Persona, RetrievedContext, Source
from ..utils.logging_config import get_logger
from ..utils.retry import run_in_thread

logger = get_logger(__name__)

ANSWER_FALLBACK = 'Answer not in context'
DEBATE_FALLBACK = 'Unable to generate a debate response.'

ASSISTANT_STYLE = 'You are a helpful assistant.'
DEBATER_STYLE = 'You are a debater, speaking in a structured, persuasive manner.'

SOURCES_BLOCK_PATTERN = re.compile(r'\[SOURCES_USED_START\]([\s\S]*?)\[SOURCES_USED_END\]', re.IGNORECASE)

ContextInput = Union[RetrievedContext, str]


def persona_style(persona: Optional[Persona], fallback: str) -> str:
    if persona is None:
        return fallback
    return f"""You are {persona.name}, a historical figure.
Speak and respond in their unique style, tone, and worldview.
Persona description: {persona.short_bio or ''}"""


def context_sources(context_text: str) -> Dict[str, Source]:
    """Collect every (Source: url, Score: s) marker of the context, first occurrence wins."""
    sources: Dict[str, Source] = {}
    for match in SOURCE_MARKER_PATTERN.finditer(context_text or ''):
        url = match.group(1).strip()
        if url not in sources:
            sources[url] = Source(url=url, score=match.group(2).strip())
    return sources


def extract_cited_sources(raw_text: str, context_text: str) -> Tuple[str, List[Source]]:
    """
    Strip the sources block from an answer and keep only URLs present in the context.

    Args:
        raw_text: Completion text, possibly with a [SOURCES_USED_START] block
        context_text: Rendered context that was given to the model

    Returns:
        Tuple of (answer without the block, trusted sources in cited order)
    """
    match = SOURCES_BLOCK_PATTERN.search(raw_text)
    if not match:
        return raw_text, []

    known = context_sources(context_text)
    sources: List[Source] = []
    for line in match.group(1).splitlines():
        url = line.strip().strip('<>').strip()
        if not url:
            continue
        if url in known:
            if known[url] not in sources:
                sources.append(known[url])
        else:
            logger.debug(f'Dropping cited URL not present in context: {url}')

    return SOURCES_BLOCK_PATTERN.sub('', raw_text).strip(), sources


def format_sources(sources: List[Source]) -> str:
    return '**Sources**\n' + '\n'.join(f'{i + 1}. [{source.url}] (Score: {source.score})' for i, source in enumerate(sources))


class ResponseGenerator:
    """Renders persona prompts and calls the completion model once per turn.

    A failed completion never raises; it yields a fixed fallback answer.
    """

    def __init__(self, llm, personas, call_timeout: Optional[float] = None):
        """
        Args:
            llm: Completion client exposing complete(system_prompt, user_prompt)
            personas: PersonaRepository
            call_timeout: Deadline in seconds for the completion call
        """
        self.llm = llm
        self.personas = personas
        self.call_timeout = call_timeout

    async def _get_persona(self, persona_id: Optional[str]) -> Optional[Persona]:
        if not persona_id:
            return None
        persona = await asyncio.to_thread(self.personas.get_persona, persona_id)
        if persona is None:
            logger.warning(f'Persona {persona_id} not found, using generic style')
        return persona

    async def _complete(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        try:
            return await run_in_thread(self.llm.complete, system_prompt, user_prompt, timeout=self.call_timeout)
        except (TransientServiceError, asyncio.TimeoutError) as e:
            logger.error(f'Completion call failed: {e!r}')
            return None

    async def generate_response(self, prompt: str, context: ContextInput, persona_id: Optional[str] = None) -> GeneratedResponse:
        """
        Answer a user question from the retrieved context in the persona's voice.

        Args:
            prompt: User question
            context: Assembled context (or its rendered text)
            persona_id: Persona to speak as

        Returns:
            GeneratedResponse with the answer and only the sources traceable to the context
        """
        context_text = context.to_prompt() if isinstance(context, RetrievedContext) else context
        persona = await self._get_persona(persona_id)

        system_prompt = f"""{persona_style(persona, ASSISTANT_STYLE)}

You are provided with a "Retrieved Context" to help answer the user's question. The context may include:
- Textual chunks from sources
- Knowledge graph relations

Important Rules:
1. Use context to answer the question. Summarize relevant information in a concise and structured manner.
2. Only say "{ANSWER_FALLBACK}" if there is truly nothing relevant in the context.
3. Do NOT invent facts outside the context.
4. Try to answer in a concise manner, ideally under 200 words.
5. Maintain persona's unique style, tone, and worldview.
6. KG relations may inform your reasoning but do not mention or cite them.
7. At the end of your response, list only the URLs you used to generate the answer, between these markers:

[SOURCES_USED_START]
<url1>
<url2>
...
[SOURCES_USED_END]
"""
        user_prompt = f"""User Question: {prompt}

Retrieved Context:
{context_text}
"""

        raw_text = (await self._complete(system_prompt, user_prompt) or '').strip()
        if not raw_text:
            return GeneratedResponse(answer=ANSWER_FALLBACK, fallback=True)

        answer, sources = extract_cited_sources(raw_text, context_text)
        if not answer:
            answer = ANSWER_FALLBACK

        if sources and ANSWER_FALLBACK.lower() not in answer.lower():
            answer = f'{answer}\n\n{format_sources(sources)}'

        return GeneratedResponse(answer=answer, sources=sources)

    async def generate_debate_reply(self, previous_message: str, context: ContextInput, persona_id: str) -> GeneratedResponse:
        """
        Produce the persona's next debate argument against the opponent's message.

        Returns:
            GeneratedResponse without sources
        """
        context_text = context.to_prompt() if isinstance(context, RetrievedContext) else context
        persona = await self._get_persona(persona_id)

        system_prompt = f"""{persona_style(persona, DEBATER_STYLE)}

You are engaged in a debate. Follow these rules strictly:
1. Respond in the unique style, tone, and worldview of the persona.
2. Do NOT invent facts or hallucinate; only use information available in the provided context.
3. Focus on counter-arguments and defending your position.
4. Keep responses concise, persuasive, and under 200 words.
5. If the context does not provide enough information, clearly state that you cannot answer instead of guessing.
6. Maintain a debate tone, logical reasoning, and clarity.
"""
        user_prompt = f"""Opponent's Message:
{previous_message}

Your Context:
{context_text}

Your Response:"""

        raw_text = (await self._complete(system_prompt, user_prompt) or '').strip()
        if not raw_text:
            return GeneratedResponse(answer=DEBATE_FALLBACK, fallback=True)

        return GeneratedResponse(answer=raw_text)
