"""
Relation extraction service: text chunks to (subject, predicate, object) triplets.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel

from ..errors import ParseError, TransientServiceError
from ..models.core import Triplet
from ..utils.bedrock_llm import StructuredOutputError
from ..utils.logging_config import get_logger
from ..utils.retry import run_in_thread

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_CONCURRENCY = 5
CHUNK_SEPARATOR = '\n---\n'

# "A - B - C" lines, optionally numbered or bulleted
_LINE_PATTERN = re.compile(r'^\s*(?:[-*•]|\d+[.)])?\s*(.+?)\s+[-–—]\s+(.+?)\s+[-–—]\s+(.+?)\s*$')


class TripletModel(BaseModel):
    subject: str
    predicate: str = ''
    object: str


class TripletBatchModel(BaseModel):
    """Schema the completion model must answer with."""
    triplets: List[TripletModel]


@dataclass
class ParseResult:
    """Outcome of parsing one completion: triplets or the reason there are none."""
    triplets: List[Triplet] = field(default_factory=list)
    error: Optional[ParseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ExtractionResult:
    """Flattened triplets from every sub-batch that succeeded."""
    triplets: List[Triplet]
    total_batches: int
    failed_batches: int

    @property
    def succeeded_batches(self) -> int:
        return self.total_batches - self.failed_batches


def normalize_triplets(raw: List[TripletModel]) -> List[Triplet]:
    triplets = [Triplet.normalized(t.subject, t.predicate, t.object) for t in raw]
    return [t for t in triplets if t.subject and t.object]


def parse_structured(batch: TripletBatchModel) -> ParseResult:
    return ParseResult(triplets=normalize_triplets(batch.triplets))


def parse_lines(raw_text: str) -> ParseResult:
    """
    Fallback parser for answers of the form "subject - predicate - object", one per line.

    Args:
        raw_text: Raw completion text

    Returns:
        ParseResult with triplets, or a ParseError when no line matches
    """
    triplets = []
    for line in (raw_text or '').splitlines():
        match = _LINE_PATTERN.match(line)
        if not match:
            continue
        triplet = Triplet.normalized(*(part.strip(' "\'`') for part in match.groups()))
        if triplet.subject and triplet.object:
            triplets.append(triplet)

    if not triplets:
        return ParseResult(error=ParseError('No "A - B - C" lines found in completion'))
    return ParseResult(triplets=triplets)


def build_prompt(texts: List[str], persona_id: Optional[str]) -> str:
    combined = CHUNK_SEPARATOR.join(texts)
    return f'''Extract short, meaningful subject-predicate-object (S-P-O) triplets from the following text.
Rules:
1. Only include factual, significant relationships conveying real information.
2. Avoid generic, trivial, or obvious predicates like "is", "has", "does", or "relationship".
3. Keep each subject, predicate, and object concise (1-5 words if possible).
4. Prefer proper nouns, named entities, or technical terms as subjects and objects.
5. Infer meaningful predicates even if none is explicitly present.
6. Avoid duplicates or repeated concepts.
7. Focus on relationships that matter for knowledge representation.

Return ONLY a JSON object of the form {{"triplets": [{{"subject": "...", "predicate": "...", "object": "..."}}]}}.

Persona ID: {persona_id or "none"}
Text:
"""{combined}"""
'''


class RelationExtractionService:
    """Extract triplets from chunk batches with bounded concurrency.

    A failed sub-batch is logged and skipped; it never aborts the job.
    """

    def __init__(self, llm, call_timeout: Optional[float] = None):
        """
        Initialize the relation extraction service.

        Args:
            llm: Completion client exposing complete_structured(prompt, schema)
            call_timeout: Deadline in seconds for each completion call
        """
        self.llm = llm
        self.call_timeout = call_timeout

        logger.info('Initialized RelationExtractionService')

    async def _extract_batch(self, texts: List[str], persona_id: Optional[str]) -> ParseResult:
        prompt = build_prompt(texts, persona_id)
        try:
            batch = await run_in_thread(self.llm.complete_structured, prompt, TripletBatchModel, timeout=self.call_timeout)
        except StructuredOutputError as e:
            logger.debug(f'Structured output rejected, trying line parser: {e}')
            return parse_lines(e.raw_text)

        return parse_structured(batch)

    async def extract(self,
                      texts: List[str],
                      persona_id: Optional[str] = None,
                      batch_size: int = DEFAULT_BATCH_SIZE,
                      concurrency: int = DEFAULT_CONCURRENCY) -> ExtractionResult:
        """
        Extract triplets from all texts.

        Args:
            texts: Chunk texts, grouped into sub-batches of batch_size
            persona_id: Passed to the prompt as a hint only
            batch_size: Chunks per completion call
            concurrency: Maximum in-flight completion calls

        Returns:
            ExtractionResult with triplets from successful sub-batches and the failure count
        """
        texts = [text for text in texts if text and text.strip()]
        batches = [texts[i:i + batch_size] for i in range(0, len(texts), max(1, batch_size))]
        logger.info(f'Triplet extraction started: {len(texts)} chunks in {len(batches)} batches (batch_size={batch_size})')

        if not batches:
            return ExtractionResult(triplets=[], total_batches=0, failed_batches=0)

        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def run(index: int, batch: List[str]) -> ParseResult:
            async with semaphore:
                result = await self._extract_batch(batch, persona_id)
            if result.ok:
                logger.info(f'Triplet batch {index + 1}/{len(batches)} completed ({len(result.triplets)} triplets)')
            return result

        outcomes = await asyncio.gather(*(run(i, batch) for i, batch in enumerate(batches)), return_exceptions=True)

        triplets: List[Triplet] = []
        failed = 0
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, ParseResult) and outcome.ok:
                triplets.extend(outcome.triplets)
                continue

            failed += 1
            if isinstance(outcome, ParseResult):
                logger.warning(f'Triplet extraction failed for batch {index + 1}: {outcome.error}')
            elif isinstance(outcome, (TransientServiceError, asyncio.TimeoutError)):
                logger.warning(f'Triplet extraction failed for batch {index + 1}: {outcome!r}')
            elif isinstance(outcome, Exception):
                logger.error(f'Unexpected error in triplet batch {index + 1}: {outcome!r}')
            else:
                # CancelledError and other BaseExceptions must not be swallowed
                raise outcome

        logger.info(f'Triplet extraction finished: {len(triplets)} total triplets from '
                    f'{len(batches) - failed}/{len(batches)} batches')
        return ExtractionResult(triplets=triplets, total_batches=len(batches), failed_batches=failed)
