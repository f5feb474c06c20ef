"""
Training pipeline: uploaded document to persona-scoped vector index and knowledge graph.

Stages run strictly in order for one upload:
Loading -> Embedding -> ExtractingTriplets -> PersistingVectors -> PersistingGraph -> Done | Failed.
Remote stages are retried independently; loading and chunking are deterministic and
run once. A failed job leaves whatever was already persisted in place.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..errors import TrainingError
from ..models.core import Chunk, TextWindow, Triplet
from ..utils.config import TrainingConfig
from ..utils.config_validation import ConfigValidation, can_perform_training
from ..utils.logging_config import get_logger
from ..utils.retry import retry_async, run_in_thread
from .chunking import Chunker, DocumentSource, load_document_pages

logger = get_logger(__name__)


class TrainingStage(str, Enum):
    PENDING = 'pending'
    LOADING = 'loading'
    EMBEDDING = 'embedding'
    EXTRACTING_TRIPLETS = 'extracting_triplets'
    PERSISTING_VECTORS = 'persisting_vectors'
    PERSISTING_GRAPH = 'persisting_graph'
    DONE = 'done'
    FAILED = 'failed'


class TrainingStatus(str, Enum):
    STARTED = 'started'
    COMPLETED = 'completed'
    SKIPPED = 'skipped'
    FAILED = 'failed'


DEFAULT_TRAINING_CONFIG = TrainingConfig(chunk_size=500,
                                         chunk_overlap=50,
                                         embedding_batch_size=50,
                                         embedding_concurrency=4,
                                         extraction_batch_size=10,
                                         extraction_concurrency=5,
                                         retry_attempts=3,
                                         retry_delay=1.0,
                                         call_timeout=120.0)


@dataclass
class TrainingReport:
    upload_id: str
    persona_id: Optional[str]
    chunk_count: int = 0
    triplet_count: int = 0
    extraction_batches: int = 0
    failed_extraction_batches: int = 0
    duration_seconds: float = 0.0


def build_chunks(windows: List[TextWindow], upload_id: str, persona_id: Optional[str], source_url: str) -> List[Chunk]:
    return [
        Chunk(id=Chunk.make_id(upload_id, window.page_number, window.chunk_index),
              content=window.content,
              owner_persona_id=persona_id,
              source_url=source_url,
              upload_id=upload_id,
              page_number=window.page_number,
              chunk_index=window.chunk_index) for window in windows
    ]


class TrainingPipeline:
    """Runs the training stages for one document at a time.

    Holds no per-upload state, so several uploads can be trained concurrently with
    the same pipeline instance.
    """

    def __init__(self,
                 embedder,
                 extractor,
                 vector_store,
                 graph_store,
                 config: Optional[TrainingConfig] = None,
                 chunker: Optional[Chunker] = None,
                 loader: Callable[..., list] = load_document_pages):
        """
        Args:
            embedder: Embedding client exposing embed_documents(texts)
            extractor: RelationExtractionService
            vector_store: Store exposing upsert(chunks)
            graph_store: Store exposing upsert(triplets, persona_id)
            config: Batching, concurrency, retry and timeout settings
            chunker: Chunker (built from config when omitted)
            loader: Callable(document, filename) returning the document's pages
        """
        self.embedder = embedder
        self.extractor = extractor
        self.vector_store = vector_store
        self.graph_store = graph_store
        self.config = config or DEFAULT_TRAINING_CONFIG
        self.chunker = chunker or Chunker(self.config.chunk_size, self.config.chunk_overlap)
        self.loader = loader

    async def _retry(self, fn, label: str):
        return await retry_async(fn, attempts=self.config.retry_attempts, delay=self.config.retry_delay, label=label)

    def _call(self, fn, *args):
        return lambda: run_in_thread(fn, *args, timeout=self.config.call_timeout)

    async def _load(self, document: DocumentSource, filename: str, upload_id: str, persona_id: Optional[str],
                    source_url: str) -> List[Chunk]:
        pages = await asyncio.to_thread(self.loader, document, filename)
        windows = self.chunker.split_pages(pages)
        chunks = build_chunks(windows, upload_id, persona_id, source_url)
        logger.info(f'Document split into {len(chunks)} chunks across {len(pages)} pages')
        return chunks

    async def _embed(self, chunks: List[Chunk]) -> None:
        batch_size = max(1, self.config.embedding_batch_size)
        batches = [chunks[i:i + batch_size] for i in range(0, len(chunks), batch_size)]
        semaphore = asyncio.Semaphore(max(1, self.config.embedding_concurrency))
        completed = 0

        async def run(batch: List[Chunk]) -> None:
            nonlocal completed
            async with semaphore:
                vectors = await self._retry(self._call(self.embedder.embed_documents, [c.content for c in batch]),
                                            label='Embeddings')
            if len(vectors) != len(batch):
                raise TrainingError(f'Expected {len(batch)} embeddings, got {len(vectors)}', TrainingStage.EMBEDDING.value)
            for chunk, vector in zip(batch, vectors):
                chunk.vector = vector
            completed += 1
            logger.info(f'Embeddings: batch {completed} of {len(batches)} completed')

        outcomes = await asyncio.gather(*(run(batch) for batch in batches), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def train(self,
                    document: DocumentSource,
                    upload_id: str,
                    persona_id: Optional[str],
                    source_url: str,
                    filename: str = '',
                    on_stage: Optional[Callable[[TrainingStage], None]] = None) -> TrainingReport:
        """
        Train a single document into both stores.

        Args:
            document: PDF path, raw bytes, or a plain-text file
            upload_id: Upload the chunks belong to
            persona_id: Owning persona (None for the shared corpus)
            source_url: Public URL of the uploaded artifact, cited in answers
            filename: Original filename, used to detect plain-text uploads
            on_stage: Called with each stage as it starts

        Returns:
            TrainingReport with counts and duration

        Raises:
            TrainingError: A stage failed; error.stage names it
        """
        start_time = time.monotonic()
        report = TrainingReport(upload_id=upload_id, persona_id=persona_id)
        stage = TrainingStage.LOADING

        def enter(next_stage: TrainingStage) -> None:
            nonlocal stage
            stage = next_stage
            logger.info(f'=== {upload_id}: {stage.value} ===')
            if on_stage:
                on_stage(stage)

        try:
            enter(TrainingStage.LOADING)
            chunks = await self._load(document, filename, upload_id, persona_id, source_url)
            report.chunk_count = len(chunks)

            if chunks:
                enter(TrainingStage.EMBEDDING)
                await self._embed(chunks)

                enter(TrainingStage.EXTRACTING_TRIPLETS)
                extraction = await self._retry(lambda: self.extractor.extract([c.content for c in chunks],
                                                                              persona_id,
                                                                              batch_size=self.config.extraction_batch_size,
                                                                              concurrency=self.config.extraction_concurrency),
                                               label='Triplet extraction')
                triplets: List[Triplet] = extraction.triplets
                report.triplet_count = len(triplets)
                report.extraction_batches = extraction.total_batches
                report.failed_extraction_batches = extraction.failed_batches
                logger.info(f'Extracted {len(triplets)} triplets ({extraction.failed_batches} failed batches)')

                enter(TrainingStage.PERSISTING_VECTORS)
                await self._retry(self._call(self.vector_store.upsert, chunks), label='Vector upload')
                logger.info(f'Uploaded {len(chunks)} chunks to the vector store')

                enter(TrainingStage.PERSISTING_GRAPH)
                if triplets:
                    await self._retry(self._call(self.graph_store.upsert, triplets, persona_id), label='Graph upload')
                logger.info(f'Merged {len(triplets)} triplets into the graph for persona {persona_id}')
            else:
                logger.warning(f'No text extracted from upload {upload_id}, nothing to train')

        except TrainingError as e:
            e.stage = e.stage or stage.value
            logger.error(f'Training failed for upload {upload_id} during {e.stage}: {e}')
            raise
        except Exception as e:
            logger.error(f'Training failed for upload {upload_id} during {stage.value}: {e!r}')
            raise TrainingError(f'Training failed during {stage.value}: {e!r}', stage.value) from e

        report.duration_seconds = round(time.monotonic() - start_time, 2)
        if on_stage:
            on_stage(TrainingStage.DONE)
        logger.info(f'Training completed for {upload_id} in {report.duration_seconds}s')
        return report


@dataclass
class TrainingHandle:
    """Observable state of one submitted training job."""
    upload_id: str
    status: TrainingStatus
    stage: TrainingStage = TrainingStage.PENDING
    report: Optional[TrainingReport] = None
    error: Optional[str] = None
    missing_config: List[str] = field(default_factory=list)
    task: Optional[asyncio.Task] = None

    def done(self) -> bool:
        return self.status != TrainingStatus.STARTED

    async def wait(self) -> 'TrainingHandle':
        if self.task is not None:
            await asyncio.shield(self.task)
        return self

    def to_dict(self) -> Dict[str, object]:
        return {
            'upload_id': self.upload_id,
            'status': self.status.value,
            'stage': self.stage.value,
            'error': self.error,
            'missing_config': self.missing_config,
            'report': self.report.__dict__ if self.report else None
        }


class TrainingJobManager:
    """Submits training jobs as background tasks, one in flight per upload id.

    The upload itself is never rolled back; only the job status reflects failure.
    """

    def __init__(self,
                 pipeline: Optional[TrainingPipeline],
                 readiness_check: Callable[[], ConfigValidation] = can_perform_training,
                 keep_finished: int = 100):
        """
        Args:
            pipeline: TrainingPipeline (None reports every submission as skipped)
            readiness_check: Returns the training configuration readiness
            keep_finished: Finished handles kept for status queries, oldest evicted first
        """
        self.pipeline = pipeline
        self.readiness_check = readiness_check
        self.keep_finished = keep_finished
        self._handles: Dict[str, TrainingHandle] = {}

    def _track(self, handle: TrainingHandle) -> None:
        self._handles.pop(handle.upload_id, None)
        self._handles[handle.upload_id] = handle

        finished = [upload_id for upload_id, tracked in self._handles.items() if tracked.done()]
        for upload_id in finished[:max(0, len(finished) - self.keep_finished)]:
            del self._handles[upload_id]

    def get(self, upload_id: str) -> Optional[TrainingHandle]:
        return self._handles.get(upload_id)

    def submit(self,
               document: DocumentSource,
               upload_id: str,
               persona_id: Optional[str],
               source_url: str,
               filename: str = '') -> TrainingHandle:
        """
        Start training in the background; must be called from a running event loop.

        Returns:
            The job handle. SKIPPED when configuration is missing; the existing handle
            when the same upload id is still training.
        """
        existing = self._handles.get(upload_id)
        if existing is not None and not existing.done():
            logger.info(f'Training already running for upload {upload_id}')
            return existing

        readiness = self.readiness_check()
        if not readiness.is_valid or self.pipeline is None:
            logger.warning(f'Training skipped - missing configuration: {readiness.missing_vars}')
            handle = TrainingHandle(upload_id=upload_id, status=TrainingStatus.SKIPPED, missing_config=readiness.missing_vars)
            self._track(handle)
            return handle

        handle = TrainingHandle(upload_id=upload_id, status=TrainingStatus.STARTED)
        self._track(handle)

        def on_stage(stage: TrainingStage) -> None:
            handle.stage = stage

        async def run() -> None:
            try:
                handle.report = await self.pipeline.train(document,
                                                          upload_id,
                                                          persona_id,
                                                          source_url,
                                                          filename=filename,
                                                          on_stage=on_stage)
                handle.status = TrainingStatus.COMPLETED
            except TrainingError as e:
                handle.stage = TrainingStage.FAILED
                handle.status = TrainingStatus.FAILED
                handle.error = f'{e.stage}: {e}'
            except asyncio.CancelledError:
                logger.warning(f'Training cancelled for upload {upload_id}')
                handle.stage = TrainingStage.FAILED
                handle.status = TrainingStatus.FAILED
                handle.error = 'cancelled'
                raise
            except Exception as e:
                logger.exception(f'Unexpected training error for upload {upload_id}')
                handle.stage = TrainingStage.FAILED
                handle.status = TrainingStatus.FAILED
                handle.error = repr(e)

        handle.task = asyncio.get_running_loop().create_task(run())
        logger.info(f'Training started for upload {upload_id}')
        return handle
