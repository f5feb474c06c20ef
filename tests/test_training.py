"""Tests for the staged training pipeline and job manager."""

import asyncio
from dataclasses import replace

import pytest

from personagraph.errors import TrainingError
from personagraph.models.core import Chunk, PageText
from personagraph.services.context_assembly import ContextAssembler
from personagraph.services.relation_extraction import RelationExtractionService
from personagraph.services.response_generation import ResponseGenerator
from personagraph.services.training import (DEFAULT_TRAINING_CONFIG, TrainingJobManager, TrainingPipeline, TrainingStage,
                                            TrainingStatus)
from personagraph.utils.config_validation import ConfigValidation
from tests.fakes.fake_services import FakeEmbedder, FakeGraphStore, FakeLLM, FakeVectorStore, triplets_from_lines

EINSTEIN_TEXT = '''Einstein | developed | theory of relativity
Einstein | explained | photoelectric effect
Relativity | relates space | time'''

NEWTON_TEXT = '''Newton | formulated | laws of motion
Newton | described | universal gravitation'''

EINSTEIN_URL = 'https://files.example.com/einstein.txt'
NEWTON_URL = 'https://files.example.com/newton.txt'


@pytest.fixture
def fast_config():
    return replace(DEFAULT_TRAINING_CONFIG, retry_delay=0.0, call_timeout=5.0)


def make_pipeline(config, embedder=None, vector_store=None, graph_store=None, llm=None, loader=None):
    kwargs = {'loader': loader} if loader else {}
    return TrainingPipeline(embedder or FakeEmbedder(),
                            RelationExtractionService(llm or FakeLLM(structured=triplets_from_lines)),
                            vector_store if vector_store is not None else FakeVectorStore(),
                            graph_store if graph_store is not None else FakeGraphStore(),
                            config=config,
                            **kwargs)


def ready():
    return ConfigValidation(is_valid=True, missing_vars=[])


class TestTrainingPipeline:
    @pytest.mark.asyncio
    async def test_stages_run_in_order(self, fast_config):
        vector_store, graph_store = FakeVectorStore(), FakeGraphStore()
        stages = []

        report = await make_pipeline(fast_config, vector_store=vector_store, graph_store=graph_store).train(
            EINSTEIN_TEXT.encode(), 'upload-1', 'einstein', EINSTEIN_URL, filename='einstein.txt', on_stage=stages.append)

        assert stages == [
            TrainingStage.LOADING, TrainingStage.EMBEDDING, TrainingStage.EXTRACTING_TRIPLETS,
            TrainingStage.PERSISTING_VECTORS, TrainingStage.PERSISTING_GRAPH, TrainingStage.DONE
        ]
        assert report.chunk_count == 1
        assert report.triplet_count == 3
        chunk = vector_store.documents['upload-1-None-0']
        assert chunk.owner_persona_id == 'einstein'
        assert chunk.source_url == EINSTEIN_URL
        assert chunk.vector
        assert graph_store.count('einstein') == {'entities': 5, 'relations': 3}

    @pytest.mark.asyncio
    async def test_embeddings_batched_by_fifty(self, fast_config):
        embedder = FakeEmbedder()
        pages = [PageText(page_number=i + 1, text=f'page {i}') for i in range(120)]

        report = await make_pipeline(fast_config, embedder=embedder, loader=lambda document, filename: pages).train(
            b'', 'upload-2', 'einstein', EINSTEIN_URL)

        assert report.chunk_count == 120
        assert sorted(len(batch) for batch in embedder.batches) == [20, 50, 50]

    @pytest.mark.asyncio
    async def test_timed_out_embeddings_hold_their_slot(self, fast_config):
        config = replace(fast_config, embedding_batch_size=1, embedding_concurrency=2, retry_attempts=2, call_timeout=0.02)
        embedder = FakeEmbedder(delay=0.1)
        pages = [PageText(page_number=i + 1, text=f'page {i}') for i in range(4)]

        with pytest.raises(TrainingError) as exc_info:
            await make_pipeline(config, embedder=embedder, loader=lambda document, filename: pages).train(
                b'', 'upload-3', 'einstein', EINSTEIN_URL)

        assert exc_info.value.stage == 'embedding'
        assert embedder.max_in_flight <= 2
        assert embedder.in_flight == 0

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, fast_config):
        embedder = FakeEmbedder(fail_times=2)
        vector_store = FakeVectorStore(fail_upserts=1)
        graph_store = FakeGraphStore(fail_upserts=2)

        report = await make_pipeline(fast_config, embedder=embedder, vector_store=vector_store,
                                     graph_store=graph_store).train(EINSTEIN_TEXT.encode(), 'upload-3', 'einstein',
                                                                    EINSTEIN_URL, filename='a.txt')

        assert report.triplet_count == 3
        assert embedder.failures.calls == 3
        assert vector_store.upsert_failures.calls == 2
        assert graph_store.upsert_failures.calls == 3

    @pytest.mark.asyncio
    async def test_failure_after_retries_reports_stage(self, fast_config):
        vector_store = FakeVectorStore()
        graph_store = FakeGraphStore(fail_upserts=3)

        with pytest.raises(TrainingError) as error:
            await make_pipeline(fast_config, vector_store=vector_store, graph_store=graph_store).train(
                EINSTEIN_TEXT.encode(), 'upload-4', 'einstein', EINSTEIN_URL, filename='a.txt')

        assert error.value.stage == TrainingStage.PERSISTING_GRAPH.value
        # Vectors written before the failure stay in place
        assert len(vector_store.documents) == 1

    @pytest.mark.asyncio
    async def test_loading_failure_is_not_retried(self, fast_config):
        calls = []

        def broken_loader(document, filename):
            calls.append(1)
            raise ValueError('corrupt upload')

        with pytest.raises(TrainingError) as error:
            await make_pipeline(fast_config, loader=broken_loader).train(b'', 'upload-5', 'einstein', EINSTEIN_URL)

        assert error.value.stage == TrainingStage.LOADING.value
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_retraining_is_idempotent(self, fast_config):
        vector_store, graph_store = FakeVectorStore(), FakeGraphStore()
        pipeline = make_pipeline(fast_config, vector_store=vector_store, graph_store=graph_store)

        for _ in range(2):
            await pipeline.train(EINSTEIN_TEXT.encode(), 'upload-6', 'einstein', EINSTEIN_URL, filename='a.txt')

        assert len(vector_store.documents) == 1
        assert graph_store.count('einstein') == {'entities': 5, 'relations': 3}

    @pytest.mark.asyncio
    async def test_unowned_upload_goes_to_global_partition(self, fast_config):
        graph_store = FakeGraphStore()

        await make_pipeline(fast_config, graph_store=graph_store).train(NEWTON_TEXT.encode(), 'upload-7', None, NEWTON_URL,
                                                                        filename='n.txt')

        assert graph_store.count(None)['relations'] == 2
        assert graph_store.count('newton')['relations'] == 0

    @pytest.mark.asyncio
    async def test_empty_document_trains_nothing(self, fast_config):
        embedder = FakeEmbedder()

        report = await make_pipeline(fast_config, embedder=embedder).train(b'  ', 'upload-8', 'einstein', EINSTEIN_URL,
                                                                           filename='empty.txt')

        assert report.chunk_count == 0
        assert embedder.batches == []


class TestTrainingJobManager:
    @pytest.mark.asyncio
    async def test_job_completes_with_report(self, fast_config):
        manager = TrainingJobManager(make_pipeline(fast_config), readiness_check=ready)

        handle = manager.submit(EINSTEIN_TEXT.encode(), 'upload-9', 'einstein', EINSTEIN_URL, filename='a.txt')
        assert handle.status == TrainingStatus.STARTED

        await handle.wait()
        assert handle.status == TrainingStatus.COMPLETED
        assert handle.stage == TrainingStage.DONE
        assert handle.report.triplet_count == 3
        assert manager.get('upload-9') is handle

    @pytest.mark.asyncio
    async def test_missing_configuration_skips(self, fast_config):
        manager = TrainingJobManager(make_pipeline(fast_config),
                                     readiness_check=lambda: ConfigValidation(is_valid=False, missing_vars=['NEPTUNE_ENDPOINT']))

        handle = manager.submit(b'text', 'upload-10', 'einstein', EINSTEIN_URL, filename='a.txt')

        assert handle.status == TrainingStatus.SKIPPED
        assert handle.missing_config == ['NEPTUNE_ENDPOINT']
        assert handle.to_dict()['status'] == 'skipped'

    @pytest.mark.asyncio
    async def test_single_flight_per_upload(self, fast_config):
        llm = FakeLLM(structured=triplets_from_lines, delay=0.1)
        manager = TrainingJobManager(make_pipeline(fast_config, llm=llm), readiness_check=ready)

        first = manager.submit(EINSTEIN_TEXT.encode(), 'upload-11', 'einstein', EINSTEIN_URL, filename='a.txt')
        second = manager.submit(EINSTEIN_TEXT.encode(), 'upload-11', 'einstein', EINSTEIN_URL, filename='a.txt')

        assert second is first
        await first.wait()
        assert len(llm.structured_prompts) == 1

    @pytest.mark.asyncio
    async def test_failed_job_records_stage(self, fast_config):
        manager = TrainingJobManager(make_pipeline(fast_config, graph_store=FakeGraphStore(fail_upserts=3)),
                                     readiness_check=ready)

        handle = await manager.submit(EINSTEIN_TEXT.encode(), 'upload-12', 'einstein', EINSTEIN_URL, filename='a.txt').wait()

        assert handle.status == TrainingStatus.FAILED
        assert handle.stage == TrainingStage.FAILED
        assert handle.error.startswith('persisting_graph')

    @pytest.mark.asyncio
    async def test_cancelled_job_is_failed_and_can_be_resubmitted(self, fast_config):
        llm = FakeLLM(structured=triplets_from_lines, delay=0.1)
        manager = TrainingJobManager(make_pipeline(fast_config, llm=llm), readiness_check=ready)

        first = manager.submit(EINSTEIN_TEXT.encode(), 'upload-13', 'einstein', EINSTEIN_URL, filename='a.txt')
        await asyncio.sleep(0.02)
        first.task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first.task

        assert first.status == TrainingStatus.FAILED
        assert first.error == 'cancelled'

        second = manager.submit(EINSTEIN_TEXT.encode(), 'upload-13', 'einstein', EINSTEIN_URL, filename='a.txt')
        assert second is not first
        await second.wait()
        assert second.status == TrainingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_finished_handles_are_evicted_oldest_first(self, fast_config):
        manager = TrainingJobManager(make_pipeline(fast_config), readiness_check=ready, keep_finished=2)

        for upload_id in ('upload-a', 'upload-b', 'upload-c'):
            await manager.submit(EINSTEIN_TEXT.encode(), upload_id, 'einstein', EINSTEIN_URL, filename='a.txt').wait()
        running = manager.submit(EINSTEIN_TEXT.encode(), 'upload-d', 'einstein', EINSTEIN_URL, filename='a.txt')

        assert manager.get('upload-a') is None
        assert manager.get('upload-b').status == TrainingStatus.COMPLETED
        assert manager.get('upload-c').status == TrainingStatus.COMPLETED
        assert manager.get('upload-d') is running
        await running.wait()


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_trained_personas_answer_from_their_own_knowledge(self, fast_config, personas):
        vector_store, graph_store = FakeVectorStore(), FakeGraphStore()
        pipeline = make_pipeline(fast_config, vector_store=vector_store, graph_store=graph_store)

        await asyncio.gather(
            pipeline.train(EINSTEIN_TEXT.encode(), 'upload-e', 'einstein', EINSTEIN_URL, filename='einstein.txt'),
            pipeline.train(NEWTON_TEXT.encode(), 'upload-n', 'newton', NEWTON_URL, filename='newton.txt'))

        assembler = ContextAssembler(vector_store, graph_store)
        context = await assembler.assemble('What did Einstein say about relativity?', 'einstein')

        assert context.source_urls() == [EINSTEIN_URL]
        assert 'Einstein developed theory of relativity' in context.relation_hints
        assert all('Newton' not in hint for hint in context.relation_hints)

        llm = FakeLLM(completion=f'Relativity is my life work.\n[SOURCES_USED_START]\n{EINSTEIN_URL}\n{NEWTON_URL}\n'
                      '[SOURCES_USED_END]')
        response = await ResponseGenerator(llm, personas).generate_response('What about relativity?', context, 'einstein')

        assert [source.url for source in response.sources] == [EINSTEIN_URL]
        assert isinstance(vector_store.documents['upload-n-None-0'], Chunk)

    @pytest.mark.asyncio
    async def test_trained_relation_is_retrieved_for_a_question(self, fast_config):

        def extract_meeting(prompt):
            if 'Einstein met Newton in London' in prompt:
                return triplets_from_lines('Einstein | met | Newton')
            return triplets_from_lines('')

        graph_store = FakeGraphStore()
        pipeline = make_pipeline(fast_config, graph_store=graph_store, llm=FakeLLM(structured=extract_meeting))
        await pipeline.train(b'Einstein met Newton in London.', 'upload-p1', 'P1', EINSTEIN_URL, filename='meeting.txt')

        context = await ContextAssembler(FakeVectorStore(), graph_store).assemble('Did Einstein meet Newton?', 'P1')

        assert 'Einstein met Newton' in context.relation_hints
        assert all(fact.persona_id == 'P1' for fact in context.facts)
