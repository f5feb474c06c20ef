"""Tests for triplet parsing and batched relation extraction."""

import asyncio

import pytest

from personagraph.models.core import DEFAULT_PREDICATE, Triplet
from personagraph.services.relation_extraction import (CHUNK_SEPARATOR, RelationExtractionService, TripletBatchModel,
                                                       TripletModel, build_prompt, normalize_triplets, parse_lines)
from personagraph.utils.bedrock_llm import CompletionServiceError, StructuredOutputError
from tests.fakes.fake_services import FakeLLM, triplets_from_lines


class TestNormalization:
    def test_empty_or_generic_predicate_becomes_relates_to(self):
        triplets = normalize_triplets([
            TripletModel(subject=' Einstein ', predicate='', object=' relativity '),
            TripletModel(subject='Newton', predicate='Relationship', object='gravity'),
            TripletModel(subject='Bohr', predicate=' debated ', object='Einstein'),
        ])

        assert triplets == [
            Triplet('Einstein', DEFAULT_PREDICATE, 'relativity'),
            Triplet('Newton', DEFAULT_PREDICATE, 'gravity'),
            Triplet('Bohr', 'debated', 'Einstein'),
        ]

    def test_drops_triplets_without_subject_or_object(self):
        triplets = normalize_triplets([TripletModel(subject='', predicate='wrote', object='Principia')])
        assert triplets == []

    def test_schema_defaults_missing_predicate(self):
        batch = TripletBatchModel.model_validate({'triplets': [{'subject': 'Einstein', 'object': 'photons'}]})
        assert batch.triplets[0].predicate == ''


class TestLineParser:
    def test_parses_dash_separated_lines(self):
        raw = 'Here you go:\n1. Einstein - developed - relativity\n- Newton - wrote - Principia\nnot a triplet'
        result = parse_lines(raw)

        assert result.ok
        assert result.triplets == [Triplet('Einstein', 'developed', 'relativity'), Triplet('Newton', 'wrote', 'Principia')]

    def test_no_matching_lines_is_parse_error(self):
        result = parse_lines('I could not find any relationships.')

        assert not result.ok
        assert result.triplets == []
        assert result.error is not None


class TestPrompt:
    def test_joins_chunks_with_separator(self):
        prompt = build_prompt(['first chunk', 'second chunk'], 'einstein')
        assert f'first chunk{CHUNK_SEPARATOR}second chunk' in prompt
        assert 'Persona ID: einstein' in prompt


class TestRelationExtractionService:
    @pytest.mark.asyncio
    async def test_batches_of_ten(self):
        llm = FakeLLM(structured=triplets_from_lines)
        texts = [f'Scientist{i} | studied | Topic{i}' for i in range(25)]

        result = await RelationExtractionService(llm).extract(texts, 'einstein', batch_size=10)

        assert result.total_batches == 3
        assert result.failed_batches == 0
        assert len(llm.structured_prompts) == 3
        assert len(result.triplets) == 25

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        llm = FakeLLM(structured=triplets_from_lines, delay=0.05)
        texts = [f'A{i} | b | C{i}' for i in range(20)]

        result = await RelationExtractionService(llm).extract(texts, batch_size=1, concurrency=5)

        assert result.total_batches == 20
        assert 1 < llm.max_in_flight <= 5

    @pytest.mark.asyncio
    async def test_failed_batches_are_skipped(self):
        """Two of ten sub-batches fail: eight batches of triplets come back and the job succeeds."""

        def handler(prompt):
            if 'Chunk3 ' in prompt or 'Chunk7 ' in prompt:
                return CompletionServiceError('throttled')
            return triplets_from_lines(prompt)

        texts = [f'Chunk{i} | mentions | Idea{i}' for i in range(10)]
        result = await RelationExtractionService(FakeLLM(structured=handler)).extract(texts, batch_size=1)

        assert result.total_batches == 10
        assert result.failed_batches == 2
        assert result.succeeded_batches == 8
        assert {t.subject for t in result.triplets} == {f'Chunk{i}' for i in range(10) if i not in (3, 7)}

    @pytest.mark.asyncio
    async def test_invalid_structured_output_falls_back_to_line_parser(self):

        def handler(prompt):
            return StructuredOutputError('bad json', raw_text='Einstein - explained - photoelectric effect')

        result = await RelationExtractionService(FakeLLM(structured=handler)).extract(['some text'])

        assert result.failed_batches == 0
        assert result.triplets == [Triplet('Einstein', 'explained', 'photoelectric effect')]

    @pytest.mark.asyncio
    async def test_unparseable_output_counts_as_failed_batch(self):

        def handler(prompt):
            return StructuredOutputError('bad json', raw_text='nothing useful')

        result = await RelationExtractionService(FakeLLM(structured=handler)).extract(['some text'])

        assert result.failed_batches == 1
        assert result.triplets == []

    @pytest.mark.asyncio
    async def test_call_timeout_fails_the_batch(self):
        llm = FakeLLM(structured=triplets_from_lines, delay=0.3)
        result = await RelationExtractionService(llm, call_timeout=0.05).extract(['A | b | C'])

        assert result.failed_batches == 1

    @pytest.mark.asyncio
    async def test_timed_out_calls_keep_their_slot_until_they_return(self):
        llm = FakeLLM(structured=triplets_from_lines, delay=0.2)
        texts = [f'A{i} | b | C{i}' for i in range(6)]

        result = await RelationExtractionService(llm, call_timeout=0.02).extract(texts, batch_size=1, concurrency=2)

        assert result.failed_batches == 6
        assert len(llm.structured_prompts) == 6
        assert llm.max_in_flight <= 2
        assert llm.in_flight == 0

    @pytest.mark.asyncio
    async def test_no_texts_no_calls(self):
        llm = FakeLLM()
        result = await RelationExtractionService(llm).extract(['', '   '])

        assert result.total_batches == 0
        assert llm.structured_prompts == []

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        llm = FakeLLM(structured=triplets_from_lines, delay=0.2)
        task = asyncio.ensure_future(RelationExtractionService(llm).extract(['A | b | C']))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
