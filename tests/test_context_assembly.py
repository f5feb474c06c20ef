"""Tests for merging vector chunks and graph relations into one context."""

import pytest

from personagraph.models.core import Chunk, GraphFact, RetrievedContext, Triplet, VectorHit
from personagraph.services.context_assembly import ContextAssembler, fact_to_hint, relation_to_text
from personagraph.utils.opensearch_client import VectorStoreError


def add_chunks(vector_store, persona_id, texts, source_url='https://files.example.com/einstein.pdf'):
    for index, text in enumerate(texts):
        chunk_id = Chunk.make_id('upload-1', 1, index)
        vector_store.documents[chunk_id] = Chunk(id=chunk_id,
                                                 content=text,
                                                 owner_persona_id=persona_id,
                                                 source_url=source_url,
                                                 upload_id='upload-1',
                                                 page_number=1,
                                                 chunk_index=index)


class TestRelationPhrases:
    def test_known_relations_map_to_phrases(self):
        assert relation_to_text('HAS') == 'includes'
        assert relation_to_text('PART_OF') == 'is part of'
        assert relation_to_text('DESCRIBES') == 'describes'
        assert relation_to_text('RELATES_TO') == 'relates to'

    def test_unknown_relation_is_lower_cased(self):
        assert relation_to_text('DISCOVERED') == 'discovered'
        assert fact_to_hint(GraphFact('Einstein', 'DEVELOPED', 'relativity', 'einstein')) == 'Einstein developed relativity'


class TestRenderedContext:
    def test_wire_format(self):
        context = RetrievedContext(query='q',
                                   persona_id='einstein',
                                   text_chunks=[VectorHit('c1', 'Light bends.', 0.91234, 'https://x.example/a.pdf')],
                                   relation_hints=['Einstein developed relativity'])

        assert context.to_prompt() == ('Relevant Chunks:\nChunk 1:\nLight bends.\n(Source: https://x.example/a.pdf, Score: 0.912)\n'
                                       'Relevant Relations From Knowledge Graph:\nRelations:\n- Einstein developed relativity')

    def test_missing_source_renders_unknown(self):
        context = RetrievedContext(query='q', persona_id=None, text_chunks=[VectorHit('c1', 'text', 0.5, None)])
        assert '(Source: unknown, Score: 0.500)' in context.to_prompt()


class TestContextAssembler:
    @pytest.mark.asyncio
    async def test_combines_chunks_and_relations(self, assembler, vector_store, graph_store):
        add_chunks(vector_store, 'einstein', ['Relativity changed physics.', 'Photons carry energy.'])
        graph_store.upsert([Triplet('Einstein', 'developed', 'relativity')], 'einstein')

        context = await assembler.assemble('Tell me about relativity', 'einstein')

        assert context.chunk_count == 2
        assert context.text_chunks[0].text == 'Relativity changed physics.'
        assert context.relation_hints == ['Einstein developed relativity']
        assert vector_store.searches == [('Tell me about relativity', 5, 'einstein')]
        assert graph_store.searches == [('Tell me about relativity', 'einstein', 100)]

    @pytest.mark.asyncio
    async def test_caps_chunks_and_relations(self, vector_store, graph_store):
        add_chunks(vector_store, 'einstein', [f'gravity note {i}' for i in range(8)])
        graph_store.upsert([Triplet('Einstein', 'studied', f'gravity topic {i}') for i in range(20)], 'einstein')

        context = await ContextAssembler(vector_store, graph_store).assemble('gravity', 'einstein')

        assert context.chunk_count == 5
        assert context.relation_count == 12

    @pytest.mark.asyncio
    async def test_persona_scoping(self, assembler, vector_store, graph_store):
        add_chunks(vector_store, 'newton', ['Gravity acts at a distance.'])
        graph_store.upsert([Triplet('Newton', 'described', 'gravity')], 'newton')

        context = await assembler.assemble('gravity', 'einstein')

        assert context.chunk_count == 0
        assert context.relation_count == 0

    @pytest.mark.asyncio
    async def test_stop_word_query_has_no_relations(self, assembler, graph_store):
        graph_store.upsert([Triplet('Einstein', 'developed', 'relativity')], 'einstein')

        context = await assembler.assemble('What is it?', 'einstein')
        assert context.relation_hints == []

    @pytest.mark.asyncio
    async def test_failed_vector_search_keeps_relations(self, vector_store, graph_store):
        vector_store.search_error = VectorStoreError('index unavailable')
        graph_store.upsert([Triplet('Einstein', 'developed', 'relativity')], 'einstein')

        context = await ContextAssembler(vector_store, graph_store).assemble('relativity', 'einstein')

        assert context.chunk_count == 0
        assert context.relation_hints == ['Einstein developed relativity']

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, vector_store, graph_store):
        graph_store.search_error = RuntimeError('bug')

        with pytest.raises(RuntimeError):
            await ContextAssembler(vector_store, graph_store).assemble('relativity', 'einstein')
