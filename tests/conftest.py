"""Pytest configuration and fixtures."""

import os

import pytest

from personagraph.models.core import Persona
from personagraph.services.context_assembly import ContextAssembler
from personagraph.services.response_generation import ResponseGenerator
from personagraph.services.stores import InMemoryConversationStore, InMemoryDebateRepository, InMemoryPersonaRepository
from tests.fakes.fake_services import FakeEmbedder, FakeGraphStore, FakeLLM, FakeVectorStore

EINSTEIN = Persona(id='einstein', name='Albert Einstein', short_bio='Theoretical physicist, author of relativity.')
NEWTON = Persona(id='newton', name='Isaac Newton', short_bio='Natural philosopher, author of the Principia.')


@pytest.fixture(scope='session', autouse=True)
def setup_test_env():
    """Keep log output quiet and the environment predictable."""
    os.environ.setdefault('LOG_LEVEL', 'WARNING')
    os.environ['ENVIRONMENT'] = 'test'


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def vector_store(embedder):
    return FakeVectorStore(embedder)


@pytest.fixture
def graph_store():
    return FakeGraphStore()


@pytest.fixture
def personas():
    return InMemoryPersonaRepository([EINSTEIN, NEWTON])


@pytest.fixture
def conversations():
    return InMemoryConversationStore()


@pytest.fixture
def debates():
    return InMemoryDebateRepository()


@pytest.fixture
def assembler(vector_store, graph_store):
    return ContextAssembler(vector_store, graph_store)


@pytest.fixture
def generator(llm, personas):
    return ResponseGenerator(llm, personas)
