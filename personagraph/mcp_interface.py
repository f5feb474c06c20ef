"""
MCP Interface Layer using fastmcp for persona chat, debates and document training.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from personagraph.errors import NotFoundError, PersonaGraphError, ValidationError
from personagraph.models.core import Persona
from personagraph.services.chat import ChatService
from personagraph.services.context_assembly import ContextAssembler
from personagraph.services.debate import DebateEngine
from personagraph.services.relation_extraction import RelationExtractionService
from personagraph.services.response_generation import ResponseGenerator
from personagraph.services.stores import InMemoryConversationStore, InMemoryDebateRepository, InMemoryPersonaRepository
from personagraph.services.training import TrainingJobManager, TrainingPipeline
from personagraph.utils.bedrock_embed import BedrockEmbed
from personagraph.utils.bedrock_llm import BedrockLLM
from personagraph.utils.config import config
from personagraph.utils.config_validation import can_perform_training, get_config_status
from personagraph.utils.health_check import get_system_info
from personagraph.utils.logging_config import get_logger
from personagraph.utils.neptune_client import NeptuneClient
from personagraph.utils.opensearch_client import OpenSearchClient

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Persona Graph')

personas = InMemoryPersonaRepository()
conversations = InMemoryConversationStore()
debates = InMemoryDebateRepository()

# Debate bookkeeping that never touches the remote stores
debate_admin = DebateEngine(None, None, debates, conversations)

_services: Dict[str, Any] = {}


def get_services() -> Dict[str, Any]:
    """Build the remote clients and services on first use."""
    if _services:
        return _services

    embedder = BedrockEmbed(config.bedrock_embed)
    llm = BedrockLLM(config.bedrock_llm)
    vector_store = OpenSearchClient(config.opensearch, embedder=embedder)
    vector_store.create_index_if_not_exists()
    graph_store = NeptuneClient(config.neptune)

    assembler = ContextAssembler(vector_store,
                                 graph_store,
                                 top_k=config.retrieval.top_k,
                                 max_relations=config.retrieval.max_relations,
                                 graph_match_limit=config.retrieval.graph_match_limit,
                                 call_timeout=config.training.call_timeout)
    generator = ResponseGenerator(llm, personas, call_timeout=config.training.call_timeout)
    extractor = RelationExtractionService(llm, call_timeout=config.training.call_timeout)

    _services.update(assembler=assembler,
                     generator=generator,
                     pipeline=TrainingPipeline(embedder, extractor, vector_store, graph_store, config.training),
                     chat=ChatService(assembler, generator, conversations),
                     debate=DebateEngine(assembler, generator, debates, conversations))
    return _services


class _LazyPipelineJobManager(TrainingJobManager):
    """Connects to the stores only once training configuration is complete."""

    def submit(self, *args, **kwargs):
        if self.pipeline is None and can_perform_training().is_valid:
            self.pipeline = get_services()['pipeline']
        return super().submit(*args, **kwargs)


training_jobs = _LazyPipelineJobManager(pipeline=None)


def _tool_error(action: str, e: Exception) -> Exception:
    if isinstance(e, (ValidationError, NotFoundError)):
        logger.warning(f'Rejected {action}: {e}')
    elif isinstance(e, PersonaGraphError):
        logger.error(f'Service error in {action}: {e}')
    else:
        logger.error(f'Unexpected error in {action}: {e}')
    return Exception(f'{action} failed: {e}')


@mcp.tool()
def register_persona(persona_id: str, name: str, short_bio: str = '') -> Dict[str, str]:
    """Register a persona whose style answers and debate turns use.

    Args:
        persona_id: Persona ID
        name: Display name, e.g. "Albert Einstein"
        short_bio: One-paragraph description of the persona
    """
    if not persona_id or not name:
        raise Exception('persona_id and name are required')
    persona = personas.add(Persona(id=persona_id, name=name, short_bio=short_bio))
    return {'id': persona.id, 'name': persona.name}


@mcp.tool()
async def train_document(file_path: str, upload_id: str, source_url: str, persona_id: Optional[str] = None) -> Dict[str, Any]:
    """Start training a PDF or text document into a persona's knowledge.

    Args:
        file_path: Local path of the uploaded document
        upload_id: Upload ID, one training job in flight per upload
        source_url: Public URL cited by answers
        persona_id: Owning persona (omit for the shared corpus)

    Returns:
        Job status: started, skipped (with missing_config) or the in-flight job
    """
    try:
        handle = training_jobs.submit(file_path, upload_id, persona_id, source_url, filename=file_path)
        return handle.to_dict()
    except Exception as e:
        raise _tool_error('Training', e)


@mcp.tool()
def training_status(upload_id: str) -> Dict[str, Any]:
    """Get the status, stage and report of a training job."""
    handle = training_jobs.get(upload_id)
    if handle is None:
        raise Exception(f'No training job for upload {upload_id}')
    return handle.to_dict()


@mcp.tool()
async def assemble_context(query: str, persona_id: Optional[str] = None) -> str:
    """Retrieve the rendered chunk and relation context for a query."""
    try:
        context = await get_services()['assembler'].assemble(query, persona_id)
        return context.to_prompt()
    except Exception as e:
        raise _tool_error('Context assembly', e)


@mcp.tool()
async def generate_response(prompt: str, persona_id: Optional[str] = None) -> Dict[str, Any]:
    """Answer a question in a persona's voice from its retrieved knowledge.

    Returns:
        Answer text and the cited sources (url, score)
    """
    try:
        services = get_services()
        context = await services['assembler'].assemble(prompt, persona_id)
        response = await services['generator'].generate_response(prompt, context, persona_id)
        return {'answer': response.answer, 'sources': [(s.url, s.score) for s in response.sources]}
    except Exception as e:
        raise _tool_error('Response generation', e)


@mcp.tool()
def create_conversation(persona_id: str, user_id: Optional[str] = None) -> str:
    """Create a chat conversation with a persona and return its ID."""
    return conversations.create_conversation(user_id=user_id, persona_id=persona_id).id


@mcp.tool()
async def send_chat_message(conversation_id: str, content: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Send a user message and store the persona's answer."""
    try:
        turn = await get_services()['chat'].send_message(conversation_id, content, user_id)
        return {
            'user_message_id': turn.user_message.id,
            'answer': turn.ai_message.content,
            'sources': [(s.url, s.score) for s in turn.sources]
        }
    except Exception as e:
        raise _tool_error('Chat', e)


@mcp.tool()
def create_debate(topic: str, participant_persona_ids: List[str], user_id: Optional[str] = None,
                  max_turns: Optional[int] = None) -> Dict[str, Any]:
    """Create a debate between exactly two personas."""
    try:
        debate = debate_admin.create_debate(topic, participant_persona_ids, created_by=user_id, max_turns=max_turns)
        return {'id': debate.id, 'conversation_id': debate.conversation_id, 'topic': debate.topic}
    except Exception as e:
        raise _tool_error('Debate creation', e)


@mcp.tool()
async def generate_debate_turn(debate_id: str, seed_message: Optional[str] = None) -> Dict[str, Any]:
    """Generate the next debate turn; the speaker alternates between the two participants."""
    try:
        engine = get_services()['debate']
        message = await engine.generate_turn(debate_id, seed_message)
        return {
            'message_id': message.id,
            'persona_id': message.author_persona_id,
            'content': message.content,
            'state': engine.get_state(debate_id).value
        }
    except Exception as e:
        raise _tool_error('Debate turn', e)


@mcp.tool()
def interject_debate(debate_id: str, content: str, user_id: Optional[str] = None) -> str:
    """Add a user message to a debate; the next speaker answers it."""
    try:
        return debate_admin.interject(debate_id, content, user_id).id
    except Exception as e:
        raise _tool_error('Debate interjection', e)


@mcp.tool()
def stop_debate(debate_id: str) -> str:
    """Stop a debate; a turn still being generated is discarded."""
    try:
        return debate_admin.stop_debate(debate_id).status.value
    except Exception as e:
        raise _tool_error('Stopping debate', e)


@mcp.tool()
def config_status() -> Dict[str, Any]:
    """Report which services are configured and which capabilities are available."""
    return get_config_status()


@mcp.tool()
def system_info() -> Dict[str, Any]:
    """Report configuration and the health of every remote service."""
    return get_system_info()


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
