"""
Amazon Bedrock completion client wrapper with structured-output support.
"""

import json
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from ..errors import ParseError, TransientServiceError
from .config import BedrockLLMConfig
from .json_utils import load_json_object
from .logging_config import get_logger

logger = get_logger(__name__)

ModelT = TypeVar('ModelT', bound=BaseModel)

STRUCTURED_SYSTEM_PROMPT = """You are a precise information extraction system.
Respond with ONLY a JSON object that validates against this JSON schema:
{schema}
Do not add commentary before or after the JSON."""


class CompletionServiceError(TransientServiceError):
    """Custom exception for Bedrock completion errors."""
    pass


class StructuredOutputError(ParseError):
    """The model answered, but the answer does not validate against the schema."""

    def __init__(self, message: str, raw_text: str):
        super().__init__(message)
        self.raw_text = raw_text


class BedrockLLM:
    """Amazon Bedrock completion client.

    A single call per request; retry policy belongs to the caller.
    """

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id

        # Create Bedrock runtime client with timeout configuration
        self.bedrock_runtime = boto3.client('bedrock-runtime',
                                            region_name=config.region,
                                            config=BotoConfig(connect_timeout=config.connect_timeout,
                                                              read_timeout=config.read_timeout,
                                                              retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate response using the Bedrock Converse stream API.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            CompletionServiceError: If the call fails
        """
        inf_params = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': stop_sequences or [],
        }

        try:
            stream = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                          messages=messages,
                                                          system=[{
                                                              'text': system_prompt
                                                          }],
                                                          inferenceConfig=inf_params).get('stream')

            msg = ''
            invoke_metrics = None

            if stream:
                for event in stream:
                    if 'contentBlockDelta' in event:
                        msg += event['contentBlockDelta']['delta'].get('text', '')
                    if 'metadata' in event:
                        invoke_metrics = {**event['metadata'].get('usage', {}), **event['metadata'].get('metrics', {})}

            logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
            return msg, invoke_metrics

        except (ClientError, BotoCoreError) as e:
            logger.warning(f'Bedrock LLM request failed: {e}')
            raise CompletionServiceError(f'Bedrock LLM request failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in Bedrock LLM: {e}')
            raise CompletionServiceError(f'Unexpected Bedrock LLM error: {e}')

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Plain completion: one system segment, one user segment.

        Raises:
            CompletionServiceError: If the call fails
        """
        messages = [{'role': 'user', 'content': [{'text': user_prompt}]}]
        response, _ = self.generate_response(messages=messages, system_prompt=system_prompt)
        return response

    def complete_structured(self, prompt: str, schema: Type[ModelT]) -> ModelT:
        """
        Completion whose answer must validate against a pydantic schema.

        The assistant turn is prefilled with a JSON code fence so the model answers
        with the object directly.

        Args:
            prompt: User prompt
            schema: Pydantic model describing the expected object

        Returns:
            Validated schema instance

        Raises:
            CompletionServiceError: If the call fails
            StructuredOutputError: If the answer is not valid JSON for the schema
        """
        system_prompt = STRUCTURED_SYSTEM_PROMPT.format(schema=json.dumps(schema.model_json_schema()))
        messages = [{
            'role': 'user',
            'content': [{
                'text': prompt
            }]
        }, {
            'role': 'assistant',
            'content': [{
                'text': '```json'
            }]
        }]

        response, _ = self.generate_response(messages=messages, system_prompt=system_prompt, stop_sequences=['```'])

        try:
            return schema.model_validate(load_json_object(response))
        except (json.JSONDecodeError, SchemaValidationError) as e:
            raise StructuredOutputError(f'Structured output failed validation: {e}', raw_text=response)

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.complete("You are a helpful assistant. Respond with just 'OK'.", 'Hi')
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
