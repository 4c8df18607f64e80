"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig, client=None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Optional pre-built bedrock-runtime client
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        # Create Bedrock runtime client; a single request never outlives the embed timeout
        self.bedrock = client or boto3.client(service_name='bedrock-runtime',
                                              region_name=config.region,
                                              config=BotoConfig(connect_timeout=config.timeout_seconds,
                                                                read_timeout=config.timeout_seconds,
                                                                retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            raise BedrockEmbedError('Cannot embed empty text')

        model = self.model_id.lower()
        if 'titan' in model:
            response = self._call_with_retry({'inputText': text, 'dimensions': self.dimension})
            vector = response.get('embedding')
        elif 'cohere' in model:
            if self.dimension != 1024:
                raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.dimension}')
            response = self._call_with_retry({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or []
            vector = embeddings[0] if embeddings else None
        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        if not vector:
            raise BedrockEmbedError('Bedrock Embed returned no embedding')
        if len(vector) != self.dimension:
            raise BedrockEmbedError(f'Embedding dimension mismatch: expected {self.dimension}, got {len(vector)}')
        return [float(v) for v in vector]

    def embed_document(self, text: str) -> List[float]:
        """
        Generate embeddings for an observation text.

        Args:
            text: Text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Args:
            text: Query text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        return self._embed(text, 'search_query')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_document('test')
            return len(test_embedding) == self.dimension

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
