"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

COHERE_DIMENSION = 1024


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig, timeout_seconds: Optional[float] = None, client=None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            timeout_seconds: Connect/read timeout applied to every call
            client: Pre-built bedrock-runtime client (skips boto3 client creation)
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        if 'cohere' in self.model_id.lower() and self.output_embedding_length != COHERE_DIMENSION:
            raise BedrockEmbedError(f'Cohere models only support {COHERE_DIMENSION} dimensions, got {self.output_embedding_length}')

        if client is None:
            boto_config = Config(connect_timeout=timeout_seconds, read_timeout=timeout_seconds,
                                 retries={'max_attempts': 0}) if timeout_seconds else None
            client = boto3.client(service_name='bedrock-runtime', region_name=config.region, config=boto_config)
        self.bedrock = client

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

    def embed(self, text: str, input_type: str = 'search_document') -> List[float]:
        """
        Generate an embedding for experience or query text.

        Args:
            text: Text to embed
            input_type: Cohere input type, 'search_document' or 'search_query'

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not text or not text.strip():
            raise BedrockEmbedError('Empty text provided for embedding')

        model = self.model_id.lower()
        if 'titan' in model:
            response = self._call_with_retry({'inputText': text, 'dimensions': self.output_embedding_length})
            embedding = response.get('embedding')
        elif 'cohere' in model:
            response = self._call_with_retry({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or []
            embedding = embeddings[0] if embeddings else None
        else:
            raise BedrockEmbedError(f'Unsupported model for embedding: {self.model_id}')

        if not embedding:
            raise BedrockEmbedError(f'Bedrock returned no embedding for model {self.model_id}')
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as e:
            raise BedrockEmbedError(f'Malformed embedding from model {self.model_id}: {e}')
