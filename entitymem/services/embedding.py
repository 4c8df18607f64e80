"""
Embedding capability for the memory graph.

The embedder is optional. Whether it is enabled is decided once, when the
service is built; after that every call either returns a vector or None, and
None always means "score this row lexically". Embedder failures and timeouts
are logged and never reach the caller.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional

from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import BedrockEmbedConfig
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingService:
    """Bounded-time wrapper around any object with embed_document/embed_query."""

    def __init__(self, embedder=None, timeout_seconds: float = 5.0, max_workers: int = 4):
        """
        Args:
            embedder: Object exposing ``embed_document(text)`` and ``embed_query(text)``,
                or None to run without embeddings
            timeout_seconds: Upper bound on a single embedding call
            max_workers: Concurrent embedding calls allowed in flight
        """
        self.embedder = embedder
        self.enabled = embedder is not None
        self.timeout_seconds = timeout_seconds
        self._executor = (ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='entitymem-embed')
                          if self.enabled else None)

        if self.enabled:
            logger.info(f'Embeddings enabled ({type(embedder).__name__}, timeout {timeout_seconds}s)')
        else:
            logger.info('Embeddings disabled; search uses lexical scoring')

    def embed_document(self, text: str) -> Optional[List[float]]:
        """Embed an observation text, or None if the embedder is off or unavailable."""
        if not self.enabled:
            return None
        return self._run(self.embedder.embed_document, text, 'document')

    def embed_query(self, text: str) -> Optional[List[float]]:
        """Embed a search query, or None if the embedder is off or unavailable."""
        if not self.enabled:
            return None
        return self._run(self.embedder.embed_query, text, 'query')

    def _run(self, fn: Callable[[str], List[float]], text: str, kind: str) -> Optional[List[float]]:
        future = self._executor.submit(fn, text)
        try:
            vector = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f'Embedder unavailable: {kind} embedding timed out after {self.timeout_seconds}s')
            return None
        except BedrockEmbedError as e:
            logger.warning(f'Embedder unavailable: {kind} embedding failed: {e}')
            return None
        except Exception as e:
            logger.warning(f'Embedder unavailable: unexpected {kind} embedding error: {e}')
            return None

        if not vector:
            logger.warning(f'Embedder unavailable: empty {kind} embedding')
            return None
        return list(vector)

    def close(self) -> None:
        """Stop the worker threads without waiting for stuck calls."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)


def build_embedding_service(config: BedrockEmbedConfig) -> EmbeddingService:
    """Create the process-wide embedding service from configuration.

    Args:
        config: BedrockEmbedConfig; ``enabled`` is read here and only here

    Returns:
        EmbeddingService, disabled if embeddings are switched off or the client cannot be built
    """
    if not config.enabled:
        return EmbeddingService(None)

    try:
        embedder = BedrockEmbed(config)
    except Exception as e:
        logger.warning(f'Could not initialise Bedrock Embed client, continuing without embeddings: {e}')
        return EmbeddingService(None)

    return EmbeddingService(embedder, timeout_seconds=config.timeout_seconds)
