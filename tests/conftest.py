"""Shared fixtures for the entity memory tests."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List

import pytest

from entitymem.services.embedding import EmbeddingService
from entitymem.services.memory_factory import MemoryServices, build_memory_services
from entitymem.utils.config import AppConfig, BedrockEmbedConfig, MCPConfig, MemoryConfig, StoreConfig

PUNCTUATION = '.,:;!?"\'()'


class FakeEmbedder:
    """Deterministic bag-of-words embedder.

    Every distinct word gets its own dimension, so texts sharing words are
    similar and texts sharing none are orthogonal.
    """

    def __init__(self, dimension: int = 512):
        self.dimension = dimension
        self.model_id = 'fake-bow'
        self.vocabulary: Dict[str, int] = {}
        self.calls = 0
        self._lock = threading.Lock()

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        with self._lock:
            self.calls += 1
            for raw in text.lower().split():
                token = raw.strip(PUNCTUATION)
                if not token:
                    continue
                if token not in self.vocabulary:
                    self.vocabulary[token] = len(self.vocabulary)
                vector[self.vocabulary[token] % self.dimension] += 1.0
        return vector

    def embed_document(self, text: str) -> List[float]:
        return self._vector(text)

    def embed_query(self, text: str) -> List[float]:
        return self._vector(text)

    def health_check(self) -> bool:
        return True


class FailingEmbedder:
    """Embedder whose backend is always down."""

    model_id = 'failing'

    def embed_document(self, text: str) -> List[float]:
        raise RuntimeError('embedding backend unreachable')

    def embed_query(self, text: str) -> List[float]:
        raise RuntimeError('embedding backend unreachable')

    def health_check(self) -> bool:
        return False


class SlowEmbedder(FakeEmbedder):
    """Blocks until released, to exercise the embedding timeout."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def embed_document(self, text: str) -> List[float]:
        self.release.wait(timeout=2.0)
        return self._vector(text)

    def embed_query(self, text: str) -> List[float]:
        self.release.wait(timeout=2.0)
        return self._vector(text)


def make_config(tmp_path: Path, variant: str = 'graph', embeddings_enabled: bool = False) -> AppConfig:
    return AppConfig(environment='test',
                     log_level='DEBUG',
                     store=StoreConfig(db_path=str(tmp_path / 'memory.db'),
                                       busy_timeout_ms=1000,
                                       retry_attempts=3,
                                       retry_delay=0.001),
                     bedrock_embed=BedrockEmbedConfig(enabled=embeddings_enabled,
                                                      region='us-east-1',
                                                      model_id='amazon.titan-embed-text-v2:0',
                                                      dimension=8,
                                                      retry_attempts=2,
                                                      retry_delay=0.0,
                                                      timeout_seconds=1.0),
                     memory=MemoryConfig(variant=variant,
                                         flat_entity_name='User Preferences',
                                         flat_entity_type='concept',
                                         default_search_limit=10,
                                         tool_search_limit=5,
                                         context_memory_limit=3),
                     mcp=MCPConfig(transport='stdio', host='127.0.0.1', port=8000))


def build_services(tmp_path: Path, embedder=None, variant: str = 'graph', timeout_seconds: float = 2.0) -> MemoryServices:
    embeddings = EmbeddingService(embedder, timeout_seconds=timeout_seconds)
    return build_memory_services(make_config(tmp_path, variant=variant), embeddings=embeddings)


@pytest.fixture
def services(tmp_path: Path):
    """Memory services without embeddings (lexical search)."""
    svc = build_services(tmp_path)
    yield svc
    svc.close()


@pytest.fixture
def vector_services(tmp_path: Path):
    """Memory services with the deterministic fake embedder."""
    svc = build_services(tmp_path, embedder=FakeEmbedder())
    yield svc
    svc.close()


@pytest.fixture
def graph(services: MemoryServices):
    return services.graph


@pytest.fixture
def store(services: MemoryServices):
    return services.store
