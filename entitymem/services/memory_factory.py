"""
Wiring for the memory subsystem.

One store, one embedding service and one Graph/Search Engine pair are built
per process. Both facades are views over those same instances, so a fact
written through one is visible to a search through the other.
"""

import threading
from dataclasses import dataclass
from typing import Optional, Union

from ..utils.config import AppConfig, config
from ..utils.logging_config import get_logger
from ..utils.sqlite_store import SQLiteStore
from .embedding import EmbeddingService, build_embedding_service
from .flat_memory import FlatMemoryService
from .graph_engine import GraphEngine
from .graph_memory import GraphMemoryService
from .memory_summary import SummaryService
from .search_engine import SearchEngine

logger = get_logger(__name__)


@dataclass
class MemoryServices:
    """Everything a transport needs, built once."""
    config: AppConfig
    store: SQLiteStore
    embeddings: EmbeddingService
    graph: GraphEngine
    search: SearchEngine
    summaries: SummaryService
    graph_memory: GraphMemoryService
    flat_memory: FlatMemoryService

    @property
    def variant(self) -> str:
        return self.config.memory.variant

    def active_facade(self) -> Union[GraphMemoryService, FlatMemoryService]:
        """The facade selected by the configured memory variant."""
        return self.graph_memory if self.variant == 'graph' else self.flat_memory

    def close(self) -> None:
        self.embeddings.close()
        self.store.close()


def build_memory_services(app_config: Optional[AppConfig] = None,
                          embeddings: Optional[EmbeddingService] = None) -> MemoryServices:
    """Build the store, engines and both facades.

    Args:
        app_config: Configuration to use; defaults to the process configuration
        embeddings: Pre-built embedding service (tests inject a fake one); built
            from ``app_config.bedrock_embed`` when omitted

    Returns:
        MemoryServices sharing a single store and engine pair
    """
    app_config = app_config or config
    store = SQLiteStore(app_config.store)
    embeddings = embeddings or build_embedding_service(app_config.bedrock_embed)

    graph = GraphEngine(store, embeddings)
    search = SearchEngine(graph, embeddings)
    summaries = SummaryService(graph)

    services = MemoryServices(config=app_config,
                              store=store,
                              embeddings=embeddings,
                              graph=graph,
                              search=search,
                              summaries=summaries,
                              graph_memory=GraphMemoryService(graph, search, summaries, app_config.memory),
                              flat_memory=FlatMemoryService(graph, search, app_config.memory))

    logger.info(f'Memory services ready (variant {services.variant}, store {app_config.store.db_path})')
    return services


_services: Optional[MemoryServices] = None
_services_lock = threading.Lock()


def get_memory_services() -> MemoryServices:
    """Process-wide MemoryServices, built from the global configuration on first use."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_memory_services()
        return _services
