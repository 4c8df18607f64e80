"""
Graph facade: entity / observation / relation memory for tool-calling callers.

Validates every argument before it reaches the Graph Engine, then delegates.
NotFound and AlreadyExists come back as values; StoreUnavailableError is raised.
"""

from typing import List, Optional, Union

from ..models.core import (AlreadyExists, Entity, EntityWithObservations, KnowledgeGraph, MemoryOverview, MemoryStats,
                           MemorySummary, NotFound, Observation, Relation, SearchResult, SummaryStatus, UserEdit)
from ..utils.config import MemoryConfig
from ..utils.logging_config import get_logger
from .graph_engine import GraphEngine
from .memory_summary import SummaryService
from .search_engine import SearchEngine
from .validation import (MemoryValidationError, optional_project, require_entity_type, require_importance, require_limit,
                         require_text)

logger = get_logger(__name__)


class GraphMemoryService:
    """Structured memory API over the shared graph and search engines."""

    def __init__(self, graph: GraphEngine, search: SearchEngine, summaries: SummaryService, config: MemoryConfig):
        self.graph = graph
        self.search = search
        self.summaries = summaries
        self.config = config

        logger.info('Initialized GraphMemoryService')

    # ── Writes ────────────────────────────────────────────────

    def create_entity(self,
                      user_id: str,
                      name: str,
                      entity_type: str,
                      observations: Optional[List[str]] = None,
                      project_id: Optional[str] = None) -> EntityWithObservations:
        """Create an entity (or merge into the existing one with that name)."""
        user_id = require_text(user_id, 'user_id')
        name = require_text(name, 'name')
        entity_type = require_entity_type(entity_type)
        texts = [require_text(text, 'observation') for text in observations or []]
        return self.graph.create_entity(user_id, optional_project(project_id), name, entity_type, texts)

    def add_observation(self,
                        user_id: str,
                        entity_name: str,
                        observation: str,
                        importance: Optional[str] = None,
                        project_id: Optional[str] = None) -> Union[Observation, NotFound]:
        """Add a fact to an existing entity, resolved by name within the scope."""
        user_id = require_text(user_id, 'user_id')
        entity_name = require_text(entity_name, 'entity_name')
        observation = require_text(observation, 'observation')
        importance = require_importance(importance)

        entity = self.graph.find_entity(user_id, optional_project(project_id), entity_name)
        if entity is None:
            return NotFound(missing=(entity_name, ))
        return self.graph.add_observation(entity.id, observation, importance)

    def create_relation(self,
                        user_id: str,
                        from_entity: str,
                        to_entity: str,
                        relation_type: str,
                        project_id: Optional[str] = None) -> Union[Relation, NotFound, AlreadyExists]:
        return self.graph.create_relation(require_text(user_id, 'user_id'), optional_project(project_id),
                                          require_text(from_entity, 'from_entity'), require_text(to_entity, 'to_entity'),
                                          require_text(relation_type, 'relation_type'))

    def delete_relation(self,
                        user_id: str,
                        from_entity: str,
                        to_entity: str,
                        relation_type: str,
                        project_id: Optional[str] = None) -> Union[Relation, NotFound]:
        return self.graph.delete_relation(require_text(user_id, 'user_id'), optional_project(project_id),
                                          require_text(from_entity, 'from_entity'), require_text(to_entity, 'to_entity'),
                                          require_text(relation_type, 'relation_type'))

    def delete_entity(self, user_id: str, name: str, project_id: Optional[str] = None) -> Union[Entity, NotFound]:
        return self.graph.delete_entity(require_text(user_id, 'user_id'), optional_project(project_id),
                                        require_text(name, 'name'))

    def delete_observation(self,
                           user_id: str,
                           observation_id: str,
                           project_id: Optional[str] = None) -> Union[Observation, NotFound]:
        return self.graph.delete_observation(require_text(user_id, 'user_id'), optional_project(project_id),
                                             require_text(observation_id, 'observation_id'))

    def update_observation_importance(self,
                                      user_id: str,
                                      observation_id: str,
                                      importance: str,
                                      project_id: Optional[str] = None) -> Union[Observation, NotFound]:
        return self.graph.update_observation_importance(require_text(user_id, 'user_id'), optional_project(project_id),
                                                        require_text(observation_id, 'observation_id'),
                                                        require_importance(importance))

    def clear_user_memory(self, user_id: str, project_id: Optional[str] = None) -> MemoryStats:
        """Remove everything in the scope; returns what was removed."""
        return self.graph.clear_scope(require_text(user_id, 'user_id'), optional_project(project_id))

    # ── Reads ─────────────────────────────────────────────────

    def search_memory(self,
                      user_id: str,
                      query: str,
                      limit: Optional[int] = None,
                      project_id: Optional[str] = None) -> List[SearchResult]:
        user_id = require_text(user_id, 'user_id')
        limit = require_limit(limit, self.config.default_search_limit)
        if not isinstance(query, str) or not query.strip():
            return []
        return self.search.search(user_id, optional_project(project_id), query.strip(), limit)

    def get_entity(self,
                   user_id: str,
                   name: str,
                   include_relations: bool = False,
                   project_id: Optional[str] = None) -> Optional[EntityWithObservations]:
        return self.graph.get_entity(require_text(user_id, 'user_id'), optional_project(project_id),
                                     require_text(name, 'name'), include_relations)

    def search_nodes(self,
                     user_id: str,
                     query: str,
                     limit: Optional[int] = None,
                     project_id: Optional[str] = None) -> List[EntityWithObservations]:
        """Entities matching a query by name, type or observations, best first."""
        user_id = require_text(user_id, 'user_id')
        limit = require_limit(limit, self.config.default_search_limit)
        if not isinstance(query, str) or not query.strip():
            return []
        return self.search.search_nodes(user_id, optional_project(project_id), query.strip(), limit)

    def open_nodes(self, user_id: str, names: List[str], project_id: Optional[str] = None) -> KnowledgeGraph:
        """Several entities by name, with the relations among them."""
        user_id = require_text(user_id, 'user_id')
        if not isinstance(names, (list, tuple)):
            raise MemoryValidationError('names must be a list of entity names')
        names = [require_text(name, 'names') for name in names]
        return self.graph.open_nodes(user_id, optional_project(project_id), names)

    def list_entities(self, user_id: str, project_id: Optional[str] = None) -> List[Entity]:
        return self.graph.list_entities(require_text(user_id, 'user_id'), optional_project(project_id))

    def get_stats(self, user_id: str, project_id: Optional[str] = None) -> MemoryStats:
        return self.graph.get_stats(require_text(user_id, 'user_id'), optional_project(project_id))

    def read_graph(self, user_id: str, project_id: Optional[str] = None) -> KnowledgeGraph:
        return self.graph.read_graph(require_text(user_id, 'user_id'), optional_project(project_id))

    # ── User edits ────────────────────────────────────────────

    def add_user_edit(self,
                      user_id: str,
                      entity_name: str,
                      content: str,
                      project_id: Optional[str] = None) -> Union[Observation, AlreadyExists, NotFound]:
        return self.graph.add_user_edit(require_text(user_id, 'user_id'), optional_project(project_id),
                                        require_text(entity_name, 'entity_name'), require_text(content, 'content'))

    def list_user_edits(self, user_id: str, project_id: Optional[str] = None) -> List[UserEdit]:
        return self.graph.list_user_edits(require_text(user_id, 'user_id'), optional_project(project_id))

    def delete_user_edit(self,
                         user_id: str,
                         entity_name: str,
                         content: str,
                         project_id: Optional[str] = None) -> Union[Observation, NotFound]:
        return self.graph.delete_user_edit(require_text(user_id, 'user_id'), optional_project(project_id),
                                           require_text(entity_name, 'entity_name'), require_text(content, 'content'))

    def delete_all_user_edits(self, user_id: str, project_id: Optional[str] = None) -> int:
        return self.graph.delete_all_user_edits(require_text(user_id, 'user_id'), optional_project(project_id))

    # ── Summaries ─────────────────────────────────────────────

    def save_summary(self, user_id: str, summary: str, project_id: Optional[str] = None) -> MemorySummary:
        return self.summaries.save_summary(require_text(user_id, 'user_id'), optional_project(project_id),
                                           require_text(summary, 'summary'))

    def get_summary(self, user_id: str, project_id: Optional[str] = None) -> SummaryStatus:
        return self.summaries.get_summary(require_text(user_id, 'user_id'), optional_project(project_id))

    def delete_summary(self, user_id: str, project_id: Optional[str] = None) -> bool:
        return self.summaries.delete_summary(require_text(user_id, 'user_id'), optional_project(project_id))

    def get_overview(self, user_id: str, project_id: Optional[str] = None) -> MemoryOverview:
        return self.summaries.get_overview(require_text(user_id, 'user_id'), optional_project(project_id))
