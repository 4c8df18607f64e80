"""
Flat facade: memory as a plain list of short strings per user.

Used by callers that only need "recall relevant snippets" (prompt context
injection). Writes land as observations on one well-known entity per scope;
reads and deletes see every observation of the scope, so facts stored through
the graph facade are visible here too.
"""

from typing import Any, Dict, List, Optional

from ..models.core import NotFound
from ..utils.config import MemoryConfig
from ..utils.logging_config import get_logger
from ..utils.sqlite_store import StoreUnavailableError
from .graph_engine import GraphEngine
from .search_engine import SearchEngine
from .validation import MemoryValidationError, optional_project, require_importance, require_limit, require_text

logger = get_logger(__name__)


class FlatMemoryService:
    """mem0-style add/search/get_all/delete API over the shared graph."""

    def __init__(self, graph: GraphEngine, search: SearchEngine, config: MemoryConfig):
        self.graph = graph
        self.search = search
        self.config = config

        logger.info(f'Initialized FlatMemoryService (entity "{config.flat_entity_name}")')

    def add_memory(self,
                   user_id: str,
                   content: str,
                   metadata: Optional[Dict[str, Any]] = None,
                   project_id: Optional[str] = None) -> List[Dict[str, str]]:
        """Remember one snippet.

        Args:
            user_id: Owner
            content: The snippet
            metadata: Optional ``importance`` and ``is_user_edit`` keys; others are ignored
            project_id: Optional project scope

        Returns:
            ``[{'id': ..., 'text': ...}]`` for the stored (or already known) memory
        """
        user_id = require_text(user_id, 'user_id')
        content = require_text(content, 'content')
        metadata = metadata or {}
        if not isinstance(metadata, dict):
            raise MemoryValidationError('metadata must be a mapping')
        importance = require_importance(metadata.get('importance'))
        is_user_edit = bool(metadata.get('is_user_edit', False))
        project_id = optional_project(project_id)

        entity = self.graph.create_entity(user_id, project_id, self.config.flat_entity_name,
                                          self.config.flat_entity_type).entity
        observation = self.graph.add_observation(entity.id, content, importance, is_user_edit)
        if isinstance(observation, NotFound):
            # The canonical entity was deleted between the two calls
            logger.warning(f'Flat memory entity vanished for user {user_id}; memory not stored')
            return []

        logger.debug(f'Added flat memory {observation.id} for user {user_id}')
        return [{'id': observation.id, 'text': observation.text}]

    def search_memory(self,
                      user_id: str,
                      query: str,
                      limit: Optional[int] = None,
                      project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Relevant snippets for a query: ``[{'id', 'text', 'score'}]``, best first."""
        user_id = require_text(user_id, 'user_id')
        limit = require_limit(limit, self.config.default_search_limit)
        if not isinstance(query, str) or not query.strip():
            return []

        results = self.search.search(user_id, optional_project(project_id), query.strip(), limit)
        logger.debug(f'Found {len(results)} flat memories for user {user_id} matching "{query[:50]}"')
        return [{'id': r.observation.id, 'text': r.observation.text, 'score': r.score} for r in results]

    def get_all_memories(self, user_id: str, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Every snippet of the scope: ``[{'id', 'text', 'created_at'}]``, newest first."""
        user_id = require_text(user_id, 'user_id')
        pairs = self.graph.scope_observations(user_id, optional_project(project_id), with_embeddings=False)
        return [{
            'id': observation.id,
            'text': observation.text,
            'created_at': observation.created_at.isoformat()
        } for _, observation in pairs]

    def delete_memory(self, user_id: str, memory_id: str, project_id: Optional[str] = None) -> bool:
        """Delete one snippet by id; False if it does not exist in the caller's scope."""
        result = self.graph.delete_observation(require_text(user_id, 'user_id'), optional_project(project_id),
                                               require_text(memory_id, 'memory_id'))
        if isinstance(result, NotFound):
            logger.debug(f'Flat memory {memory_id} not found for user {user_id}')
            return False
        return True

    def delete_all_memories(self, user_id: str, project_id: Optional[str] = None) -> bool:
        """Delete every memory of the scope."""
        self.graph.clear_scope(require_text(user_id, 'user_id'), optional_project(project_id))
        return True

    def get_context_memories(self,
                             user_id: str,
                             context: str,
                             limit: Optional[int] = None,
                             project_id: Optional[str] = None) -> Optional[str]:
        """Render the most relevant memories as a prompt block, or None.

        A store failure is logged and treated as "no memories".
        """
        try:
            memories = self.search_memory(user_id, context, limit or self.config.context_memory_limit, project_id)
        except StoreUnavailableError as e:
            logger.error(f'Failed to get context memories for user {user_id}: {e}')
            return None

        if not memories:
            return None

        lines = '\n'.join(f'{i}. {memory["text"]}' for i, memory in enumerate(memories, start=1))
        return f'**Relevant memories about this user:**\n{lines}'
