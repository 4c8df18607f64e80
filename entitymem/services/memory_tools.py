"""
Tool adapter: turns loosely-typed tool calls from a language model into
validated graph facade calls and renders the outcome as text for the model.

NotFound and AlreadyExists are rendered as guidance text the model can act on.
Invalid arguments and store failures become error results; nothing here
raises for an expected outcome.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..models.core import AlreadyExists, NotFound, SearchResult
from ..utils.logging_config import get_logger
from ..utils.sqlite_store import StoreUnavailableError
from .graph_memory import GraphMemoryService
from .validation import MemoryValidationError

logger = get_logger(__name__)

EntityTypeName = Literal['person', 'business', 'concept', 'event', 'other']
ImportanceName = Literal['critical', 'important', 'normal', 'temporary']

# ============================================================================
# Input Models for Tools
# ============================================================================


class ToolInput(BaseModel):
    """Base for tool arguments; unknown keys sent by the model are ignored."""
    model_config = ConfigDict(str_strip_whitespace=True, extra='ignore')


class StoreEntityInput(ToolInput):
    """Input for storing an entity (or merging facts into an existing one)."""
    name: str = Field(..., description="Name of the entity (e.g. 'Acme Corp', 'John Smith')", min_length=1)
    entity_type: EntityTypeName = Field(..., description='person, business, concept, event or other')
    observations: List[str] = Field(default_factory=list, description='Facts about this entity')

    @field_validator('entity_type', mode='before')
    @classmethod
    def lower_entity_type(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator('observations', mode='before')
    @classmethod
    def drop_blank_observations(cls, value):
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [item for item in value if not isinstance(item, str) or item.strip()]
        return value


class StoreObservationInput(ToolInput):
    """Input for adding a fact to an existing entity."""
    entity_name: str = Field(..., description='Name of the entity to add the observation to', min_length=1)
    observation: str = Field(..., description="The fact to store, e.g. 'Revenue target: $500k by Dec 2025'",
                             min_length=1)
    importance: ImportanceName = Field(default='normal', description='critical, important, normal or temporary')

    @field_validator('importance', mode='before')
    @classmethod
    def lower_importance(cls, value):
        if value is None:
            return 'normal'
        return value.strip().lower() if isinstance(value, str) else value


class StoreRelationInput(ToolInput):
    """Input for relating two stored entities."""
    from_entity: str = Field(..., description="Source entity name (e.g. 'John Smith')", min_length=1)
    to_entity: str = Field(..., description="Target entity name (e.g. 'Acme Corp')", min_length=1)
    relation_type: str = Field(..., description="Relationship type (e.g. 'works_for', 'owns')", min_length=1)


class SearchMemoryInput(ToolInput):
    """Input for searching memory."""
    query: str = Field(..., description="What to search for (e.g. 'hiring plans')", min_length=1)
    limit: Optional[int] = Field(default=None, description='Maximum results to return', ge=1, le=100)


class GetEntityInput(ToolInput):
    """Input for fetching one entity."""
    name: str = Field(..., description='Name of the entity to retrieve', min_length=1)
    include_relations: bool = Field(default=True, description='Include relationships with other entities')


class NoInput(ToolInput):
    pass


class DeleteEntityInput(ToolInput):
    name: str = Field(..., description='Name of the entity to delete', min_length=1)


class ClearAllMemoriesInput(ToolInput):
    confirm: bool = Field(default=False, description='Must be true to confirm deletion')


class SaveMemorySummaryInput(ToolInput):
    summary: str = Field(..., description='Natural-language summary of what is remembered', min_length=1)


TOOL_INPUTS: Dict[str, type] = {
    'store_entity': StoreEntityInput,
    'store_observation': StoreObservationInput,
    'store_relation': StoreRelationInput,
    'search_memory': SearchMemoryInput,
    'get_entity': GetEntityInput,
    'list_entities': NoInput,
    'delete_entity': DeleteEntityInput,
    'clear_all_memories': ClearAllMemoriesInput,
    'memory_stats': NoInput,
    'get_memory_summary': NoInput,
    'save_memory_summary': SaveMemorySummaryInput,
}


@dataclass
class ToolResult:
    """Text returned to the model; ``is_error`` marks a failed call."""
    text: str
    is_error: bool = False


def _validation_message(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = '.'.join(str(part) for part in detail['loc']) or 'arguments'
        parts.append(f'{location}: {detail["msg"]}')
    return '; '.join(parts)


def _missing_entities_message(result: NotFound) -> str:
    pronoun = 'it' if len(result.missing) == 1 else 'them'
    return f'Could not create relation. {result.message}. Use store_entity to create {pronoun} first.'


class MemoryToolAdapter:
    """Executes memory tools for one user on behalf of a language model."""

    def __init__(self, memory: GraphMemoryService, search_limit: int = 5):
        """
        Args:
            memory: Graph facade the tools operate on
            search_limit: Result count for search_memory when the model gives none
        """
        self.memory = memory
        self.search_limit = search_limit
        self._handlers: Dict[str, Callable[[str, Any, Optional[str]], ToolResult]] = {
            'store_entity': self._store_entity,
            'store_observation': self._store_observation,
            'store_relation': self._store_relation,
            'search_memory': self._search_memory,
            'get_entity': self._get_entity,
            'list_entities': self._list_entities,
            'delete_entity': self._delete_entity,
            'clear_all_memories': self._clear_all_memories,
            'memory_stats': self._memory_stats,
            'get_memory_summary': self._get_memory_summary,
            'save_memory_summary': self._save_memory_summary,
        }

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    def execute(self,
                user_id: str,
                tool_name: str,
                args: Optional[Dict[str, Any]] = None,
                project_id: Optional[str] = None) -> ToolResult:
        """Validate the arguments of one tool call and run it.

        Args:
            user_id: Caller whose memory is used
            tool_name: One of ``tool_names``
            args: Raw arguments as produced by the model
            project_id: Optional project scope

        Returns:
            ToolResult with the rendered outcome
        """
        handler = self._handlers.get(tool_name)
        if handler is None:
            return ToolResult(f'Unknown memory tool: {tool_name}', is_error=True)

        try:
            params = TOOL_INPUTS[tool_name].model_validate(args or {})
        except ValidationError as e:
            logger.debug(f'Rejected {tool_name} arguments: {e}')
            return ToolResult(f'Invalid arguments for {tool_name}: {_validation_message(e)}', is_error=True)

        try:
            return handler(user_id, params, project_id)
        except MemoryValidationError as e:
            return ToolResult(f'Invalid arguments for {tool_name}: {e}', is_error=True)
        except StoreUnavailableError as e:
            logger.error(f'Memory tool {tool_name} failed for user {user_id}: {e}')
            return ToolResult(f'Error executing {tool_name}: memory store unavailable. The operation failed.',
                              is_error=True)

    # ── Handlers ──────────────────────────────────────────────

    def _store_entity(self, user_id: str, params: StoreEntityInput, project_id: Optional[str]) -> ToolResult:
        entity = self.memory.create_entity(user_id, params.name, params.entity_type, params.observations, project_id)
        text = f'Stored entity: **{entity.name}** ({entity.type})'
        if entity.observations:
            text += '\nObservations:\n' + '\n'.join(f'- {o.text}' for o in entity.observations)
        return ToolResult(text)

    def _store_observation(self, user_id: str, params: StoreObservationInput,
                           project_id: Optional[str]) -> ToolResult:
        result = self.memory.add_observation(user_id, params.entity_name, params.observation, params.importance,
                                             project_id)
        if isinstance(result, NotFound):
            return ToolResult(f'Entity "{params.entity_name}" not found. Use store_entity first to create it.',
                              is_error=True)
        return ToolResult(
            f'Added observation to **{params.entity_name}**: "{result.text}" (importance: {result.importance})')

    def _store_relation(self, user_id: str, params: StoreRelationInput, project_id: Optional[str]) -> ToolResult:
        result = self.memory.create_relation(user_id, params.from_entity, params.to_entity, params.relation_type,
                                             project_id)
        arrow = f'**{params.from_entity}** → *{params.relation_type}* → **{params.to_entity}**'
        if isinstance(result, NotFound):
            return ToolResult(_missing_entities_message(result), is_error=True)
        if isinstance(result, AlreadyExists):
            return ToolResult(f'Relation already stored: {arrow}')
        return ToolResult(f'Stored relation: {arrow}')

    def _search_memory(self, user_id: str, params: SearchMemoryInput, project_id: Optional[str]) -> ToolResult:
        results = self.memory.search_memory(user_id, params.query, params.limit or self.search_limit, project_id)
        if not results:
            return ToolResult(f'No memories found matching "{params.query}".')

        # Group by entity, keeping rank order
        grouped: Dict[str, List[SearchResult]] = {}
        for result in results:
            grouped.setdefault(result.entity.id, []).append(result)

        blocks = []
        for hits in grouped.values():
            entity = hits[0].entity
            lines = '\n'.join(f'- {hit.observation.text} (relevance: {hit.score * 100:.0f}%)' for hit in hits)
            blocks.append(f'**{entity.name}** ({entity.type}):\n{lines}')

        body = '\n\n'.join(blocks)
        return ToolResult(f'**Memories matching "{params.query}":**\n\n{body}')

    def _get_entity(self, user_id: str, params: GetEntityInput, project_id: Optional[str]) -> ToolResult:
        entity = self.memory.get_entity(user_id, params.name, params.include_relations, project_id)
        if entity is None:
            return ToolResult(f'Entity "{params.name}" not found.')

        text = f'**{entity.name}** ({entity.type})\n'
        if entity.observations:
            text += '\nObservations:\n' + '\n'.join(f'- {o.text} [{o.importance}]' for o in entity.observations)
        else:
            text += '\n(No observations stored)'

        if entity.relations:
            lines = []
            for relation in entity.relations:
                if relation.direction == 'from':
                    lines.append(f'- → *{relation.type}* → {relation.peer.name}')
                else:
                    lines.append(f'- ← *{relation.type}* ← {relation.peer.name}')
            text += '\n\nRelations:\n' + '\n'.join(lines)

        return ToolResult(text)

    def _list_entities(self, user_id: str, params: NoInput, project_id: Optional[str]) -> ToolResult:
        entities = self.memory.list_entities(user_id, project_id)
        if not entities:
            return ToolResult("I don't have any entities stored for you yet. "
                              'Share something about your business, team, or goals!')

        by_type: Dict[str, List[str]] = {}
        for entity in entities:
            by_type.setdefault(entity.type, []).append(entity.name)

        lines = '\n'.join(f'**{entity_type}**: {", ".join(names)}' for entity_type, names in by_type.items())
        return ToolResult(f'**All entities ({len(entities)}):**\n{lines}')

    def _delete_entity(self, user_id: str, params: DeleteEntityInput, project_id: Optional[str]) -> ToolResult:
        result = self.memory.delete_entity(user_id, params.name, project_id)
        if isinstance(result, NotFound):
            return ToolResult(f'Entity "{params.name}" not found.')
        return ToolResult(f'Deleted entity: "{result.name}" and all its observations.')

    def _clear_all_memories(self, user_id: str, params: ClearAllMemoriesInput,
                            project_id: Optional[str]) -> ToolResult:
        if not params.confirm:
            return ToolResult('Nothing was deleted. Clearing all memories cannot be undone; '
                              'please confirm by setting confirm=true.')

        removed = self.memory.clear_user_memory(user_id, project_id)
        return ToolResult(f'All memories have been cleared ({removed.entity_count} entities, '
                          f'{removed.observation_count} observations, {removed.relation_count} relations). '
                          'Starting fresh!')

    def _memory_stats(self, user_id: str, params: NoInput, project_id: Optional[str]) -> ToolResult:
        stats = self.memory.get_stats(user_id, project_id)
        return ToolResult('**Memory Statistics:**\n'
                          f'- Entities: {stats.entity_count}\n'
                          f'- Observations: {stats.observation_count}\n'
                          f'- Relations: {stats.relation_count}')

    def _get_memory_summary(self, user_id: str, params: NoInput, project_id: Optional[str]) -> ToolResult:
        status = self.memory.get_summary(user_id, project_id)
        if status.summary is None:
            return ToolResult('No memory summary has been saved yet.')

        generated = status.summary.generated_at.strftime('%Y-%m-%d %H:%M')
        freshness = 'out of date, memory has changed since' if status.is_stale else 'up to date'
        return ToolResult(f'**Memory summary** (generated {generated}, {freshness}):\n{status.summary.summary_text}')

    def _save_memory_summary(self, user_id: str, params: SaveMemorySummaryInput,
                             project_id: Optional[str]) -> ToolResult:
        summary = self.memory.save_summary(user_id, params.summary, project_id)
        return ToolResult(f'Saved memory summary (covers {summary.entity_count_snapshot} entities and '
                          f'{summary.observation_count_snapshot} observations).')
