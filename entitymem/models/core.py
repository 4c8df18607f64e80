"""
Core data models for the entity memory graph.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

ENTITY_TYPES = ('person', 'business', 'concept', 'event', 'other')

# Ordered from most to least important
IMPORTANCE_LEVELS = ('critical', 'important', 'normal', 'temporary')

IMPORTANCE_WEIGHTS = {'critical': 1.2, 'important': 1.1, 'normal': 1.0, 'temporary': 0.8}

RELATION_DIRECTIONS = ('from', 'to')


@dataclass
class Entity:
    """A named thing remembered for one user, optionally scoped to a project."""
    id: str
    user_id: str
    project_id: Optional[str]  # None means global to the user
    name: str
    type: str  # One of ENTITY_TYPES
    created_at: datetime
    updated_at: datetime


@dataclass
class Observation:
    """A single fact exclusively owned by one entity."""
    id: str
    entity_id: str
    text: str
    importance: str  # One of IMPORTANCE_LEVELS
    embedding: Optional[List[float]]  # None when no embedder produced a vector
    is_user_edit: bool
    created_at: datetime
    updated_at: datetime


@dataclass
class Relation:
    """A directed, labeled edge between two entities of the same scope."""
    id: str
    user_id: str
    project_id: Optional[str]
    from_entity_id: str
    to_entity_id: str
    type: str
    created_at: datetime


@dataclass
class EntityRelation:
    """A relation seen from one entity: its peer and which end the entity is on.

    ``direction == 'from'`` means the queried entity is the source
    (``entity -[type]-> peer``); ``'to'`` means it is the target.
    """
    type: str
    direction: str
    peer: Entity


@dataclass
class EntityWithObservations:
    """An entity with its observations and, on request, its relations."""
    entity: Entity
    observations: List[Observation] = field(default_factory=list)
    relations: Optional[List[EntityRelation]] = None

    @property
    def id(self) -> str:
        return self.entity.id

    @property
    def name(self) -> str:
        return self.entity.name

    @property
    def type(self) -> str:
        return self.entity.type


@dataclass
class SearchResult:
    """One ranked observation hit."""
    entity: Entity
    observation: Observation
    score: float


@dataclass
class NamedRelation:
    """A relation rendered with entity names instead of ids."""
    from_name: str
    relation_type: str
    to_name: str


@dataclass
class KnowledgeGraph:
    """Every entity, observation and relation of one scope."""
    entities: List[EntityWithObservations]
    relations: List[NamedRelation]


@dataclass
class MemoryStats:
    """Aggregate counts for one scope."""
    entity_count: int
    observation_count: int
    relation_count: int


@dataclass
class MemorySummary:
    """Cached natural-language digest of a scope plus the counts it was built from."""
    user_id: str
    project_id: Optional[str]
    summary_text: str
    entity_count_snapshot: int
    observation_count_snapshot: int
    generated_at: datetime


@dataclass
class SummaryStatus:
    """A stored summary (if any) with its derived staleness."""
    summary: Optional[MemorySummary]
    is_stale: bool


@dataclass
class MemoryOverview:
    """Summary status combined with the live counts of a scope."""
    summary_text: Optional[str]
    summary_generated_at: Optional[datetime]
    is_stale: bool
    entity_count: int
    observation_count: int
    edit_count: int


@dataclass
class UserEdit:
    """An observation the user explicitly authored."""
    observation_id: str
    entity_name: str
    text: str
    created_at: datetime


@dataclass(frozen=True)
class NotFound:
    """Tagged result: a referenced entity/observation/relation does not exist.

    This is an expected outcome, not an error: callers route it back to the
    conversation as guidance.
    """
    missing: Tuple[str, ...]
    kind: str = 'entity'

    @property
    def message(self) -> str:
        names = ', '.join(f'"{name}"' for name in self.missing)
        if self.kind == 'entity':
            noun = 'Entity' if len(self.missing) == 1 else 'Entities'
            return f'{noun} not found: {names}'
        return f'{self.kind.capitalize()} not found: {names}'


@dataclass(frozen=True)
class AlreadyExists:
    """Tagged result: the create was a duplicate and nothing was written."""
    existing: object
    kind: str = 'relation'
