"""
Graph Engine: entity, observation and relation CRUD over the SQLite store.

Every read and write is filtered by scope, the ``(user_id, project_id)`` pair.
A ``project_id`` of None is its own scope (memory global to the user), not a
wildcard. Lookups by name are case-insensitive, using SQLite ``lower()``,
which folds ASCII letters only: "Acme" and "ACME" are one entity, while
"Café Ünion" and "CAFÉ ÜNION" are two. Dedup relies on the unique indexes in
the schema: inserts are ``INSERT OR IGNORE`` followed by a re-read.
"""

import sqlite3
import uuid
from typing import List, Optional, Tuple, Union

from ..models.core import (AlreadyExists, Entity, EntityRelation, EntityWithObservations, KnowledgeGraph, MemoryStats,
                           NamedRelation, NotFound, Observation, Relation, UserEdit)
from ..utils.logging_config import get_logger
from ..utils.sqlite_store import SQLiteStore, pack_embedding, retry_on_locked, unpack_embedding
from ..utils.timestamp_utils import advance_ms, now_ms, to_datetime
from .embedding import EmbeddingService

logger = get_logger(__name__)

SCOPE = 'user_id = ? AND project_id IS ?'

IMPORTANCE_ORDER = """CASE importance
    WHEN 'critical' THEN 0 WHEN 'important' THEN 1 WHEN 'normal' THEN 2 ELSE 3 END"""

OBSERVATION_COLUMNS = 'o.id, o.entity_id, o.text, o.importance, o.embedding, o.is_user_edit, o.created_at, o.updated_at'

ENTITY_FIELDS = ('id', 'user_id', 'project_id', 'name', 'type', 'created_at', 'updated_at')


def _entity_columns(alias: str) -> str:
    """Select list for an aliased entities join, e.g. ``p.name AS p_name``."""
    return ', '.join(f'{alias}.{field} AS {alias}_{field}' for field in ENTITY_FIELDS)


def _entity(row: sqlite3.Row, prefix: str = '') -> Entity:
    return Entity(id=row[f'{prefix}id'],
                  user_id=row[f'{prefix}user_id'],
                  project_id=row[f'{prefix}project_id'],
                  name=row[f'{prefix}name'],
                  type=row[f'{prefix}type'],
                  created_at=to_datetime(row[f'{prefix}created_at']),
                  updated_at=to_datetime(row[f'{prefix}updated_at']))


def _observation(row: sqlite3.Row, with_embedding: bool = True) -> Observation:
    return Observation(id=row['id'],
                       entity_id=row['entity_id'],
                       text=row['text'],
                       importance=row['importance'],
                       embedding=unpack_embedding(row['embedding']) if with_embedding else None,
                       is_user_edit=bool(row['is_user_edit']),
                       created_at=to_datetime(row['created_at']),
                       updated_at=to_datetime(row['updated_at']))


def _relation(row: sqlite3.Row) -> Relation:
    return Relation(id=row['id'],
                    user_id=row['user_id'],
                    project_id=row['project_id'],
                    from_entity_id=row['from_entity_id'],
                    to_entity_id=row['to_entity_id'],
                    type=row['type'],
                    created_at=to_datetime(row['created_at']))


def _named_relation(row: sqlite3.Row) -> NamedRelation:
    return NamedRelation(from_name=row['from_name'], relation_type=row['relation_type'], to_name=row['to_name'])


class GraphEngine:
    """Owns the entity graph: CRUD, dedup and cascade semantics."""

    def __init__(self, store: SQLiteStore, embeddings: EmbeddingService):
        """
        Args:
            store: Shared SQLite store
            embeddings: Embedding service; may be disabled
        """
        self.store = store
        self.embeddings = embeddings

        logger.info('Initialized GraphEngine')

    # ── Entities ──────────────────────────────────────────────

    def _entity_row(self, conn: sqlite3.Connection, user_id: str, project_id: Optional[str],
                    name: str) -> Optional[sqlite3.Row]:
        return conn.execute(f'SELECT * FROM entities WHERE {SCOPE} AND lower(name) = lower(?)',
                            (user_id, project_id, name)).fetchone()

    def _find_entity(self, user_id: str, project_id: Optional[str], name: str) -> Optional[Entity]:
        with self.store.reader() as conn:
            row = self._entity_row(conn, user_id, project_id, name)
        return _entity(row) if row else None

    @retry_on_locked
    def find_entity(self, user_id: str, project_id: Optional[str], name: str) -> Optional[Entity]:
        """Resolve an entity by case-insensitive name within a scope."""
        return self._find_entity(user_id, project_id, name)

    @retry_on_locked
    def create_entity(self,
                      user_id: str,
                      project_id: Optional[str],
                      name: str,
                      entity_type: str,
                      observations: Optional[List[str]] = None,
                      is_user_edit: bool = False) -> EntityWithObservations:
        """Create an entity, or reuse the one with the same scoped name.

        Initial observations are added either way, through the observation
        dedup rule. The returned entity always carries its full observation list.

        Args:
            user_id: Owner
            project_id: Optional project scope
            name: Display name; uniqueness is case-insensitive
            entity_type: One of ENTITY_TYPES (ignored when the entity already exists)
            observations: Facts to attach
            is_user_edit: Mark newly created observations as user-authored

        Returns:
            The created or existing entity with observations
        """
        return self._create_entity(user_id, project_id, name, entity_type, observations, is_user_edit)

    def _create_entity(self,
                       user_id: str,
                       project_id: Optional[str],
                       name: str,
                       entity_type: str,
                       observations: Optional[List[str]] = None,
                       is_user_edit: bool = False) -> EntityWithObservations:
        now = now_ms()
        with self.store.transaction() as conn:
            cursor = conn.execute(
                'INSERT OR IGNORE INTO entities (id, user_id, project_id, name, type, created_at, updated_at) '
                'VALUES (?, ?, ?, ?, ?, ?, ?)', (str(uuid.uuid4()), user_id, project_id, name, entity_type, now, now))
            entity = _entity(self._entity_row(conn, user_id, project_id, name))

        if cursor.rowcount:
            logger.debug(f'Created entity {entity.id} ({entity.type}) "{name}" for user {user_id}')
        else:
            logger.debug(f'Entity "{name}" already exists for user {user_id}; merging observations')

        for text in observations or []:
            self._add_observation(entity.id, text, 'normal', is_user_edit)

        return self.with_observations(entity)

    @retry_on_locked
    def get_entity(self,
                   user_id: str,
                   project_id: Optional[str],
                   name: str,
                   include_relations: bool = False) -> Optional[EntityWithObservations]:
        """Fetch an entity with its observations (critical first, then most recent).

        Args:
            user_id: Owner
            project_id: Optional project scope
            name: Case-insensitive entity name
            include_relations: Also return every relation touching the entity

        Returns:
            EntityWithObservations, or None if the name is unknown in this scope
        """
        entity = self._find_entity(user_id, project_id, name)
        if entity is None:
            return None

        result = self.with_observations(entity)
        if include_relations:
            result.relations = self._relations_for_entity(entity)
        return result

    @retry_on_locked
    def open_nodes(self, user_id: str, project_id: Optional[str], names: List[str]) -> KnowledgeGraph:
        """Fetch several entities by name together with the relations among them.

        Names resolve case-insensitively; unknown names are skipped and a name
        given twice yields the entity once. Only relations whose endpoints are
        both in the returned set are included.

        Args:
            user_id: Owner
            project_id: Optional project scope
            names: Entity names, in the order the entities should be returned

        Returns:
            KnowledgeGraph of the found entities (with observations) and their relations
        """
        rows = []
        seen = set()
        with self.store.reader() as conn:
            for name in names:
                row = self._entity_row(conn, user_id, project_id, name)
                if row is not None and row['id'] not in seen:
                    seen.add(row['id'])
                    rows.append(row)

            relation_rows = []
            if seen:
                ids = [row['id'] for row in rows]
                placeholders = ', '.join('?' for _ in ids)
                relation_rows = conn.execute(
                    'SELECT f.name AS from_name, r.type AS relation_type, t.name AS to_name FROM relations r '
                    'JOIN entities f ON r.from_entity_id = f.id JOIN entities t ON r.to_entity_id = t.id '
                    f'WHERE r.user_id = ? AND r.project_id IS ? AND r.from_entity_id IN ({placeholders}) '
                    f'AND r.to_entity_id IN ({placeholders}) ORDER BY r.created_at DESC',
                    (user_id, project_id, *ids, *ids)).fetchall()

        logger.debug(f'Opened {len(rows)}/{len(names)} entities for user {user_id}')
        return KnowledgeGraph(entities=[self.with_observations(_entity(row)) for row in rows],
                              relations=[_named_relation(row) for row in relation_rows])

    def with_observations(self, entity: Entity) -> EntityWithObservations:
        with self.store.reader() as conn:
            rows = conn.execute(
                f'SELECT {OBSERVATION_COLUMNS} FROM observations o WHERE o.entity_id = ? '
                f'ORDER BY {IMPORTANCE_ORDER}, o.updated_at DESC, o.created_at DESC', (entity.id, )).fetchall()
        return EntityWithObservations(entity=entity, observations=[_observation(row) for row in rows])

    def _list_entities(self, user_id: str, project_id: Optional[str]) -> List[Entity]:
        with self.store.reader() as conn:
            rows = conn.execute(f'SELECT * FROM entities WHERE {SCOPE} ORDER BY updated_at DESC, name',
                                (user_id, project_id)).fetchall()
        return [_entity(row) for row in rows]

    @retry_on_locked
    def list_entities(self, user_id: str, project_id: Optional[str] = None) -> List[Entity]:
        """All entities of a scope, most recently updated first."""
        return self._list_entities(user_id, project_id)

    @retry_on_locked
    def delete_entity(self, user_id: str, project_id: Optional[str], name: str) -> Union[Entity, NotFound]:
        """Delete an entity with its observations and every relation it is an endpoint of.

        Returns:
            The deleted entity, or NotFound if no such entity exists in scope
        """
        with self.store.transaction() as conn:
            row = self._entity_row(conn, user_id, project_id, name)
            if row is None:
                logger.debug(f'Delete skipped, entity "{name}" not found for user {user_id}')
                return NotFound(missing=(name, ))

            entity = _entity(row)
            conn.execute('DELETE FROM relations WHERE from_entity_id = ? OR to_entity_id = ?', (entity.id, entity.id))
            conn.execute('DELETE FROM observations WHERE entity_id = ?', (entity.id, ))
            conn.execute('DELETE FROM entities WHERE id = ?', (entity.id, ))

        logger.debug(f'Deleted entity {entity.id} "{entity.name}" for user {user_id}')
        return entity

    # ── Observations ──────────────────────────────────────────

    @retry_on_locked
    def add_observation(self,
                        entity_id: str,
                        text: str,
                        importance: str = 'normal',
                        is_user_edit: bool = False) -> Union[Observation, NotFound]:
        """Attach a fact to an entity.

        Re-adding a known text (any case) only refreshes its ``updated_at``;
        importance and the user-edit flag of the stored row are kept.

        Returns:
            The new or refreshed observation, or NotFound if the entity does not exist
        """
        observation, _ = self._add_observation(entity_id, text, importance, is_user_edit)
        return observation

    def _add_observation(self, entity_id: str, text: str, importance: str,
                         is_user_edit: bool) -> Tuple[Union[Observation, NotFound], bool]:
        """Add or refresh an observation; the flag is True only when a row was inserted."""
        with self.store.reader() as conn:
            if conn.execute('SELECT 1 FROM entities WHERE id = ?', (entity_id, )).fetchone() is None:
                return NotFound(missing=(entity_id, )), False
            known = conn.execute('SELECT 1 FROM observations WHERE entity_id = ? AND lower(text) = lower(?)',
                                 (entity_id, text)).fetchone()

        if known is not None:
            return self._refresh_observation(entity_id, text, importance), False

        # Never embed while holding the store lock
        embedding = self.embeddings.embed_document(text)

        with self.store.transaction() as conn:
            if conn.execute('SELECT 1 FROM entities WHERE id = ?', (entity_id, )).fetchone() is None:
                return NotFound(missing=(entity_id, )), False

            now = now_ms()
            observation_id = str(uuid.uuid4())
            cursor = conn.execute(
                'INSERT OR IGNORE INTO observations '
                '(id, entity_id, text, importance, embedding, is_user_edit, created_at, updated_at) '
                'VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
                (observation_id, entity_id, text, importance, pack_embedding(embedding), int(is_user_edit), now, now))

            if not cursor.rowcount:
                # Lost a race with a concurrent writer of the same fact
                return self._refresh_observation(entity_id, text, importance), False

            conn.execute('UPDATE entities SET updated_at = ? WHERE id = ?', (now, entity_id))
            row = conn.execute(f'SELECT {OBSERVATION_COLUMNS} FROM observations o WHERE o.id = ?',
                               (observation_id, )).fetchone()

        logger.debug(f'Added observation {observation_id} to entity {entity_id} '
                     f'({importance}, embedding={"yes" if embedding else "no"})')
        return _observation(row), True

    def _refresh_observation(self, entity_id: str, text: str, importance: str) -> Union[Observation, NotFound]:
        with self.store.transaction() as conn:
            row = conn.execute(
                f'SELECT {OBSERVATION_COLUMNS} FROM observations o WHERE o.entity_id = ? AND lower(o.text) = lower(?)',
                (entity_id, text)).fetchone()
            if row is None:
                # Deleted by a concurrent writer after the dedup check
                return NotFound(missing=(text, ), kind='observation')
            conn.execute('UPDATE observations SET updated_at = ? WHERE id = ?',
                         (advance_ms(row['updated_at']), row['id']))
            row = conn.execute(f'SELECT {OBSERVATION_COLUMNS} FROM observations o WHERE o.id = ?',
                               (row['id'], )).fetchone()

        if row['importance'] != importance:
            logger.debug(f'Observation {row["id"]} re-asserted as {importance}; keeping stored {row["importance"]}')
        logger.debug(f'Refreshed existing observation {row["id"]} on entity {entity_id}')
        return _observation(row)

    def _scoped_observation_row(self, conn: sqlite3.Connection, user_id: str, project_id: Optional[str],
                                observation_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            f'SELECT {OBSERVATION_COLUMNS} FROM observations o JOIN entities e ON o.entity_id = e.id '
            'WHERE o.id = ? AND e.user_id = ? AND e.project_id IS ?', (observation_id, user_id, project_id)).fetchone()

    @retry_on_locked
    def delete_observation(self, user_id: str, project_id: Optional[str],
                           observation_id: str) -> Union[Observation, NotFound]:
        """Delete one observation by id, only if it belongs to the given scope."""
        with self.store.transaction() as conn:
            row = self._scoped_observation_row(conn, user_id, project_id, observation_id)
            if row is None:
                return NotFound(missing=(observation_id, ), kind='observation')
            conn.execute('DELETE FROM observations WHERE id = ?', (observation_id, ))

        logger.debug(f'Deleted observation {observation_id} for user {user_id}')
        return _observation(row, with_embedding=False)

    @retry_on_locked
    def update_observation_importance(self, user_id: str, project_id: Optional[str], observation_id: str,
                                      importance: str) -> Union[Observation, NotFound]:
        """Explicitly change the importance of a stored observation."""
        with self.store.transaction() as conn:
            row = self._scoped_observation_row(conn, user_id, project_id, observation_id)
            if row is None:
                return NotFound(missing=(observation_id, ), kind='observation')
            conn.execute('UPDATE observations SET importance = ?, updated_at = ? WHERE id = ?',
                         (importance, advance_ms(row['updated_at']), observation_id))
            row = self._scoped_observation_row(conn, user_id, project_id, observation_id)

        return _observation(row)

    @retry_on_locked
    def scope_observations(self,
                           user_id: str,
                           project_id: Optional[str] = None,
                           with_embeddings: bool = True) -> List[Tuple[Entity, Observation]]:
        """Every observation of a scope paired with its entity, newest first.

        The scope filter is part of the SQL, so rows of other tenants never
        leave the database.
        """
        with self.store.reader() as conn:
            rows = conn.execute(
                f'SELECT {OBSERVATION_COLUMNS}, {_entity_columns("e")} FROM observations o '
                'JOIN entities e ON o.entity_id = e.id '
                'WHERE e.user_id = ? AND e.project_id IS ? ORDER BY o.created_at DESC',
                (user_id, project_id)).fetchall()
        return [(_entity(row, prefix='e_'), _observation(row, with_embedding=with_embeddings)) for row in rows]

    # ── Relations ─────────────────────────────────────────────

    def _resolve_endpoints(self, conn: sqlite3.Connection, user_id: str, project_id: Optional[str], from_name: str,
                           to_name: str) -> Union[Tuple[sqlite3.Row, sqlite3.Row], NotFound]:
        from_row = self._entity_row(conn, user_id, project_id, from_name)
        to_row = self._entity_row(conn, user_id, project_id, to_name)
        missing = tuple(name for name, row in ((from_name, from_row), (to_name, to_row)) if row is None)
        if missing:
            return NotFound(missing=missing)
        return from_row, to_row

    @retry_on_locked
    def create_relation(self, user_id: str, project_id: Optional[str], from_name: str, to_name: str,
                        relation_type: str) -> Union[Relation, NotFound, AlreadyExists]:
        """Create a directed relation between two existing entities of one scope.

        Relations never create entities: a missing endpoint yields NotFound
        naming the missing entities. An identical relation yields AlreadyExists.
        """
        with self.store.transaction() as conn:
            endpoints = self._resolve_endpoints(conn, user_id, project_id, from_name, to_name)
            if isinstance(endpoints, NotFound):
                logger.debug(f'Relation {from_name} -[{relation_type}]-> {to_name} rejected: {endpoints.message}')
                return endpoints

            from_row, to_row = endpoints
            cursor = conn.execute(
                'INSERT OR IGNORE INTO relations '
                '(id, user_id, project_id, from_entity_id, to_entity_id, type, created_at) '
                'VALUES (?, ?, ?, ?, ?, ?, ?)',
                (str(uuid.uuid4()), user_id, project_id, from_row['id'], to_row['id'], relation_type, now_ms()))
            row = conn.execute(
                f'SELECT * FROM relations WHERE {SCOPE} AND from_entity_id = ? AND to_entity_id = ? '
                'AND lower(type) = lower(?)', (user_id, project_id, from_row['id'], to_row['id'], relation_type)).fetchone()

        relation = _relation(row)
        if not cursor.rowcount:
            logger.debug(f'Relation {relation.id} already exists')
            return AlreadyExists(existing=relation)

        logger.debug(f'Created relation {relation.id}: {from_name} -[{relation_type}]-> {to_name}')
        return relation

    @retry_on_locked
    def delete_relation(self, user_id: str, project_id: Optional[str], from_name: str, to_name: str,
                        relation_type: str) -> Union[Relation, NotFound]:
        """Delete the relation identified by its endpoints and type."""
        with self.store.transaction() as conn:
            endpoints = self._resolve_endpoints(conn, user_id, project_id, from_name, to_name)
            if isinstance(endpoints, NotFound):
                return endpoints

            from_row, to_row = endpoints
            row = conn.execute(
                f'SELECT * FROM relations WHERE {SCOPE} AND from_entity_id = ? AND to_entity_id = ? '
                'AND lower(type) = lower(?)', (user_id, project_id, from_row['id'], to_row['id'], relation_type)).fetchone()
            if row is None:
                return NotFound(missing=(f'{from_name} -[{relation_type}]-> {to_name}', ), kind='relation')
            conn.execute('DELETE FROM relations WHERE id = ?', (row['id'], ))

        logger.debug(f'Deleted relation {row["id"]}')
        return _relation(row)

    def _relations_for_entity(self, entity: Entity) -> List[EntityRelation]:
        """Every relation touching an entity, with the peer and the entity's end of the edge."""
        peer_columns = _entity_columns('p')
        with self.store.reader() as conn:
            outgoing = conn.execute(
                f'SELECT r.type AS relation_type, {peer_columns} FROM relations r '
                'JOIN entities p ON r.to_entity_id = p.id '
                'WHERE r.from_entity_id = ? AND r.user_id = ? AND r.project_id IS ? ORDER BY r.created_at',
                (entity.id, entity.user_id, entity.project_id)).fetchall()
            incoming = conn.execute(
                f'SELECT r.type AS relation_type, {peer_columns} FROM relations r '
                'JOIN entities p ON r.from_entity_id = p.id '
                'WHERE r.to_entity_id = ? AND r.user_id = ? AND r.project_id IS ? ORDER BY r.created_at',
                (entity.id, entity.user_id, entity.project_id)).fetchall()

        relations = [EntityRelation(type=row['relation_type'], direction='from', peer=_entity(row, prefix='p_'))
                     for row in outgoing]
        relations.extend(
            EntityRelation(type=row['relation_type'], direction='to', peer=_entity(row, prefix='p_')) for row in incoming)
        return relations

    # ── Scope-wide operations ─────────────────────────────────

    def count_scope(self, conn: sqlite3.Connection, user_id: str, project_id: Optional[str]) -> MemoryStats:
        entity_count = conn.execute(f'SELECT COUNT(*) FROM entities WHERE {SCOPE}', (user_id, project_id)).fetchone()[0]
        observation_count = conn.execute(
            'SELECT COUNT(*) FROM observations o JOIN entities e ON o.entity_id = e.id '
            'WHERE e.user_id = ? AND e.project_id IS ?', (user_id, project_id)).fetchone()[0]
        relation_count = conn.execute(f'SELECT COUNT(*) FROM relations WHERE {SCOPE}',
                                      (user_id, project_id)).fetchone()[0]
        return MemoryStats(entity_count=entity_count, observation_count=observation_count, relation_count=relation_count)

    @retry_on_locked
    def get_stats(self, user_id: str, project_id: Optional[str] = None) -> MemoryStats:
        """Entity, observation and relation counts of a scope."""
        with self.store.reader() as conn:
            return self.count_scope(conn, user_id, project_id)

    @retry_on_locked
    def clear_scope(self, user_id: str, project_id: Optional[str] = None) -> MemoryStats:
        """Remove every relation, observation, entity and summary of a scope.

        Returns:
            The counts that were removed
        """
        with self.store.transaction() as conn:
            removed = self.count_scope(conn, user_id, project_id)
            # Relations reference entities, so they go first
            conn.execute(f'DELETE FROM relations WHERE {SCOPE}', (user_id, project_id))
            conn.execute(f'DELETE FROM observations WHERE entity_id IN (SELECT id FROM entities WHERE {SCOPE})',
                         (user_id, project_id))
            conn.execute(f'DELETE FROM entities WHERE {SCOPE}', (user_id, project_id))
            conn.execute(f'DELETE FROM memory_summaries WHERE {SCOPE}', (user_id, project_id))

        logger.info(f'Cleared memory for user {user_id} (project {project_id}): {removed.entity_count} entities, '
                    f'{removed.observation_count} observations, {removed.relation_count} relations')
        return removed

    @retry_on_locked
    def read_graph(self, user_id: str, project_id: Optional[str] = None) -> KnowledgeGraph:
        """Every entity (with observations) and relation of a scope."""
        entities = [self.with_observations(entity) for entity in self._list_entities(user_id, project_id)]
        with self.store.reader() as conn:
            rows = conn.execute(
                'SELECT f.name AS from_name, r.type AS relation_type, t.name AS to_name FROM relations r '
                'JOIN entities f ON r.from_entity_id = f.id JOIN entities t ON r.to_entity_id = t.id '
                'WHERE r.user_id = ? AND r.project_id IS ? ORDER BY r.created_at DESC', (user_id, project_id)).fetchall()

        return KnowledgeGraph(entities=entities, relations=[_named_relation(row) for row in rows])

    # ── User edits ────────────────────────────────────────────

    @retry_on_locked
    def add_user_edit(self, user_id: str, project_id: Optional[str], entity_name: str,
                      text: str) -> Union[Observation, AlreadyExists, NotFound]:
        """Store a fact the user explicitly asked to remember.

        The entity is created as a concept if needed. A text already stored on
        the entity is reported as AlreadyExists and left unchanged apart from
        its ``updated_at``. NotFound only happens if the entity is deleted
        concurrently.
        """
        entity = self._create_entity(user_id, project_id, entity_name, 'concept').entity
        observation, created = self._add_observation(entity.id, text, 'normal', True)
        if isinstance(observation, NotFound):
            return observation
        if not created:
            return AlreadyExists(existing=observation, kind='observation')
        return observation

    @retry_on_locked
    def list_user_edits(self, user_id: str, project_id: Optional[str] = None) -> List[UserEdit]:
        """User-authored observations of a scope, newest first."""
        with self.store.reader() as conn:
            rows = conn.execute(
                'SELECT o.id, e.name AS entity_name, o.text, o.created_at FROM observations o '
                'JOIN entities e ON o.entity_id = e.id '
                'WHERE e.user_id = ? AND e.project_id IS ? AND o.is_user_edit = 1 ORDER BY o.created_at DESC',
                (user_id, project_id)).fetchall()
        return [
            UserEdit(observation_id=row['id'],
                     entity_name=row['entity_name'],
                     text=row['text'],
                     created_at=to_datetime(row['created_at'])) for row in rows
        ]

    @retry_on_locked
    def count_user_edits(self, user_id: str, project_id: Optional[str] = None) -> int:
        with self.store.reader() as conn:
            return conn.execute(
                'SELECT COUNT(*) FROM observations o JOIN entities e ON o.entity_id = e.id '
                'WHERE e.user_id = ? AND e.project_id IS ? AND o.is_user_edit = 1', (user_id, project_id)).fetchone()[0]

    @retry_on_locked
    def delete_user_edit(self, user_id: str, project_id: Optional[str], entity_name: str,
                         text: str) -> Union[Observation, NotFound]:
        """Delete one user-authored observation identified by entity name and text."""
        with self.store.transaction() as conn:
            entity_row = self._entity_row(conn, user_id, project_id, entity_name)
            if entity_row is None:
                return NotFound(missing=(entity_name, ))
            row = conn.execute(
                f'SELECT {OBSERVATION_COLUMNS} FROM observations o '
                'WHERE o.entity_id = ? AND lower(o.text) = lower(?) AND o.is_user_edit = 1',
                (entity_row['id'], text)).fetchone()
            if row is None:
                return NotFound(missing=(text, ), kind='edit')
            conn.execute('DELETE FROM observations WHERE id = ?', (row['id'], ))
        return _observation(row, with_embedding=False)

    @retry_on_locked
    def delete_all_user_edits(self, user_id: str, project_id: Optional[str] = None) -> int:
        """Delete every user-authored observation of a scope; returns how many were removed."""
        with self.store.transaction() as conn:
            cursor = conn.execute(
                f'DELETE FROM observations WHERE is_user_edit = 1 AND entity_id IN (SELECT id FROM entities WHERE {SCOPE})',
                (user_id, project_id))
        logger.debug(f'Deleted {cursor.rowcount} user edits for user {user_id}')
        return cursor.rowcount
