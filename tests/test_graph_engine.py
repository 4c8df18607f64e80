"""Tests for the Graph Engine: dedup, scoping, relations, cascades."""

from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from entitymem.models.core import AlreadyExists, NotFound, Observation, Relation
from entitymem.services.graph_engine import GraphEngine
from entitymem.utils.sqlite_store import StoreUnavailableError

from .conftest import build_services


class TestEntities:
    def test_create_twice_any_case_yields_one_entity(self, graph: GraphEngine):
        first = graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets'])
        second = graph.create_entity('u1', None, 'acme corp', 'person', ['Based in Sydney'])

        assert first.id == second.id
        assert second.type == 'business'
        assert sorted(o.text for o in second.observations) == ['Based in Sydney', 'Sells widgets']
        assert len(graph.list_entities('u1')) == 1

    def test_get_entity_is_case_insensitive(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'Acme Corp', 'business')
        assert graph.get_entity('u1', None, 'ACME CORP').name == 'Acme Corp'
        assert graph.get_entity('u1', None, 'Unknown') is None

    def test_observations_ordered_by_importance(self, graph: GraphEngine):
        entity = graph.create_entity('u1', None, 'Acme Corp', 'business')
        graph.add_observation(entity.id, 'Temporary promo running', 'temporary')
        graph.add_observation(entity.id, 'Revenue target: $500k', 'critical')
        graph.add_observation(entity.id, 'Has 12 staff', 'normal')

        texts = [o.text for o in graph.get_entity('u1', None, 'Acme Corp').observations]
        assert texts == ['Revenue target: $500k', 'Has 12 staff', 'Temporary promo running']

    def test_case_folding_is_ascii_only(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'Acme', 'business')
        graph.create_entity('u1', None, 'ACME', 'business')
        graph.create_entity('u1', None, 'Café Ünion', 'business')
        graph.create_entity('u1', None, 'CAFÉ ÜNION', 'business')

        assert sorted(e.name for e in graph.list_entities('u1')) == ['Acme', 'CAFÉ ÜNION', 'Café Ünion']
        assert graph.find_entity('u1', None, 'café ünion') is None


class TestObservations:
    def test_duplicate_text_refreshes_only_updated_at(self, graph: GraphEngine):
        entity = graph.create_entity('u1', None, 'Acme Corp', 'business')
        original = graph.add_observation(entity.id, 'Pays on 30 day terms', 'critical', is_user_edit=True)
        again = graph.add_observation(entity.id, 'PAYS ON 30 DAY TERMS', 'temporary', is_user_edit=False)

        assert isinstance(again, Observation)
        assert again.id == original.id
        assert again.importance == 'critical'
        assert again.is_user_edit is True
        assert again.updated_at > original.updated_at
        assert len(graph.get_entity('u1', None, 'Acme Corp').observations) == 1

    def test_add_to_missing_entity_is_not_found(self, graph: GraphEngine):
        result = graph.add_observation('no-such-id', 'anything')
        assert isinstance(result, NotFound)

    def test_no_embedding_when_disabled(self, graph: GraphEngine):
        entity = graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets'])
        assert entity.observations[0].embedding is None

    def test_delete_observation_is_scope_checked(self, graph: GraphEngine):
        entity = graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets'])
        observation_id = entity.observations[0].id

        assert isinstance(graph.delete_observation('u2', None, observation_id), NotFound)
        assert isinstance(graph.delete_observation('u1', 'p1', observation_id), NotFound)

        deleted = graph.delete_observation('u1', None, observation_id)
        assert deleted.id == observation_id
        assert graph.get_entity('u1', None, 'Acme Corp').observations == []

    def test_update_importance(self, graph: GraphEngine):
        entity = graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets'])
        observation = entity.observations[0]

        updated = graph.update_observation_importance('u1', None, observation.id, 'critical')
        assert updated.importance == 'critical'
        assert updated.updated_at > observation.updated_at
        assert isinstance(graph.update_observation_importance('u2', None, observation.id, 'normal'), NotFound)


class TestScoping:
    def test_users_are_isolated(self, graph: GraphEngine):
        graph.create_entity('alice', None, 'Acme Corp', 'business', ['Alice fact'])
        graph.create_entity('bob', None, 'Acme Corp', 'business', ['Bob fact'])

        alice = graph.get_entity('alice', None, 'Acme Corp')
        assert [o.text for o in alice.observations] == ['Alice fact']
        assert [o.text for _, o in graph.scope_observations('bob')] == ['Bob fact']

    def test_null_project_is_its_own_scope(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'Acme Corp', 'business', ['Global fact'])
        graph.create_entity('u1', 'p1', 'Acme Corp', 'business', ['Project fact'])

        assert len(graph.list_entities('u1', None)) == 1
        assert len(graph.list_entities('u1', 'p1')) == 1
        assert graph.get_entity('u1', 'p2', 'Acme Corp') is None
        project = graph.get_entity('u1', 'p1', 'Acme Corp')
        assert [o.text for o in project.observations] == ['Project fact']


class TestRelations:
    def test_create_and_read_both_directions(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'John Smith', 'person')
        graph.create_entity('u1', None, 'Acme Corp', 'business')

        relation = graph.create_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for')
        assert isinstance(relation, Relation)

        acme = graph.get_entity('u1', None, 'Acme Corp', include_relations=True)
        assert [(r.type, r.direction, r.peer.name) for r in acme.relations] == [('works_for', 'to', 'John Smith')]
        john = graph.get_entity('u1', None, 'John Smith', include_relations=True)
        assert [(r.type, r.direction, r.peer.name) for r in john.relations] == [('works_for', 'from', 'Acme Corp')]

    def test_missing_endpoint_creates_nothing(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'Acme Corp', 'business')

        result = graph.create_relation('u1', None, 'Jane Doe', 'Acme Corp', 'works_for')
        assert isinstance(result, NotFound)
        assert result.missing == ('Jane Doe', )
        assert graph.find_entity('u1', None, 'Jane Doe') is None
        assert graph.get_stats('u1').relation_count == 0

    def test_both_endpoints_missing_are_named(self, graph: GraphEngine):
        result = graph.create_relation('u1', None, 'Jane Doe', 'Globex', 'supplies_to')
        assert result.missing == ('Jane Doe', 'Globex')
        assert result.message == 'Entities not found: "Jane Doe", "Globex"'

    def test_duplicate_relation_already_exists(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'John Smith', 'person')
        graph.create_entity('u1', None, 'Acme Corp', 'business')
        first = graph.create_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for')
        second = graph.create_relation('u1', None, 'john smith', 'ACME CORP', 'WORKS_FOR')

        assert isinstance(second, AlreadyExists)
        assert second.existing.id == first.id
        assert graph.get_stats('u1').relation_count == 1

    def test_relation_endpoints_must_share_scope(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'John Smith', 'person')
        graph.create_entity('u2', None, 'Acme Corp', 'business')
        assert isinstance(graph.create_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for'), NotFound)

    def test_delete_relation(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'John Smith', 'person')
        graph.create_entity('u1', None, 'Acme Corp', 'business')
        graph.create_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for')

        assert isinstance(graph.delete_relation('u1', None, 'John Smith', 'Acme Corp', 'owns'), NotFound)
        assert isinstance(graph.delete_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for'), Relation)
        assert graph.get_stats('u1').relation_count == 0


class TestCascades:
    def test_delete_entity_removes_observations_and_touching_relations(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'John Smith', 'person', ['Accountant'])
        graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets'])
        graph.create_entity('u1', None, 'Globex', 'business')
        graph.create_entity('u1', None, 'Jane Doe', 'person')
        graph.create_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for')
        graph.create_relation('u1', None, 'Acme Corp', 'Globex', 'supplies_to')
        graph.create_relation('u1', None, 'Jane Doe', 'Globex', 'works_for')

        deleted = graph.delete_entity('u1', None, 'Acme Corp')
        assert deleted.name == 'Acme Corp'

        stats = graph.get_stats('u1')
        assert stats.entity_count == 3
        assert stats.observation_count == 1
        assert stats.relation_count == 1
        assert graph.get_entity('u1', None, 'John Smith', include_relations=True).relations == []

    def test_delete_missing_entity(self, graph: GraphEngine):
        assert isinstance(graph.delete_entity('u1', None, 'Nobody'), NotFound)

    def test_clear_scope_reports_removed_counts(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'John Smith', 'person', ['Accountant'])
        graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets', 'Based in Sydney'])
        graph.create_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for')
        graph.create_entity('u2', None, 'Other', 'concept', ['Untouched'])

        removed = graph.clear_scope('u1')
        assert (removed.entity_count, removed.observation_count, removed.relation_count) == (2, 3, 1)

        stats = graph.get_stats('u1')
        assert (stats.entity_count, stats.observation_count, stats.relation_count) == (0, 0, 0)
        assert graph.get_stats('u2').observation_count == 1


class TestReadGraph:
    def test_read_graph_names_relations(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'John Smith', 'person', ['Accountant'])
        graph.create_entity('u1', None, 'Acme Corp', 'business')
        graph.create_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for')

        knowledge = graph.read_graph('u1')
        assert sorted(e.name for e in knowledge.entities) == ['Acme Corp', 'John Smith']
        assert [(r.from_name, r.relation_type, r.to_name) for r in knowledge.relations] == [
            ('John Smith', 'works_for', 'Acme Corp')
        ]


class TestUserEdits:
    def test_add_list_and_delete(self, graph: GraphEngine):
        edit = graph.add_user_edit('u1', None, 'Preferences', 'Prefers email')
        assert isinstance(edit, Observation)
        assert edit.is_user_edit is True
        assert graph.find_entity('u1', None, 'Preferences').type == 'concept'

        duplicate = graph.add_user_edit('u1', None, 'preferences', 'prefers EMAIL')
        assert isinstance(duplicate, AlreadyExists)
        assert duplicate.kind == 'observation'

        graph.add_user_edit('u1', None, 'Preferences', 'Works mornings')
        assert graph.count_user_edits('u1') == 2
        assert [e.text for e in graph.list_user_edits('u1')][0] in ('Works mornings', 'Prefers email')

        assert isinstance(graph.delete_user_edit('u1', None, 'Preferences', 'Unknown text'), NotFound)
        assert isinstance(graph.delete_user_edit('u1', None, 'Preferences', 'prefers email'), Observation)
        assert graph.count_user_edits('u1') == 1

    def test_delete_all_only_touches_user_edits(self, graph: GraphEngine):
        entity = graph.create_entity('u1', None, 'Preferences', 'concept', ['Extracted fact'])
        graph.add_user_edit('u1', None, 'Preferences', 'Edit one')
        graph.add_user_edit('u1', None, 'Preferences', 'Edit two')

        assert graph.delete_all_user_edits('u1') == 2
        remaining = graph.get_entity('u1', None, 'Preferences').observations
        assert [o.text for o in remaining] == ['Extracted fact']
        assert remaining[0].entity_id == entity.id


class TestOpenNodes:
    def test_returns_requested_entities_and_relations_among_them(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'John Smith', 'person', ['Accountant'])
        graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets'])
        graph.create_entity('u1', None, 'Globex', 'business')
        graph.create_relation('u1', None, 'John Smith', 'Acme Corp', 'works_for')
        graph.create_relation('u1', None, 'Acme Corp', 'Globex', 'supplies_to')

        knowledge = graph.open_nodes('u1', None, ['acme corp', 'John Smith'])
        assert [e.name for e in knowledge.entities] == ['Acme Corp', 'John Smith']
        assert [o.text for o in knowledge.entities[0].observations] == ['Sells widgets']
        assert [(r.from_name, r.relation_type, r.to_name) for r in knowledge.relations] == [
            ('John Smith', 'works_for', 'Acme Corp')
        ]

    def test_unknown_and_repeated_names(self, graph: GraphEngine):
        graph.create_entity('u1', None, 'Acme Corp', 'business')
        graph.create_entity('u2', None, 'Globex', 'business')

        knowledge = graph.open_nodes('u1', None, ['Acme Corp', 'ACME CORP', 'Globex', 'Nobody'])
        assert [e.name for e in knowledge.entities] == ['Acme Corp']
        assert knowledge.relations == []

    def test_no_names(self, graph: GraphEngine):
        knowledge = graph.open_nodes('u1', None, [])
        assert (knowledge.entities, knowledge.relations) == ([], [])


class TestConcurrentWriters:
    def test_uniqueness_holds_across_threads_and_handles(self, tmp_path):
        handles = [build_services(tmp_path), build_services(tmp_path)]

        def write(worker: int):
            graph = handles[worker % 2].graph
            for _ in range(5):
                graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets', 'Based in Sydney'])
                graph.create_entity('u1', None, 'john smith', 'person', ['Accountant', 'Prefers email'])
                graph.create_relation('u1', None, 'John Smith', 'ACME CORP', 'works_for')

        try:
            with ThreadPoolExecutor(max_workers=8) as pool:
                for future in [pool.submit(write, worker) for worker in range(8)]:
                    future.result()

            for services in handles:
                stats = services.graph.get_stats('u1')
                assert (stats.entity_count, stats.observation_count, stats.relation_count) == (2, 4, 1)
        finally:
            for services in handles:
                services.close()


class TestRetries:
    @staticmethod
    def _always_locked(calls):

        def locked(*args, **kwargs):
            calls.append(1)
            raise sqlite3.OperationalError('database is locked')

        return locked

    def test_nested_reads_share_one_retry_budget(self, graph: GraphEngine, monkeypatch):
        graph.create_entity('u1', None, 'Acme Corp', 'business', ['Sells widgets'])
        calls = []
        monkeypatch.setattr(graph.store, 'reader', self._always_locked(calls))

        with pytest.raises(StoreUnavailableError):
            graph.get_entity('u1', None, 'Acme Corp', include_relations=True)
        assert len(calls) == graph.store.config.retry_attempts

    def test_nested_writes_share_one_retry_budget(self, graph: GraphEngine, monkeypatch):
        calls = []
        monkeypatch.setattr(graph.store, 'transaction', self._always_locked(calls))

        with pytest.raises(StoreUnavailableError):
            graph.add_user_edit('u1', None, 'Preferences', 'Prefers email')
        assert len(calls) == graph.store.config.retry_attempts
