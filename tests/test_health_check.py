"""Tests for component health reporting."""

from __future__ import annotations

from entitymem.utils.health_check import check_health, get_health_status, get_system_info

from .conftest import FailingEmbedder, build_services


class TestHealth:
    def test_healthy_without_embedder(self, services):
        status = get_health_status(services)
        assert status['store']['healthy'] is True
        assert status['embedder'] == {'healthy': True, 'service': 'Embeddings', 'enabled': False}
        assert check_health(services) is True

    def test_healthy_with_embedder(self, vector_services):
        status = get_health_status(vector_services)
        assert status['embedder']['healthy'] is True
        assert status['embedder']['model'] == 'fake-bow'

    def test_failing_embedder_is_unhealthy(self, tmp_path):
        svc = build_services(tmp_path, embedder=FailingEmbedder())
        assert get_health_status(svc)['embedder']['healthy'] is False
        assert check_health(svc) is False
        svc.close()

    def test_closed_store_is_unhealthy(self, services):
        services.store.close()
        assert check_health(services) is False

    def test_system_info(self, services):
        info = get_system_info(services)
        assert info['service_name'] == 'EntityMem'
        assert info['configuration']['memory_variant'] == 'graph'
        assert info['health_status']['store']['healthy'] is True
