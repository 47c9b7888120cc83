"""Tests for /health, /api/health and /api/health/<service>/reset endpoints."""
import pytest

from app.services.circuit_breaker import get_breaker, OPEN


def _trip(name):
    breaker = get_breaker(name)
    for _ in range(breaker.failure_threshold):
        with pytest.raises(RuntimeError):
            breaker.call(_boom)
    return breaker


def _boom():
    raise RuntimeError('upstream down')


class TestLiveness:

    def test_health(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.get_json() == {'status': 'healthy'}


class TestApiHealth:
    """GET /api/health returns circuit breaker states."""

    def test_returns_200(self, client):
        resp = client.get('/api/health')
        assert resp.status_code == 200

    def test_returns_services_dict(self, client):
        data = client.get('/api/health').get_json()
        assert 'apify' in data['services']
        assert 'business_discovery' in data['services']

    def test_service_has_expected_fields(self, client):
        svc = client.get('/api/health').get_json()['services']['business_discovery']
        assert svc['name'] == 'business_discovery'
        assert svc['state'] == 'closed'
        for key in ('failure_count', 'failure_threshold', 'total_success', 'total_failure'):
            assert key in svc

    def test_open_breaker_is_degraded(self, client):
        _trip('apify')
        data = client.get('/api/health').get_json()
        assert data['status'] == 'degraded'
        assert data['services']['apify']['state'] == OPEN


class TestResetCircuit:
    """POST /api/health/<service>/reset resets a circuit breaker."""

    def test_reset_known_service(self, client):
        _trip('apify')
        resp = client.post('/api/health/apify/reset')
        assert resp.status_code == 200
        data = resp.get_json()
        assert data['ok'] is True
        assert data['state'] == 'closed'

    def test_reset_unknown_service_404(self, client):
        resp = client.post('/api/health/nonexistent/reset')
        assert resp.status_code == 404
