"""
Tests for the health check endpoint.
"""
import pytest

from apps.rbac.cache import bump_policy_version, get_policy_version

HEALTH_URL = '/v1/health/'


class BrokenCache:

    def set(self, *args, **kwargs):
        raise ConnectionError('cache down')

    def get(self, *args, **kwargs):
        raise ConnectionError('cache down')


@pytest.mark.django_db
class TestHealthCheck:

    def test_healthy(self, api_client):
        response = api_client.get(HEALTH_URL)

        assert response.status_code == 200
        assert response.data['status'] == 'healthy'
        assert response.data['database'] == 'healthy'
        assert response.data['cache'] == 'healthy'

    def test_reports_policy_version(self, api_client):
        bump_policy_version()

        response = api_client.get(HEALTH_URL)

        assert response.data['policy_version'] == get_policy_version()

    def test_no_authentication_required(self, api_client):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer garbage')

        assert api_client.get(HEALTH_URL).status_code == 200

    def test_cache_failure(self, api_client, monkeypatch):
        monkeypatch.setattr('apps.core.views.cache', BrokenCache())

        response = api_client.get(HEALTH_URL)

        assert response.status_code == 503
        assert response.data['status'] == 'unhealthy'
        assert response.data['cache'] == 'unhealthy'
        assert response.data['database'] == 'healthy'
        assert response.data['errors'] == ['Cache: cache down']

    def test_request_id_header(self, api_client):
        response = api_client.get(HEALTH_URL, HTTP_X_REQUEST_ID='req-123')

        assert response['X-Request-ID'] == 'req-123'
