"""Tests for the root, health and Prometheus endpoints"""
from tests.conftest import make_user
from tests.test_api.conftest import API, auth, upload


class TestHealth:

    def test_root(self, api):
        response = api.client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "Access Graph API"

    def test_health(self, api):
        data = api.client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["face_matching"] == "in_memory"

    def test_request_id_header(self, api):
        response = api.client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestPrometheusMetrics:

    def test_exposes_pipeline_metrics(self, api, db):
        alice = make_user(db_session=db, username="alice")
        upload(api, alice, "beach.jpg")
        api.client.get(f"{API}/users/me", headers=auth(alice))

        response = api.client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        body = response.text
        assert "content_processed_total" in body
        assert "http_requests_total" in body
