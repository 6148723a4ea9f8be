"""
Shared pytest fixtures for API tests.

Each test gets a fresh temp-file database (the root `session_factory`
fixture). get_db and every service dependency that opens its own sessions
are overridden to use it, and the in-memory face matching client is
installed process-wide so endpoints that resolve the client themselves
see the same one the test configures.
"""
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from main import app
from app.api.v1.auth import VIEWER_HEADER
from app.core.database import get_db
from app.core.retry import RetryConfig
from app.services.access_decision_service import AccessDecisionService, get_access_decision_service
from app.services.cleanup_service import CleanupService, get_cleanup_service
from app.services.face_matching import set_face_matching_client
from app.services.feed_materializer import (
    ChangeFeedConsumer,
    FeedMaterializer,
    get_change_feed_consumer,
    get_feed_materializer,
)
from app.services.retroactive_matching_service import (
    RetroactiveMatchingService,
    get_retroactive_matching_service,
)

NO_WAIT = RetryConfig(max_attempts=2, base_delay=0, max_delay=0, jitter=False)


API = "/api/v1"


def auth(user) -> dict:
    """Gateway header for acting as user."""
    return {VIEWER_HEADER: user.id}


def enroll(api, user, confidence: int = 99):
    """Enroll user's profile face through the API."""
    key = f"photos/{user.id}/profile.jpg"
    signature = f"sig-profile-{user.id}"
    api.face_client.add_image(key, [signature])
    api.face_client.assign_signature(signature, user.id, confidence)
    response = api.client.post(f"{API}/users/me/enroll", json={"image_ref": key}, headers=auth(user))
    assert response.status_code == 200, response.text
    return response.json()


def upload(api, owner, name: str, signatures=(), **fields):
    """Send an object-created notification for a photo with the given faces."""
    key = f"photos/{owner.id}/{name}"
    api.face_client.add_image(key, list(signatures))
    return api.client.post(f"{API}/content", json={"owner_id": owner.id, "object_key": key, **fields})


@pytest.fixture
def api(session_factory, face_client):
    """
    API test client wired to the test database and in-memory face matching.

    Yields:
        Namespace with client, the services behind the endpoints and
        the face_client
    """
    decisions = AccessDecisionService(
        session_factory=session_factory, client=face_client, retry_config=NO_WAIT, threshold=80
    )
    retroactive = RetroactiveMatchingService(
        session_factory=session_factory, client=face_client, retry_config=NO_WAIT, threshold=80
    )
    materializer = FeedMaterializer(session_factory=session_factory, retry_config=NO_WAIT)
    consumer = ChangeFeedConsumer(materializer=materializer, session_factory=session_factory)
    cleanup = CleanupService(session_factory=session_factory)

    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_access_decision_service] = lambda: decisions
    app.dependency_overrides[get_retroactive_matching_service] = lambda: retroactive
    app.dependency_overrides[get_feed_materializer] = lambda: materializer
    app.dependency_overrides[get_change_feed_consumer] = lambda: consumer
    app.dependency_overrides[get_cleanup_service] = lambda: cleanup
    set_face_matching_client(face_client)

    yield SimpleNamespace(
        client=TestClient(app),
        decisions=decisions,
        retroactive=retroactive,
        materializer=materializer,
        consumer=consumer,
        cleanup=cleanup,
        face_client=face_client,
    )

    app.dependency_overrides.clear()
    set_face_matching_client(None)
