"""
Tests for the friendship API

Tests:
    - Request, accept and list friendships
    - Accepting triggers retroactive matching exactly once
    - Social-graph events are idempotent
"""
import pytest

from app.core.ids import friendship_id
from app.models.recipient_edge import RecipientEdge
from tests.conftest import make_content, make_content_face, make_face_identity, make_user
from tests.test_api.conftest import API, auth, enroll


@pytest.fixture
def people(db):
    return (
        make_user(db_session=db, username="alice"),
        make_user(db_session=db, username="bob"),
        make_user(db_session=db, username="carol"),
    )


def unknown_bob_photo(api, db, owner, bob):
    """A photo in owner's library with a face that is actually bob."""
    identity = make_face_identity(db_session=db, owner_id=owner.id, signature_ref="sig-bob-old")
    content = make_content(db_session=db, owner_id=owner.id)
    make_content_face(db_session=db, content=content, identity=identity)
    api.face_client.assign_signature("sig-bob-old", bob.id, 91)
    return content


class TestRequestAndAccept:

    def test_request_then_accept(self, api, people):
        alice, bob, _ = people

        requested = api.client.post(f"{API}/friendships", json={"addressee_id": bob.id}, headers=auth(alice))
        assert requested.status_code == 201
        assert requested.json()["changed"] is True
        fid = requested.json()["friendship"]["id"]
        assert fid == friendship_id(alice.id, bob.id)

        pending = api.client.get(f"{API}/friendships", headers=auth(bob)).json()
        assert [f["id"] for f in pending["pending"]] == [fid]
        assert pending["friends"] == []

        accepted = api.client.post(f"{API}/friendships/{fid}/accept", headers=auth(bob))
        assert accepted.status_code == 200
        assert accepted.json()["changed"] is True
        assert accepted.json()["friendship"]["status"] == "ACCEPTED"

        friends = api.client.get(f"{API}/friendships", headers=auth(alice)).json()
        assert [f["id"] for f in friends["friends"]] == [fid]

    def test_repeat_request_in_reverse(self, api, people):
        alice, bob, _ = people
        api.client.post(f"{API}/friendships", json={"addressee_id": bob.id}, headers=auth(alice))

        response = api.client.post(f"{API}/friendships", json={"addressee_id": alice.id}, headers=auth(bob))

        assert response.status_code == 201
        assert response.json()["changed"] is False

    def test_self_request_conflict(self, api, people):
        alice = people[0]
        response = api.client.post(f"{API}/friendships", json={"addressee_id": alice.id}, headers=auth(alice))
        assert response.status_code == 409

    def test_accept_errors(self, api, people):
        alice, bob, carol = people
        fid = api.client.post(
            f"{API}/friendships", json={"addressee_id": bob.id}, headers=auth(alice)
        ).json()["friendship"]["id"]

        assert api.client.post(f"{API}/friendships/{fid}/accept", headers=auth(alice)).status_code == 409
        assert api.client.post(f"{API}/friendships/{fid}/accept", headers=auth(carol)).status_code == 403
        missing = friendship_id(alice.id, carol.id)
        assert api.client.post(f"{API}/friendships/{missing}/accept", headers=auth(alice)).status_code == 404

    def test_accept_runs_retroactive_matching(self, api, people, db):
        alice, bob, _ = people
        enroll(api, bob)
        old_photo = unknown_bob_photo(api, db, alice, bob)
        fid = api.client.post(
            f"{API}/friendships", json={"addressee_id": bob.id}, headers=auth(alice)
        ).json()["friendship"]["id"]

        api.client.post(f"{API}/friendships/{fid}/accept", headers=auth(bob))

        db.expire_all()
        edges = db.query(RecipientEdge).filter(RecipientEdge.recipient_id == bob.id).all()
        assert [e.content_id for e in edges] == [old_photo.id]
        assert edges[0].provenance == "RETROACTIVE"
        assert api.client.get(f"{API}/content/{old_photo.id}", headers=auth(bob)).status_code == 200

        again = api.client.post(f"{API}/friendships/{fid}/accept", headers=auth(bob))
        assert again.json()["changed"] is False


class TestFriendshipEvents:

    def test_event_accepts_and_redelivery_is_noop(self, api, people, db):
        alice, bob, _ = people
        enroll(api, bob)
        unknown_bob_photo(api, db, alice, bob)
        payload = {"type": "FRIENDSHIP_ACCEPTED", "user_a_id": alice.id, "user_b_id": bob.id}

        first = api.client.post(f"{API}/friendships/events", json=payload)
        match_calls = api.face_client.calls["match"]
        second = api.client.post(f"{API}/friendships/events", json=payload)

        assert first.status_code == 200
        assert first.json()["changed"] is True
        assert second.json()["changed"] is False
        assert api.face_client.calls["match"] == match_calls
        assert second.json()["friendship"]["retroactive_completed_at"] is not None

    def test_event_with_same_user_twice(self, api, people):
        alice = people[0]
        response = api.client.post(
            f"{API}/friendships/events", json={"user_a_id": alice.id, "user_b_id": alice.id}
        )
        assert response.status_code == 422

    def test_event_with_unknown_user(self, api, people):
        response = api.client.post(
            f"{API}/friendships/events", json={"user_a_id": people[0].id, "user_b_id": "nobody"}
        )
        assert response.status_code == 409
