"""Tests for RetroactiveMatchingService: both directions, checkpoints, resume."""
import pytest

from app.core.ids import retroactive_job_id
from app.models.face_identity import FaceIdentity, FaceIdentityStatus
from app.models.friendship import Friendship
from app.models.recipient_edge import GrantMethod, Provenance, RecipientEdge
from app.models.retroactive_job import RetroactiveJob, RetroactiveJobStatus
from app.services.retroactive_matching_service import RetroactiveMatchingService
from tests.conftest import (
    enroll_face,
    make_content,
    make_content_face,
    make_face_identity,
    make_friendship,
    make_user,
)


@pytest.fixture
def people(db):
    return (
        make_user(db_session=db, username="alice"),
        make_user(db_session=db, username="bob"),
        make_user(db_session=db, username="carol"),
    )


@pytest.fixture
def service(session_factory, face_client, fast_retry):
    return RetroactiveMatchingService(
        session_factory=session_factory,
        client=face_client,
        retry_config=fast_retry,
        threshold=80,
        page_size=2,
    )


def unknown_face_in_photo(db, owner, signature, photos=1):
    """An UNKNOWN identity in owner's directory appearing in `photos` content items."""
    identity = make_face_identity(db_session=db, owner_id=owner.id, signature_ref=signature)
    contents = []
    for _ in range(photos):
        content = make_content(db_session=db, owner_id=owner.id)
        make_content_face(db_session=db, content=content, identity=identity)
        contents.append(content)
    return identity, contents


def edges_for(db, recipient_id):
    db.expire_all()
    return db.query(RecipientEdge).filter(RecipientEdge.recipient_id == recipient_id).all()


class TestBothDirections:

    @pytest.mark.asyncio
    async def test_resolves_unknown_faces_on_both_sides(self, service, face_client, people, db):
        alice, bob, _ = people
        await enroll_face(face_client, db, alice)
        await enroll_face(face_client, db, bob)
        bob_in_alice, alice_photos = unknown_face_in_photo(db, alice, "sig-bob-old", photos=2)
        alice_in_bob, bob_photos = unknown_face_in_photo(db, bob, "sig-alice-old")
        unknown_face_in_photo(db, alice, "sig-stranger")
        face_client.assign_signature("sig-bob-old", bob.id, 90)
        face_client.assign_signature("sig-alice-old", alice.id, 92)
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id, requester_id=alice.id)

        summaries = await service.run_for_friendship(friendship.id)

        assert [s["status"] for s in summaries] == ["COMPLETED", "COMPLETED"]
        alice_side, bob_side = summaries
        assert (alice_side["owner_id"], alice_side["trusted_user_id"]) == (alice.id, bob.id)
        assert alice_side["identities_scanned"] == 2
        assert alice_side["identities_resolved"] == 1
        assert alice_side["grants_created"] == 2
        assert bob_side["identities_resolved"] == 1
        assert bob_side["grants_created"] == 1

        bob_edges = edges_for(db, bob.id)
        assert {e.content_id for e in bob_edges} == {c.id for c in alice_photos}
        assert all(e.provenance == Provenance.RETROACTIVE.value for e in bob_edges)
        assert all(e.method == GrantMethod.FACE_MATCH.value for e in bob_edges)
        assert [e.content_id for e in edges_for(db, alice.id)] == [bob_photos[0].id]

        assert db.get(FaceIdentity, bob_in_alice.id).resolved_to_user_id == bob.id
        assert db.get(FaceIdentity, alice_in_bob.id).resolved_to_user_id == alice.id
        assert db.get(Friendship, friendship.id).retroactive_completed_at is not None

    @pytest.mark.asyncio
    async def test_rerun_is_a_noop(self, service, face_client, people, db):
        alice, bob, _ = people
        await enroll_face(face_client, db, bob)
        unknown_face_in_photo(db, alice, "sig-bob-old")
        face_client.assign_signature("sig-bob-old", bob.id, 90)
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id)
        await service.run_for_friendship(friendship.id)
        match_calls = face_client.calls["match"]

        summaries = await service.run_for_friendship(friendship.id)

        assert [s["status"] for s in summaries] == ["COMPLETED", "COMPLETED"]
        assert face_client.calls["match"] == match_calls
        assert len(edges_for(db, bob.id)) == 1

    @pytest.mark.asyncio
    async def test_below_threshold_stays_unknown(self, service, face_client, people, db):
        alice, bob, _ = people
        await enroll_face(face_client, db, bob)
        identity, _ = unknown_face_in_photo(db, alice, "sig-blurry")
        face_client.assign_signature("sig-blurry", bob.id, 70)
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id)

        await service.run_for_friendship(friendship.id)

        assert db.get(FaceIdentity, identity.id).status == FaceIdentityStatus.UNKNOWN.value
        assert edges_for(db, bob.id) == []

    @pytest.mark.asyncio
    async def test_faces_resolved_to_someone_else_are_untouched(self, service, face_client, people, db):
        alice, bob, carol = people
        await enroll_face(face_client, db, bob)
        carol_face = make_face_identity(
            db_session=db, owner_id=alice.id, signature_ref="sig-carol", resolved_to=carol.id, confidence=95
        )
        face_client.set_match("sig-carol", bob.id, 99)
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id)

        summaries = await service.run_for_friendship(friendship.id)

        assert summaries[0]["identities_scanned"] == 0
        assert db.get(FaceIdentity, carol_face.id).resolved_to_user_id == carol.id

    @pytest.mark.asyncio
    async def test_unenrolled_trusted_user_completes_immediately(self, service, face_client, people, db):
        alice, bob, _ = people
        unknown_face_in_photo(db, alice, "sig-bob-old")
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id)

        summaries = await service.run_for_friendship(friendship.id)

        assert summaries[0]["status"] == "COMPLETED"
        assert summaries[0]["identities_scanned"] == 0
        assert face_client.calls["match"] == 0

    @pytest.mark.asyncio
    async def test_pending_friendship_is_skipped(self, service, people, db):
        alice, bob, _ = people
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id, status="PENDING")

        assert await service.run_for_friendship(friendship.id) == []
        assert await service.run_for_friendship("missing") == []


class TestResume:

    @pytest.mark.asyncio
    async def test_failure_marks_job_and_sweep_resumes(self, service, face_client, people, db):
        alice, bob, _ = people
        await enroll_face(face_client, db, bob)
        unknown_face_in_photo(db, alice, "sig-bob-old")
        face_client.assign_signature("sig-bob-old", bob.id, 90)
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id, requester_id=alice.id)
        face_client.fail_next("match", times=2)

        summaries = await service.run_for_friendship(friendship.id)

        assert summaries[0]["status"] == "FAILED"
        assert summaries[0]["error_message"].startswith("FaceMatchingUnavailableError")
        assert summaries[0]["last_face_identity_id"] is None
        assert summaries[1]["status"] == "COMPLETED"
        assert db.get(Friendship, friendship.id).retroactive_completed_at is None
        assert edges_for(db, bob.id) == []

        assert await service.sweep_incomplete() == 1

        job = service.list_jobs(status=RetroactiveJobStatus.COMPLETED)
        assert len(job) == 2
        assert len(edges_for(db, bob.id)) == 1
        assert db.get(Friendship, friendship.id).retroactive_completed_at is not None
        assert await service.sweep_incomplete() == 0

    @pytest.mark.asyncio
    async def test_resume_continues_after_cursor(self, service, face_client, people, db):
        alice, bob, _ = people
        await enroll_face(face_client, db, bob)
        first, _ = unknown_face_in_photo(db, alice, "sig-bob-1")
        second, _ = unknown_face_in_photo(db, alice, "sig-bob-2")
        face_client.assign_signature("sig-bob-1", bob.id, 90)
        face_client.assign_signature("sig-bob-2", bob.id, 90)
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id)
        done, remaining = sorted([first.id, second.id])
        db.add(RetroactiveJob(
            id=retroactive_job_id(friendship.id, alice.id, bob.id),
            friendship_id=friendship.id,
            owner_id=alice.id,
            trusted_user_id=bob.id,
            status=RetroactiveJobStatus.FAILED.value,
            last_face_identity_id=done,
            identities_scanned=1,
        ))
        db.commit()

        summary = await service.run_direction(friendship.id, alice.id, bob.id)

        assert summary["status"] == "COMPLETED"
        assert summary["identities_scanned"] == 2
        assert summary["last_face_identity_id"] == remaining
        db.expire_all()
        assert db.get(FaceIdentity, done).status == FaceIdentityStatus.UNKNOWN.value
        assert db.get(FaceIdentity, remaining).resolved_to_user_id == bob.id

    @pytest.mark.asyncio
    async def test_interrupted_fan_out_is_completed(self, service, face_client, people, db):
        alice, bob, _ = people
        await enroll_face(face_client, db, bob)
        identity = make_face_identity(
            db_session=db, owner_id=alice.id, signature_ref="sig-bob", resolved_to=bob.id, confidence=91
        )
        content = make_content(db_session=db, owner_id=alice.id)
        make_content_face(db_session=db, content=content, identity=identity)
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id)

        summary = await service.run_direction(friendship.id, alice.id, bob.id)

        assert summary["identities_resolved"] == 0
        assert summary["grants_created"] == 1
        assert edges_for(db, bob.id)[0].confidence == 91


class TestRequeue:

    @pytest.mark.asyncio
    async def test_requeue_after_enrollment(self, service, face_client, people, db):
        alice, bob, _ = people
        unknown_face_in_photo(db, alice, "sig-bob-old")
        face_client.assign_signature("sig-bob-old", bob.id, 90)
        friendship = make_friendship(db_session=db, user_a=alice.id, user_b=bob.id, requester_id=alice.id)
        await service.run_for_friendship(friendship.id)
        assert edges_for(db, bob.id) == []

        await enroll_face(face_client, db, bob)
        assert service.requeue_for_trusted_user(bob.id) == 1
        assert db.get(Friendship, friendship.id).retroactive_completed_at is None
        assert len(service.list_jobs(status=RetroactiveJobStatus.PENDING)) == 1

        assert await service.sweep_incomplete() == 1
        assert len(edges_for(db, bob.id)) == 1
