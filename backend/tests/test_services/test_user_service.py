"""Tests for UserService registration and profile enrollment."""
import pytest

from app.core.exceptions import FaceMatchingRequestError, FaceMatchingUnavailableError
from app.models.face_identity import FaceIdentityStatus
from app.services.user_service import UserService
from tests.conftest import make_face_identity, make_user


@pytest.fixture
def service(db_session, face_client, fast_retry):
    return UserService(db_session, client=face_client, retry_config=fast_retry)


class TestRegisterUser:

    def test_register(self, service):
        user = service.register_user("Alice_1", display_name="Alice")

        assert user.username == "alice_1"
        assert user.is_active is True
        assert service.get_user_by_username("ALICE_1").id == user.id

    def test_repeat_registration_with_same_id(self, service):
        first = service.register_user("alice", user_id="sub-123")
        second = service.register_user("alice", user_id="sub-123")

        assert second.id == first.id == "sub-123"
        assert len(service.list_users()) == 1

    def test_duplicate_username(self, service):
        service.register_user("alice")
        with pytest.raises(ValueError, match="already exists"):
            service.register_user("alice")

    def test_invalid_username(self, service):
        with pytest.raises(ValueError):
            service.register_user("a!")


class TestDeactivate:

    def test_deactivate(self, service, db_session):
        user = make_user(db_session=db_session)

        assert service.deactivate_user(user.id) is True
        assert service.get_user(user.id).is_active is False

    def test_unknown_user(self, service):
        assert service.deactivate_user("nobody") is False


class TestEnrollProfile:

    @pytest.mark.asyncio
    async def test_enroll_sets_profile(self, service, face_client, db_session):
        user = make_user(db_session=db_session, username="alice")
        key = f"photos/{user.id}/profile.jpg"
        face_client.add_image(key, ["sig-alice-profile"])

        resolved = await service.enroll_profile(user.id, key)

        assert resolved == 0
        assert user.is_enrolled
        assert user.profile_photo_key == key

    @pytest.mark.asyncio
    async def test_enroll_resolves_own_unknown_faces(self, service, face_client, db_session):
        user = make_user(db_session=db_session, username="alice")
        own = make_face_identity(db_session=db_session, owner_id=user.id, signature_ref="sig-alice-old")
        stranger = make_face_identity(db_session=db_session, owner_id=user.id, signature_ref="sig-stranger")
        face_client.assign_signature("sig-alice-old", person=user.id, confidence=95)
        key = f"photos/{user.id}/profile.jpg"
        face_client.add_image(key, ["sig-alice-profile"])

        resolved = await service.enroll_profile(user.id, key)

        assert resolved == 1
        db_session.expire_all()
        assert db_session.get(type(own), own.id).resolved_to_user_id == user.id
        assert db_session.get(type(stranger), stranger.id).status == FaceIdentityStatus.UNKNOWN.value

    @pytest.mark.asyncio
    async def test_enroll_without_face_is_rejected(self, service, face_client, db_session):
        user = make_user(db_session=db_session)
        face_client.add_image("photos/empty.jpg", [])

        with pytest.raises(FaceMatchingRequestError):
            await service.enroll_profile(user.id, "photos/empty.jpg")
        assert face_client.calls["enroll"] == 1
        assert not user.is_enrolled

    @pytest.mark.asyncio
    async def test_enroll_retries_transient_failures(self, service, face_client, db_session):
        user = make_user(db_session=db_session)
        face_client.add_image("photos/p.jpg", ["sig-p"])
        face_client.fail_next("enroll", times=2)

        with pytest.raises(FaceMatchingUnavailableError):
            await service.enroll_profile(user.id, "photos/p.jpg")
        assert face_client.calls["enroll"] == 2

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(ValueError):
            await service.enroll_profile("nobody", "photos/p.jpg")
