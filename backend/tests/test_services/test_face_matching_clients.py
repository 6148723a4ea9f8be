"""Tests for the face matching clients (in-memory and HTTP)."""
import json

import httpx
import pytest

from app.core.exceptions import FaceMatchingRequestError, FaceMatchingUnavailableError
from app.services.face_matching import (
    BoundingBox,
    CandidateMatch,
    DetectedFace,
    HttpFaceMatchingClient,
    InMemoryFaceMatchingClient,
)


class TestDataTypes:

    def test_confidence_range_is_enforced(self):
        with pytest.raises(ValueError):
            CandidateMatch("bob", 101)
        with pytest.raises(ValueError):
            DetectedFace("sig", BoundingBox(0, 0, 1, 1), confidence=-1)

    def test_threshold_is_inclusive(self):
        assert CandidateMatch("bob", 80).passes_threshold(80)
        assert not CandidateMatch("bob", 79).passes_threshold(80)

    def test_bounding_box_json(self):
        box = BoundingBox(left=0.1, top=0.2, width=0.3, height=0.4)
        assert json.loads(box.to_json()) == {"left": 0.1, "top": 0.2, "width": 0.3, "height": 0.4}
        assert BoundingBox.from_json(box.to_json()) == box


class TestInMemoryFaceMatchingClient:

    @pytest.mark.asyncio
    async def test_detect_registered_image(self):
        client = InMemoryFaceMatchingClient()
        client.add_image("photos/a/1.jpg", ["sig-1", "sig-2"])

        faces = await client.detect("photos/a/1.jpg")

        assert [f.signature_ref for f in faces] == ["sig-1", "sig-2"]
        assert await client.detect("photos/a/unknown.jpg") == []

    @pytest.mark.asyncio
    async def test_match_against_enrolled_user(self):
        client = InMemoryFaceMatchingClient()
        client.add_image("photos/bob/profile.jpg", ["sig-bob-profile"])
        client.assign_signature("sig-bob-profile", "bob-person", 99)
        await client.enroll("photos/bob/profile.jpg", "bob")
        client.assign_signature("sig-bob-1", "bob-person", 92)

        matches = await client.match_against_enrolled("sig-bob-1", ["bob", "carol"])

        assert matches == [CandidateMatch("bob", 92)]

    @pytest.mark.asyncio
    async def test_match_between_signatures_uses_lower_confidence(self):
        client = InMemoryFaceMatchingClient()
        client.assign_signature("sig-1", "dave", 95)
        client.assign_signature("sig-2", "dave", 85)
        client.assign_signature("sig-3", "erin", 99)

        matches = await client.match_against_enrolled("sig-1", ["sig-1", "sig-2", "sig-3"])

        assert matches == [CandidateMatch("sig-2", 85)]

    @pytest.mark.asyncio
    async def test_unassigned_signature_matches_nothing(self):
        client = InMemoryFaceMatchingClient()
        client.assign_signature("sig-2", "dave", 85)
        assert await client.match_against_enrolled("sig-x", ["sig-2"]) == []

    @pytest.mark.asyncio
    async def test_pinned_score(self):
        client = InMemoryFaceMatchingClient()
        client.set_match("sig-1", "bob", 79)
        assert await client.match_against_enrolled("sig-1", ["bob"]) == [CandidateMatch("bob", 79)]

    @pytest.mark.asyncio
    async def test_enroll_without_face_is_rejected(self):
        client = InMemoryFaceMatchingClient()
        client.add_image("photos/bob/blank.jpg", [])
        with pytest.raises(FaceMatchingRequestError):
            await client.enroll("photos/bob/blank.jpg", "bob")

    @pytest.mark.asyncio
    async def test_fail_next(self):
        client = InMemoryFaceMatchingClient()
        client.fail_next("detect", times=2)

        for _ in range(2):
            with pytest.raises(FaceMatchingUnavailableError):
                await client.detect("photos/a/1.jpg")
        assert await client.detect("photos/a/1.jpg") == []
        assert client.calls["detect"] == 3


def _http_client(handler) -> HttpFaceMatchingClient:
    transport = httpx.MockTransport(handler)
    return HttpFaceMatchingClient(
        base_url="http://faces.test/v1/",
        api_key="secret",
        http_client=httpx.AsyncClient(transport=transport),
    )


class TestHttpFaceMatchingClient:

    @pytest.mark.asyncio
    async def test_detect_parses_faces(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"faces": [{
                "signature_ref": "sig-1",
                "bounding_box": {"left": 0.1, "top": 0.2, "width": 0.3, "height": 0.3},
                "confidence": 97,
            }]})

        client = _http_client(handler)
        faces = await client.detect("photos/a/1.jpg")
        await client.close()

        assert seen["url"] == "http://faces.test/v1/detect"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"] == {"image_ref": "photos/a/1.jpg"}
        assert faces == [DetectedFace("sig-1", BoundingBox(0.1, 0.2, 0.3, 0.3), 97)]

    @pytest.mark.asyncio
    async def test_match_sends_candidates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body == {"signature_ref": "sig-1", "candidates": ["bob", "sig-9"]}
            return httpx.Response(200, json={"matches": [{"identity": "bob", "confidence": 88}]})

        client = _http_client(handler)
        assert await client.match_against_enrolled("sig-1", ["bob", "sig-9"]) == [CandidateMatch("bob", 88)]

    @pytest.mark.asyncio
    async def test_empty_candidates_skip_the_call(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = _http_client(handler)
        assert await client.match_against_enrolled("sig-1", []) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_throttling_and_server_errors_are_transient(self, status_code):
        client = _http_client(lambda request: httpx.Response(status_code))
        with pytest.raises(FaceMatchingUnavailableError):
            await client.detect("photos/a/1.jpg")

    @pytest.mark.asyncio
    async def test_client_errors_are_rejections(self):
        client = _http_client(lambda request: httpx.Response(400, text="bad image"))
        with pytest.raises(FaceMatchingRequestError, match="bad image"):
            await client.enroll("photos/a/1.jpg", "bob")

    @pytest.mark.asyncio
    async def test_connection_errors_are_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _http_client(handler)
        with pytest.raises(FaceMatchingUnavailableError):
            await client.detect("photos/a/1.jpg")

    @pytest.mark.asyncio
    async def test_timeouts_are_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = _http_client(handler)
        with pytest.raises(FaceMatchingUnavailableError, match="timed out"):
            await client.detect("photos/a/1.jpg")
