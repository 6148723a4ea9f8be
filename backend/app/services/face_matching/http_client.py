"""HTTP Face Matching Client

Talks to the external face recognition endpoint over JSON/HTTP.

Endpoints:
    POST {base}/detect  {"image_ref"}                 -> {"faces": [{"signature_ref", "bounding_box", "confidence"}]}
    POST {base}/match   {"signature_ref", "candidates"} -> {"matches": [{"identity", "confidence"}]}
    POST {base}/enroll  {"image_ref", "identity"}     -> {"signature_ref"}
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.core.exceptions import FaceMatchingRequestError, FaceMatchingUnavailableError
from app.core.metrics import record_face_matching_call
from app.services.face_matching.base import (
    BaseFaceMatchingClient,
    BoundingBox,
    CandidateMatch,
    DetectedFace,
)

logger = logging.getLogger(__name__)


class HttpFaceMatchingClient(BaseFaceMatchingClient):
    """Face matching client backed by a remote HTTP service."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds, connect=min(self.timeout_seconds, 5.0)),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self._get_client().post(
                f"{self.base_url}/{operation}",
                json=payload,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            record_face_matching_call(operation, "timeout")
            raise FaceMatchingUnavailableError(f"Face matching {operation} timed out") from e
        except httpx.RequestError as e:
            record_face_matching_call(operation, "unavailable")
            raise FaceMatchingUnavailableError(f"Face matching {operation} request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            record_face_matching_call(operation, "unavailable")
            raise FaceMatchingUnavailableError(
                f"Face matching {operation} returned HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            record_face_matching_call(operation, "rejected")
            logger.warning(
                f"Face matching {operation} rejected with HTTP {response.status_code}",
                extra={
                    "event_type": "face_matching_rejected",
                    "operation": operation,
                    "status_code": response.status_code,
                },
            )
            raise FaceMatchingRequestError(
                f"Face matching {operation} rejected: HTTP {response.status_code} {response.text[:200]}"
            )

        record_face_matching_call(operation, "success")
        return response.json()

    async def detect(self, image_ref: str) -> List[DetectedFace]:
        body = await self._post("detect", {"image_ref": image_ref})
        return [
            DetectedFace(
                signature_ref=face["signature_ref"],
                bounding_box=BoundingBox(**face["bounding_box"]),
                confidence=int(face.get("confidence", 100)),
            )
            for face in body.get("faces", [])
        ]

    async def match_against_enrolled(
        self,
        signature_ref: str,
        candidates: Sequence[str],
    ) -> List[CandidateMatch]:
        if not candidates:
            return []
        body = await self._post(
            "match",
            {"signature_ref": signature_ref, "candidates": list(candidates)},
        )
        return [
            CandidateMatch(identity=m["identity"], confidence=int(m["confidence"]))
            for m in body.get("matches", [])
        ]

    async def enroll(self, image_ref: str, identity: str) -> str:
        body = await self._post("enroll", {"image_ref": image_ref, "identity": identity})
        return body["signature_ref"]

    def get_client_name(self) -> str:
        return "http"
