"""In-memory Face Matching Client

Deterministic stand-in for the external service, used for local
development and tests. Images, signatures and the people behind them are
registered explicitly:

    client = InMemoryFaceMatchingClient()
    client.add_image("photos/alice/p1.jpg", ["sig-bob"])
    client.assign_signature("sig-bob", person="bob", confidence=95)
    client.add_image("photos/bob/profile.jpg", ["sig-bob-profile"])
    client.assign_signature("sig-bob-profile", person="bob", confidence=99)
    await client.enroll("photos/bob/profile.jpg", bob.id)

A signature matches an enrolled user when both resolve to the same person,
with the signature's confidence. Two signatures of the same person match
with the lower of their confidences. set_match() pins an explicit score.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from app.core.exceptions import FaceMatchingRequestError, FaceMatchingUnavailableError
from app.core.metrics import record_face_matching_call
from app.services.face_matching.base import (
    BaseFaceMatchingClient,
    BoundingBox,
    CandidateMatch,
    DetectedFace,
)

logger = logging.getLogger(__name__)

DEFAULT_BOX = BoundingBox(left=0.4, top=0.3, width=0.2, height=0.25)


class InMemoryFaceMatchingClient(BaseFaceMatchingClient):
    """Face matching client backed by in-process tables."""

    def __init__(self):
        self._images: Dict[str, List[DetectedFace]] = {}
        self._signatures: Dict[str, Tuple[str, int]] = {}
        self._enrolled: Dict[str, str] = {}
        self._pinned: Dict[Tuple[str, str], int] = {}
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self.calls: Dict[str, int] = defaultdict(int)

    # Registration helpers

    def add_image(self, image_ref: str, signature_refs: Sequence[str], confidence: int = 99) -> None:
        faces = []
        for i, sig in enumerate(signature_refs):
            box = BoundingBox(
                left=round(min(0.1 + 0.2 * i, 0.8), 2),
                top=DEFAULT_BOX.top,
                width=DEFAULT_BOX.width,
                height=DEFAULT_BOX.height,
            )
            faces.append(DetectedFace(signature_ref=sig, bounding_box=box, confidence=confidence))
        self._images[image_ref] = faces

    def assign_signature(self, signature_ref: str, person: str, confidence: int = 95) -> None:
        self._signatures[signature_ref] = (person, confidence)

    def set_match(self, signature_ref: str, identity: str, confidence: int) -> None:
        self._pinned[(signature_ref, identity)] = confidence

    def fail_next(self, operation: str, times: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next `times` calls to operation raise error (default: unavailable)."""
        for _ in range(times):
            self._failures[operation].append(
                error or FaceMatchingUnavailableError(f"{operation} unavailable")
            )

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._failures[operation]:
            record_face_matching_call(operation, "unavailable")
            raise self._failures[operation].pop(0)
        record_face_matching_call(operation, "success")

    # Client interface

    def _person_of(self, identity: str) -> Optional[Tuple[str, int]]:
        if identity in self._enrolled:
            return self._enrolled[identity], 100
        return self._signatures.get(identity)

    async def detect(self, image_ref: str) -> List[DetectedFace]:
        self._maybe_fail("detect")
        return list(self._images.get(image_ref, []))

    async def match_against_enrolled(
        self,
        signature_ref: str,
        candidates: Sequence[str],
    ) -> List[CandidateMatch]:
        self._maybe_fail("match")
        matches = []
        probe = self._signatures.get(signature_ref)
        for identity in candidates:
            if (signature_ref, identity) in self._pinned:
                matches.append(CandidateMatch(identity, self._pinned[(signature_ref, identity)]))
                continue
            if probe is None or identity == signature_ref:
                continue
            other = self._person_of(identity)
            if other is not None and other[0] == probe[0]:
                matches.append(CandidateMatch(identity, min(probe[1], other[1])))
        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches

    async def enroll(self, image_ref: str, identity: str) -> str:
        self._maybe_fail("enroll")
        faces = self._images.get(image_ref)
        if not faces:
            raise FaceMatchingRequestError(f"No face found in {image_ref}")
        signature_ref = faces[0].signature_ref
        person = self._signatures.get(signature_ref, (identity, 100))[0]
        self._enrolled[identity] = person
        logger.debug(
            f"Enrolled {identity} from {image_ref}",
            extra={"event_type": "face_enrolled", "identity": identity},
        )
        return signature_ref

    def get_client_name(self) -> str:
        return "in_memory"
