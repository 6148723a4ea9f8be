"""Base Face Matching Client Interface

Defines the boundary to the external face recognition capability. The
biometric algorithm itself is a black box: given an image it returns
detected faces with opaque signature references, and given a signature and
a candidate set it returns candidate matches with 0-100 confidence.

Candidates are identity keys known to the collaborator: either a user id
whose profile face was enrolled, or the signature_ref of a previously
detected face.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import List, Sequence


@dataclass(frozen=True)
class BoundingBox:
    """Face location as ratios of the image size (0.0 to 1.0)."""
    left: float
    top: float
    width: float
    height: float

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, value: str) -> "BoundingBox":
        return cls(**json.loads(value))


@dataclass(frozen=True)
class DetectedFace:
    """
    One face found in an image.

    Attributes:
        signature_ref: Stable reference to the face signature
        bounding_box: Where the face is
        confidence: Detection confidence (0-100)
    """
    signature_ref: str
    bounding_box: BoundingBox
    confidence: int = 100

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"Confidence must be between 0 and 100, got {self.confidence}")


@dataclass(frozen=True)
class CandidateMatch:
    """A candidate identity the signature matched, with 0-100 confidence."""
    identity: str
    confidence: int

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"Confidence must be between 0 and 100, got {self.confidence}")

    def passes_threshold(self, threshold: int) -> bool:
        return self.confidence >= threshold


class BaseFaceMatchingClient(ABC):
    """
    Abstract base class for face matching clients.

    Implementations raise FaceMatchingUnavailableError for transient
    failures (timeouts, 5xx) and FaceMatchingRequestError for rejected
    requests. Callers wrap calls in retry_async with RETRY_FACE_MATCHING.

    Example usage:
        client = get_face_matching_client()
        for face in await client.detect(content.object_key):
            matches = await client.match_against_enrolled(face.signature_ref, [friend_id])
    """

    @abstractmethod
    async def detect(self, image_ref: str) -> List[DetectedFace]:
        """
        Detect faces in an image.

        Args:
            image_ref: Object storage key of the image

        Returns:
            Detected faces, empty if none
        """
        pass

    @abstractmethod
    async def match_against_enrolled(
        self,
        signature_ref: str,
        candidates: Sequence[str],
    ) -> List[CandidateMatch]:
        """
        Match a face signature against a bounded candidate set.

        Args:
            signature_ref: Signature of the detected face
            candidates: User ids and/or signature refs to compare against

        Returns:
            Matches within the candidate set, any order, any confidence
        """
        pass

    @abstractmethod
    async def enroll(self, image_ref: str, identity: str) -> str:
        """
        Enroll the face in image_ref as the profile face of identity.

        Returns:
            Signature reference of the enrolled face
        """
        pass

    @abstractmethod
    def get_client_name(self) -> str:
        pass
