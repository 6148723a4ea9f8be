"""
Domain exceptions for the access graph pipeline.

Transient failures (FaceMatchingUnavailableError) are retried by the caller
with backoff. Everything else signals a permanent condition for the unit of
work that raised it.
"""


class FaceMatchingUnavailableError(Exception):
    """
    The face matching collaborator could not be reached or timed out.

    Used for transient failures like:
    - Network timeouts
    - Connection errors
    - 5xx / throttling responses
    """
    pass


class FaceMatchingRequestError(Exception):
    """
    The face matching collaborator rejected the request (4xx).

    Not retried: the same request will fail the same way.
    """
    pass


class FaceIdentityConflictError(Exception):
    """
    Attempt to resolve an already-RESOLVED FaceIdentity to a different user.

    This is a data-integrity anomaly: the resolution is rejected and logged,
    never overwritten.
    """

    def __init__(self, face_identity_id: str, resolved_to: str, attempted: str):
        self.face_identity_id = face_identity_id
        self.resolved_to = resolved_to
        self.attempted = attempted
        super().__init__(
            f"FaceIdentity {face_identity_id} is resolved to {resolved_to}, "
            f"refusing to resolve to {attempted}"
        )


class ContentNotFoundError(Exception):
    """Content does not exist or has been deleted."""
    pass


class NotAuthorizedError(Exception):
    """The acting user may not perform this operation."""
    pass


class FriendshipStateError(Exception):
    """Invalid friendship transition (e.g. accepting your own request)."""
    pass


class EventMembershipError(Exception):
    """Invalid event membership operation."""
    pass
