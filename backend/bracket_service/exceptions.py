"""
Error taxonomy for bracket building and match progression.

Every error carries a human-readable message; the request handler returns
that message verbatim as the plain-text response body.
"""


class BracketServiceError(Exception):
    """Base exception for all bracket service errors"""

    pass


class InvalidRequestError(BracketServiceError):
    """Missing or malformed request fields (action, ids, timestamps)"""

    pass


class RecordNotFoundError(BracketServiceError):
    """A tournament, match, team or field could not be found in the store"""

    pass


class BracketIntegrityError(BracketServiceError):
    """The match graph violates a structural invariant"""

    pass


class MatchNotDecidedError(BracketServiceError):
    """Neither side holds a majority of the configured sets"""

    pass


class UnschedulableMatchError(BracketServiceError):
    """No resource/time slot exists before the search horizon"""

    def __init__(self, match_id: str, horizon_end):
        self.match_id = match_id
        self.horizon_end = horizon_end
        super().__init__(f"Match {match_id} could not be scheduled before {horizon_end.isoformat()}")
