"""Domain errors for the round protocol and their HTTP mapping."""

from typing import Any, Dict, Optional


class ProtocolError(Exception):
    """Base class for protocol failures surfaced to the caller."""

    status_code = 400
    code = "protocol_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidRequest(ProtocolError):
    """Malformed input, rejected before touching storage."""

    status_code = 400
    code = "invalid_request"


class NotParticipant(ProtocolError):
    """Caller is not one of the match's players."""

    status_code = 403
    code = "not_participant"


class MatchNotFound(ProtocolError):
    status_code = 404
    code = "match_not_found"


class StateConflict(ProtocolError):
    """Request conflicts with the current round or match state."""

    status_code = 409
    code = "state_conflict"


class BindingConflict(StateConflict):
    """Revealed data does not match what was committed."""

    code = "binding_conflict"


class TransientFailure(ProtocolError):
    """External dependency kept failing after bounded retries."""

    status_code = 503
    code = "transient_failure"


class StoreError(Exception):
    """Base class for record store failures."""


class UniqueViolation(StoreError):
    """Insert collided with an existing row on a unique key."""


class TableMissing(StoreError):
    """The requested table is not available in the store."""
