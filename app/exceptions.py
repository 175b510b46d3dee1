"""
Matching Engine Exceptions

Caller-visible errors (input validation, ownership) are raised before any
side effect and mapped to HTTP status codes by the routers. Oracle failures
never escape as exceptions: the oracle wrapper returns them as values.
"""

from typing import Optional


class MatchingError(Exception):
    """Base class for matching engine errors."""

    status_code = 500


class InputValidationError(MatchingError):
    """Missing or malformed request arguments."""

    status_code = 400


class NotFoundError(MatchingError):
    """Referenced partner, transaction or file does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[str]):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class PermissionDeniedError(MatchingError):
    """Entity exists but belongs to another user."""

    status_code = 403

    def __init__(self, entity: str, entity_id: Optional[str]):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} does not belong to the caller")


class OracleError(MatchingError):
    """Completion oracle unavailable, failed, or returned unusable output."""

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        message = reason if detail is None else f"{reason}: {detail}"
        super().__init__(message)


class AssignmentBlockedError(MatchingError):
    """Automatic assignment onto a (transaction, partner) pair the user removed."""

    status_code = 409
