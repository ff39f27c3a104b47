"""
Domain errors raised by the request, invite and presence layers.

Every error carries the HTTP status and short machine code the API renders;
the core never retries on its own.
"""


class PairplayError(Exception):
    status_code = 400
    code = 'error'
    default_message = 'Request failed'

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class DuplicateRequest(PairplayError):
    status_code = 409
    code = 'duplicate_request'
    default_message = 'A friend request already exists between these users'


class TooManyInFlight(PairplayError):
    status_code = 409
    code = 'too_many_in_flight'
    default_message = 'You can only send one game invite at a time'


class PresenceNotQualified(PairplayError):
    status_code = 409
    code = 'presence_not_qualified'
    default_message = 'Both users must be active to send or receive game invites'


class NotFound(PairplayError):
    status_code = 404
    code = 'not_found'
    default_message = 'Not found'


class Withdrawn(NotFound):
    """The record vanished before it could be accepted.

    The other party cancelled or declined first; callers refresh their view
    instead of reporting a failure.
    """
    code = 'cancelled'
    default_message = 'This request was cancelled'


class InvalidState(PairplayError):
    status_code = 409
    code = 'invalid_state'
    default_message = 'Operation not allowed in the current state'


class Forbidden(PairplayError):
    status_code = 403
    code = 'forbidden'
    default_message = 'Not allowed'


class DependencyFailure(PairplayError):
    """Storage substrate or session factory error."""
    status_code = 502
    code = 'dependency_failure'
    default_message = 'A backing service failed, please retry'
