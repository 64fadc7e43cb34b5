"""Caller-facing errors raised by the protection engine.

Every error is recoverable by the caller; the HTTP layer maps ``status_code``
onto the response and ``code`` into the JSON body.
"""


class ProtectionError(Exception):
    code = 'error'
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class NotFound(ProtectionError):
    code = 'not_found'
    status_code = 404


class ValidationError(ProtectionError):
    code = 'validation'
    status_code = 400


class Conflict(ProtectionError):
    code = 'conflict'
    status_code = 409


class AlreadyInState(Conflict):
    code = 'already_in_state'


class Unavailable(ProtectionError):
    code = 'unavailable'
    status_code = 503
