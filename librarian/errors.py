"""
Error taxonomy shared by the services and the web layer.

Every error carries the message shown to the caller and the HTTP status the
web layer answers with.
"""


class LibraryError(Exception):
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.message}


class ValidationFailed(LibraryError):
    status_code = 400


class NotFound(LibraryError):
    status_code = 404


class PreconditionFailed(LibraryError):
    """Entity is in the wrong state for the requested transition."""
    status_code = 409


class AdmissionDenied(LibraryError):
    """No copies left, or unpaid fines blocking a renewal."""
    status_code = 409


class ConcurrencyConflict(LibraryError):
    status_code = 409


class AuthRequired(LibraryError):
    status_code = 401


class Unauthorized(LibraryError):
    status_code = 403
