from __future__ import annotations


class RentalHubError(Exception):
    status_code = 500
    default_code = "InternalError"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_payload(self) -> dict:
        return {"success": False, "code": self.code, "message": self.message}


class ValidationError(RentalHubError):
    status_code = 400
    default_code = "ValidationError"


class AuthenticationError(RentalHubError):
    status_code = 401
    default_code = "InvalidCredentials"


class NotFoundError(RentalHubError):
    status_code = 404
    default_code = "NotFound"


class ConflictError(RentalHubError):
    status_code = 409
    default_code = "Conflict"


class GateRejection(RentalHubError):
    """A return image failed the authenticity or similarity gate."""

    status_code = 400
    default_code = "GateRejected"


class StoreUnavailable(RentalHubError):
    status_code = 500
    default_code = "StoreUnavailable"
