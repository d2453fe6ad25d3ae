class LendingError(Exception):
    """Base class for errors reported by the lending service.

    ``kind`` is the stable machine-readable name surfaced to API clients,
    ``status_code`` the HTTP status the API maps it to.
    """

    kind = "LendingError"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class NotFound(LendingError):
    """A user, book or loan does not exist."""

    kind = "NotFound"
    status_code = 404


class Unavailable(LendingError):
    """No copies of the book are left to lend."""

    kind = "Unavailable"
    status_code = 409


class InvalidTransition(LendingError):
    """The loan's current status does not allow the requested action."""

    kind = "InvalidTransition"
    status_code = 409


class ValidationError(LendingError):
    """Input is missing or malformed."""

    kind = "ValidationError"
    status_code = 400


class Conflict(LendingError):
    """The change clashes with existing data (duplicate email, active loans...)."""

    kind = "Conflict"
    status_code = 409


class Unauthorized(LendingError):
    kind = "Unauthorized"
    status_code = 401


class Forbidden(LendingError):
    kind = "Forbidden"
    status_code = 403
