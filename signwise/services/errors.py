"""Authentication error taxonomy shared by services and the HTTP layer.

Each error carries an HTTP status and a client-safe ``detail``; ``message`` may
hold more context for logs and is never sent to the caller.
"""


class AuthError(Exception):
    """Base class for every failure on the authentication path."""

    status_code: int = 401
    detail: str = "Authentication failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.detail
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Unknown email or wrong password; the two are never distinguished."""

    detail = "Invalid email or password"


class AccountLocked(AuthError):
    """Local login suspended after too many consecutive failures."""

    status_code = 423
    detail = "Account is temporarily locked. Please try again later."


class TokenExpired(AuthError):
    detail = "Token has expired"


class TokenInvalid(AuthError):
    """Forged, malformed, already rotated, revoked or mismatched token."""

    detail = "Invalid token"


class Conflict(AuthError):
    """Duplicate username or email."""

    status_code = 409
    detail = "User with this email or username already exists"


class NotFound(AuthError):
    status_code = 404
    detail = "Not found"


class AuthenticationFailed(AuthError):
    """Catch-all for OAuth and internal faults; hides the cause from the caller."""

    detail = "Authentication failed"
