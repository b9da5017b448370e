"""Error taxonomy shared by the passkey ceremonies and the HTTP layer."""

from __future__ import annotations


class PasskeyError(Exception):
    """Base class for ceremony failures with a client-safe message."""

    status_code = 400
    message = "Request failed"

    def __init__(self, message: str | None = None, detail: str | None = None):
        if message is not None:
            self.message = message
        # Server-side only; never serialized into a response.
        self.detail = detail
        super().__init__(detail or self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class Unauthorized(PasskeyError):
    status_code = 401
    message = "Unauthorized"


class IdentityMismatch(Unauthorized):
    """The authenticated caller targeted another user's account."""

    status_code = 400
    message = "User ID mismatch"


class BadRequest(PasskeyError):
    message = "Bad request"


class DuplicateCredential(BadRequest):
    message = "Passkey already registered"


class ChallengeNotFound(PasskeyError):
    message = "Challenge not found or expired"


class CredentialNotFound(PasskeyError):
    message = "Authentication failed"


class VerificationFailed(PasskeyError):
    message = "Verification failed"


class PasskeyNotFound(PasskeyError):
    status_code = 404
    message = "Passkey not found"


class UpstreamUnavailable(PasskeyError):
    status_code = 503
    message = "Service temporarily unavailable"


class Cancelled(PasskeyError):
    """The user dismissed the platform prompt. Raised on the client only."""

    message = "Passkey prompt was cancelled"
