"""Error taxonomy for the authentication core.

Every failure a client can observe is one of these classes. Each carries the
machine-readable ``code`` and HTTP ``status_code`` used by the API layer, plus a
human-readable ``message`` that is safe to show to an unauthenticated caller.
"""
from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication errors surfaced to clients."""

    code: str = "AUTH_ERROR"
    status_code: int = 400
    message: str = "Authentication error"
    retryable: bool = False

    def __init__(
        self, message: str | None = None, *, code: str | None = None, status_code: int | None = None
    ) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ConfigurationError(AuthError):
    code = "CONFIG_ERROR"
    status_code = 503
    message = "Authentication service is not configured"


class InvalidRequestError(AuthError):
    code = "INVALID_REQUEST"
    message = "Invalid request"


class NoChallengeError(AuthError):
    code = "NO_CHALLENGE"
    message = "No challenge found. Please start the ceremony again."


class ChallengeExpiredError(NoChallengeError):
    code = "CHALLENGE_EXPIRED"
    message = "Challenge expired. Please start the ceremony again."


class AttestationInvalidError(AuthError):
    code = "VERIFICATION_FAILED"
    message = "Registration verification failed"


class AssertionInvalidError(AuthError):
    code = "VERIFICATION_FAILED"
    message = "Authentication verification failed"


class CounterRegressionError(AssertionInvalidError):
    code = "COUNTER_INVALID"
    message = "Signature counter did not increase: possible cloned authenticator or replay"


class NoCredentialsError(AuthError):
    code = "NO_CREDENTIALS"
    message = "No credentials registered. Please bootstrap a credential first."


class BootstrapRequiredError(AuthError):
    code = "BOOTSTRAP_REQUIRED"
    message = "No credentials registered. Use the bootstrap flow to enrol the first credential."


class CredentialNotFoundError(AuthError):
    code = "CREDENTIAL_NOT_FOUND"
    message = "Credential not found"


class NotFoundError(AuthError):
    code = "NOT_FOUND"
    status_code = 404
    message = "Credential not found"


class DuplicateCredentialError(AuthError):
    code = "DUPLICATE_CREDENTIAL"
    status_code = 409
    message = "Credential already exists"


class LockoutPreventionError(AuthError):
    code = "LOCKOUT_PREVENTION"
    message = "Cannot delete the last credential. Add another credential first to avoid lockout."


class BootstrapUnavailableError(AuthError):
    code = "BOOTSTRAP_UNAVAILABLE"
    message = "Bootstrap is not available: credentials already exist"


class InvalidBootstrapTokenError(AuthError):
    code = "INVALID_BOOTSTRAP_TOKEN"
    status_code = 401
    message = "Invalid bootstrap token"


class BootstrapExpiredError(AuthError):
    code = "BOOTSTRAP_EXPIRED"
    status_code = 403
    message = "Bootstrap token is no longer valid"


class UnauthorizedError(AuthError):
    code = "UNAUTHORIZED"
    status_code = 401
    message = "Authentication required"


class StoreUnavailableError(AuthError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
    message = "Credential store unavailable. Please retry."
    retryable = True


class VerificationTimeoutError(AuthError):
    code = "VERIFICATION_TIMEOUT"
    status_code = 503
    message = "Verification timed out. Please retry."
    retryable = True
