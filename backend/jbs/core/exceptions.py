"""Domain exceptions for the authentication and account-trust core.

Internal variants (unknown account vs. wrong password, revoked vs. missing
token) are kept distinct so the event log and risk scorer can use them.
The HTTP layer collapses them before anything reaches the client.
"""

from datetime import timedelta


class CredentialError(Exception):
    """Credential verification failed."""

    reason = "credential_error"


class CredentialNotFound(CredentialError):
    reason = "user_not_found"


class BadPassword(CredentialError):
    reason = "invalid_password"


class AccountInactive(CredentialError):
    reason = "account_inactive"


class LockError(Exception):
    """Authentication refused by the lockout policy."""


class AccountLocked(LockError):
    def __init__(self, retry_after: timedelta):
        self.retry_after = retry_after
        super().__init__(f"Account locked, retry after {retry_after}")

    @property
    def retry_after_minutes(self) -> int:
        # Round up so the client never retries a few seconds too early
        seconds = max(0, int(self.retry_after.total_seconds()))
        return -(-seconds // 60)


class TokenError(Exception):
    """Bearer token rejected."""

    reason = "token_error"


class TokenMalformed(TokenError):
    reason = "malformed"


class TokenExpired(TokenError):
    reason = "expired"


class TokenRevoked(TokenError):
    reason = "revoked"


class PrincipalMissing(TokenError):
    reason = "principal_missing"


class PrincipalInactive(TokenError):
    reason = "principal_inactive"


class InfraError(Exception):
    """Store or log unavailable. Security-sensitive paths fail closed on this."""


class AuthenticationTimeout(InfraError):
    """Credential verification exceeded the configured time budget."""


class PasswordReusedError(Exception):
    """New password matches the current or a recent password."""


class PasswordPolicyError(Exception):
    """New password does not meet the strength requirements."""


class RegistrationError(Exception):
    """Registration rejected (duplicate email or username)."""

    def __init__(self, message: str, field: str):
        self.field = field
        super().__init__(message)


class ResetTokenInvalid(Exception):
    """Password reset token unknown, used or expired."""


class UserTypeMismatch(Exception):
    """Login portal does not match the account's role."""

    def __init__(self, actual_role: str):
        self.actual_role = actual_role
        super().__init__(f"Invalid user type. This account is registered as {actual_role}.")


class RateLimited(Exception):
    """Too many failed sign-in attempts from one client address."""

    def __init__(self, retry_after: timedelta):
        self.retry_after = retry_after
        super().__init__(f"Rate limited, retry after {retry_after}")
