"""
auth/errors.py -- Exception taxonomy for the auth package.

Two families:

  StorageError   raised by persistence implementations (auth/store.py or a
                 test fake). Never crosses the AuthService boundary except for
                 UserExistsError, which register() surfaces unchanged.

  AuthError      the service-level outcomes a caller can see. The transport
                 layer maps these to client-fault (InvalidCredentials,
                 InvalidToken, UserExists) or server-fault (Internal)
                 responses.

Hasher and codec failures have their own small classes so the service can
tell "wrong password" (a bool) from "stored hash is garbage" (an error).
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Service-level outcomes
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """Base class for every outcome AuthService reports to its caller."""


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password. The two are never distinguished."""


class InvalidTokenError(AuthError):
    """Token failed signature/expiry/claim checks, or was already redeemed."""


class UserExistsError(AuthError):
    """Registration email is already taken."""


class InternalError(AuthError):
    """Hashing, signing or persistence failure not otherwise classified."""


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class StorageError(Exception):
    """Base class for persistence failures."""


class UserNotFoundError(StorageError):
    pass


class TokenNotFoundError(StorageError):
    """No live refresh-token record for the given token ID (absent or expired)."""


class TokenSaveFailedError(StorageError):
    pass


# ---------------------------------------------------------------------------
# Hasher / codec
# ---------------------------------------------------------------------------


class HashingError(Exception):
    """bcrypt could not produce or check a hash."""


class MalformedHashError(HashingError):
    """The stored password hash is not a valid bcrypt hash."""


class PasswordTooLongError(HashingError):
    """The password exceeds bcrypt's 72-byte input limit."""


class TokenSigningError(Exception):
    """The JWT library refused to sign the claims."""
