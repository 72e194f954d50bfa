"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection feeds bcrypt a password longer than 72 bytes, which bcrypt 4.x+
rejects. Direct usage is simpler and has no compatibility shim.

bcrypt only reads the first 72 bytes of its input. Passwords are never
truncated: hash_password() refuses anything longer with PasswordTooLongError,
and verify_password() reports such a password as a mismatch, so two passwords
sharing a 72-byte prefix can never verify as each other.

Both functions are CPU-bound on purpose (adaptive cost factor). Async callers
should run them with asyncio.to_thread().
"""

from __future__ import annotations

import bcrypt

from auth.errors import HashingError, MalformedHashError, PasswordTooLongError

DEFAULT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> bytes:
    """Return a salted bcrypt hash of the plaintext password.

    Raises PasswordTooLongError if the UTF-8 encoding exceeds 72 bytes, and
    HashingError if bcrypt cannot produce a salt or a hash (entropy source
    failure, invalid cost factor).
    """
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise PasswordTooLongError(f"password exceeds {MAX_PASSWORD_BYTES} bytes")
    try:
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds))
    except (ValueError, OSError) as exc:
        raise HashingError("failed to hash password") from exc


def verify_password(password_hash: bytes, password: str) -> bool:
    """Return True if password matches password_hash, False on mismatch.

    bcrypt.checkpw compares in constant time. A mismatch is not an error;
    only a hash bcrypt cannot parse raises MalformedHashError. A password
    over 72 bytes can never have been hashed, so it is a mismatch.
    """
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash)
    except (ValueError, TypeError) as exc:
        raise MalformedHashError("stored password hash is malformed") from exc
