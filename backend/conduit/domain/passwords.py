"""Password hashing with bcrypt.

Hashes are stored as raw bcrypt bytes on the User entity. A mismatching
password is a normal ``False``; a hash bcrypt cannot parse is an error.
"""

import bcrypt

from conduit.domain.exceptions import InvalidPasswordHashError

DEFAULT_ROUNDS = 12

# bcrypt ignores (or, in recent releases, rejects) anything past 72 bytes
MAX_PASSWORD_BYTES = 72

_HASH_LENGTH = 60


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> bytes:
    """Hash a plain-text password with a freshly generated salt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))


def check_password(password: str, password_hash: bytes) -> bool:
    """Compare a plain-text password against a stored bcrypt hash."""
    if not password_hash:
        raise InvalidPasswordHashError("hash is empty")
    if not password_hash.startswith(b"$2") or len(password_hash) != _HASH_LENGTH:
        raise InvalidPasswordHashError("not a bcrypt hash")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash)
    except ValueError as exc:
        raise InvalidPasswordHashError(str(exc)) from exc
