"""
Password hashing for offline credential checks.

Hashes are bcrypt, the same format the remote backend stores, so a hash
downloaded during sync can be verified locally.
"""

import bcrypt

DEFAULT_ROUNDS = 10


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """
    Hash a plain-text password with a fresh salt.

    Args:
        password: Plain-text password
        rounds: bcrypt cost factor

    Returns:
        str: bcrypt hash ("$2b$...")
    """
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """
    Check a plain-text password against a stored bcrypt hash.

    A missing or malformed hash never matches.
    """
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def is_password_hash(value: str) -> bool:
    """True if value already looks like a bcrypt hash."""
    return isinstance(value, str) and value.startswith(("$2a$", "$2b$", "$2y$")) and len(value) == 60
