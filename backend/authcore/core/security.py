"""Security utilities - password hashing and opaque token digests"""

import hashlib
import hmac
import secrets

import bcrypt

# Verified against when the email is unknown so both branches cost one bcrypt check.
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Malformed stored hash
        return False


def burn_password_check(plain_password: str) -> None:
    """Spend the same work as a real check for an account that does not exist."""
    verify_password(plain_password, _DUMMY_PASSWORD_HASH)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def hash_token(token: str) -> str:
    """SHA-256 digest of an opaque credential, as stored at rest."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_matches(token: str, stored_digest: str) -> bool:
    return hmac.compare_digest(hash_token(token), stored_digest or "")


def generate_session_key() -> str:
    return secrets.token_urlsafe(24)
