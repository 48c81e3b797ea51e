"""
Admin API key hashing utilities.

Security notes:
  • SHA-256 is used for key hashing: admin keys are high-entropy random
    strings, not passwords, so a fast hash is enough.
  • Only the hash is configured on the server (ADMIN_API_KEY_HASH).
  • generate_api_key() returns the raw key exactly once.
"""

import hashlib
import hmac
import secrets


_KEY_PREFIX = "cd_admin_"


def hash_api_key(raw_key: str) -> str:
    """Hex SHA-256 digest of a raw key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def verify_api_key(raw_key: str, expected_hash: str) -> bool:
    """Constant-time comparison of a raw key against a stored hash."""
    if not expected_hash:
        return False
    return hmac.compare_digest(hash_api_key(raw_key), expected_hash.lower())


def generate_api_key() -> tuple[str, str]:
    """
    Generate a new admin key.

    Returns:
        (raw_key, key_hash): raw_key is shown once, key_hash goes in .env.
    """
    random_part = secrets.token_hex(32)  # 64 hex chars = 256 bits
    raw_key = f"{_KEY_PREFIX}{random_part}"
    return raw_key, hash_api_key(raw_key)
