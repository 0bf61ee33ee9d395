"""
OTP Hashing Utilities
=====================
Salted hashing and constant-time verification for OTP codes and opaque tokens.
"""

import hashlib
import hmac
import secrets


def generate_salt() -> str:
    """Generate a random salt for OTP hashing."""
    return secrets.token_hex(16)


def hash_code(code: str, salt: str) -> str:
    """
    Hash an OTP code with its salt using SHA-256.

    Args:
        code: Plain OTP code
        salt: Per-request random salt

    Returns:
        Hex digest
    """
    return hashlib.sha256(f"{salt}:{code}".encode()).hexdigest()


def verify_code(code: str, salt: str, stored_hash: str) -> bool:
    """
    Verify a supplied code against the stored digest.

    Both sides are fixed-length digests compared with ``hmac.compare_digest``,
    so the comparison time does not depend on where the inputs differ.
    """
    return hmac.compare_digest(hash_code(code, salt), stored_hash)


def hash_token(token: str) -> str:
    """SHA-256 digest of an opaque session token, used as its lookup key."""
    return hashlib.sha256(token.encode()).hexdigest()
