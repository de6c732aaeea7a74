"""
auth/tokens.py -- API key generation.

secrets.token_hex(32) gives 256 bits of entropy rendered as 64 lowercase hex
characters. Collisions are not checked in code: the UNIQUE constraint on
api_keys.api_key rejects the astronomically unlikely duplicate with an
IntegrityError.
"""

import re
import secrets

API_KEY_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def generate_api_key() -> str:
    """Return a new random API key (64 lowercase hex chars)."""
    return secrets.token_hex(32)


def looks_like_api_key(value: str) -> bool:
    """Cheap format check used by the CLI before touching the database."""
    return bool(API_KEY_PATTERN.match(value))
