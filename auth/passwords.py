"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection hashes a password longer than 72 bytes, which bcrypt 4.x+ rejects
with an explicit error. Direct usage has no compatibility shim.

bcrypt only looks at the first 72 bytes of its input and recent releases
refuse longer input outright. api/models.py caps passwords at 72 UTF-8 bytes
so a value that reaches this module is always hashable.

Layer rule: no imports from api/ or resources/.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares digests in constant time. Any malformed hash or
    over-long input is a plain mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Credential checks run verify_password() against
# this hash when the email is unknown, so both failure paths cost one bcrypt.
DUMMY_HASH: str = hash_password("tigra_timing_dummy")
