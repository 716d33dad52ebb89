"""
auth/passwords.py -- Password hashing and password policy.

Hashing: bcrypt, used directly (no passlib wrapper). bcrypt's cost factor
makes offline brute force of low-entropy passwords expensive, every digest
carries its own random salt, and checkpw compares in constant time.

bcrypt only looks at the first 72 bytes of its input and bcrypt 4.1+ rejects
longer inputs outright. The plaintext is therefore reduced to
base64(SHA-256(plaintext)) -- 44 ASCII bytes -- before bcrypt sees it, so a
long passphrase is neither truncated nor refused.

Policy: the complexity rule (8+ chars, upper, lower, digit, symbol) lives here
so registration, profile update and the admin CLI share one definition.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import hashlib
import re

import bcrypt

_PASSWORD_RE = re.compile(r"^(?=.*?[A-Z])(?=.*?[a-z])(?=.*?[0-9])(?=.*?[#?!@$%^&*-]).{8,}$")

PASSWORD_RULE = (
    "Password must contain at least one uppercase, lowercase letter, digit, special character and minimum 8 in length"
)


def _prehash(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str) -> str:
    """Return a salted bcrypt digest of the given plaintext password."""
    return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the digest.

    Never raises: a malformed or foreign digest is simply a mismatch.
    """
    try:
        return bcrypt.checkpw(_prehash(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


def is_strong_password(plain: str | None) -> bool:
    """Return True if plain satisfies the complexity rule."""
    return bool(plain) and _PASSWORD_RE.match(plain) is not None
