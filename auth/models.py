"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Stores and the account
service do the work; these types only own the shape of an identity record and
of the avatar lookup outcome.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Account role. Stored and signed into tokens by its name."""

    USER = "USER"
    LIBRARIAN = "LIBRARIAN"
    ADMIN = "ADMIN"


# Roles a visitor may pick for themselves at registration. ADMIN accounts are
# bootstrapped through the CLI.
SELF_REGISTRABLE_ROLES = frozenset({Role.USER, Role.LIBRARIAN})


@dataclass
class Identity:
    """One library account.

    email is kept exactly as the user typed it; normalized_email is the
    upper-cased form that every lookup and the UNIQUE index use.

    two_factor_secret is the base32 authenticator key. It is None until the
    first enrollment query and is replaced (never cleared) when 2FA is
    disabled, so a secret scanned before a disable can never be replayed.

    security_stamp rotates whenever second-factor state is switched off.

    avatar is the base64 text of the uploaded image, or None.
    """

    email: str
    password_hash: str
    role: Role = Role.USER
    id: int | None = None
    normalized_email: str = ""
    first_name: str | None = None
    last_name: str | None = None
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None
    security_stamp: str = ""
    avatar: str | None = None
    created_at: str | None = None

    def __post_init__(self) -> None:
        if not self.normalized_email:
            self.normalized_email = normalize_email(self.email)


def normalize_email(email: str) -> str:
    """Canonical lookup key for an email address."""
    return email.strip().upper()


# ---------------------------------------------------------------------------
# Avatar lookup outcome -- Found(bytes) | Empty | NotFound
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AvatarFound:
    content: bytes


@dataclass(frozen=True)
class AvatarEmpty:
    """The identity exists but has never uploaded an avatar."""


@dataclass(frozen=True)
class AvatarNotFound:
    """No identity with the requested id exists."""


AvatarResult = AvatarFound | AvatarEmpty | AvatarNotFound
