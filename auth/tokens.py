"""
auth/tokens.py -- Session token issuing and verification.

Security design decisions:
  JWT: python-jose with HS512. Tokens carry the identity id as the subject
       ("sub", a string) and the role name ("role"), plus iss / aud from
       configuration and a fixed 24 hour expiry. Tokens are stateless and
       never persisted; there is no revocation list.

  Verification returns None on any failure -- bad signature, wrong issuer or
       audience, expiry, missing claims. The reason is logged at DEBUG for
       operators but never surfaced to the caller, so the API cannot be used
       as an oracle to tell a forged token from an expired one.

  Signing key: supplied through the constructor, never read from a module
       global. TokenIssuer refuses to exist without a non-empty key, issuer
       and audience; TokenIssuer.from_settings() is called during startup so
       a broken configuration aborts the process instead of failing
       per-request.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import Identity, Role
from core.errors import ConfigurationError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("library.tokens")

ALGORITHM = "HS512"
TOKEN_LIFETIME = timedelta(hours=24)


@dataclass(frozen=True)
class TokenClaims:
    """What a verified token asserts about its bearer."""

    subject_id: int
    role: Role


class TokenIssuer:
    """Signs and verifies session tokens with one symmetric key."""

    def __init__(self, key: str, issuer: str, audience: str) -> None:
        if not key:
            raise ConfigurationError("Token signing key is not configured.")
        if not issuer or not audience:
            raise ConfigurationError("Token issuer and audience must both be configured.")
        self._key = key
        self._issuer = issuer
        self._audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(settings.jwt_key, settings.jwt_issuer, settings.jwt_audience)

    def issue(self, identity: Identity, now: datetime | None = None) -> str:
        """Encode a signed token for identity, valid for TOKEN_LIFETIME from now."""
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(identity.id),
            "role": identity.role.value,
            "iss": self._issuer,
            "aud": self._audience,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIME,
        }
        return jwt.encode(payload, self._key, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims | None:
        """Decode and check token. Returns its claims, or None if invalid for any reason."""
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
            )
        except ExpiredSignatureError:
            logger.debug("Rejected token: expired")
            return None
        except JWTClaimsError as exc:
            logger.debug("Rejected token: bad claims (%s)", exc)
            return None
        except JWTError as exc:
            logger.debug("Rejected token: %s", exc)
            return None

        try:
            return TokenClaims(subject_id=int(payload["sub"]), role=Role(payload["role"]))
        except (KeyError, TypeError, ValueError):
            logger.debug("Rejected token: missing or malformed sub/role claim")
            return None
