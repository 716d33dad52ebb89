"""
auth/totp.py -- Authenticator secret provisioning, enrollment QR codes and
one-time code verification.

Codes follow RFC 6238 as implemented by pyotp: HMAC-SHA1, 30 second step,
6 digits, verified against the current step only (pyotp's default window).
A code therefore stops working as soon as its step has elapsed.

Secrets are 160-bit base32 strings from pyotp.random_base32(), which draws
from the secrets module. A secret is created lazily on the first enrollment
query and is replaced whenever 2FA is switched off, so a secret scanned
before a disable cannot be replayed after a later re-enable.

QR rendering uses qrcode with the PIL backend at error-correction level Q.
Rendering is pure: identical URIs always produce identical PNG bytes.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime
from urllib.parse import quote

import pyotp
import qrcode
from qrcode.constants import ERROR_CORRECT_Q
from qrcode.image.pil import PilImage

from auth.models import Identity
from auth.store import IdentityStore
from core.errors import NotFoundError

logger = logging.getLogger("library.totp")

TOTP_DIGITS = 6

_URI_FORMAT = "otpauth://totp/{issuer}:{email}?secret={secret}&issuer={issuer}&digits={digits}"

# QR appearance
_BOX_SIZE = 8
_BORDER = 4
_FILL_COLOR = "yellow"
_BACK_COLOR = "deeppink"


def new_secret() -> str:
    """Return a fresh random base32 authenticator secret."""
    return pyotp.random_base32()


def build_enrollment_uri(issuer: str, email: str, secret: str) -> str:
    """Format the otpauth:// descriptor an authenticator app scans.

    issuer and email are percent-encoded in full (":" and "@" included) so
    neither can break the label or query structure.
    """
    return _URI_FORMAT.format(
        issuer=quote(issuer, safe=""),
        email=quote(email, safe=""),
        secret=secret,
        digits=TOTP_DIGITS,
    )


def render_qr(uri: str) -> bytes:
    """Encode uri as a QR code and return PNG image bytes."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_Q, box_size=_BOX_SIZE, border=_BORDER)
    qr.add_data(uri)
    qr.make(fit=True)
    image = qr.make_image(image_factory=PilImage, fill_color=_FILL_COLOR, back_color=_BACK_COLOR)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def verify_code(secret: str, code: str, for_time: datetime | int | None = None) -> bool:
    """Return True if code is the valid 6-digit TOTP for secret at for_time.

    for_time defaults to now. Malformed input (wrong length, non-digits, an
    unusable secret) yields False rather than an exception.
    """
    if not secret or not isinstance(code, str):
        return False
    code = code.strip()
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    try:
        return pyotp.TOTP(secret, digits=TOTP_DIGITS).verify(code, for_time=for_time)
    except (ValueError, TypeError):
        # binascii.Error (bad base32) is a ValueError subclass.
        logger.debug("Rejected TOTP verification against an undecodable secret")
        return False


class TotpSecretManager:
    """Provisions and rotates per-identity authenticator secrets.

    Bound to the request's IdentityStore so a provisioned secret is persisted
    in the same unit of work as the request that created it.
    """

    def __init__(self, store: IdentityStore, issuer: str) -> None:
        self._store = store
        self._issuer = issuer

    def ensure_secret(self, identity: Identity) -> str:
        """Return identity's secret, generating and persisting one if absent."""
        if identity.two_factor_secret:
            return identity.two_factor_secret
        identity.two_factor_secret = new_secret()
        if not self._store.update(identity):
            raise NotFoundError("User was not found.")
        self._store.save()
        logger.info("Provisioned authenticator secret for identity %s", identity.id)
        return identity.two_factor_secret

    def reset_secret(self, identity: Identity) -> str:
        """Replace identity's secret with a fresh one.

        Only mutates the passed Identity; the caller persists it together
        with whatever other state it is changing.
        """
        identity.two_factor_secret = new_secret()
        return identity.two_factor_secret

    def enrollment_uri(self, identity: Identity, secret: str) -> str:
        return build_enrollment_uri(self._issuer, identity.email, secret)

    def render_qr(self, uri: str) -> bytes:
        return render_qr(uri)

    def verify_code(self, secret: str, code: str) -> bool:
        return verify_code(secret, code)
