"""
auth/service.py -- Account operations: registration, login, two-factor login,
two-factor toggle and enrollment, profile and avatar updates.

AccountService composes the credential store, the password hasher, the TOTP
secret manager and the token issuer. All four are handed in through the
constructor and fixed for the service's lifetime; nothing is injected by
property after construction.

Two-factor state machine (per identity, over two_factor_enabled):

    Disabled --toggle--> Enabled --toggle--> Disabled --> ...

  Enabling flips the flag and rotates the security stamp. The secret is
  provisioned lazily by the enrollment query (enrollment_material), which the
  user calls next to scan the QR code. Disabling flips the flag, rotates the
  security stamp and replaces the secret, so the authenticator entry from the
  previous enrollment stops producing valid codes.

Failures are raised as core.errors.IdentityError subclasses; the API layer
turns them into HTTP responses. Password and code verification themselves
never raise -- they return booleans and this module classifies the outcome.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets

from sqlalchemy.exc import IntegrityError

from auth.models import (
    SELF_REGISTRABLE_ROLES,
    AvatarEmpty,
    AvatarFound,
    AvatarNotFound,
    AvatarResult,
    Identity,
    Role,
)
from auth.passwords import PASSWORD_RULE, hash_password, is_strong_password, verify_password
from auth.store import IdentityStore
from auth.tokens import TokenIssuer
from auth.totp import TotpSecretManager
from core.errors import (
    ConflictError,
    InvalidCodeError,
    InvalidCredentialsError,
    NotFoundError,
    TwoFactorNotEnabledError,
    TwoFactorRequiredError,
    ValidationError,
)

logger = logging.getLogger("library.auth")


def new_security_stamp() -> str:
    return secrets.token_hex(16)


def _check_new_password(password: str, confirm_password: str) -> None:
    if not is_strong_password(password):
        raise ValidationError(PASSWORD_RULE)
    if password != confirm_password:
        raise ValidationError("Password and confirmation password do not match.")


class AccountService:
    """Identity and multi-factor authentication operations.

    One instance serves one unit of work (an HTTP request or a CLI command)
    because it is bound to that unit's IdentityStore.
    """

    def __init__(self, store: IdentityStore, totp: TotpSecretManager, tokens: TokenIssuer) -> None:
        self._store = store
        self._totp = totp
        self._tokens = tokens

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        confirm_password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        role: Role = Role.USER,
        allow_admin: bool = False,
    ) -> Identity:
        """Create a new identity with 2FA disabled.

        allow_admin is only set by the CLI bootstrap command; self-service
        registration is limited to USER and LIBRARIAN.
        """
        logger.info("Searching for user with email: %s ...", email)
        if self._store.get_by_email(email) is not None:
            logger.warning("User with email: %s already exists.", email)
            raise ConflictError()

        if role not in SELF_REGISTRABLE_ROLES and not allow_admin:
            raise ValidationError("Only USER or LIBRARIAN can be registered.")
        _check_new_password(password, confirm_password)

        identity = Identity(
            email=email.strip(),
            password_hash=hash_password(password),
            role=role,
            first_name=first_name,
            last_name=last_name,
            two_factor_enabled=False,
            security_stamp=new_security_stamp(),
        )
        try:
            self._store.insert(identity)
            self._store.save()
        except IntegrityError as exc:
            # A concurrent registration committed the same email first.
            logger.warning("User with email: %s already exists.", email)
            raise ConflictError() from exc

        logger.info("User with email: %s is successfully registered.", email)
        return identity

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> str:
        """Password-only login. Returns a signed session token."""
        identity = self._find_for_login(email)
        if identity.two_factor_enabled:
            raise TwoFactorRequiredError()
        if not verify_password(password, identity.password_hash):
            logger.warning("Wrong password for user with email: %s", email)
            raise InvalidCredentialsError()
        return self._tokens.issue(identity)

    def login_with_code(self, email: str, password: str, code: str) -> str:
        """Password + TOTP login. The password is checked before the code."""
        identity = self._find_for_login(email)
        if not identity.two_factor_enabled:
            raise TwoFactorNotEnabledError()
        if not verify_password(password, identity.password_hash):
            logger.warning("Wrong password for user with email: %s", email)
            raise InvalidCredentialsError()
        if not identity.two_factor_secret or not self._totp.verify_code(identity.two_factor_secret, code):
            logger.warning("Wrong 2FA code for user with email: %s", email)
            raise InvalidCodeError()
        return self._tokens.issue(identity)

    def _find_for_login(self, email: str) -> Identity:
        logger.info("Finding user with email: %s", email)
        identity = self._store.get_by_email(email)
        if identity is None:
            logger.warning("User with email: %s and entered password was not found.", email)
            raise NotFoundError()
        return identity

    # ------------------------------------------------------------------
    # Two-factor management
    # ------------------------------------------------------------------

    def toggle_two_factor(self, identity: Identity) -> bool:
        """Flip identity's 2FA flag. Returns the new state (True = enabled)."""
        if not identity.two_factor_enabled:
            identity.two_factor_enabled = True
            identity.security_stamp = new_security_stamp()
            self._persist(identity)
            logger.info("2FA enabled for identity %s", identity.id)
            return True

        identity.two_factor_enabled = False
        identity.security_stamp = new_security_stamp()
        self._totp.reset_secret(identity)
        self._persist(identity)
        logger.info("2FA disabled for identity %s", identity.id)
        return False

    def enrollment_material(self, identity: Identity) -> bytes:
        """Return the PNG QR code an authenticator app scans to enroll."""
        if not identity.two_factor_enabled:
            raise TwoFactorNotEnabledError("2FA is disabled.")
        secret = self._totp.ensure_secret(identity)
        uri = self._totp.enrollment_uri(identity, secret)
        return self._totp.render_qr(uri)

    def regenerate_two_factor_secret(self, identity: Identity) -> None:
        """Replace identity's authenticator secret. Requires 2FA to be enabled.

        Previously scanned authenticator entries stop working; the user must
        fetch the enrollment QR code again.
        """
        if not identity.two_factor_enabled:
            raise TwoFactorNotEnabledError("2FA is disabled.")
        identity.security_stamp = new_security_stamp()
        self._totp.reset_secret(identity)
        self._persist(identity)
        logger.info("Authenticator secret regenerated for identity %s", identity.id)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, identity_id: int) -> Identity:
        logger.info("Finding user with id: %s ...", identity_id)
        identity = self._store.get_by_id(identity_id)
        if identity is None:
            logger.warning("User with id: %s was not found", identity_id)
            raise NotFoundError("User was not found.")
        return identity

    def update_profile(
        self,
        identity: Identity,
        new_password: str,
        confirm_password: str,
        first_name: str | None,
        last_name: str | None,
    ) -> Identity:
        """Overwrite names and replace the password hash unconditionally."""
        _check_new_password(new_password, confirm_password)
        identity.first_name = first_name
        identity.last_name = last_name
        identity.password_hash = hash_password(new_password)
        self._persist(identity)
        logger.info("User profile is successfully updated for identity %s", identity.id)
        return identity

    # ------------------------------------------------------------------
    # Avatar
    # ------------------------------------------------------------------

    def upload_avatar(self, identity: Identity, content: bytes) -> None:
        """Store content as identity's avatar. No size cap at this layer."""
        if not content:
            raise ValidationError("Avatar file is empty.")
        identity.avatar = base64.b64encode(content).decode("ascii")
        self._persist(identity)
        logger.info("Avatar is successfully uploaded for identity %s", identity.id)

    def get_avatar(self, identity_id: int) -> AvatarResult:
        identity = self._store.get_by_id(identity_id)
        if identity is None:
            logger.warning("User with id: %s was not found.", identity_id)
            return AvatarNotFound()
        if identity.avatar is None:
            return AvatarEmpty()
        try:
            return AvatarFound(base64.b64decode(identity.avatar, validate=True))
        except binascii.Error:
            logger.error("Stored avatar for identity %s is not valid base64", identity_id)
            raise

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _persist(self, identity: Identity) -> None:
        if not self._store.update(identity):
            raise NotFoundError("User was not found.")
        self._store.save()
