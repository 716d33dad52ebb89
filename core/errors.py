"""
core/errors.py -- Error taxonomy for the identity subsystem.

Every caller-visible failure of an account operation is an IdentityError
subclass with a stable machine-readable code. The API layer maps codes to
HTTP status in one exception handler; the service layer never imports
fastapi.

ConfigurationError is deliberately outside the IdentityError hierarchy: it is
raised during startup and must abort initialization, never become a
per-request response.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations


class ConfigurationError(Exception):
    """Signing key, issuer or audience is missing or unusable."""


class IdentityError(Exception):
    """Base class for recoverable account-operation failures."""

    code = "identity_error"
    default_message = "Identity operation failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(IdentityError):
    code = "validation_error"
    default_message = "Invalid input."


class ConflictError(IdentityError):
    code = "conflict"
    default_message = "User is already registered!"


class NotFoundError(IdentityError):
    code = "not_found"
    default_message = "User with entered credentials was not found."


class InvalidCredentialsError(IdentityError):
    code = "invalid_credentials"
    default_message = "Wrong credentials!"


class InvalidCodeError(IdentityError):
    code = "invalid_code"
    default_message = "Wrong 2FA Code!"


class TwoFactorRequiredError(IdentityError):
    """Login without a code was attempted on an account with 2FA enabled."""

    code = "two_factor_required"
    default_message = "2FA is enabled. Try login with code."


class TwoFactorNotEnabledError(IdentityError):
    """A 2FA-only operation was attempted on an account with 2FA disabled."""

    code = "two_factor_not_enabled"
    default_message = "Two factor is disabled. Try login without code."
