"""
tests/test_account_service.py -- AccountService behaviour and state machine.

These run the real store, hasher, TOTP manager and token issuer against an
in-memory database; nothing is mocked, so a wiring mistake between the
collaborators fails here rather than only in the HTTP tests.

Coverage:
  - registration: conflict (any letter case) without mutation, password
    rules, role restriction, 2FA starts disabled
  - login: NotFound, TwoFactorRequired before the password check,
    InvalidCredentials, token subject
  - login with code: TwoFactorNotEnabled, password checked before code,
    InvalidCode for wrong / elapsed codes, success
  - toggle: enable defers the secret, disable rotates stamp and secret,
    re-enable yields a different secret
  - enrollment material, secret regeneration, profile update, avatar outcomes
"""

from __future__ import annotations

import time

import pyotp
import pytest

from auth.models import AvatarEmpty, AvatarFound, AvatarNotFound, Identity, Role
from auth.passwords import verify_password
from auth.service import AccountService
from auth.store import IdentityStore
from auth.tokens import TokenIssuer
from core.errors import (
    ConflictError,
    InvalidCodeError,
    InvalidCredentialsError,
    NotFoundError,
    TwoFactorNotEnabledError,
    TwoFactorRequiredError,
    ValidationError,
)

PASSWORD = "Passw0rd!"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _enable_and_enroll(service: AccountService, identity: Identity) -> str:
    """Turn 2FA on, fetch the QR code and return the provisioned secret."""
    service.toggle_two_factor(identity)
    service.enrollment_material(identity)
    return identity.two_factor_secret


class TestRegister:
    def test_new_identity_has_hashed_password_and_2fa_off(self, service: AccountService, store: IdentityStore) -> None:
        identity = service.register("user@example.com", PASSWORD, PASSWORD, "Ada", "Lovelace", Role.USER)

        stored = store.get_by_id(identity.id)
        assert stored.email == "user@example.com"
        assert stored.password_hash != PASSWORD
        assert verify_password(PASSWORD, stored.password_hash)
        assert stored.two_factor_enabled is False
        assert stored.security_stamp
        assert (stored.first_name, stored.last_name) == ("Ada", "Lovelace")

    @pytest.mark.parametrize("again", ["user@example.com", "USER@EXAMPLE.COM", "User@Example.Com"])
    def test_duplicate_email_conflicts_without_mutation(
        self, service: AccountService, store: IdentityStore, make_user, again: str
    ) -> None:
        original = make_user()
        before = store.get_by_id(original.id)

        with pytest.raises(ConflictError):
            service.register(again, "Differ3nt!", "Differ3nt!", "Eve", "Mallory", Role.LIBRARIAN)

        assert store.get_by_id(original.id) == before
        assert len(store.list_all()) == 1

    def test_weak_password_rejected(self, service: AccountService, store: IdentityStore) -> None:
        with pytest.raises(ValidationError):
            service.register("user@example.com", "password", "password")
        assert store.list_all() == []

    def test_mismatched_confirmation_rejected(self, service: AccountService) -> None:
        with pytest.raises(ValidationError, match="do not match"):
            service.register("user@example.com", PASSWORD, "Passw0rd?")

    def test_admin_role_not_self_registrable(self, service: AccountService) -> None:
        with pytest.raises(ValidationError, match="Only USER or LIBRARIAN"):
            service.register("boss@example.com", PASSWORD, PASSWORD, role=Role.ADMIN)

    def test_admin_bootstrap_allowed(self, service: AccountService) -> None:
        identity = service.register("boss@example.com", PASSWORD, PASSWORD, role=Role.ADMIN, allow_admin=True)
        assert identity.role is Role.ADMIN


class TestLogin:
    def test_unknown_email_is_not_found(self, service: AccountService) -> None:
        with pytest.raises(NotFoundError):
            service.login("nobody@example.com", PASSWORD)

    def test_wrong_password(self, service: AccountService, make_user) -> None:
        make_user()
        with pytest.raises(InvalidCredentialsError):
            service.login("user@example.com", "Wr0ng-pass")

    def test_success_returns_token_for_identity(self, service: AccountService, issuer: TokenIssuer, make_user) -> None:
        identity = make_user()
        token = service.login("user@example.com", PASSWORD)
        assert token
        claims = issuer.verify(token)
        assert claims.subject_id == identity.id
        assert claims.role is Role.USER

    def test_email_lookup_ignores_case(self, service: AccountService, make_user) -> None:
        make_user()
        assert service.login("USER@example.com", PASSWORD)

    def test_two_factor_required_even_with_correct_password(self, service: AccountService, make_user) -> None:
        identity = make_user()
        service.toggle_two_factor(identity)
        with pytest.raises(TwoFactorRequiredError):
            service.login("user@example.com", PASSWORD)

    def test_two_factor_required_checked_before_password(self, service: AccountService, make_user) -> None:
        identity = make_user()
        service.toggle_two_factor(identity)
        with pytest.raises(TwoFactorRequiredError):
            service.login("user@example.com", "Wr0ng-pass")


class TestLoginWithCode:
    def test_not_enabled(self, service: AccountService, make_user) -> None:
        make_user()
        with pytest.raises(TwoFactorNotEnabledError):
            service.login_with_code("user@example.com", PASSWORD, "123456")

    def test_unknown_email_is_not_found(self, service: AccountService) -> None:
        with pytest.raises(NotFoundError):
            service.login_with_code("nobody@example.com", PASSWORD, "123456")

    def test_wrong_password_reported_before_code(self, service: AccountService, make_user) -> None:
        identity = make_user()
        secret = _enable_and_enroll(service, identity)
        with pytest.raises(InvalidCredentialsError):
            service.login_with_code("user@example.com", "Wr0ng-pass", pyotp.TOTP(secret).now())

    def test_correct_password_wrong_code(self, service: AccountService, make_user) -> None:
        identity = make_user()
        secret = _enable_and_enroll(service, identity)
        current = pyotp.TOTP(secret).now()
        wrong = "000000" if current != "000000" else "111111"
        with pytest.raises(InvalidCodeError):
            service.login_with_code("user@example.com", PASSWORD, wrong)

    def test_malformed_code_is_invalid_code(self, service: AccountService, make_user) -> None:
        identity = make_user()
        _enable_and_enroll(service, identity)
        with pytest.raises(InvalidCodeError):
            service.login_with_code("user@example.com", PASSWORD, "abc")

    def test_current_code_succeeds(self, service: AccountService, issuer: TokenIssuer, make_user) -> None:
        identity = make_user()
        secret = _enable_and_enroll(service, identity)
        token = service.login_with_code("user@example.com", PASSWORD, pyotp.TOTP(secret).now())
        assert issuer.verify(token).subject_id == identity.id

    def test_code_from_elapsed_step_fails(self, service: AccountService, make_user) -> None:
        identity = make_user()
        secret = _enable_and_enroll(service, identity)
        totp = pyotp.TOTP(secret)
        stale = totp.at(int(time.time()) - 90)
        if stale == totp.now():
            pytest.skip("stale and current codes collided")
        with pytest.raises(InvalidCodeError):
            service.login_with_code("user@example.com", PASSWORD, stale)

    def test_enabled_but_never_enrolled_is_invalid_code(self, service: AccountService, make_user) -> None:
        """Enabling does not provision a secret; no code can match until the QR code is fetched."""
        identity = make_user()
        service.toggle_two_factor(identity)
        with pytest.raises(InvalidCodeError):
            service.login_with_code("user@example.com", PASSWORD, "123456")


class TestToggleTwoFactor:
    def test_enable_sets_flag_without_secret(self, service: AccountService, store: IdentityStore, make_user) -> None:
        identity = make_user()
        assert service.toggle_two_factor(identity) is True

        stored = store.get_by_id(identity.id)
        assert stored.two_factor_enabled is True
        assert stored.two_factor_secret is None

    def test_enable_rotates_stamp(self, service: AccountService, store: IdentityStore, make_user) -> None:
        identity = make_user()
        stamp = store.get_by_id(identity.id).security_stamp

        assert service.toggle_two_factor(identity) is True

        assert store.get_by_id(identity.id).security_stamp != stamp

    def test_disable_rotates_stamp_and_secret(self, service: AccountService, store: IdentityStore, make_user) -> None:
        identity = make_user()
        secret = _enable_and_enroll(service, identity)
        stamp = store.get_by_id(identity.id).security_stamp

        assert service.toggle_two_factor(identity) is False

        stored = store.get_by_id(identity.id)
        assert stored.two_factor_enabled is False
        assert stored.security_stamp != stamp
        assert stored.two_factor_secret != secret

    def test_reenable_yields_different_secret(self, service: AccountService, make_user) -> None:
        identity = make_user()
        first = _enable_and_enroll(service, identity)
        service.toggle_two_factor(identity)  # disable
        second = _enable_and_enroll(service, identity)
        assert second and second != first

    def test_old_authenticator_codes_rejected_after_cycle(self, service: AccountService, make_user) -> None:
        identity = make_user()
        first = _enable_and_enroll(service, identity)
        service.toggle_two_factor(identity)
        second = _enable_and_enroll(service, identity)
        old_code = pyotp.TOTP(first).now()
        if old_code == pyotp.TOTP(second).now():
            pytest.skip("codes collided")
        with pytest.raises(InvalidCodeError):
            service.login_with_code("user@example.com", PASSWORD, old_code)


class TestEnrollmentMaterial:
    def test_requires_two_factor_enabled(self, service: AccountService, make_user) -> None:
        identity = make_user()
        with pytest.raises(TwoFactorNotEnabledError):
            service.enrollment_material(identity)

    def test_returns_png_and_persists_secret(self, service: AccountService, store: IdentityStore, make_user) -> None:
        identity = make_user()
        service.toggle_two_factor(identity)

        png = service.enrollment_material(identity)

        assert png.startswith(PNG_SIGNATURE)
        assert store.get_by_id(identity.id).two_factor_secret

    def test_repeated_queries_keep_the_secret(self, service: AccountService, make_user) -> None:
        identity = make_user()
        service.toggle_two_factor(identity)
        first_png = service.enrollment_material(identity)
        secret = identity.two_factor_secret
        assert service.enrollment_material(identity) == first_png
        assert identity.two_factor_secret == secret

    def test_regenerate_secret(self, service: AccountService, store: IdentityStore, make_user) -> None:
        identity = make_user()
        secret = _enable_and_enroll(service, identity)
        service.regenerate_two_factor_secret(identity)
        assert store.get_by_id(identity.id).two_factor_secret not in (None, secret)

    def test_regenerate_requires_enabled(self, service: AccountService, make_user) -> None:
        identity = make_user()
        with pytest.raises(TwoFactorNotEnabledError):
            service.regenerate_two_factor_secret(identity)


class TestProfile:
    def test_update_replaces_names_and_password(self, service: AccountService, store: IdentityStore, make_user) -> None:
        identity = make_user()
        service.update_profile(identity, "N3w-secret", "N3w-secret", "Grace", "Hopper")

        stored = store.get_by_id(identity.id)
        assert (stored.first_name, stored.last_name) == ("Grace", "Hopper")
        assert verify_password("N3w-secret", stored.password_hash)
        assert service.login("user@example.com", "N3w-secret")
        with pytest.raises(InvalidCredentialsError):
            service.login("user@example.com", PASSWORD)

    def test_same_password_is_rehashed(self, service: AccountService, store: IdentityStore, make_user) -> None:
        identity = make_user()
        old_hash = store.get_by_id(identity.id).password_hash
        service.update_profile(identity, PASSWORD, PASSWORD, "Ada", "Lovelace")
        assert store.get_by_id(identity.id).password_hash != old_hash

    @pytest.mark.parametrize("password,confirm", [("", ""), ("weak", "weak"), ("N3w-secret", "N3w-secreT")])
    def test_invalid_password_rejected(self, service: AccountService, make_user, password: str, confirm: str) -> None:
        identity = make_user()
        with pytest.raises(ValidationError):
            service.update_profile(identity, password, confirm, "Grace", "Hopper")

    def test_get_profile_unknown_id(self, service: AccountService) -> None:
        with pytest.raises(NotFoundError):
            service.get_profile(404)


class TestAvatar:
    def test_upload_then_get(self, service: AccountService, make_user) -> None:
        identity = make_user()
        payload = PNG_SIGNATURE + b"\x00fake-image-bytes"
        service.upload_avatar(identity, payload)
        assert service.get_avatar(identity.id) == AvatarFound(payload)

    def test_no_avatar_is_empty_not_error(self, service: AccountService, make_user) -> None:
        identity = make_user()
        assert isinstance(service.get_avatar(identity.id), AvatarEmpty)

    def test_unknown_identity_is_not_found(self, service: AccountService) -> None:
        assert isinstance(service.get_avatar(12345), AvatarNotFound)

    def test_empty_payload_rejected(self, service: AccountService, make_user) -> None:
        identity = make_user()
        with pytest.raises(ValidationError):
            service.upload_avatar(identity, b"")
