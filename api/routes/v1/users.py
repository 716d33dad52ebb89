"""
api/routes/v1/users.py -- Account, login and two-factor REST endpoints.

Routes:
  POST /api/v1/users                          -- register (public)
  POST /api/v1/users/authentication           -- password login (public)
  POST /api/v1/users/auth/2fa/authentication  -- password + TOTP login (public)
  PUT  /api/v1/users/auth/2fa                 -- toggle 2FA (requires auth)
  GET  /api/v1/users/auth/2fa/qr-code         -- enrollment QR code PNG (requires auth)
  PUT  /api/v1/users/auth/2fa/secret          -- regenerate authenticator secret (requires auth)
  PUT  /api/v1/users                          -- update names + password (requires auth)
  GET  /api/v1/users/profile                  -- current profile (requires auth)
  PUT  /api/v1/users/avatar                   -- upload avatar, multipart (requires auth)
  GET  /api/v1/users/avatar                   -- avatar bytes / 204 / 404 (requires auth)

Handlers are thin: they unpack the request, call AccountService and shape
the response. AccountService raises core.errors.IdentityError subclasses,
which the exception handler in api/main.py turns into the error envelope --
no route catches them itself.

Login responses carry Cache-Control: no-store so tokens are never cached by
intermediaries.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Response, UploadFile
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    LoginWithCodeRequest,
    MessageResponse,
    ProfileResponse,
    ProfileUpdateRequest,
    RegistrationRequest,
    TokenResponse,
    TwoFactorToggleResponse,
)
from auth.dependencies import get_account_service, get_current_identity
from auth.models import AvatarEmpty, AvatarFound, Identity
from auth.service import AccountService

router = APIRouter()


def _token_response(token: str) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=TokenResponse(token=token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users", response_model=MessageResponse)
def register(body: RegistrationRequest, service: AccountService = Depends(get_account_service)) -> MessageResponse:
    """Create an account. Duplicate emails (any letter case) return 409."""
    service.register(
        email=body.email,
        password=body.password,
        confirm_password=body.confirm_password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
    )
    return MessageResponse(message="User is successfully registered.")


@router.post("/users/authentication", response_model=TokenResponse)
def login(body: LoginRequest, service: AccountService = Depends(get_account_service)) -> JSONResponse:
    """Log in without a code. Accounts with 2FA enabled must use the 2FA endpoint."""
    return _token_response(service.login(body.email, body.password))


@router.post("/users/auth/2fa/authentication", response_model=TokenResponse)
def login_with_code(
    body: LoginWithCodeRequest,
    service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    """Log in with password and the current authenticator code."""
    return _token_response(service.login_with_code(body.email, body.password, body.code))


# ---------------------------------------------------------------------------
# Two-factor management (authenticated)
# ---------------------------------------------------------------------------


@router.put("/users/auth/2fa", response_model=TwoFactorToggleResponse)
def toggle_two_factor(
    identity: Identity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
) -> TwoFactorToggleResponse:
    """Enable 2FA if it is off, disable it if it is on."""
    enabled = service.toggle_two_factor(identity)
    message = "2FA is successfully enabled." if enabled else "2FA is successfully disabled."
    return TwoFactorToggleResponse(two_factor_enabled=enabled, message=message)


@router.get("/users/auth/2fa/qr-code", response_class=Response)
def enrollment_qr_code(
    identity: Identity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
) -> Response:
    """Scan this QR code with an authenticator app to start generating login codes."""
    png = service.enrollment_material(identity)
    return Response(content=png, media_type="image/png", headers={"Cache-Control": "no-store"})


@router.put("/users/auth/2fa/secret", response_model=MessageResponse)
def regenerate_secret(
    identity: Identity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
) -> MessageResponse:
    """Invalidate the current authenticator secret. Re-scan the QR code afterwards."""
    service.regenerate_two_factor_secret(identity)
    return MessageResponse(message="Authenticator key regenerated. Scan the new QR code.")


# ---------------------------------------------------------------------------
# Profile (authenticated)
# ---------------------------------------------------------------------------


@router.put("/users", response_model=ProfileResponse)
def update_profile(
    body: ProfileUpdateRequest,
    identity: Identity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
) -> ProfileResponse:
    updated = service.update_profile(
        identity,
        new_password=body.password,
        confirm_password=body.confirm_password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return ProfileResponse.from_identity(updated)


@router.get("/users/profile", response_model=ProfileResponse)
def get_profile(
    identity: Identity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
) -> ProfileResponse:
    return ProfileResponse.from_identity(service.get_profile(identity.id))


@router.put("/users/avatar", response_model=MessageResponse)
def upload_avatar(
    file: UploadFile = File(...),
    identity: Identity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
) -> MessageResponse:
    """Store the uploaded image as the current user's avatar. Empty files are rejected."""
    service.upload_avatar(identity, file.file.read())
    return MessageResponse(message="Avatar is successfully uploaded.")


@router.get("/users/avatar", response_class=Response)
def get_avatar(
    identity: Identity = Depends(get_current_identity),
    service: AccountService = Depends(get_account_service),
) -> Response:
    """200 with the image bytes, 204 if no avatar was uploaded, 404 if the account is gone."""
    result = service.get_avatar(identity.id)
    if isinstance(result, AvatarFound):
        return Response(content=result.content, media_type="image/*")
    if isinstance(result, AvatarEmpty):
        return Response(status_code=204)
    return JSONResponse(
        status_code=404,
        content={"error": {"code": "not_found", "message": "User was not found."}},
    )
