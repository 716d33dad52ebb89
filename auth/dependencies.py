"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Request scoping:
  get_identity_store() opens one IdentityStore per request from the engine on
  app.state and closes it when the response is done. Every other dependency
  and the route itself receive that same store (FastAPI caches a dependency
  within one request), so a request is exactly one unit of work.

Bearer authentication:
  get_current_identity() reads "Authorization: Bearer <token>", verifies it
  with the TokenIssuer on app.state and loads the subject through the
  request's store. Missing header, bad token and vanished identity all give
  the same 401 -- the client learns nothing about why.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, HTTPException, Request

from auth.models import Identity
from auth.service import AccountService
from auth.store import IdentityStore
from auth.tokens import TokenIssuer
from auth.totp import TotpSecretManager


def get_identity_store(request: Request) -> Iterator[IdentityStore]:
    """Yield a request-scoped IdentityStore; unsaved changes are discarded on exit."""
    store = IdentityStore(request.app.state.engine)
    try:
        yield store
    finally:
        store.close()


def get_account_service(request: Request, store: IdentityStore = Depends(get_identity_store)) -> AccountService:
    """Assemble the account service for this request."""
    tokens: TokenIssuer = request.app.state.token_issuer
    totp = TotpSecretManager(store, request.app.state.settings.totp_issuer)
    return AccountService(store, totp, tokens)


def try_get_current_identity(request: Request, store: IdentityStore) -> Identity | None:
    """Authenticate the request via its Bearer token. Never raises."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    tokens: TokenIssuer = request.app.state.token_issuer
    claims = tokens.verify(auth_header[7:])
    if claims is None:
        return None
    return store.get_by_id(claims.subject_id)


def get_current_identity(request: Request, store: IdentityStore = Depends(get_identity_store)) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_current_identity(request, store)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
