from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from tokengate.api.schemas import (
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
    UserView,
)
from tokengate.context import CallContext
from tokengate.service.gate import AuthContext
from tokengate.service.runtime import get_runtime

router = APIRouter()

# Handlers are plain ``def`` so the password hashing and store calls they make
# run in the worker thread pool rather than on the event loop.


def get_call_context() -> CallContext:
    return get_runtime().new_call_context()


def get_current_identity(
    authorization: Optional[str] = Header(None),
    ctx: CallContext = Depends(get_call_context),
) -> AuthContext:
    return get_runtime().gate.authenticate(authorization, ctx)


@router.post("/auth/register", response_model=UserResponse, status_code=201, tags=["auth"])
def register(body: RegisterRequest, ctx: CallContext = Depends(get_call_context)):
    identity = get_runtime().sessions.register(body.email, body.password, ctx)
    return UserResponse(user=UserView(**identity.public()))


@router.post("/auth/login", response_model=TokenResponse, tags=["auth"])
def login(body: LoginRequest, ctx: CallContext = Depends(get_call_context)):
    pair = get_runtime().sessions.login(body.email, body.password, ctx)
    return TokenResponse(**pair.as_dict())


@router.post("/auth/refresh", response_model=TokenResponse, tags=["auth"])
def refresh(body: RefreshRequest, ctx: CallContext = Depends(get_call_context)):
    pair = get_runtime().sessions.refresh(body.refresh_token, ctx)
    return TokenResponse(**pair.as_dict())


@router.get("/me", response_model=UserResponse, tags=["auth"])
def me(principal: AuthContext = Depends(get_current_identity)):
    """Return the identity the bearer token was issued for."""
    return UserResponse(user=UserView(**principal.identity.public()))
