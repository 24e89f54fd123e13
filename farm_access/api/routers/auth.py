from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status

from farm_access.api.deps import get_access_context, get_auth_service, get_current_claims
from farm_access.api.errors import HANDLED_ERRORS, raise_http_error
from farm_access.domain.access import AccessContext
from farm_access.domain.models import (
    EmailConfirmRequest,
    MeRead,
    PasswordResetRequest,
    ProfileUpdate,
    SignInRequest,
    SignUpRequest,
    TokenResponse,
    User,
)
from farm_access.infra.auth import create_access_token
from farm_access.services.auth_service import AuthService

router = APIRouter()

Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Context = Annotated[AccessContext, Depends(get_access_context)]
Service = Annotated[AuthService, Depends(get_auth_service)]


def _token_response(user: User, *, email_verified: bool) -> TokenResponse:
    token = create_access_token(uid=user.uid, email=user.email, email_verified=email_verified)
    return TokenResponse(access_token=token, user=user.to_document())


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def sign_up(payload: SignUpRequest, service: Service) -> TokenResponse:
    try:
        result = service.sign_up(
            email=payload.email,
            password=payload.password,
            display_name=payload.display_name,
            phone_number=payload.phone_number,
            organization_name=payload.organization_name,
            farm_name=payload.farm_name,
        )
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return _token_response(result.user, email_verified=result.token.email_verified)


@router.post("/signin", response_model=TokenResponse)
def sign_in(payload: SignInRequest, service: Service) -> TokenResponse:
    try:
        result = service.sign_in(payload.email, payload.password)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return _token_response(result.user, email_verified=result.token.email_verified)


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(claims: Claims, service: Service) -> Response:
    try:
        service.sign_out(str(claims["sub"]))
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/password-reset", status_code=status.HTTP_202_ACCEPTED)
def request_password_reset(payload: PasswordResetRequest, service: Service) -> dict[str, str]:
    try:
        service.reset_password(payload.email)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return {"status": "accepted"}


@router.post("/verification-email")
def send_verification_email(claims: Claims, service: Service) -> dict[str, bool]:
    try:
        sent = service.send_verification_email(str(claims["sub"]))
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return {"sent": sent}


@router.post("/confirm")
def confirm_email(payload: EmailConfirmRequest, service: Service) -> dict[str, Any]:
    try:
        user = service.confirm_email(payload.code)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return user.to_document()


@router.get("/me", response_model=MeRead)
def read_me(claims: Claims, context: Context, service: Service) -> MeRead:
    try:
        user = service.profiles.require_profile(str(claims["sub"]))
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return MeRead(
        user=user.to_document(),
        roles=[role.to_document() for role in context.live_roles()],
        permissions=sorted(context.effective_permissions()),
        is_super_admin=context.is_super_admin(),
    )


@router.patch("/me")
def update_me(payload: ProfileUpdate, claims: Claims, service: Service) -> dict[str, Any]:
    try:
        user = service.profiles.update_profile(str(claims["sub"]), payload)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return user.to_document()
