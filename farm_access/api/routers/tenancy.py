from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from farm_access.api.deps import get_access_context, get_auth_service, require_perm
from farm_access.api.errors import HANDLED_ERRORS, raise_http_error
from farm_access.domain.access import AccessContext
from farm_access.domain.models import (
    FarmCreate,
    FarmInvitation,
    InvitationCreate,
    InvitationResponse,
    OrganizationCreate,
)
from farm_access.domain.permissions import Permission
from farm_access.services.auth_service import AuthService

router = APIRouter()

Context = Annotated[AccessContext, Depends(get_access_context)]
Service = Annotated[AuthService, Depends(get_auth_service)]


@router.post("/organizations", status_code=status.HTTP_201_CREATED)
def create_organization(payload: OrganizationCreate, context: Context, service: Service) -> dict[str, Any]:
    try:
        organization = service.tenancy.create_organization(context.user_id, payload.name, payload.display_name)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return organization.to_document()


@router.get("/organizations/{organization_id}")
def get_organization(
    organization_id: str,
    _: Annotated[AccessContext, Depends(require_perm(Permission.FARMS_READ, "organization_id"))],
    service: Service,
) -> dict[str, Any]:
    try:
        organization = service.tenancy.get_organization(organization_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return organization.to_document()


@router.post("/farms", status_code=status.HTTP_201_CREATED)
def create_farm(payload: FarmCreate, context: Context, service: Service) -> dict[str, Any]:
    organization_id = payload.organization_id
    if organization_id is not None and not context.has_permission(Permission.FARMS_CREATE, organization_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {Permission.FARMS_CREATE.value}",
        )
    try:
        if organization_id is not None:
            service.tenancy.ensure_farm_capacity(organization_id)
        farm = service.tenancy.create_farm(context.user_id, payload.name, organization_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return farm.to_document()


@router.get("/farms")
def list_farms(context: Context, service: Service) -> list[dict[str, Any]]:
    try:
        farms = service.tenancy.list_farms_for(context)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return [farm.to_document() for farm in farms]


@router.get("/farms/{farm_id}")
def get_farm(
    farm_id: str,
    _: Annotated[AccessContext, Depends(require_perm(Permission.FARMS_READ, "farm_id"))],
    service: Service,
) -> dict[str, Any]:
    try:
        farm = service.tenancy.get_farm(farm_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return farm.to_document()


@router.get("/farms/{farm_id}/members")
def list_farm_members(
    farm_id: str,
    _: Annotated[AccessContext, Depends(require_perm(Permission.USERS_READ, "farm_id"))],
    service: Service,
) -> list[dict[str, Any]]:
    try:
        service.tenancy.get_farm(farm_id)
        roles = service.authorization.list_scope_roles(farm_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return [role.to_document() for role in roles]


@router.delete("/farms/{farm_id}/members/{user_id}")
def remove_farm_member(
    farm_id: str,
    user_id: str,
    context: Annotated[AccessContext, Depends(require_perm(Permission.USERS_REMOVE, "farm_id"))],
    service: Service,
) -> dict[str, Any]:
    try:
        service.tenancy.get_farm(farm_id)
        revoked = service.invitations.remove_user_from_farm(farm_id, user_id, context.user_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return {"farmId": farm_id, "userId": user_id, "revokedRoleIds": [role.id for role in revoked]}


@router.post("/farms/{farm_id}/invitations", status_code=status.HTTP_201_CREATED)
def invite_to_farm(
    farm_id: str,
    payload: InvitationCreate,
    context: Annotated[AccessContext, Depends(require_perm(Permission.USERS_INVITE, "farm_id"))],
    service: Service,
) -> dict[str, Any]:
    try:
        inviter = service.profiles.get_profile(context.user_id)
        invitation = service.invitations.invite_user_to_farm(
            context.user_id,
            farm_id,
            payload.invitee_email,
            payload.proposed_role,
            invitee_name=payload.invitee_name,
            message=payload.message,
            inviter_name=inviter.display_name if inviter is not None else None,
        )
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return invitation.to_document()


@router.get("/farms/{farm_id}/invitations")
def list_farm_invitations(
    farm_id: str,
    _: Annotated[AccessContext, Depends(require_perm(Permission.USERS_INVITE, "farm_id"))],
    service: Service,
) -> list[dict[str, Any]]:
    try:
        invitations = service.invitations.list_for_farm(farm_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return [invitation.to_document() for invitation in invitations]


@router.get("/invitations/sent")
def list_sent_invitations(context: Context, service: Service) -> list[dict[str, Any]]:
    try:
        invitations = service.invitations.list_sent(context.user_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return [invitation.to_document() for invitation in invitations]


@router.get("/invitations/received")
def list_received_invitations(context: Context, service: Service) -> list[dict[str, Any]]:
    try:
        user = service.profiles.require_profile(context.user_id)
        invitations = service.invitations.list_received(user.email)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return [invitation.to_document() for invitation in invitations]


@router.post("/invitations/accept")
def accept_invitation(payload: InvitationResponse, context: Context, service: Service) -> dict[str, Any]:
    try:
        user = service.profiles.require_profile(context.user_id)
        role = service.invitations.accept_invitation(context.user_id, user.email, payload.code)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return role.to_document()


@router.post("/invitations/decline")
def decline_invitation(payload: InvitationResponse, context: Context, service: Service) -> dict[str, Any]:
    try:
        user = service.profiles.require_profile(context.user_id)
        invitation = service.invitations.decline_invitation(context.user_id, user.email, payload.code, payload.reason)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return invitation.to_document()


def _load_managed_invitation(
    invitation_id: str,
    context: AccessContext,
    service: AuthService,
    permission: Permission,
) -> FarmInvitation:
    try:
        invitation = service.invitations.get_invitation(invitation_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    if invitation.inviter_user_id != context.user_id and not context.has_permission(permission, invitation.farm_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {permission.value}",
        )
    return invitation


@router.post("/invitations/{invitation_id}/cancel")
def cancel_invitation(invitation_id: str, context: Context, service: Service) -> dict[str, Any]:
    _load_managed_invitation(invitation_id, context, service, Permission.USERS_MANAGE)
    try:
        invitation = service.invitations.cancel_invitation(invitation_id, context.user_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return invitation.to_document()


@router.post("/invitations/{invitation_id}/resend")
def resend_invitation(invitation_id: str, context: Context, service: Service) -> dict[str, Any]:
    _load_managed_invitation(invitation_id, context, service, Permission.USERS_INVITE)
    try:
        invitation = service.invitations.resend_invitation(invitation_id, context.user_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return invitation.to_document()
