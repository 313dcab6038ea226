"""
Administration endpoints for organizations and users.

Organization management is restricted to administrators. User listing is
scoped: administrators see every user, others only their organization's.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging

from fastapi import APIRouter, Response
from pydantic import BaseModel

from solarmon.api.deps import Admin, CurrentPrincipal, DbSession
from solarmon.services import organizations as org_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class OrganizationCreate(BaseModel):
    name: str
    contact_email: str | None = None
    contact_phone: str | None = None
    address: str | None = None


class OrganizationUpdate(BaseModel):
    is_active: bool


class UserCreate(BaseModel):
    email: str
    full_name: str | None = None
    role: str = "user"
    organization_id: int


@router.get("/organizations")
async def list_organizations(db: DbSession, principal: Admin) -> list[dict]:
    return await org_service.list_organizations(db)


@router.post("/organizations", status_code=201)
async def create_organization(
    body: OrganizationCreate, db: DbSession, principal: Admin
) -> dict:
    org = await org_service.create_organization(
        db,
        body.name,
        contact_email=body.contact_email,
        contact_phone=body.contact_phone,
        address=body.address,
    )
    return org_service.organization_to_dict(org)


@router.patch("/organizations/{org_id}")
async def update_organization(
    org_id: int, body: OrganizationUpdate, db: DbSession, principal: Admin
) -> dict:
    """Activate or deactivate an organization."""
    org = await org_service.set_organization_active(db, org_id, body.is_active)
    return org_service.organization_to_dict(org)


@router.delete("/organizations/{org_id}", status_code=204)
async def delete_organization(org_id: int, db: DbSession, principal: Admin) -> Response:
    """Delete an organization and everything it owns."""
    await org_service.delete_organization(db, org_id)
    return Response(status_code=204)


@router.get("/users")
async def list_users(db: DbSession, principal: CurrentPrincipal) -> list[dict]:
    users = await org_service.list_users(db, principal.scope)
    return [org_service.user_to_dict(u) for u in users]


@router.post("/users", status_code=201)
async def create_user(body: UserCreate, db: DbSession, principal: Admin) -> dict:
    user = await org_service.create_user(
        db, body.email, body.full_name, body.role, body.organization_id
    )
    return org_service.user_to_dict(user)
