"""
Organization (tenant) and user management.

Organizations own users and devices. Deactivation is the normal way to
retire a tenant; deletion exists and cascades through the database to
users, devices, sensors, decoding configurations and samples.

CHANGELOG:
- 2026-10-17: Add get_or_create_organization for device auto-registration
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging
import re

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.db.models import USER_ROLES, Device, Organization, User
from solarmon.errors import ConflictError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


async def _commit(db: AsyncSession, action: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Storage failure while trying to %s", action, exc_info=True)
        raise StorageError(f"Failed to {action}.") from exc


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------


def organization_to_dict(
    org: Organization, user_count: int = 0, device_count: int = 0
) -> dict:
    return {
        "id": org.id,
        "name": org.name,
        "contact_email": org.contact_email,
        "contact_phone": org.contact_phone,
        "address": org.address,
        "is_active": org.is_active,
        "user_count": user_count,
        "device_count": device_count,
    }


async def get_organization(db: AsyncSession, org_id: int) -> Organization:
    """Return the organization with *org_id*.

    Raises:
        NotFoundError: If it does not exist.
    """
    org = await db.get(Organization, org_id)
    if org is None:
        raise NotFoundError(f"Organization {org_id} not found.", identifier=org_id)
    return org


async def create_organization(
    db: AsyncSession,
    name: str,
    contact_email: str | None = None,
    contact_phone: str | None = None,
    address: str | None = None,
) -> Organization:
    """Create a new tenant.

    Raises:
        ValidationError: If *name* is empty.
        ConflictError: If an organization with that name exists.
        StorageError: On any other persistence failure.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Organization name must not be empty.", field="name")

    org = Organization(
        name=name,
        contact_email=contact_email,
        contact_phone=contact_phone,
        address=address,
    )
    db.add(org)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"Organization '{name}' already exists.", field="name", identifier=name
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to create organization %s", name, exc_info=True)
        raise StorageError("Failed to create organization.") from exc

    logger.info("Created organization %s (id=%d)", name, org.id)
    return org


async def get_or_create_organization(db: AsyncSession, name: str) -> Organization:
    """Return the organization called *name*, creating it when missing.

    Used for the tenant that receives auto-registered devices. A concurrent
    creator winning the race is handled by re-reading after the conflict.
    """
    result = await db.execute(select(Organization).where(Organization.name == name))
    org = result.scalar_one_or_none()
    if org is not None:
        return org
    try:
        return await create_organization(db, name)
    except ConflictError:
        result = await db.execute(
            select(Organization).where(Organization.name == name)
        )
        return result.scalar_one()


async def list_organizations(db: AsyncSession) -> list[dict]:
    """Return every organization with its user and device counts."""
    user_counts = (
        select(User.organization_id, func.count(User.id).label("n"))
        .group_by(User.organization_id)
        .subquery()
    )
    device_counts = (
        select(Device.organization_id, func.count(Device.id).label("n"))
        .group_by(Device.organization_id)
        .subquery()
    )
    stmt = (
        select(
            Organization,
            func.coalesce(user_counts.c.n, 0),
            func.coalesce(device_counts.c.n, 0),
        )
        .outerjoin(user_counts, user_counts.c.organization_id == Organization.id)
        .outerjoin(device_counts, device_counts.c.organization_id == Organization.id)
        .order_by(Organization.name)
    )
    result = await db.execute(stmt)
    return [
        organization_to_dict(org, int(users), int(devices))
        for org, users, devices in result.all()
    ]


async def set_organization_active(
    db: AsyncSession, org_id: int, active: bool
) -> Organization:
    """Activate or deactivate a tenant."""
    org = await get_organization(db, org_id)
    org.is_active = active
    await _commit(db, f"update organization {org_id}")
    logger.info("Organization %d is_active=%s", org_id, active)
    return org


async def delete_organization(db: AsyncSession, org_id: int) -> None:
    """Delete a tenant and, through the database cascade, everything it owns."""
    await get_organization(db, org_id)
    await db.execute(delete(Organization).where(Organization.id == org_id))
    await _commit(db, f"delete organization {org_id}")
    logger.info("Deleted organization %d", org_id)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "organization_id": user.organization_id,
        "is_active": user.is_active,
    }


async def create_user(
    db: AsyncSession,
    email: str,
    full_name: str | None,
    role: str,
    organization_id: int,
) -> User:
    """Create a user inside an organization.

    Raises:
        ValidationError: On a malformed email or unknown role.
        NotFoundError: If the organization does not exist.
        ConflictError: If the email is already registered.
    """
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"Invalid email address '{email}'.", field="email")
    if role not in USER_ROLES:
        raise ValidationError(
            f"Unknown role '{role}'. Must be one of: {list(USER_ROLES)}.",
            field="role",
        )
    await get_organization(db, organization_id)

    user = User(
        email=email,
        full_name=full_name,
        role=role,
        organization_id=organization_id,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"User '{email}' already exists.", field="email", identifier=email
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to create user %s", email, exc_info=True)
        raise StorageError("Failed to create user.") from exc

    logger.info("Created user id=%d in organization %d", user.id, organization_id)
    return user


async def list_users(db: AsyncSession, scope: int | None) -> list[User]:
    """List users, restricted to one organization when *scope* is set."""
    stmt = select(User).order_by(User.email)
    if scope is not None:
        stmt = stmt.where(User.organization_id == scope)
    result = await db.execute(stmt)
    return list(result.scalars().all())
