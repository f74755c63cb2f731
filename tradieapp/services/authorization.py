"""
Organization-scoped authorization.

Every organization-owned row is reached through the caller's membership in
the owning organization. No active membership means the row is reported as
not found, so tenants cannot probe each other's ids; an active membership
without the needed capability is a 403.
"""
import enum
import uuid
from typing import Optional, Type, TypeVar

from sqlalchemy.orm import Session

from ..errors import Forbidden, NotFound
from ..models.models import OrganizationMember


class Role(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    EMPLOYEE = "employee"
    SUBCONTRACTOR = "subcontractor"


class MembershipStatus(str, enum.Enum):
    INVITED = "invited"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Capability(str, enum.Enum):
    CREATE_JOBS = "can_create_jobs"
    EDIT_ALL_JOBS = "can_edit_all_jobs"
    CREATE_INVOICES = "can_create_invoices"
    VIEW_FINANCIALS = "can_view_financials"
    APPROVE_EXPENSES = "can_approve_expenses"
    APPROVE_TIMESHEETS = "can_approve_timesheets"


MANAGER_ROLES = {Role.OWNER.value, Role.ADMIN.value}

T = TypeVar("T")


def is_active(membership: Optional[OrganizationMember]) -> bool:
    return membership is not None and membership.status == MembershipStatus.ACTIVE.value


def is_manager(membership: Optional[OrganizationMember]) -> bool:
    return is_active(membership) and membership.role in MANAGER_ROLES


def has_capability(membership: Optional[OrganizationMember], capability: Capability) -> bool:
    if not is_active(membership):
        return False
    # Owners and admins have all capabilities
    if membership.role in MANAGER_ROLES:
        return True
    return bool(getattr(membership, capability.value, False))


def get_active_membership(db: Session, user_id, organization_id) -> Optional[OrganizationMember]:
    return (
        db.query(OrganizationMember)
        .filter(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
            OrganizationMember.status == MembershipStatus.ACTIVE.value,
        )
        .first()
    )


def authorize(
    db: Session,
    user_id,
    organization_id,
    capability: Optional[Capability] = None,
    label: str = "Resource",
) -> OrganizationMember:
    membership = get_active_membership(db, user_id, organization_id)
    if membership is None:
        raise NotFound(f"{label} not found")
    if capability is not None and not has_capability(membership, capability):
        raise Forbidden(f"Missing permission: {capability.value}")
    return membership


def require_manager(db: Session, user_id, organization_id, label: str = "Organization") -> OrganizationMember:
    membership = authorize(db, user_id, organization_id, label=label)
    if not is_manager(membership):
        raise Forbidden("Only owners and admins can manage team members")
    return membership


def parse_id(value, label: str = "Resource") -> uuid.UUID:
    """Malformed ids are indistinguishable from missing rows."""
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        raise NotFound(f"{label} not found")


def load_for_user(
    db: Session,
    model: Type[T],
    resource_id,
    user_id,
    capability: Optional[Capability] = None,
    label: str = "Resource",
    for_update: bool = False,
) -> T:
    """Load an organization-owned row by primary key and authorize the caller against its organization."""
    query = db.query(model).filter(model.id == parse_id(resource_id, label))
    if for_update:
        query = query.with_for_update()
    row = query.first()
    if row is None:
        raise NotFound(f"{label} not found")
    authorize(db, user_id, row.organization_id, capability, label=label)
    return row
