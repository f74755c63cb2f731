import uuid
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user_id
from ..db import get_db
from ..errors import Forbidden
from ..models.models import Organization, OrganizationMember, User
from ..schemas.organizations import AuditLogOut, MemberOut, MemberPatch, OrganizationOut, SuspendRequest
from ..services.audit import get_audit_logs, record_audit
from ..services.authorization import (
    Capability,
    MembershipStatus,
    Role,
    authorize,
    load_for_user,
    parse_id,
    require_manager,
)
from ..services.patching import apply_patch


router = APIRouter(prefix="/organizations", tags=["organizations"])
logger = structlog.get_logger(__name__)

MEMBER_PATCH_FIELDS = {"role"} | {c.value for c in Capability}


def member_out(m: OrganizationMember) -> MemberOut:
    return MemberOut(
        id=m.id,
        organization_id=m.organization_id,
        user_id=m.user_id,
        email=m.user.email,
        full_name=m.user.full_name,
        role=m.role,
        status=m.status,
        can_create_jobs=m.can_create_jobs,
        can_edit_all_jobs=m.can_edit_all_jobs,
        can_create_invoices=m.can_create_invoices,
        can_view_financials=m.can_view_financials,
        can_approve_expenses=m.can_approve_expenses,
        can_approve_timesheets=m.can_approve_timesheets,
        joined_at=m.joined_at,
    )


def _managed_member(db: Session, member_id: str, user_id: uuid.UUID) -> OrganizationMember:
    member = load_for_user(db, OrganizationMember, member_id, user_id, label="Member", for_update=True)
    require_manager(db, user_id, member.organization_id)
    return member


@router.get("", response_model=List[OrganizationOut])
def list_organizations(db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    rows = (
        db.query(Organization, OrganizationMember.role)
        .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
        .filter(
            OrganizationMember.user_id == user_id,
            OrganizationMember.status == MembershipStatus.ACTIVE.value,
        )
        .order_by(Organization.name)
        .all()
    )
    return [
        OrganizationOut(id=org.id, name=org.name, abn=org.abn, email=org.email, phone=org.phone, role=role)
        for org, role in rows
    ]


@router.get("/{org_id}/members", response_model=List[MemberOut])
def list_members(org_id: str, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    org_uuid = parse_id(org_id, "Organization")
    authorize(db, user_id, org_uuid, label="Organization")
    members = (
        db.query(OrganizationMember)
        .join(User, User.id == OrganizationMember.user_id)
        .filter(OrganizationMember.organization_id == org_uuid)
        .order_by(OrganizationMember.created_at)
        .all()
    )
    return [member_out(m) for m in members]


@router.get("/{org_id}/audit-logs", response_model=List[AuditLogOut])
def list_audit_logs(
    org_id: str,
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    org_uuid = parse_id(org_id, "Organization")
    require_manager(db, user_id, org_uuid)
    entity_uuid = parse_id(entity_id, "Entity") if entity_id else None
    return get_audit_logs(db, entity_type, entity_uuid, organization_id=org_uuid, limit=limit, offset=offset)


@router.get("/members/{member_id}", response_model=MemberOut)
def get_member(member_id: str, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    return member_out(load_for_user(db, OrganizationMember, member_id, user_id, label="Member"))


@router.patch("/members/{member_id}", response_model=MemberOut)
def update_member(
    member_id: str,
    patch: MemberPatch,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    member = _managed_member(db, member_id, user_id)
    if member.role == Role.OWNER.value:
        raise Forbidden("Cannot modify the organization owner")
    changes = apply_patch(member, patch, MEMBER_PATCH_FIELDS)
    if changes:
        record_audit(
            db,
            "membership",
            member.id,
            "UPDATE",
            organization_id=member.organization_id,
            actor_id=user_id,
            source="app",
            changes_json=changes,
        )
    db.commit()
    db.refresh(member)
    logger.info("member_updated", member_id=str(member.id), fields=sorted(changes))
    return member_out(member)


@router.post("/members/{member_id}/suspend", response_model=MemberOut)
def suspend_member(
    member_id: str,
    req: SuspendRequest,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    member = _managed_member(db, member_id, user_id)
    if member.role == Role.OWNER.value:
        raise Forbidden("Cannot suspend organization owner")
    if req.action == "suspend":
        new_status, action = MembershipStatus.SUSPENDED.value, "SUSPEND"
    else:
        new_status, action = MembershipStatus.ACTIVE.value, "UNSUSPEND"
    if member.status != new_status:
        record_audit(
            db,
            "membership",
            member.id,
            action,
            organization_id=member.organization_id,
            actor_id=user_id,
            source="app",
            changes_json={"status": {"before": member.status, "after": new_status}},
        )
        member.status = new_status
    db.commit()
    db.refresh(member)
    logger.info("member_status_changed", member_id=str(member.id), status=member.status)
    return member_out(member)
