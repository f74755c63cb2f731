import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class OrganizationOut(BaseModel):
    id: uuid.UUID
    name: str
    abn: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str


class MemberOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    user_id: uuid.UUID
    email: str
    full_name: str
    role: str
    status: str
    can_create_jobs: bool
    can_edit_all_jobs: bool
    can_create_invoices: bool
    can_view_financials: bool
    can_approve_expenses: bool
    can_approve_timesheets: bool
    joined_at: Optional[datetime] = None


class MemberPatch(BaseModel):
    # Ownership is never assigned through this endpoint
    role: Optional[Literal["admin", "employee", "subcontractor"]] = None
    can_create_jobs: Optional[bool] = None
    can_edit_all_jobs: Optional[bool] = None
    can_create_invoices: Optional[bool] = None
    can_view_financials: Optional[bool] = None
    can_approve_expenses: Optional[bool] = None
    can_approve_timesheets: Optional[bool] = None


class SuspendRequest(BaseModel):
    action: Literal["suspend", "unsuspend"]


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    action: str
    actor_id: Optional[uuid.UUID] = None
    source: Optional[str] = None
    changes_json: Optional[dict] = None
    context: Optional[dict] = None
    timestamp_utc: datetime
