import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class SendCodeRequest(BaseModel):
    email: EmailStr


class SendCodeResponse(BaseModel):
    verification_token: str
    expires_in: int


class VerifyCodeRequest(BaseModel):
    verification_token: str
    code: str = Field(min_length=6, max_length=6)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    external_identity_id: str
    email: str
    full_name: str
    phone: Optional[str] = None
    profile_photo_url: Optional[str] = None


class MobileTokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


class MembershipOut(BaseModel):
    organization_id: uuid.UUID
    organization_name: str
    role: str
    status: str
    can_create_jobs: bool
    can_edit_all_jobs: bool
    can_create_invoices: bool
    can_view_financials: bool
    can_approve_expenses: bool
    can_approve_timesheets: bool
    joined_at: Optional[datetime] = None


class MeResponse(BaseModel):
    user: UserOut
    memberships: List[MembershipOut]
