import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator, model_validator


class ClientBase(BaseModel):
    client_type: Literal["residential", "commercial"] = "residential"
    is_company: bool = False
    company_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("company_name", "first_name", "last_name", "phone", "notes", "email", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class ClientCreate(ClientBase):
    organization_id: uuid.UUID

    @model_validator(mode="after")
    def require_name(self):
        if self.is_company and not self.company_name:
            raise ValueError("company_name is required for company clients")
        if not self.is_company and not (self.first_name or self.last_name):
            raise ValueError("first_name or last_name is required")
        return self


class ClientOut(ClientBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    display_name: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None
