import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


ItemType = Literal["labor", "material", "equipment", "fee", "other"]


class LineItemIn(BaseModel):
    item_type: ItemType = "labor"
    description: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)


class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    item_type: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    gst_amount: Decimal
    line_total: Decimal
    line_order: int


class QuoteCreate(BaseModel):
    organization_id: uuid.UUID
    client_id: uuid.UUID
    title: str = Field(min_length=1)
    description: Optional[str] = None
    notes: Optional[str] = None
    valid_until_date: Optional[datetime] = None
    deposit_required: bool = False
    deposit_percentage: Optional[Decimal] = Field(default=None, gt=0, le=100)
    deposit_amount: Optional[Decimal] = Field(default=None, gt=0)
    line_items: List[LineItemIn] = []


class QuotePatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    notes: Optional[str] = None
    valid_until_date: Optional[datetime] = None
    deposit_required: Optional[bool] = None
    deposit_percentage: Optional[Decimal] = Field(default=None, gt=0, le=100)
    deposit_amount: Optional[Decimal] = Field(default=None, gt=0)


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    client_id: uuid.UUID
    quote_number: str
    title: str
    description: Optional[str] = None
    notes: Optional[str] = None
    status: str
    subtotal: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    valid_until_date: datetime
    sent_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    accepted_by_name: Optional[str] = None
    accepted_by_email: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    deposit_required: bool
    deposit_percentage: Optional[Decimal] = None
    deposit_amount: Optional[Decimal] = None
    deposit_paid: bool
    deposit_paid_at: Optional[datetime] = None
    deposit_payment_link_url: Optional[str] = None
    public_token: str
    created_at: Optional[datetime] = None
    line_items: List[LineItemOut] = []


class QuoteSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    quote_number: str
    client_id: uuid.UUID
    title: str
    status: str
    total_amount: Decimal
    valid_until_date: datetime
    deposit_required: bool
    deposit_paid: bool
    created_at: Optional[datetime] = None


class AcceptRequest(BaseModel):
    accepted_by_name: str
    accepted_by_email: EmailStr

    @field_validator("accepted_by_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class ReopenRequest(BaseModel):
    valid_until_date: Optional[datetime] = None


class DepositPaidRequest(BaseModel):
    payment_reference: Optional[str] = None


class PaymentLinkResponse(BaseModel):
    quote_id: uuid.UUID
    amount: Decimal
    currency: str
    url: str


class PublicQuoteOut(BaseModel):
    quote_number: str
    title: str
    description: Optional[str] = None
    status: str
    subtotal: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    valid_until_date: datetime
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    deposit_required: bool
    deposit_due: Optional[Decimal] = None
    deposit_paid: bool
    organization_name: str
    client_name: str
    line_items: List[LineItemOut]
