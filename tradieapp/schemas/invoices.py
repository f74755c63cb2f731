import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .quotes import LineItemIn, LineItemOut


PaymentMethod = Literal["cash", "card", "bank_transfer", "stripe", "other"]


class InvoiceCreate(BaseModel):
    organization_id: uuid.UUID
    client_id: uuid.UUID
    quote_id: Optional[uuid.UUID] = None
    issue_date: Optional[datetime] = None
    due_date: datetime
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    footer_text: Optional[str] = None
    line_items: List[LineItemIn] = []


class InvoicePatch(BaseModel):
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    footer_text: Optional[str] = None


class PaymentCreate(BaseModel):
    amount: Decimal
    payment_method: PaymentMethod = "bank_transfer"
    payment_date: Optional[datetime] = None
    reference_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    invoice_id: uuid.UUID
    amount: Decimal
    payment_method: str
    payment_date: datetime
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    recorded_by_user_id: uuid.UUID


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    client_id: uuid.UUID
    quote_id: Optional[uuid.UUID] = None
    invoice_number: str
    status: str
    subtotal: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    issue_date: datetime
    due_date: datetime
    sent_at: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    footer_text: Optional[str] = None
    public_token: str
    payment_link_url: Optional[str] = None
    created_at: Optional[datetime] = None
    line_items: List[LineItemOut] = []
    payments: List[PaymentOut] = []


class InvoiceSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    invoice_number: str
    client_id: uuid.UUID
    status: str
    total_amount: Decimal
    paid_amount: Decimal
    due_date: datetime


class InvoiceList(BaseModel):
    invoices: List[InvoiceSummary]
    # Only present for members who can view financials
    total_outstanding: Optional[Decimal] = None


class PaymentRecorded(BaseModel):
    payment: PaymentOut
    invoice: InvoiceOut


class PublicInvoiceOut(BaseModel):
    invoice_number: str
    status: str
    subtotal: Decimal
    gst_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    amount_due: Decimal
    issue_date: datetime
    due_date: datetime
    payment_terms: Optional[str] = None
    footer_text: Optional[str] = None
    organization_name: str
    client_name: str
    line_items: List[LineItemOut]
    payment_link_url: Optional[str] = None


class InvoicePaymentLinkResponse(BaseModel):
    invoice_id: uuid.UUID
    amount: Decimal
    currency: str
    url: str
