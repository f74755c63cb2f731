import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def money(default: Optional[str] = None, nullable: bool = False):
    return mapped_column(
        Numeric(12, 2, asdecimal=True),
        nullable=nullable,
        default=Decimal(default) if default is not None else None,
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    # Subject of the identity provider session; the mobile token carries it as external_identity_id
    external_identity_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    profile_photo_url: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    memberships = relationship("OrganizationMember", back_populates="user")


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    abn: Mapped[Optional[str]] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    members = relationship("OrganizationMember", back_populates="organization")


class OrganizationMember(Base):
    __tablename__ = "organization_members"

    id: Mapped[uuid.UUID] = uuid_pk()
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False)  # owner|admin|employee|subcontractor
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="invited")  # invited|active|suspended
    # Capability flags (only consulted for employee/subcontractor roles)
    can_create_jobs: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_edit_all_jobs: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_create_invoices: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_view_financials: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_approve_expenses: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_approve_timesheets: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    joined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="memberships")
    organization = relationship("Organization", back_populates="members")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
        Index("idx_org_members_user_status", "user_id", "status"),
    )


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = uuid_pk()
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    client_type: Mapped[str] = mapped_column(String(50), nullable=False, default="residential")  # residential|commercial
    is_company: Mapped[bool] = mapped_column(Boolean, default=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(255))
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_name(self) -> str:
        if self.is_company and self.company_name:
            return self.company_name
        return " ".join(p for p in (self.first_name, self.last_name) if p) or "Valued Client"


class Quote(Base):
    __tablename__ = "quotes"

    id: Mapped[uuid.UUID] = uuid_pk()
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    quote_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    created_by_user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")  # draft|sent|accepted|rejected|expired
    subtotal: Mapped[Decimal] = money("0")
    gst_amount: Mapped[Decimal] = money("0")
    total_amount: Mapped[Decimal] = money("0")
    valid_until_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    accepted_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    accepted_by_email: Mapped[Optional[str]] = mapped_column(String(255))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # Deposit
    deposit_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deposit_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2, asdecimal=True))  # 30.00 means 30%
    deposit_amount: Mapped[Optional[Decimal]] = money(nullable=True)  # fixed amount, wins over percentage
    deposit_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deposit_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deposit_payment_reference: Mapped[Optional[str]] = mapped_column(String(255))
    deposit_payment_link_url: Mapped[Optional[str]] = mapped_column(String(500))
    # Amount the stored link charges; a link is only reused while it still matches
    deposit_payment_link_amount: Mapped[Optional[Decimal]] = money(nullable=True)
    # Opaque token for unauthenticated client actions; never the primary key
    public_token: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    client = relationship("Client")
    line_items: Mapped[List["QuoteLineItem"]] = relationship(
        "QuoteLineItem", order_by="QuoteLineItem.line_order", cascade="all, delete-orphan", back_populates="quote"
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "quote_number", name="uq_quote_number"),
    )


class QuoteLineItem(Base):
    __tablename__ = "quote_line_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    quote_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(50), nullable=False)  # labor|material|equipment|other
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = money()
    unit_price: Mapped[Decimal] = money()
    gst_amount: Mapped[Decimal] = money("0")
    line_total: Mapped[Decimal] = money("0")
    line_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    quote = relationship("Quote", back_populates="line_items")


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = uuid_pk()
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    quote_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("quotes.id"))
    created_by_user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")  # draft|sent|partially_paid|paid|overdue
    subtotal: Mapped[Decimal] = money("0")
    gst_amount: Mapped[Decimal] = money("0")
    total_amount: Mapped[Decimal] = money("0")
    paid_amount: Mapped[Decimal] = money("0")
    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    payment_terms: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    footer_text: Mapped[Optional[str]] = mapped_column(Text)
    payment_link_url: Mapped[Optional[str]] = mapped_column(String(500))
    payment_link_amount: Mapped[Optional[Decimal]] = money(nullable=True)
    public_token: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    client = relationship("Client")
    line_items: Mapped[List["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem", order_by="InvoiceLineItem.line_order", cascade="all, delete-orphan", back_populates="invoice"
    )
    payments: Mapped[List["InvoicePayment"]] = relationship(
        "InvoicePayment", order_by="InvoicePayment.payment_date", cascade="all, delete-orphan", back_populates="invoice"
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "invoice_number", name="uq_invoice_number"),
        Index("idx_invoices_org_status", "organization_id", "status"),
    )


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    invoice_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(50), nullable=False)  # labor|material|equipment|fee|other
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = money()
    unit_price: Mapped[Decimal] = money()
    gst_amount: Mapped[Decimal] = money("0")
    line_total: Mapped[Decimal] = money("0")
    line_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    invoice = relationship("Invoice", back_populates="line_items")


class InvoicePayment(Base):
    __tablename__ = "invoice_payments"

    id: Mapped[uuid.UUID] = uuid_pk()
    invoice_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    amount: Mapped[Decimal] = money()
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)  # cash|card|bank_transfer|stripe|other
    reference_number: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    recorded_by_user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    invoice = relationship("Invoice", back_populates="payments")


class VerificationCode(Base):
    """One-time sign-in codes for the mobile app"""
    __tablename__ = "verification_codes"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    code_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # Failed guesses against this code; it stops verifying once the limit is reached
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class AuditLog(Base):
    """Append-only audit log for financial and membership actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # quote|invoice|payment|membership
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # ACCEPT|REJECT|REOPEN|SEND|UPDATE|DEPOSIT_PAID|PAYMENT_RECORDED|SUSPEND|...
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    source: Mapped[Optional[str]] = mapped_column(String(50))  # app|public|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
