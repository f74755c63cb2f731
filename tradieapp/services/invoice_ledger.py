"""
Invoice payment reconciliation.

``recompute`` is the only code path that writes ``Invoice.status`` and
``Invoice.paid_amount``. It always sums the payment ledger from a fresh read
inside the caller's transaction, with the invoice row locked, so concurrent
payment inserts or deletes cannot leave the invoice out of step with its
payments.
"""
import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import Conflict, InvalidRequest, NotFound
from ..models.models import Invoice, InvoicePayment
from .amounts import ZERO, to_money, recalculate_totals
from .time_rules import as_utc


logger = structlog.get_logger(__name__)


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"


def compute_invoice_status(
    paid_amount: Decimal,
    total_amount: Decimal,
    due_date: Optional[datetime],
    sent_at: Optional[datetime],
    now: datetime,
) -> str:
    paid_amount = to_money(paid_amount)
    total_amount = to_money(total_amount)
    if paid_amount >= total_amount:
        return InvoiceStatus.PAID.value
    if due_date is not None and as_utc(due_date) < as_utc(now):
        return InvoiceStatus.OVERDUE.value
    if paid_amount > ZERO:
        return InvoiceStatus.PARTIALLY_PAID.value
    if sent_at is not None:
        return InvoiceStatus.SENT.value
    return InvoiceStatus.DRAFT.value


def lock_invoice(db: Session, invoice_id) -> Invoice:
    db.flush()
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id).with_for_update().populate_existing().first()
    if invoice is None:
        raise NotFound("Invoice not found")
    return invoice


def invoices_for_update(db: Session, organization_id, client_id=None):
    """Query an organization's invoices with their rows locked, newest first."""
    query = db.query(Invoice).filter(Invoice.organization_id == organization_id)
    if client_id is not None:
        query = query.filter(Invoice.client_id == client_id)
    return query.order_by(Invoice.created_at.desc()).with_for_update()


def ledger_total(db: Session, invoice_id) -> Decimal:
    db.flush()
    total = (
        db.query(func.coalesce(func.sum(InvoicePayment.amount), 0))
        .filter(InvoicePayment.invoice_id == invoice_id)
        .scalar()
    )
    return to_money(total)


def recompute(db: Session, invoice: Invoice, now: datetime) -> Invoice:
    """Derive ``paid_amount``, ``status`` and ``paid_date`` from the current payment ledger."""
    paid_amount = max(ledger_total(db, invoice.id), ZERO)
    status = compute_invoice_status(paid_amount, invoice.total_amount, invoice.due_date, invoice.sent_at, now)
    invoice.paid_amount = paid_amount
    if status == InvoiceStatus.PAID.value:
        if invoice.status != InvoiceStatus.PAID.value or invoice.paid_date is None:
            invoice.paid_date = as_utc(now)
    else:
        invoice.paid_date = None
    invoice.status = status
    db.flush()
    return invoice


def refresh_totals(db: Session, invoice: Invoice, now: datetime) -> Invoice:
    """Recalculate totals from line items, then status from the payment ledger."""
    recalculate_totals(db, invoice)
    return recompute(db, invoice, now)


def remaining_balance(invoice: Invoice) -> Decimal:
    return to_money(invoice.total_amount) - to_money(invoice.paid_amount)


def record_payment(
    db: Session,
    invoice: Invoice,
    amount: Decimal,
    payment_method: str,
    payment_date: datetime,
    recorded_by_user_id: uuid.UUID,
    now: datetime,
    reference_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> InvoicePayment:
    invoice = lock_invoice(db, invoice.id)
    amount = to_money(amount)
    if amount <= ZERO:
        raise InvalidRequest("Payment amount must be greater than zero")
    balance = to_money(invoice.total_amount) - ledger_total(db, invoice.id)
    if amount > balance:
        raise Conflict(
            f"Payment amount (${amount}) exceeds remaining balance (${max(balance, ZERO)})",
            "payment_exceeds_balance",
        )
    payment = InvoicePayment(
        invoice_id=invoice.id,
        amount=amount,
        payment_method=payment_method,
        payment_date=payment_date,
        reference_number=reference_number,
        notes=notes,
        recorded_by_user_id=recorded_by_user_id,
    )
    db.add(payment)
    recompute(db, invoice, now)
    logger.info("payment_recorded", invoice_id=str(invoice.id), amount=str(amount), status=invoice.status)
    return payment


def delete_payment(db: Session, invoice: Invoice, payment_id, now: datetime) -> InvoicePayment:
    invoice = lock_invoice(db, invoice.id)
    payment = (
        db.query(InvoicePayment)
        .filter(InvoicePayment.id == payment_id, InvoicePayment.invoice_id == invoice.id)
        .first()
    )
    if payment is None:
        raise NotFound("Payment not found")
    db.delete(payment)
    recompute(db, invoice, now)
    logger.info("payment_deleted", invoice_id=str(invoice.id), amount=str(payment.amount), status=invoice.status)
    return payment


def mark_invoice_sent(db: Session, invoice: Invoice, now: datetime) -> Invoice:
    invoice = lock_invoice(db, invoice.id)
    invoice.sent_at = as_utc(now)
    return recompute(db, invoice, now)


def ensure_payment_link_allowed(invoice: Invoice) -> Decimal:
    """Return the outstanding balance a payment link should charge."""
    balance = remaining_balance(invoice)
    if invoice.status == InvoiceStatus.PAID.value or balance <= ZERO:
        raise Conflict("Invoice is already fully paid", "already_paid")
    return balance
