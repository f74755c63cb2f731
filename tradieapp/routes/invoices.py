import uuid
from decimal import Decimal
from typing import Callable, List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user_id
from ..config import settings
from ..db import get_db
from ..errors import Conflict, NotFound
from ..models.models import Client, Invoice, InvoiceLineItem, Quote
from ..schemas.invoices import (
    InvoiceCreate,
    InvoiceList,
    InvoiceOut,
    InvoicePatch,
    InvoicePaymentLinkResponse,
    InvoiceSummary,
    PaymentCreate,
    PaymentOut,
    PaymentRecorded,
)
from ..schemas.quotes import LineItemIn
from ..services.amounts import ZERO, add_line_items
from ..services.audit import record_audit
from ..services.authorization import Capability, authorize, has_capability, load_for_user, parse_id
from ..services.invoice_ledger import (
    InvoiceStatus,
    delete_payment,
    ensure_payment_link_allowed,
    invoices_for_update,
    lock_invoice,
    mark_invoice_sent,
    record_payment,
    recompute,
    refresh_totals,
    remaining_balance,
)
from ..services.mailer import send_email
from ..services.numbering import INVOICE_PREFIX, generate_public_token, next_document_number
from ..services.patching import apply_patch
from ..services.payment_links import StripeClient, get_payment_client_factory
from ..services.time_rules import utcnow


router = APIRouter(prefix="/invoices", tags=["invoices"])
logger = structlog.get_logger(__name__)

INVOICE_PATCH_FIELDS = {"issue_date", "due_date", "payment_terms", "notes", "footer_text"}


def _invoice_for_update(db: Session, invoice_id: str, user_id: uuid.UUID) -> Invoice:
    invoice = load_for_user(db, Invoice, invoice_id, user_id, Capability.CREATE_INVOICES, label="Invoice")
    return lock_invoice(db, invoice.id)


def _ensure_editable(invoice: Invoice) -> None:
    # A zero-total invoice reads as paid but has nothing recorded against it yet
    if invoice.status == InvoiceStatus.PAID.value and invoice.paid_amount > ZERO:
        raise Conflict("Paid invoices cannot be edited", "not_editable")


def _audit(db: Session, invoice: Invoice, entity_type: str, entity_id, action: str, user_id, changes=None) -> None:
    record_audit(
        db,
        entity_type,
        entity_id,
        action,
        organization_id=invoice.organization_id,
        actor_id=user_id,
        source="app",
        changes_json=changes,
        context={"invoice_id": str(invoice.id)},
    )


def _commit(db: Session, invoice: Invoice) -> Invoice:
    db.commit()
    db.refresh(invoice)
    return invoice


@router.post("", response_model=InvoiceOut, status_code=201)
def create_invoice(req: InvoiceCreate, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    authorize(db, user_id, req.organization_id, Capability.CREATE_INVOICES, label="Organization")
    client = (
        db.query(Client)
        .filter(Client.id == req.client_id, Client.organization_id == req.organization_id)
        .first()
    )
    if client is None:
        raise NotFound("Client not found")
    if req.quote_id is not None:
        quote = db.query(Quote).filter(Quote.id == req.quote_id, Quote.organization_id == req.organization_id).first()
        if quote is None:
            raise NotFound("Quote not found")
    now = utcnow()
    invoice = Invoice(
        organization_id=req.organization_id,
        client_id=client.id,
        quote_id=req.quote_id,
        created_by_user_id=user_id,
        invoice_number=next_document_number(db, Invoice, req.organization_id, INVOICE_PREFIX, now),
        public_token=generate_public_token(),
        issue_date=req.issue_date or now,
        due_date=req.due_date,
        payment_terms=req.payment_terms,
        notes=req.notes,
        footer_text=req.footer_text,
        paid_amount=ZERO,
    )
    db.add(invoice)
    add_line_items(invoice, req.line_items, settings.gst_rate)
    refresh_totals(db, invoice, now)
    invoice = _commit(db, invoice)
    logger.info("invoice_created", invoice_id=str(invoice.id), invoice_number=invoice.invoice_number)
    return invoice


@router.get("", response_model=InvoiceList)
def list_invoices(
    organization_id: str,
    status: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    org_uuid = parse_id(organization_id, "Organization")
    membership = authorize(db, user_id, org_uuid, label="Organization")
    client_uuid = parse_id(client_id, "Client") if client_id else None
    invoices = invoices_for_update(db, org_uuid, client_uuid).all()
    now = utcnow()
    # Status is derived, so refresh before filtering on it
    for invoice in invoices:
        recompute(db, invoice, now)
    db.commit()
    if status:
        invoices = [i for i in invoices if i.status == status]
    total_outstanding = None
    if has_capability(membership, Capability.VIEW_FINANCIALS):
        total_outstanding = sum((max(remaining_balance(i), ZERO) for i in invoices), Decimal("0.00"))
    return InvoiceList(
        invoices=[InvoiceSummary.model_validate(i) for i in invoices],
        total_outstanding=total_outstanding,
    )


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(invoice_id: str, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    invoice = load_for_user(db, Invoice, invoice_id, user_id, label="Invoice")
    recompute(db, lock_invoice(db, invoice.id), utcnow())
    return _commit(db, invoice)


@router.patch("/{invoice_id}", response_model=InvoiceOut)
def update_invoice(
    invoice_id: str,
    patch: InvoicePatch,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    invoice = _invoice_for_update(db, invoice_id, user_id)
    _ensure_editable(invoice)
    changes = apply_patch(invoice, patch, INVOICE_PATCH_FIELDS)
    if changes:
        _audit(db, invoice, "invoice", invoice.id, "UPDATE", user_id, changes)
    recompute(db, invoice, utcnow())
    return _commit(db, invoice)


@router.post("/{invoice_id}/line-items", response_model=InvoiceOut, status_code=201)
def add_invoice_line_items(
    invoice_id: str,
    items: List[LineItemIn],
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    invoice = _invoice_for_update(db, invoice_id, user_id)
    _ensure_editable(invoice)
    add_line_items(invoice, items, settings.gst_rate)
    refresh_totals(db, invoice, utcnow())
    return _commit(db, invoice)


@router.delete("/{invoice_id}/line-items/{item_id}", response_model=InvoiceOut)
def delete_invoice_line_item(
    invoice_id: str,
    item_id: str,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    invoice = _invoice_for_update(db, invoice_id, user_id)
    _ensure_editable(invoice)
    item = (
        db.query(InvoiceLineItem)
        .filter(InvoiceLineItem.id == parse_id(item_id, "Line item"), InvoiceLineItem.invoice_id == invoice.id)
        .first()
    )
    if item is None:
        raise NotFound("Line item not found")
    invoice.line_items.remove(item)
    refresh_totals(db, invoice, utcnow())
    return _commit(db, invoice)


@router.post("/{invoice_id}/send", response_model=InvoiceOut)
def send_invoice(invoice_id: str, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    invoice = _invoice_for_update(db, invoice_id, user_id)
    mark_invoice_sent(db, invoice, utcnow())
    _audit(db, invoice, "invoice", invoice.id, "SEND", user_id)
    invoice = _commit(db, invoice)
    if invoice.client.email:
        link = f"{settings.public_base_url.rstrip('/')}/public/invoices/{invoice.public_token}"
        send_email(
            invoice.client.email,
            f"Invoice {invoice.invoice_number}",
            f"Hi {invoice.client.display_name},\n\nYour invoice is ready: {link}",
        )
    logger.info("invoice_sent", invoice_id=str(invoice.id), status=invoice.status)
    return invoice


@router.post("/{invoice_id}/payments", response_model=PaymentRecorded, status_code=201)
def add_payment(
    invoice_id: str,
    req: PaymentCreate,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    invoice = _invoice_for_update(db, invoice_id, user_id)
    now = utcnow()
    payment = record_payment(
        db,
        invoice,
        amount=req.amount,
        payment_method=req.payment_method,
        payment_date=req.payment_date or now,
        recorded_by_user_id=user_id,
        now=now,
        reference_number=req.reference_number,
        notes=req.notes,
    )
    _audit(
        db,
        invoice,
        "payment",
        payment.id,
        "PAYMENT_RECORDED",
        user_id,
        {"amount": str(payment.amount), "status": invoice.status},
    )
    invoice = _commit(db, invoice)
    return PaymentRecorded(payment=PaymentOut.model_validate(payment), invoice=InvoiceOut.model_validate(invoice))


@router.delete("/{invoice_id}/payments/{payment_id}", response_model=InvoiceOut)
def remove_payment(
    invoice_id: str,
    payment_id: str,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    invoice = _invoice_for_update(db, invoice_id, user_id)
    payment = delete_payment(db, invoice, parse_id(payment_id, "Payment"), utcnow())
    _audit(
        db,
        invoice,
        "payment",
        payment.id,
        "PAYMENT_DELETED",
        user_id,
        {"amount": str(payment.amount), "status": invoice.status},
    )
    return _commit(db, invoice)


@router.post("/{invoice_id}/payment-link", response_model=InvoicePaymentLinkResponse)
def create_payment_link(
    invoice_id: str,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
    client_factory: Callable[[], StripeClient] = Depends(get_payment_client_factory),
):
    invoice = _invoice_for_update(db, invoice_id, user_id)
    recompute(db, invoice, utcnow())
    amount = ensure_payment_link_allowed(invoice)
    if not (invoice.payment_link_url and invoice.payment_link_amount == amount):
        link = client_factory().create_invoice_payment_link(invoice, amount)
        invoice.payment_link_url = link["url"]
        invoice.payment_link_amount = amount
        _audit(db, invoice, "invoice", invoice.id, "PAYMENT_LINK_CREATED", user_id, {"amount": str(amount)})
    invoice = _commit(db, invoice)
    return InvoicePaymentLinkResponse(
        invoice_id=invoice.id, amount=amount, currency=settings.currency, url=invoice.payment_link_url
    )
