"""
Unauthenticated client-facing endpoints.

Documents are looked up by their public token only. Sequential numbers and
primary keys are never accepted here.
"""
from typing import Callable, Optional

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidDeposit, NotFound
from ..models.models import Invoice, Organization, Quote
from ..schemas.invoices import PublicInvoiceOut
from ..schemas.quotes import AcceptRequest, LineItemOut, PaymentLinkResponse, PublicQuoteOut, RejectRequest
from ..services.amounts import ZERO
from ..services.audit import record_audit
from ..services.invoice_ledger import lock_invoice, recompute, remaining_balance
from ..services.payment_links import StripeClient, get_payment_client_factory
from ..services.quote_workflow import accept_quote, deposit_amount, expire_if_due, reject_quote
from ..services.time_rules import utcnow
from .quotes import issue_deposit_link


router = APIRouter(prefix="/public", tags=["public"])
logger = structlog.get_logger(__name__)


def _quote_by_token(db: Session, token: str, for_update: bool = False) -> Quote:
    query = db.query(Quote).filter(Quote.public_token == token)
    if for_update:
        query = query.with_for_update()
    quote = query.first()
    if quote is None:
        raise NotFound("Quote not found")
    return quote


def _organization_name(db: Session, organization_id) -> str:
    org = db.query(Organization).filter(Organization.id == organization_id).first()
    return org.name if org else ""


def public_quote_out(db: Session, quote: Quote) -> PublicQuoteOut:
    deposit_due = None
    if quote.deposit_required and not quote.deposit_paid:
        try:
            deposit_due = deposit_amount(quote)
        except InvalidDeposit:
            deposit_due = None
    return PublicQuoteOut(
        quote_number=quote.quote_number,
        title=quote.title,
        description=quote.description,
        status=quote.status,
        subtotal=quote.subtotal,
        gst_amount=quote.gst_amount,
        total_amount=quote.total_amount,
        valid_until_date=quote.valid_until_date,
        accepted_at=quote.accepted_at,
        rejected_at=quote.rejected_at,
        deposit_required=quote.deposit_required,
        deposit_due=deposit_due,
        deposit_paid=quote.deposit_paid,
        organization_name=_organization_name(db, quote.organization_id),
        client_name=quote.client.display_name,
        line_items=[LineItemOut.model_validate(li) for li in quote.line_items],
    )


def _audit(db: Session, quote: Quote, action: str, changes: Optional[dict] = None) -> None:
    record_audit(
        db,
        "quote",
        quote.id,
        action,
        organization_id=quote.organization_id,
        source="public",
        changes_json=changes,
    )


@router.get("/quotes/{token}", response_model=PublicQuoteOut)
def view_quote(token: str, db: Session = Depends(get_db)):
    quote = _quote_by_token(db, token)
    if expire_if_due(quote, utcnow()):
        db.commit()
    return public_quote_out(db, quote)


@router.post("/quotes/{token}/accept", response_model=PublicQuoteOut)
def accept(token: str, req: AcceptRequest, db: Session = Depends(get_db)):
    quote = _quote_by_token(db, token, for_update=True)
    accept_quote(quote, req.accepted_by_name, req.accepted_by_email, utcnow())
    _audit(db, quote, "ACCEPT", {"accepted_by_name": req.accepted_by_name, "accepted_by_email": req.accepted_by_email})
    db.commit()
    logger.info("quote_accepted", quote_id=str(quote.id), source="public")
    return public_quote_out(db, quote)


@router.post("/quotes/{token}/reject", response_model=PublicQuoteOut)
def reject(token: str, req: Optional[RejectRequest] = None, db: Session = Depends(get_db)):
    quote = _quote_by_token(db, token, for_update=True)
    reject_quote(quote, req.reason if req else None, utcnow())
    _audit(db, quote, "REJECT", {"rejection_reason": quote.rejection_reason})
    db.commit()
    logger.info("quote_rejected", quote_id=str(quote.id), source="public")
    return public_quote_out(db, quote)


@router.post("/quotes/{token}/deposit-link", response_model=PaymentLinkResponse)
def deposit_link(
    token: str,
    db: Session = Depends(get_db),
    client_factory: Callable[[], StripeClient] = Depends(get_payment_client_factory),
):
    quote = _quote_by_token(db, token, for_update=True)
    return issue_deposit_link(db, quote, client_factory)


@router.get("/invoices/{token}", response_model=PublicInvoiceOut)
def view_invoice(token: str, db: Session = Depends(get_db)):
    invoice = db.query(Invoice).filter(Invoice.public_token == token).first()
    if invoice is None:
        raise NotFound("Invoice not found")
    invoice = lock_invoice(db, invoice.id)
    recompute(db, invoice, utcnow())
    db.commit()
    amount_due = max(remaining_balance(invoice), ZERO)
    # A stored link is only offered while it still charges the amount due
    link_is_current = invoice.payment_link_amount is not None and invoice.payment_link_amount == amount_due
    return PublicInvoiceOut(
        invoice_number=invoice.invoice_number,
        status=invoice.status,
        subtotal=invoice.subtotal,
        gst_amount=invoice.gst_amount,
        total_amount=invoice.total_amount,
        paid_amount=invoice.paid_amount,
        amount_due=amount_due,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        payment_terms=invoice.payment_terms,
        footer_text=invoice.footer_text,
        organization_name=_organization_name(db, invoice.organization_id),
        client_name=invoice.client.display_name,
        line_items=[LineItemOut.model_validate(li) for li in invoice.line_items],
        payment_link_url=invoice.payment_link_url if link_is_current and amount_due > ZERO else None,
    )
