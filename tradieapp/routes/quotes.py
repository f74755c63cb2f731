import uuid
from typing import Callable, List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user_id
from ..config import settings
from ..db import get_db
from ..errors import NotFound
from ..models.models import Client, Quote, QuoteLineItem
from ..schemas.quotes import (
    AcceptRequest,
    DepositPaidRequest,
    LineItemIn,
    PaymentLinkResponse,
    QuoteCreate,
    QuoteOut,
    QuotePatch,
    QuoteSummary,
    RejectRequest,
    ReopenRequest,
)
from ..services.amounts import add_line_items, recalculate_totals
from ..services.audit import record_audit
from ..services.authorization import Capability, authorize, load_for_user, parse_id
from ..services.mailer import send_email
from ..services.numbering import QUOTE_PREFIX, generate_public_token, next_document_number
from ..services.patching import apply_patch
from ..services.payment_links import StripeClient, get_payment_client_factory
from ..services.quote_workflow import (
    accept_quote,
    ensure_deposit_link_allowed,
    ensure_editable,
    expire_if_due,
    mark_deposit_paid,
    mark_quote_sent,
    reject_quote,
    reopen_quote,
)
from ..services.time_rules import days_from, utcnow


router = APIRouter(prefix="/quotes", tags=["quotes"])
logger = structlog.get_logger(__name__)

QUOTE_PATCH_FIELDS = {
    "title",
    "description",
    "notes",
    "valid_until_date",
    "deposit_required",
    "deposit_percentage",
    "deposit_amount",
}


def _quote_for_update(db: Session, quote_id: str, user_id: uuid.UUID) -> Quote:
    return load_for_user(db, Quote, quote_id, user_id, Capability.CREATE_INVOICES, label="Quote", for_update=True)


def _audit(db: Session, quote: Quote, action: str, user_id: uuid.UUID, changes: Optional[dict] = None) -> None:
    record_audit(
        db,
        "quote",
        quote.id,
        action,
        organization_id=quote.organization_id,
        actor_id=user_id,
        source="app",
        changes_json=changes,
    )


def _commit(db: Session, quote: Quote) -> Quote:
    db.commit()
    db.refresh(quote)
    return quote


@router.post("", response_model=QuoteOut, status_code=201)
def create_quote(req: QuoteCreate, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    authorize(db, user_id, req.organization_id, Capability.CREATE_INVOICES, label="Organization")
    client = (
        db.query(Client)
        .filter(Client.id == req.client_id, Client.organization_id == req.organization_id)
        .first()
    )
    if client is None:
        raise NotFound("Client not found")
    now = utcnow()
    quote = Quote(
        organization_id=req.organization_id,
        client_id=client.id,
        created_by_user_id=user_id,
        quote_number=next_document_number(db, Quote, req.organization_id, QUOTE_PREFIX, now),
        public_token=generate_public_token(),
        title=req.title,
        description=req.description,
        notes=req.notes,
        valid_until_date=req.valid_until_date or days_from(now, settings.quote_validity_days),
        deposit_required=req.deposit_required,
        deposit_percentage=req.deposit_percentage,
        deposit_amount=req.deposit_amount,
    )
    db.add(quote)
    add_line_items(quote, req.line_items, settings.gst_rate)
    recalculate_totals(db, quote)
    quote = _commit(db, quote)
    logger.info("quote_created", quote_id=str(quote.id), quote_number=quote.quote_number)
    return quote


@router.get("", response_model=List[QuoteSummary])
def list_quotes(
    organization_id: str,
    status: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    org_uuid = parse_id(organization_id, "Organization")
    authorize(db, user_id, org_uuid, label="Organization")
    query = db.query(Quote).filter(Quote.organization_id == org_uuid)
    if client_id:
        query = query.filter(Quote.client_id == parse_id(client_id, "Client"))
    quotes = query.order_by(Quote.created_at.desc()).all()
    now = utcnow()
    if any([expire_if_due(q, now) for q in quotes]):
        db.commit()
    if status:
        quotes = [q for q in quotes if q.status == status]
    return quotes


@router.get("/{quote_id}", response_model=QuoteOut)
def get_quote(quote_id: str, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    quote = load_for_user(db, Quote, quote_id, user_id, label="Quote")
    if expire_if_due(quote, utcnow()):
        quote = _commit(db, quote)
    return quote


@router.patch("/{quote_id}", response_model=QuoteOut)
def update_quote(
    quote_id: str,
    patch: QuotePatch,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    quote = _quote_for_update(db, quote_id, user_id)
    ensure_editable(quote)
    changes = apply_patch(quote, patch, QUOTE_PATCH_FIELDS)
    if changes:
        _audit(db, quote, "UPDATE", user_id, changes)
    return _commit(db, quote)


@router.post("/{quote_id}/line-items", response_model=QuoteOut, status_code=201)
def add_quote_line_items(
    quote_id: str,
    items: List[LineItemIn],
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    quote = _quote_for_update(db, quote_id, user_id)
    ensure_editable(quote)
    add_line_items(quote, items, settings.gst_rate)
    recalculate_totals(db, quote)
    return _commit(db, quote)


@router.delete("/{quote_id}/line-items/{item_id}", response_model=QuoteOut)
def delete_quote_line_item(
    quote_id: str,
    item_id: str,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    quote = _quote_for_update(db, quote_id, user_id)
    ensure_editable(quote)
    item = (
        db.query(QuoteLineItem)
        .filter(QuoteLineItem.id == parse_id(item_id, "Line item"), QuoteLineItem.quote_id == quote.id)
        .first()
    )
    if item is None:
        raise NotFound("Line item not found")
    quote.line_items.remove(item)
    recalculate_totals(db, quote)
    return _commit(db, quote)


@router.post("/{quote_id}/send", response_model=QuoteOut)
def send_quote(quote_id: str, db: Session = Depends(get_db), user_id: uuid.UUID = Depends(get_current_user_id)):
    quote = _quote_for_update(db, quote_id, user_id)
    mark_quote_sent(quote, utcnow())
    _audit(db, quote, "SEND", user_id)
    quote = _commit(db, quote)
    if quote.client.email:
        link = f"{settings.public_base_url.rstrip('/')}/public/quotes/{quote.public_token}"
        send_email(
            quote.client.email,
            f"Quote {quote.quote_number}: {quote.title}",
            f"Hi {quote.client.display_name},\n\nYou can view and respond to your quote here: {link}",
        )
    logger.info("quote_sent", quote_id=str(quote.id))
    return quote


@router.post("/{quote_id}/accept", response_model=QuoteOut)
def accept(
    quote_id: str,
    req: AcceptRequest,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Accept on the client's behalf (e.g. signed paper copy); the same gates apply as for the client."""
    quote = _quote_for_update(db, quote_id, user_id)
    accept_quote(quote, req.accepted_by_name, req.accepted_by_email, utcnow())
    _audit(db, quote, "ACCEPT", user_id, {"accepted_by_email": req.accepted_by_email})
    quote = _commit(db, quote)
    logger.info("quote_accepted", quote_id=str(quote.id), source="app")
    return quote


@router.post("/{quote_id}/reject", response_model=QuoteOut)
def reject(
    quote_id: str,
    req: Optional[RejectRequest] = None,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    quote = _quote_for_update(db, quote_id, user_id)
    reject_quote(quote, req.reason if req else None, utcnow())
    _audit(db, quote, "REJECT", user_id, {"rejection_reason": quote.rejection_reason})
    quote = _commit(db, quote)
    logger.info("quote_rejected", quote_id=str(quote.id), source="app")
    return quote


@router.post("/{quote_id}/reopen", response_model=QuoteOut)
def reopen(
    quote_id: str,
    req: Optional[ReopenRequest] = None,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    quote = _quote_for_update(db, quote_id, user_id)
    previous = quote.status
    reopen_quote(quote, utcnow(), req.valid_until_date if req else None)
    _audit(db, quote, "REOPEN", user_id, {"status": {"before": previous, "after": quote.status}})
    quote = _commit(db, quote)
    logger.info("quote_reopened", quote_id=str(quote.id), previous_status=previous)
    return quote


@router.post("/{quote_id}/deposit/mark-paid", response_model=QuoteOut)
def mark_paid(
    quote_id: str,
    req: Optional[DepositPaidRequest] = None,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    quote = _quote_for_update(db, quote_id, user_id)
    reference = req.payment_reference if req else None
    if mark_deposit_paid(quote, utcnow(), reference):
        _audit(db, quote, "DEPOSIT_PAID", user_id, {"payment_reference": reference})
        logger.info("deposit_marked_paid", quote_id=str(quote.id))
    return _commit(db, quote)


@router.post("/{quote_id}/deposit/payment-link", response_model=PaymentLinkResponse)
def create_payment_link(
    quote_id: str,
    db: Session = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
    client_factory: Callable[[], StripeClient] = Depends(get_payment_client_factory),
):
    quote = _quote_for_update(db, quote_id, user_id)
    return issue_deposit_link(db, quote, client_factory)


def issue_deposit_link(db: Session, quote: Quote, client_factory: Callable[[], StripeClient]) -> PaymentLinkResponse:
    amount = ensure_deposit_link_allowed(quote)
    if quote.deposit_payment_link_url and quote.deposit_payment_link_amount == amount:
        return PaymentLinkResponse(quote_id=quote.id, amount=amount, currency=settings.currency, url=quote.deposit_payment_link_url)
    link = client_factory().create_deposit_link(quote, amount)
    quote.deposit_payment_link_url = link["url"]
    quote.deposit_payment_link_amount = amount
    quote = _commit(db, quote)
    return PaymentLinkResponse(quote_id=quote.id, amount=amount, currency=settings.currency, url=quote.deposit_payment_link_url)
