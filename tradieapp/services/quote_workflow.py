"""
Quote lifecycle.

    draft -> sent -> accepted | rejected | expired
    rejected | expired -> draft  (explicit reopen only)

Every entry point that can accept a quote, public or staff, goes through
``accept_quote`` so the expiry and deposit gates cannot be bypassed.
Functions here mutate the ORM row only; the caller owns the transaction.
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..errors import (
    AlreadyAccepted,
    AlreadyRejected,
    Conflict,
    DepositRequired,
    InvalidDeposit,
    QuoteExpired,
)
from ..models.models import Quote
from .amounts import ZERO, to_money
from .time_rules import as_utc, is_past


class QuoteStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


EDITABLE_STATES = {QuoteStatus.DRAFT.value, QuoteStatus.SENT.value}
DEFAULT_REJECTION_REASON = "No reason provided"


def is_expired(quote: Quote, now: datetime) -> bool:
    return quote.status == QuoteStatus.EXPIRED.value or is_past(quote.valid_until_date, now)


def expire_if_due(quote: Quote, now: datetime) -> bool:
    """Move an open quote past its validity date to ``expired``. Returns True when it changed."""
    if quote.status in EDITABLE_STATES and is_past(quote.valid_until_date, now):
        quote.status = QuoteStatus.EXPIRED.value
        return True
    return False


def _ensure_open(quote: Quote) -> None:
    if quote.status == QuoteStatus.ACCEPTED.value:
        raise AlreadyAccepted()
    if quote.status == QuoteStatus.REJECTED.value:
        raise AlreadyRejected()


def accept_quote(quote: Quote, acceptor_name: str, acceptor_email: str, now: datetime) -> Quote:
    _ensure_open(quote)
    if is_expired(quote, now):
        raise QuoteExpired()
    if quote.deposit_required and not quote.deposit_paid:
        raise DepositRequired()
    quote.status = QuoteStatus.ACCEPTED.value
    quote.accepted_at = now
    quote.accepted_by_name = acceptor_name
    quote.accepted_by_email = acceptor_email
    return quote


def reject_quote(quote: Quote, reason: Optional[str], now: datetime) -> Quote:
    if quote.status == QuoteStatus.ACCEPTED.value:
        raise AlreadyAccepted("Cannot reject an accepted quote")
    if quote.status == QuoteStatus.REJECTED.value:
        raise AlreadyRejected()
    quote.status = QuoteStatus.REJECTED.value
    quote.rejected_at = now
    quote.rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
    return quote


def mark_quote_sent(quote: Quote, now: datetime) -> Quote:
    _ensure_open(quote)
    if expire_if_due(quote, now) or quote.status == QuoteStatus.EXPIRED.value:
        raise QuoteExpired()
    quote.status = QuoteStatus.SENT.value
    quote.sent_at = now
    return quote


def reopen_quote(quote: Quote, now: datetime, valid_until_date: Optional[datetime] = None) -> Quote:
    if quote.status not in (QuoteStatus.REJECTED.value, QuoteStatus.EXPIRED.value):
        raise Conflict(f"Cannot reopen a quote in status '{quote.status}'", "not_reopenable")
    if valid_until_date is not None:
        quote.valid_until_date = valid_until_date
    if is_past(quote.valid_until_date, now):
        raise Conflict("Reopened quote needs a validity date in the future", "not_reopenable")
    quote.status = QuoteStatus.DRAFT.value
    quote.rejected_at = None
    quote.rejection_reason = None
    quote.sent_at = None
    return quote


def ensure_editable(quote: Quote) -> None:
    if quote.status not in EDITABLE_STATES:
        raise Conflict(f"Quote in status '{quote.status}' cannot be edited", "not_editable")


def deposit_amount(quote: Quote) -> Decimal:
    """Fixed deposit when set, otherwise the percentage of the quote total."""
    if quote.deposit_amount is not None:
        amount = to_money(quote.deposit_amount)
    elif quote.deposit_percentage is not None:
        amount = to_money(Decimal(str(quote.total_amount)) * Decimal(str(quote.deposit_percentage)) / Decimal(100))
    else:
        amount = ZERO
    if amount <= ZERO:
        raise InvalidDeposit()
    return amount


def ensure_deposit_link_allowed(quote: Quote) -> Decimal:
    """Validate that a deposit payment link may be created and return the amount to charge."""
    if not quote.deposit_required:
        raise Conflict("No deposit required for this quote", "deposit_not_required")
    if quote.deposit_paid:
        raise Conflict("Deposit already paid", "deposit_already_paid")
    return deposit_amount(quote)


def mark_deposit_paid(quote: Quote, now: datetime, payment_reference: Optional[str] = None) -> bool:
    """Record the deposit as paid. Returns False when it was already paid."""
    if not quote.deposit_required:
        raise Conflict("No deposit required for this quote", "deposit_not_required")
    if quote.deposit_paid:
        return False
    quote.deposit_paid = True
    quote.deposit_paid_at = as_utc(now)
    if payment_reference:
        quote.deposit_payment_reference = payment_reference
    return True
