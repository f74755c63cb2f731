from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytz

from tradieapp.errors import (
    AlreadyAccepted,
    AlreadyRejected,
    Conflict,
    DepositRequired,
    InvalidDeposit,
    QuoteExpired,
)
from tradieapp.models.models import Quote
from tradieapp.services.quote_workflow import (
    DEFAULT_REJECTION_REASON,
    accept_quote,
    deposit_amount,
    ensure_deposit_link_allowed,
    ensure_editable,
    expire_if_due,
    mark_deposit_paid,
    mark_quote_sent,
    reject_quote,
    reopen_quote,
)


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=pytz.UTC)


def make_quote(**overrides) -> Quote:
    fields = dict(
        quote_number="QTE-2025-001",
        status="sent",
        total_amount=Decimal("1000.00"),
        valid_until_date=NOW + timedelta(days=30),
        deposit_required=False,
        deposit_paid=False,
        deposit_percentage=None,
        deposit_amount=None,
    )
    fields.update(overrides)
    return Quote(**fields)


def test_deposit_gate_blocks_acceptance_until_paid():
    quote = make_quote(deposit_required=True, deposit_percentage=Decimal("20"))

    with pytest.raises(DepositRequired) as exc:
        accept_quote(quote, "Pat Customer", "pat@example.com", NOW)
    assert exc.value.code == "deposit_required"
    assert quote.status == "sent"
    assert quote.accepted_at is None

    quote.deposit_paid = True
    accept_quote(quote, "Pat Customer", "pat@example.com", NOW)
    assert quote.status == "accepted"
    assert quote.accepted_at == NOW
    assert quote.accepted_by_name == "Pat Customer"
    assert quote.accepted_by_email == "pat@example.com"


@pytest.mark.parametrize("deposit_required,deposit_paid", [(False, False), (True, False), (True, True)])
def test_expired_quote_cannot_be_accepted_whatever_the_deposit(deposit_required, deposit_paid):
    quote = make_quote(
        valid_until_date=NOW - timedelta(days=1),
        deposit_required=deposit_required,
        deposit_paid=deposit_paid,
        deposit_percentage=Decimal("20"),
    )
    with pytest.raises(QuoteExpired) as exc:
        accept_quote(quote, "Pat", "pat@example.com", NOW)
    assert exc.value.code == "expired"
    assert quote.status == "sent"


def test_expired_status_blocks_acceptance_even_with_future_deadline():
    quote = make_quote(status="expired")
    with pytest.raises(QuoteExpired):
        accept_quote(quote, "Pat", "pat@example.com", NOW)


def test_acceptance_on_the_deadline_itself_is_allowed():
    quote = make_quote(valid_until_date=NOW)
    accept_quote(quote, "Pat", "pat@example.com", NOW)
    assert quote.status == "accepted"


def test_naive_deadline_is_treated_as_utc():
    quote = make_quote(valid_until_date=(NOW - timedelta(minutes=1)).replace(tzinfo=None))
    with pytest.raises(QuoteExpired):
        accept_quote(quote, "Pat", "pat@example.com", NOW)


def test_accepting_twice_reports_already_accepted_before_expiry():
    quote = make_quote()
    accept_quote(quote, "Pat", "pat@example.com", NOW)
    later = NOW + timedelta(days=90)
    with pytest.raises(AlreadyAccepted) as exc:
        accept_quote(quote, "Pat", "pat@example.com", later)
    assert exc.value.code == "already_accepted"


def test_rejected_quote_cannot_be_accepted():
    quote = make_quote(status="rejected")
    with pytest.raises(AlreadyRejected):
        accept_quote(quote, "Pat", "pat@example.com", NOW)


def test_reject_twice_fails_the_second_time():
    quote = make_quote()
    reject_quote(quote, "Too expensive", NOW)
    assert quote.status == "rejected"
    assert quote.rejection_reason == "Too expensive"
    assert quote.rejected_at == NOW

    with pytest.raises(AlreadyRejected) as exc:
        reject_quote(quote, "Still too expensive", NOW)
    assert exc.value.code == "already_rejected"
    assert quote.rejection_reason == "Too expensive"


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_reject_without_reason_uses_default(reason):
    quote = make_quote()
    reject_quote(quote, reason, NOW)
    assert quote.rejection_reason == DEFAULT_REJECTION_REASON == "No reason provided"


def test_rejection_cannot_override_acceptance():
    quote = make_quote()
    accept_quote(quote, "Pat", "pat@example.com", NOW)
    with pytest.raises(AlreadyAccepted):
        reject_quote(quote, None, NOW)
    assert quote.status == "accepted"


def test_fixed_deposit_wins_over_percentage():
    quote = make_quote(deposit_amount=Decimal("150.00"), deposit_percentage=Decimal("20"))
    assert deposit_amount(quote) == Decimal("150.00")


def test_percentage_deposit_is_rounded_to_cents():
    assert deposit_amount(make_quote(deposit_percentage=Decimal("20"))) == Decimal("200.00")
    quote = make_quote(total_amount=Decimal("99.99"), deposit_percentage=Decimal("33.33"))
    assert deposit_amount(quote) == Decimal("33.33")


@pytest.mark.parametrize(
    "fields",
    [
        {},
        {"deposit_amount": Decimal("0")},
        {"deposit_amount": Decimal("-5")},
        {"deposit_percentage": Decimal("20"), "total_amount": Decimal("0")},
    ],
)
def test_non_positive_deposit_is_invalid(fields):
    with pytest.raises(InvalidDeposit) as exc:
        deposit_amount(make_quote(**fields))
    assert exc.value.code == "invalid_deposit"


def test_payment_link_preconditions():
    with pytest.raises(Conflict) as exc:
        ensure_deposit_link_allowed(make_quote(deposit_amount=Decimal("50")))
    assert exc.value.code == "deposit_not_required"

    with pytest.raises(Conflict) as exc:
        ensure_deposit_link_allowed(make_quote(deposit_required=True, deposit_paid=True, deposit_amount=Decimal("50")))
    assert exc.value.code == "deposit_already_paid"

    with pytest.raises(InvalidDeposit):
        ensure_deposit_link_allowed(make_quote(deposit_required=True))

    assert ensure_deposit_link_allowed(make_quote(deposit_required=True, deposit_percentage=Decimal("10"))) == Decimal("100.00")


def test_mark_deposit_paid_is_idempotent():
    quote = make_quote(deposit_required=True, deposit_percentage=Decimal("20"))
    assert mark_deposit_paid(quote, NOW, "pi_123") is True
    assert quote.deposit_paid is True
    assert quote.deposit_payment_reference == "pi_123"

    assert mark_deposit_paid(quote, NOW + timedelta(hours=1)) is False
    assert quote.deposit_paid_at == NOW


def test_mark_deposit_paid_requires_a_deposit():
    with pytest.raises(Conflict) as exc:
        mark_deposit_paid(make_quote(), NOW)
    assert exc.value.code == "deposit_not_required"


def test_expire_if_due_only_touches_open_quotes():
    past = NOW - timedelta(days=1)
    draft = make_quote(status="draft", valid_until_date=past)
    accepted = make_quote(status="accepted", valid_until_date=past)
    fresh = make_quote(status="sent")

    assert expire_if_due(draft, NOW) is True
    assert draft.status == "expired"
    assert expire_if_due(accepted, NOW) is False
    assert accepted.status == "accepted"
    assert expire_if_due(fresh, NOW) is False


def test_sending_past_validity_expires_the_quote():
    quote = make_quote(status="draft", valid_until_date=NOW - timedelta(days=1))
    with pytest.raises(QuoteExpired):
        mark_quote_sent(quote, NOW)
    assert quote.status == "expired"


def test_sending_a_draft():
    quote = make_quote(status="draft")
    mark_quote_sent(quote, NOW)
    assert quote.status == "sent"
    assert quote.sent_at == NOW


def test_reopen_rejected_quote_returns_to_draft():
    quote = make_quote()
    reject_quote(quote, "Not now", NOW)
    reopen_quote(quote, NOW)
    assert quote.status == "draft"
    assert quote.rejection_reason is None
    assert quote.rejected_at is None
    ensure_editable(quote)


def test_reopen_expired_quote_needs_a_future_deadline():
    quote = make_quote(status="expired", valid_until_date=NOW - timedelta(days=2))
    with pytest.raises(Conflict) as exc:
        reopen_quote(quote, NOW)
    assert exc.value.code == "not_reopenable"

    reopen_quote(quote, NOW, NOW + timedelta(days=14))
    assert quote.status == "draft"
    assert quote.valid_until_date == NOW + timedelta(days=14)


def test_accepted_quote_cannot_be_reopened_or_edited():
    quote = make_quote(status="accepted")
    with pytest.raises(Conflict) as exc:
        reopen_quote(quote, NOW)
    assert exc.value.code == "not_reopenable"
    with pytest.raises(Conflict) as exc:
        ensure_editable(quote)
    assert exc.value.code == "not_editable"
