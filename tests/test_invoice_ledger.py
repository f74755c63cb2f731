from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytz
from sqlalchemy.dialects import postgresql

from tradieapp.errors import Conflict, InvalidRequest, NotFound
from tradieapp.models.models import InvoiceLineItem, InvoicePayment
from tradieapp.schemas.quotes import LineItemIn
from tradieapp.services.amounts import add_line_items, line_amounts
from tradieapp.services.invoice_ledger import (
    compute_invoice_status,
    delete_payment,
    invoices_for_update,
    mark_invoice_sent,
    record_payment,
    recompute,
    refresh_totals,
)
from tradieapp.services.time_rules import utcnow


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=pytz.UTC)
YESTERDAY = NOW - timedelta(days=1)
NEXT_WEEK = NOW + timedelta(days=7)


@pytest.mark.parametrize(
    "paid,total,due,sent_at,expected",
    [
        ("0", "500", NEXT_WEEK, None, "draft"),
        ("0", "500", NEXT_WEEK, NOW, "sent"),
        ("200", "500", NEXT_WEEK, NOW, "partially_paid"),
        ("500", "500", NEXT_WEEK, NOW, "paid"),
        ("600", "500", NEXT_WEEK, NOW, "paid"),
        ("0", "500", YESTERDAY, None, "overdue"),
        ("200", "500", YESTERDAY, NOW, "overdue"),
        ("500", "500", YESTERDAY, NOW, "paid"),
        ("0", "0", NEXT_WEEK, None, "paid"),
        ("0", "0", YESTERDAY, NOW, "paid"),
    ],
)
def test_compute_invoice_status(paid, total, due, sent_at, expected):
    assert compute_invoice_status(Decimal(paid), Decimal(total), due, sent_at, NOW) == expected


def test_line_amounts_round_half_up():
    assert line_amounts(Decimal("2"), Decimal("100"), Decimal("0.10")) == (Decimal("20.00"), Decimal("220.00"))
    assert line_amounts(Decimal("1"), Decimal("0.05"), Decimal("0.10")) == (Decimal("0.01"), Decimal("0.06"))


def _pay(session, invoice, amount, world, now=None):
    return record_payment(
        session,
        invoice,
        amount=Decimal(amount),
        payment_method="cash",
        payment_date=now or utcnow(),
        recorded_by_user_id=world.user_ids["alice"],
        now=now or utcnow(),
    )


def test_unpaid_invoice_past_due_is_overdue(session, make_invoice):
    invoice = make_invoice(total="500.00", due_in_days=-1)
    recompute(session, invoice, utcnow())
    assert invoice.status == "overdue"
    assert invoice.paid_amount == Decimal("0.00")


def test_fully_paid_invoice_is_never_overdue(session, world, make_invoice):
    invoice = make_invoice(total="500.00", due_in_days=-1, sent=True)
    _pay(session, invoice, "300.00", world)
    assert invoice.status == "overdue"
    _pay(session, invoice, "200.00", world)
    session.commit()

    assert invoice.status == "paid"
    assert invoice.paid_amount == Decimal("500.00")
    assert invoice.paid_date is not None


@pytest.mark.parametrize("sent,before", [(True, "sent"), (False, "draft")])
def test_deleting_all_payments_restores_previous_status(session, world, make_invoice, sent, before):
    invoice = make_invoice(total="500.00", sent=sent)
    recompute(session, invoice, utcnow())
    assert invoice.status == before

    first = _pay(session, invoice, "125.50", world)
    second = _pay(session, invoice, "374.50", world)
    session.commit()
    assert invoice.status == "paid"
    assert invoice.paid_amount == invoice.total_amount

    delete_payment(session, invoice, first.id, utcnow())
    assert invoice.status == "partially_paid"
    assert invoice.paid_amount == Decimal("374.50")
    assert invoice.paid_date is None

    delete_payment(session, invoice, second.id, utcnow())
    session.commit()
    assert invoice.status == before
    assert invoice.paid_amount == Decimal("0.00")
    assert session.query(InvoicePayment).filter(InvoicePayment.invoice_id == invoice.id).count() == 0


def test_payment_cannot_exceed_remaining_balance(session, world, make_invoice):
    invoice = make_invoice(total="500.00", sent=True)
    _pay(session, invoice, "400.00", world)
    with pytest.raises(Conflict) as exc:
        _pay(session, invoice, "100.01", world)
    assert exc.value.code == "payment_exceeds_balance"
    assert invoice.paid_amount == Decimal("400.00")


@pytest.mark.parametrize("amount", ["0", "-10"])
def test_payment_must_be_positive(session, world, make_invoice, amount):
    invoice = make_invoice(sent=True)
    with pytest.raises(InvalidRequest):
        _pay(session, invoice, amount, world)


def test_paid_amount_is_clamped_at_zero(session, world, make_invoice):
    invoice = make_invoice(sent=True)
    session.add(
        InvoicePayment(
            invoice_id=invoice.id,
            amount=Decimal("-20.00"),
            payment_method="other",
            payment_date=utcnow(),
            recorded_by_user_id=world.user_ids["alice"],
        )
    )
    recompute(session, invoice, utcnow())
    assert invoice.paid_amount == Decimal("0.00")
    assert invoice.status == "sent"


def test_deleting_unknown_payment_is_not_found(session, make_invoice):
    invoice = make_invoice()
    other = make_invoice()
    with pytest.raises(NotFound):
        delete_payment(session, invoice, other.id, utcnow())


def test_totals_follow_remaining_line_items(session, make_invoice):
    invoice = make_invoice(total="0.00")
    items = [
        LineItemIn(item_type="labor", description="Labour", quantity="2", unit_price="100"),
        LineItemIn(item_type="material", description="Pipe", quantity="1", unit_price="50.50"),
    ]
    add_line_items(invoice, items, Decimal("0.10"))
    refresh_totals(session, invoice, utcnow())
    assert invoice.subtotal == Decimal("250.50")
    assert invoice.gst_amount == Decimal("25.05")
    assert invoice.total_amount == Decimal("275.55")

    labour = session.query(InvoiceLineItem).filter(InvoiceLineItem.description == "Labour").one()
    invoice.line_items.remove(labour)
    refresh_totals(session, invoice, utcnow())
    assert invoice.total_amount == Decimal("55.55")

    invoice.line_items.clear()
    refresh_totals(session, invoice, utcnow())
    assert (invoice.subtotal, invoice.gst_amount, invoice.total_amount) == (Decimal("0.00"),) * 3
    assert invoice.status == "paid"


def test_sending_stamps_sent_at_and_derives_status(session, make_invoice):
    invoice = make_invoice()
    mark_invoice_sent(session, invoice, utcnow())
    assert invoice.sent_at is not None
    assert invoice.status == "sent"


def test_listing_locks_invoice_rows(session, world):
    query = invoices_for_update(session, world.acme_id, world.acme_client_id)
    sql = str(query.statement.compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" in sql
    assert "invoices.client_id" in sql
