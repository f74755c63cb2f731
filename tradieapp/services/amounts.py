"""
Money arithmetic shared by quotes and invoices.
Amounts are Decimals rounded half-up to cents.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.models import Invoice, InvoiceLineItem, Quote, QuoteLineItem


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def line_amounts(quantity: Number, unit_price: Number, gst_rate: Number) -> Tuple[Decimal, Decimal]:
    """Return ``(gst_amount, line_total)`` for one line; ``line_total`` includes GST."""
    subtotal = to_money(Decimal(str(quantity)) * Decimal(str(unit_price)))
    gst = to_money(subtotal * Decimal(str(gst_rate)))
    return gst, subtotal + gst


def recalculate_totals(db: Session, document: Union[Quote, Invoice]) -> None:
    """Set subtotal, GST and total from a fresh aggregate of the document's line items.

    The caller's transaction holds the document row; totals are never adjusted
    by a delta, so concurrent line item edits cannot leave a stale aggregate.
    """
    if isinstance(document, Invoice):
        item, parent = InvoiceLineItem, InvoiceLineItem.invoice_id
    else:
        item, parent = QuoteLineItem, QuoteLineItem.quote_id
    db.flush()
    gst_total, grand_total = (
        db.query(
            func.coalesce(func.sum(item.gst_amount), 0),
            func.coalesce(func.sum(item.line_total), 0),
        )
        .filter(parent == document.id)
        .one()
    )
    gst_total = to_money(gst_total)
    grand_total = to_money(grand_total)
    document.gst_amount = gst_total
    document.total_amount = grand_total
    document.subtotal = grand_total - gst_total


def add_line_items(document: Union[Quote, Invoice], items: Iterable, gst_rate: Number) -> list:
    """Append priced line items to ``document``; totals are left to ``recalculate_totals``."""
    item_model = InvoiceLineItem if isinstance(document, Invoice) else QuoteLineItem
    order = max((li.line_order for li in document.line_items), default=-1) + 1
    added = []
    for item in items:
        quantity, unit_price = to_money(item.quantity), to_money(item.unit_price)
        gst, line_total = line_amounts(quantity, unit_price, gst_rate)
        row = item_model(
            item_type=item.item_type,
            description=item.description,
            quantity=quantity,
            unit_price=unit_price,
            gst_amount=gst,
            line_total=line_total,
            line_order=order,
        )
        document.line_items.append(row)
        added.append(row)
        order += 1
    return added
