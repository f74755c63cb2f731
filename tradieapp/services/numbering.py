"""
Document numbers and public tokens.
"""
import secrets
from datetime import datetime
from typing import Type, Union

from sqlalchemy.orm import Session

from ..models.models import Invoice, Quote


QUOTE_PREFIX = "QTE"
INVOICE_PREFIX = "INV"


def _number_column(model: Type[Union[Quote, Invoice]]):
    return Invoice.invoice_number if model is Invoice else Quote.quote_number


def next_document_number(
    db: Session,
    model: Type[Union[Quote, Invoice]],
    organization_id,
    prefix: str,
    now: datetime,
) -> str:
    """Next ``PREFIX-YYYY-NNN`` for the organization, restarting each year."""
    column = _number_column(model)
    stem = f"{prefix}-{now.year}-"
    existing = (
        db.query(column)
        .filter(model.organization_id == organization_id, column.like(f"{stem}%"))
        .all()
    )
    highest = 0
    for (number,) in existing:
        suffix = number[len(stem):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{stem}{highest + 1:03d}"


def generate_public_token() -> str:
    # 16 random bytes, URL-safe base64 without padding
    return secrets.token_urlsafe(16)
