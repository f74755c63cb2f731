"""
Stripe API client.
Creates hosted payment links for quote deposits and invoice balances.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
import structlog

from ..config import settings
from ..errors import Internal
from ..models.models import Invoice, Quote


logger = structlog.get_logger(__name__)


class StripeClient:
    """Minimal client for the Stripe REST API (form-encoded requests)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key or settings.stripe_secret_key
        self.base_url = (base_url or settings.stripe_api_base).rstrip("/")
        self.transport = transport

        if not self.api_key:
            raise Internal("Payments not configured")

    def _request(self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=30.0, transport=self.transport) as client:
                response = client.request(method, url, headers=headers, data=data)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("stripe_request_failed", endpoint=endpoint, status=e.response.status_code)
            raise Internal("Payment provider request failed")
        except httpx.HTTPError as e:
            logger.error("stripe_request_failed", endpoint=endpoint, error=str(e))
            raise Internal("Payment provider request failed")

    def _create_payment_link(self, name: str, amount: Decimal, metadata: Dict[str, str], success_path: str) -> Dict[str, Any]:
        cents = int((amount * 100).to_integral_value())
        data = {
            "line_items[0][price_data][currency]": settings.currency,
            "line_items[0][price_data][product_data][name]": name,
            "line_items[0][price_data][unit_amount]": str(cents),
            "line_items[0][quantity]": "1",
            "after_completion[type]": "redirect",
            "after_completion[redirect][url]": f"{settings.public_base_url.rstrip('/')}{success_path}",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value
        return self._request("POST", "/payment_links", data=data)

    def create_deposit_link(self, quote: Quote, amount: Decimal) -> Dict[str, Any]:
        """Create a payment link charging ``amount`` for the quote's deposit."""
        link = self._create_payment_link(
            f"Deposit for Quote #{quote.quote_number}",
            amount,
            {
                "type": "quote_deposit",
                "organization_id": str(quote.organization_id),
                "quote_id": str(quote.id),
                "quote_number": quote.quote_number,
            },
            f"/public/quotes/{quote.public_token}/payment-success",
        )
        logger.info("deposit_link_created", quote_id=str(quote.id), amount=str(amount))
        return link

    def create_invoice_payment_link(self, invoice: Invoice, amount: Decimal) -> Dict[str, Any]:
        """Create a payment link for ``amount`` of the invoice's outstanding balance."""
        link = self._create_payment_link(
            f"Invoice #{invoice.invoice_number}",
            amount,
            {
                "type": "invoice_payment",
                "organization_id": str(invoice.organization_id),
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
            },
            f"/public/invoices/{invoice.public_token}/payment-success",
        )
        logger.info("invoice_payment_link_created", invoice_id=str(invoice.id), amount=str(amount))
        return link


def get_payment_client_factory():
    """FastAPI dependency; the client is built lazily so validation errors win over configuration errors."""
    return StripeClient
