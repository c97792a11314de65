"""Prefilled WhatsApp and e-mail links for sending an invoice to its client."""
import re
from urllib.parse import quote

from invoicer.config import settings
from invoicer.exceptions import ValidationFailed
from invoicer.models.schemas import ShareLinks
from invoicer.services.formatting import format_currency, format_date
from invoicer.services.lifecycle import InvoiceBundle


def _currency(bundle: InvoiceBundle) -> str:
    if bundle.settings is not None and bundle.settings.currency:
        return bundle.settings.currency
    return settings.default_currency


def whatsapp_link(bundle: InvoiceBundle) -> str | None:
    """wa.me link to the client's phone, or None when no usable number is on file."""
    client, invoice = bundle.client, bundle.invoice
    digits = re.sub(r"\D", "", client.phone or "")
    if not digits:
        return None
    message = (
        f"Hello {client.name}, here is the invoice {invoice.invoice_no} for "
        f"{format_currency(invoice.total, _currency(bundle))}. "
        "Please let me know if you have any questions. Thanks!"
    )
    return f"https://wa.me/{digits}?text={quote(message, safe='')}"


def email_link(bundle: InvoiceBundle) -> str | None:
    client, invoice = bundle.client, bundle.invoice
    if not (client.email or "").strip():
        return None
    business = bundle.settings.business_name if bundle.settings else ""
    subject = f"Invoice {invoice.invoice_no} from {business}".rstrip()
    body = (
        f"Hello {client.name},\n\n"
        f"Please find attached the invoice {invoice.invoice_no} for your reference.\n\n"
        f"Total Amount: {format_currency(invoice.total, _currency(bundle))}\n"
        f"Due Date: {format_date(invoice.due_date)}\n\n"
        "Thank you!"
    )
    return (
        f"mailto:{client.email.strip()}"
        f"?subject={quote(subject, safe='')}&body={quote(body, safe='')}"
    )


def share_links(bundle: InvoiceBundle) -> ShareLinks:
    if bundle.client is None:
        raise ValidationFailed("This invoice has no client to send it to.")
    return ShareLinks(
        invoice_no=bundle.invoice.invoice_no,
        whatsapp=whatsapp_link(bundle),
        email=email_link(bundle),
    )
