import base64
import logging
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from invoicer.models.db_models import Client, Invoice, InvoiceStatus, Receipt
from invoicer.services.formatting import format_currency, format_date
from invoicer.services.lifecycle import InvoiceBundle
from invoicer.services.reports import UNKNOWN_CLIENT

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"


class PDFGeneratorService:
    """
    Renders invoices and receipts to PDF.

    A pure function of the records passed in: nothing is read from or written
    to the database here.
    """

    def __init__(self) -> None:
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )
        self.env.filters["currency"] = format_currency
        self.env.filters["date"] = format_date

    def _logo_data_uri(self, logo_path: str | None) -> str | None:
        if not logo_path:
            return None
        logo_file = Path(logo_path)
        if not logo_file.exists():
            logger.warning("Logo path %s not found, skipping.", logo_path)
            return None
        suffix = logo_file.suffix.lower()
        mime = "image/png" if suffix == ".png" else "image/jpeg"
        encoded = base64.b64encode(logo_file.read_bytes()).decode()
        return f"data:{mime};base64,{encoded}"

    def render_invoice_html(self, bundle: InvoiceBundle) -> str:
        invoice = bundle.invoice
        # Watermark only when the payment is actually on record
        paid = bundle.receipt is not None and invoice.status == InvoiceStatus.PAID.value
        template = self.env.get_template("invoice.html")
        return template.render(
            invoice=invoice,
            items=bundle.items,
            client=bundle.client,
            client_name=bundle.client.name if bundle.client else UNKNOWN_CLIENT,
            settings=bundle.settings,
            currency=bundle.settings.currency if bundle.settings else "MYR",
            receipt=bundle.receipt if paid else None,
            paid=paid,
            logo_data_uri=self._logo_data_uri(
                bundle.settings.logo_path if bundle.settings else None
            ),
        )

    def render_receipt_html(
        self,
        receipt: Receipt,
        invoice: Invoice,
        client: Client | None,
        settings,
    ) -> str:
        template = self.env.get_template("receipt.html")
        return template.render(
            receipt=receipt,
            invoice=invoice,
            client=client,
            client_name=client.name if client else UNKNOWN_CLIENT,
            settings=settings,
            currency=settings.currency if settings else "MYR",
            logo_data_uri=self._logo_data_uri(settings.logo_path if settings else None),
        )

    def render_pdf(self, html: str) -> bytes:
        # Needs pango at runtime; imported here so HTML rendering works without it
        import weasyprint

        pdf_bytes = weasyprint.HTML(string=html).write_pdf()
        logger.info("PDF rendered: %d bytes", len(pdf_bytes))
        return pdf_bytes

    def invoice_pdf(self, bundle: InvoiceBundle) -> bytes:
        logger.info("Rendering PDF for invoice %s", bundle.invoice.invoice_no)
        return self.render_pdf(self.render_invoice_html(bundle))

    def receipt_pdf(self, receipt: Receipt, invoice: Invoice, client: Client | None, settings) -> bytes:
        logger.info("Rendering PDF for receipt %s", receipt.receipt_no)
        return self.render_pdf(self.render_receipt_html(receipt, invoice, client, settings))
