import io
from datetime import date

from openpyxl import load_workbook

from invoicer.models.db_models import BusinessSettings, Client, Invoice, InvoiceItem, Receipt
from invoicer.services.export import ExportService
from invoicer.services.formatting import format_currency, format_date
from invoicer.services.lifecycle import InvoiceBundle
from invoicer.services.pdf_generator import PDFGeneratorService
from invoicer.services.sharing import share_links


def make_bundle(status="sent", receipt=None, client=True):
    invoice = Invoice(
        id=1, invoice_no="INV-2025-001", client_id=1, issue_date=date(2025, 1, 1),
        due_date=date(2025, 1, 15), status=status, subtotal=100.0, total=100.0,
    )
    items = [InvoiceItem(id=1, invoice_id=1, description="Design", quantity=2, unit_price=50, total=100)]
    return InvoiceBundle(
        invoice=invoice,
        items=items,
        client=Client(id=1, name="Bob", company="Bob & Co") if client else None,
        receipt=receipt,
        settings=BusinessSettings(id=1, business_name="Acme", currency="MYR", bank_name="Maybank"),
    )


def make_receipt():
    return Receipt(
        id=1, receipt_no="RCT-2025-001", invoice_id=1, paid_date=date(2025, 1, 10),
        payment_method="Cash", amount_paid=100.0,
    )


def test_invoice_html_has_items_and_totals():
    html = PDFGeneratorService().render_invoice_html(make_bundle())
    assert "INV-2025-001" in html
    assert "Design" in html
    assert "RM 100.00" in html
    assert "Maybank" in html
    assert "PAID" not in html


def test_paid_watermark_needs_receipt_and_paid_status():
    pdf = PDFGeneratorService()
    paid = pdf.render_invoice_html(make_bundle(status="paid", receipt=make_receipt()))
    assert ">PAID<" in paid
    assert "Payment received on 10 January 2025" in paid

    # Status alone is not enough
    assert ">PAID<" not in pdf.render_invoice_html(make_bundle(status="paid"))
    # Nor is a receipt on an invoice that is not paid
    assert ">PAID<" not in pdf.render_invoice_html(make_bundle(status="sent", receipt=make_receipt()))


def test_missing_client_renders_as_unknown():
    html = PDFGeneratorService().render_invoice_html(make_bundle(client=False))
    assert "Unknown Client" in html


def test_receipt_html():
    bundle = make_bundle(status="paid")
    html = PDFGeneratorService().render_receipt_html(
        make_receipt(), bundle.invoice, bundle.client, bundle.settings
    )
    assert "RCT-2025-001" in html
    assert "For invoice INV-2025-001" in html
    assert "Payment Method: Cash" in html


def test_export_uses_client_names_and_invoice_numbers():
    bundle = make_bundle(status="paid")
    orphan = Invoice(
        id=2, invoice_no="INV-2025-002", client_id=99, issue_date=date(2025, 2, 1),
        status="sent", subtotal=5.0, total=5.0,
    )
    data = ExportService().build_workbook(
        clients=[bundle.client],
        invoices=[bundle.invoice, orphan],
        receipts=[make_receipt()],
    )
    wb = load_workbook(io.BytesIO(data))
    invoices = list(wb["Invoices"].iter_rows(min_row=2, values_only=True))
    assert [row[2] for row in invoices] == ["Bob", "Unknown Client"]
    receipts = list(wb["Receipts"].iter_rows(min_row=2, values_only=True))
    assert receipts[0][1:3] == ("RCT-2025-001", "INV-2025-001")


def test_formatting():
    assert format_currency(1234.5, "MYR") == "RM 1,234.50"
    assert format_currency(-3, "usd") == "-$ 3.00"
    assert format_currency(None) == "RM 0.00"
    assert format_currency(1, "JPY") == "JPY 1.00"
    assert format_date(date(2025, 1, 10)) == "10 January 2025"
    assert format_date("2025-03-02") == "2 March 2025"
    assert format_date(None) == "-"


def test_share_links_carry_number_and_total():
    bundle = make_bundle()
    bundle.client.phone = "+60 12-345 6789"
    bundle.client.email = "bob@example.com"
    links = share_links(bundle)

    assert links.invoice_no == "INV-2025-001"
    assert links.whatsapp.startswith("https://wa.me/60123456789?text=")
    assert "INV-2025-001%20for%20RM%20100.00" in links.whatsapp
    assert links.email.startswith("mailto:bob@example.com?subject=Invoice%20INV-2025-001%20from%20Acme&body=")
    assert "Due%20Date%3A%2015%20January%202025" in links.email


def test_share_links_skip_missing_contact_details():
    links = share_links(make_bundle())
    assert links.whatsapp is None
    assert links.email is None
