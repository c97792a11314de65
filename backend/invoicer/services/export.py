import io
import logging
from collections.abc import Sequence

from openpyxl import Workbook
from openpyxl.styles import Font

from invoicer.models.db_models import Client, Invoice, Receipt
from invoicer.services.reports import UNKNOWN_CLIENT

logger = logging.getLogger(__name__)

CLIENT_COLUMNS = ("ID", "Name", "Company", "Email", "Phone", "Address")
INVOICE_COLUMNS = (
    "ID", "Invoice No", "Client", "Issue Date", "Due Date", "Status", "Subtotal", "Total", "Notes",
)
RECEIPT_COLUMNS = (
    "ID", "Receipt No", "Invoice No", "Paid Date", "Payment Method", "Amount Paid", "Notes",
)


class ExportService:
    """Read-only snapshot of clients, invoices and receipts as an .xlsx workbook."""

    def build_workbook(
        self,
        clients: Sequence[Client],
        invoices: Sequence[Invoice],
        receipts: Sequence[Receipt],
    ) -> bytes:
        client_names = {c.id: c.name for c in clients}
        invoice_numbers = {inv.id: inv.invoice_no for inv in invoices}

        wb = Workbook()
        sheet = wb.active
        sheet.title = "Clients"
        self._write(sheet, CLIENT_COLUMNS, (
            (c.id, c.name, c.company, c.email, c.phone, c.address) for c in clients
        ))

        sheet = wb.create_sheet("Invoices")
        self._write(sheet, INVOICE_COLUMNS, (
            (
                inv.id,
                inv.invoice_no,
                client_names.get(inv.client_id, UNKNOWN_CLIENT),
                inv.issue_date,
                inv.due_date,
                inv.status,
                inv.subtotal,
                inv.total,
                inv.notes,
            )
            for inv in invoices
        ))

        sheet = wb.create_sheet("Receipts")
        self._write(sheet, RECEIPT_COLUMNS, (
            (
                r.id,
                r.receipt_no,
                invoice_numbers.get(r.invoice_id),
                r.paid_date,
                r.payment_method,
                r.amount_paid,
                r.notes,
            )
            for r in receipts
        ))

        buffer = io.BytesIO()
        wb.save(buffer)
        logger.info(
            "Exported %d clients, %d invoices, %d receipts",
            len(clients), len(invoices), len(receipts),
        )
        return buffer.getvalue()

    @staticmethod
    def _write(sheet, columns, rows) -> None:
        sheet.append(columns)
        for cell in sheet[1]:
            cell.font = Font(bold=True)
        for row in rows:
            sheet.append(row)
        sheet.freeze_panes = "A2"
