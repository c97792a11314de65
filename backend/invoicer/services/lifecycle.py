"""
Invoice lifecycle: the only code allowed to change an invoice's status.

    (none) --autosave--> draft --finalize--> sent --mark_paid--> paid

* autosave keeps a draft (or an unpaid invoice being edited) in sync without
  consuming a number; drafts carry a provisional number from `peek_next`.
* finalize consumes the invoice counter the first time an invoice leaves
  draft. Saving an already sent invoice again keeps its number.
* mark_paid consumes the receipt counter, writes the receipt and flips the
  status, all in one transaction. It is rejected for a paid invoice, so an
  invoice never gets a second receipt.

`overdue` is never written here; it is computed for display by
`display_status`.
"""
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.config import settings
from invoicer.database import atomic
from invoicer.exceptions import InvalidTransition, NotFound, ValidationFailed
from invoicer.models.db_models import (
    BusinessSettings,
    Client,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    Receipt,
)
from invoicer.models.schemas import DraftInvoice, InvoiceWrite, LineItem, MarkPaidRequest
from invoicer.services.numbering import INVOICE_COUNTER, RECEIPT_COUNTER, document_number
from invoicer.services.sequence import SequenceCounterService

logger = logging.getLogger(__name__)

UNPAID = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE})

# action -> statuses it may start from
ALLOWED_FROM: dict[str, frozenset[InvoiceStatus]] = {
    "edit": UNPAID,
    "finalize": UNPAID,
    "mark paid": frozenset({InvoiceStatus.SENT, InvoiceStatus.OVERDUE}),
}


def can(action: str, status: str) -> bool:
    return InvoiceStatus(status) in ALLOWED_FROM[action]


def display_status(invoice: Invoice, today: date | None = None) -> str:
    """Stored status, or 'overdue' for a sent invoice past its due date."""
    today = today or date.today()
    if (
        invoice.status == InvoiceStatus.SENT.value
        and invoice.due_date is not None
        and invoice.due_date < today
    ):
        return InvoiceStatus.OVERDUE.value
    return invoice.status


@dataclass
class InvoiceBundle:
    """Everything needed to show or render one invoice."""

    invoice: Invoice
    items: Sequence[InvoiceItem]
    client: Client | None
    receipt: Receipt | None
    settings: BusinessSettings | None


class InvoiceLifecycle:
    def __init__(
        self,
        db: AsyncSession,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.db = db
        self.today = today
        self.counters = SequenceCounterService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def preview_number(self, counter: str = INVOICE_COUNTER) -> str:
        """Non-binding number the next finalized document would receive."""
        value = await self.counters.peek_next(counter)
        return document_number(counter, value, self.today())

    async def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = await self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFound("Invoice", invoice_id)
        return invoice

    async def get_items(self, invoice_id: int) -> Sequence[InvoiceItem]:
        result = await self.db.execute(
            select(InvoiceItem)
            .where(InvoiceItem.invoice_id == invoice_id)
            .order_by(InvoiceItem.id)
        )
        return result.scalars().all()

    async def get_receipt(self, invoice_id: int) -> Receipt | None:
        result = await self.db.execute(
            select(Receipt).where(Receipt.invoice_id == invoice_id)
        )
        return result.scalars().first()

    async def load(self, invoice_id: int) -> InvoiceBundle:
        invoice = await self.get_invoice(invoice_id)
        return InvoiceBundle(
            invoice=invoice,
            items=await self.get_items(invoice_id),
            client=await self.db.get(Client, invoice.client_id),
            receipt=await self.get_receipt(invoice_id),
            settings=await self.db.get(BusinessSettings, 1),
        )

    async def open_draft(self, invoice_id: int | None = None) -> DraftInvoice:
        """In-memory draft for a new invoice, or for editing an unpaid one."""
        if invoice_id is None:
            today = self.today()
            return DraftInvoice(
                invoice_no=await self.preview_number(),
                issue_date=today,
                due_date=today + timedelta(days=settings.default_due_days),
            )

        invoice = await self.get_invoice(invoice_id)
        if not can("edit", invoice.status):
            raise InvalidTransition("edit", invoice.status)
        items = await self.get_items(invoice_id)
        return DraftInvoice(
            invoice_id=invoice.id,
            invoice_no=invoice.invoice_no,
            status=invoice.status,
            client_id=invoice.client_id,
            issue_date=invoice.issue_date,
            due_date=invoice.due_date,
            notes=invoice.notes,
            items=[
                LineItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in items
            ],
        )

    async def can_autosave(self, draft: DraftInvoice) -> bool:
        """
        Auto-save runs only once a business profile and at least one client
        exist and the draft has a client selected.
        """
        if not draft.client_id:
            return False
        profile = await self.db.get(BusinessSettings, 1)
        if profile is None or not (profile.business_name or "").strip():
            return False
        client_count = await self.db.scalar(select(func.count()).select_from(Client))
        return bool(client_count)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _replace_items(self, invoice_id: int, items: Sequence[LineItem]) -> None:
        # Delete-then-insert; only safe because callers hold the transaction
        await self.db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id))
        self.db.add_all(
            InvoiceItem(
                invoice_id=invoice_id,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total=item.quantity * item.unit_price,
            )
            for item in items
        )
        await self.db.flush()

    async def autosave(self, draft: DraftInvoice) -> int:
        """
        Upsert the invoice row behind `draft` and replace its items.

        Inserts a draft on the first call and records the new id on `draft`;
        later calls update that row in place. The status is never changed and
        no counter is consumed.
        """
        async with atomic(self.db):
            subtotal = draft.subtotal
            if draft.invoice_id is None:
                invoice = Invoice(
                    invoice_no=await self.preview_number(),
                    client_id=draft.client_id,
                    issue_date=draft.issue_date,
                    due_date=draft.due_date,
                    status=InvoiceStatus.DRAFT.value,
                    notes=draft.notes,
                    subtotal=subtotal,
                    total=subtotal,
                    created_at=datetime.now(timezone.utc),
                )
                self.db.add(invoice)
                await self.db.flush()
                logger.info("Created draft invoice id=%d (%s)", invoice.id, invoice.invoice_no)
            else:
                invoice = await self.get_invoice(draft.invoice_id)
                # Provisional number follows the counter until finalize. Writing
                # it first takes the row lock, so the refresh below sees any
                # finalize or payment that committed in the meantime.
                await self.db.execute(
                    update(Invoice)
                    .where(Invoice.id == invoice.id, Invoice.finalized_at.is_(None))
                    .values(invoice_no=await self.preview_number())
                    .execution_options(synchronize_session=False)
                )
                await self.db.refresh(invoice)
                if not can("edit", invoice.status):
                    raise InvalidTransition("edit", invoice.status)
                if invoice.finalized_at is not None:
                    # A sent invoice must stay valid while it is being edited
                    self._validate(InvoiceWrite(
                        client_id=draft.client_id,
                        issue_date=draft.issue_date,
                        due_date=draft.due_date,
                        notes=draft.notes,
                        items=draft.items,
                    ))
                invoice.client_id = draft.client_id
                invoice.issue_date = draft.issue_date
                invoice.due_date = draft.due_date
                invoice.notes = draft.notes
                invoice.subtotal = subtotal
                invoice.total = subtotal

            await self._replace_items(invoice.id, draft.items)

        draft.invoice_id = invoice.id
        draft.invoice_no = invoice.invoice_no
        draft.status = invoice.status
        logger.debug("Auto-saved invoice id=%d with %d items", invoice.id, len(draft.items))
        return invoice.id

    @staticmethod
    def _validate(data: InvoiceWrite) -> None:
        if not data.client_id:
            raise ValidationFailed("Please select a client.")
        if not data.items:
            raise ValidationFailed("An invoice needs at least one line item.")
        if data.due_date is not None and data.due_date < data.issue_date:
            raise ValidationFailed("Due date cannot be before the issue date.")

    async def _claim_finalization(self, invoice_id: int) -> bool:
        """
        Mark an unfinalized invoice as finalized. True only for the one caller
        whose UPDATE matched; a concurrent finalize of the same invoice gets
        False once the winner has committed, and must not consume a number.
        """
        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.finalized_at.is_(None))
            .values(finalized_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finalize(self, data: InvoiceWrite, invoice_id: int | None = None) -> Invoice:
        """
        Save `data` as a sent invoice.

        A new or draft invoice takes the next number from the invoice counter;
        an invoice that was finalized before keeps its number and the counter
        is left alone. Paid invoices cannot be saved.
        """
        self._validate(data)

        async with atomic(self.db):
            if await self.db.get(Client, data.client_id) is None:
                raise ValidationFailed(f"Client {data.client_id} does not exist.")

            if invoice_id is None:
                invoice = Invoice(
                    invoice_no="",
                    status=InvoiceStatus.DRAFT.value,
                    created_at=datetime.now(timezone.utc),
                )
                self.db.add(invoice)
                first_time = True
            else:
                invoice = await self.get_invoice(invoice_id)
                first_time = await self._claim_finalization(invoice.id)
                await self.db.refresh(invoice)
                if not can("finalize", invoice.status):
                    raise InvalidTransition("finalize", invoice.status)

            subtotal = sum(item.quantity * item.unit_price for item in data.items)
            invoice.client_id = data.client_id
            invoice.issue_date = data.issue_date
            invoice.due_date = data.due_date
            invoice.notes = data.notes
            invoice.subtotal = subtotal
            invoice.total = subtotal

            if first_time:
                value = await self.counters.increment_and_get(INVOICE_COUNTER)
                invoice.invoice_no = document_number(INVOICE_COUNTER, value, self.today())
                invoice.finalized_at = invoice.finalized_at or datetime.now(timezone.utc)
                invoice.status = InvoiceStatus.SENT.value

            await self.db.flush()
            await self._replace_items(invoice.id, data.items)

        if first_time:
            logger.info("Finalized invoice id=%d as %s", invoice.id, invoice.invoice_no)
        else:
            logger.info("Updated invoice id=%d (%s)", invoice.id, invoice.invoice_no)
        return invoice

    async def mark_paid(self, invoice_id: int, payment: MarkPaidRequest) -> Receipt:
        """
        Record full payment of a sent invoice.

        Allocates the receipt number, inserts the receipt and sets the status
        to paid in one transaction. A second call for the same invoice raises
        InvalidTransition and writes nothing.
        """
        async with atomic(self.db):
            invoice = await self.get_invoice(invoice_id)
            # Flip the status first so two concurrent payments cannot both pass
            result = await self.db.execute(
                update(Invoice)
                .where(
                    Invoice.id == invoice_id,
                    Invoice.status.in_([s.value for s in ALLOWED_FROM["mark paid"]]),
                )
                .values(status=InvoiceStatus.PAID.value)
                .execution_options(synchronize_session=False)
            )
            await self.db.refresh(invoice)
            if result.rowcount != 1:
                raise InvalidTransition("mark paid", invoice.status)
            if await self.get_receipt(invoice_id) is not None:
                raise InvalidTransition("mark paid", InvoiceStatus.PAID.value)

            value = await self.counters.increment_and_get(RECEIPT_COUNTER)
            receipt = Receipt(
                receipt_no=document_number(RECEIPT_COUNTER, value, self.today()),
                invoice_id=invoice.id,
                paid_date=payment.paid_date,
                payment_method=payment.payment_method,
                amount_paid=invoice.total,
                notes=payment.notes,
                created_at=datetime.now(timezone.utc),
            )
            self.db.add(receipt)
            await self.db.flush()

        logger.info(
            "Invoice id=%d (%s) paid; receipt %s for %.2f",
            invoice.id, invoice.invoice_no, receipt.receipt_no, receipt.amount_paid,
        )
        return receipt

    async def delete_invoice(self, invoice_id: int) -> None:
        """Remove an invoice together with its items and receipt."""
        async with atomic(self.db):
            invoice = await self.get_invoice(invoice_id)
            await self.db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id))
            await self.db.execute(delete(Receipt).where(Receipt.invoice_id == invoice_id))
            await self.db.delete(invoice)
        logger.info("Deleted invoice id=%d (%s)", invoice_id, invoice.invoice_no)
