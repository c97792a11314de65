import asyncio
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from invoicer.database import atomic
from invoicer.exceptions import InvalidTransition, NotFound, StorageFailure, ValidationFailed
from invoicer.models.db_models import BusinessSettings, Invoice, InvoiceItem, Receipt
from invoicer.models.schemas import DraftInvoice, InvoiceWrite, LineItem, MarkPaidRequest
from invoicer.services import maintenance
from invoicer.services.lifecycle import InvoiceLifecycle, can, display_status
from invoicer.services.sequence import SequenceCounterService

YEAR = date.today().year


def invoice_data(client_id, *items, **fields):
    items = items or (LineItem(description="Design", quantity=2, unit_price=50),)
    return InvoiceWrite(client_id=client_id, items=list(items), **fields)


async def count(session, model, *where):
    query = select(func.count()).select_from(model)
    for clause in where:
        query = query.where(clause)
    return await session.scalar(query)


async def test_full_invoice_scenario(db, profile, bob):
    lifecycle = InvoiceLifecycle(db)
    item = LineItem(description="Design", quantity=2, unit_price=50)
    assert item.total == 100

    invoice = await lifecycle.finalize(invoice_data(bob.id, item))
    assert invoice.invoice_no == f"INV-{YEAR}-001"
    assert invoice.status == "sent"
    assert invoice.total == invoice.subtotal == 100

    receipt = await lifecycle.mark_paid(
        invoice.id, MarkPaidRequest(paid_date=date(2025, 1, 10), payment_method="Cash")
    )
    assert receipt.receipt_no == f"RCT-{YEAR}-001"
    assert receipt.amount_paid == 100
    assert receipt.paid_date == date(2025, 1, 10)
    assert receipt.payment_method == "Cash"

    bundle = await lifecycle.load(invoice.id)
    assert bundle.invoice.status == "paid"
    assert bundle.receipt.id == receipt.id
    assert bundle.client.name == "Bob"
    assert bundle.settings.business_name == "Acme"


async def test_sequential_finalizes_have_no_gaps_or_duplicates(db, bob):
    lifecycle = InvoiceLifecycle(db)
    numbers = [(await lifecycle.finalize(invoice_data(bob.id))).invoice_no for _ in range(5)]
    assert numbers == [f"INV-{YEAR}-{n:03d}" for n in range(1, 6)]
    assert await SequenceCounterService(db).current("invoice") == 5


async def test_number_uses_year_at_assignment(db, bob):
    lifecycle = InvoiceLifecycle(db, today=lambda: date(2031, 12, 31))
    invoice = await lifecycle.finalize(invoice_data(bob.id, issue_date=date(2030, 6, 1)))
    assert invoice.invoice_no == "INV-2031-001"


async def test_deleting_invoices_never_reuses_numbers(db, bob):
    lifecycle = InvoiceLifecycle(db)
    first = await lifecycle.finalize(invoice_data(bob.id))
    await lifecycle.delete_invoice(first.id)
    second = await lifecycle.finalize(invoice_data(bob.id))
    assert second.invoice_no == f"INV-{YEAR}-002"


async def test_resaving_sent_invoice_keeps_number(db, bob):
    lifecycle = InvoiceLifecycle(db)
    invoice = await lifecycle.finalize(invoice_data(bob.id))
    updated = await lifecycle.finalize(
        invoice_data(bob.id, LineItem(description="Logo", quantity=1, unit_price=80)),
        invoice.id,
    )
    assert updated.id == invoice.id
    assert updated.invoice_no == f"INV-{YEAR}-001"
    assert updated.total == 80
    assert await SequenceCounterService(db).current("invoice") == 1


async def test_paid_invoice_is_locked(db, bob):
    lifecycle = InvoiceLifecycle(db)
    invoice = await lifecycle.finalize(invoice_data(bob.id))
    invoice_id = invoice.id
    await lifecycle.mark_paid(invoice_id, MarkPaidRequest())

    with pytest.raises(InvalidTransition):
        await lifecycle.finalize(invoice_data(bob.id), invoice_id)
    with pytest.raises(InvalidTransition):
        await lifecycle.open_draft(invoice_id)
    draft = DraftInvoice(invoice_id=invoice_id, client_id=bob.id)
    with pytest.raises(InvalidTransition):
        await lifecycle.autosave(draft)
    assert not can("edit", "paid")


async def test_mark_paid_twice_creates_one_receipt(db, bob):
    lifecycle = InvoiceLifecycle(db)
    invoice = await lifecycle.finalize(invoice_data(bob.id))
    invoice_id = invoice.id
    await lifecycle.mark_paid(invoice_id, MarkPaidRequest())

    with pytest.raises(InvalidTransition):
        await lifecycle.mark_paid(invoice_id, MarkPaidRequest())

    assert await count(db, Receipt, Receipt.invoice_id == invoice_id) == 1
    assert await SequenceCounterService(db).current("receipt") == 1


async def test_draft_cannot_be_marked_paid(db, profile, bob):
    lifecycle = InvoiceLifecycle(db)
    draft = DraftInvoice(client_id=bob.id)
    invoice_id = await lifecycle.autosave(draft)
    with pytest.raises(InvalidTransition):
        await lifecycle.mark_paid(invoice_id, MarkPaidRequest())
    assert await count(db, Receipt) == 0


async def test_receipt_uniqueness_is_enforced_by_store(session_factory, bob):
    async with session_factory() as session:
        invoice = await InvoiceLifecycle(session).finalize(invoice_data(bob.id))
        await InvoiceLifecycle(session).mark_paid(invoice.id, MarkPaidRequest())

    async with session_factory() as session:
        session.add(Receipt(
            receipt_no="RCT-X", invoice_id=invoice.id, paid_date=date.today(),
            payment_method="Cash", amount_paid=1.0,
        ))
        with pytest.raises(IntegrityError):
            await session.commit()


async def test_finalize_validation_writes_nothing(db, bob):
    lifecycle = InvoiceLifecycle(db)
    with pytest.raises(ValidationFailed):
        await lifecycle.finalize(invoice_data(0))
    with pytest.raises(ValidationFailed):
        await lifecycle.finalize(InvoiceWrite(client_id=bob.id, items=[]))
    with pytest.raises(ValidationFailed):
        await lifecycle.finalize(invoice_data(999))
    with pytest.raises(ValidationFailed):
        await lifecycle.finalize(invoice_data(
            bob.id, issue_date=date(2025, 2, 1), due_date=date(2025, 1, 1)
        ))
    assert await count(db, Invoice) == 0
    assert await SequenceCounterService(db).current("invoice") == 0


async def test_failed_finalize_rolls_back_counter(session_factory, bob, monkeypatch):
    original = InvoiceLifecycle._replace_items

    async def broken_replace(self, invoice_id, items):
        raise OperationalError("INSERT INTO invoice_items", {}, Exception("disk I/O error"))

    monkeypatch.setattr(InvoiceLifecycle, "_replace_items", broken_replace)
    async with session_factory() as session:
        with pytest.raises(StorageFailure):
            await InvoiceLifecycle(session).finalize(invoice_data(bob.id))

    async with session_factory() as session:
        assert await SequenceCounterService(session).current("invoice") == 0
        assert await count(session, Invoice) == 0

    monkeypatch.setattr(InvoiceLifecycle, "_replace_items", original)
    async with session_factory() as session:
        invoice = await InvoiceLifecycle(session).finalize(invoice_data(bob.id))
    assert invoice.invoice_no == f"INV-{YEAR}-001"


async def test_failed_mark_paid_rolls_back_everything(session_factory, bob, monkeypatch):
    async with session_factory() as session:
        invoice = await InvoiceLifecycle(session).finalize(invoice_data(bob.id))

    original = SequenceCounterService.increment_and_get

    async def increment_then_fail(self, name):
        await original(self, name)
        raise OperationalError("UPDATE counters", {}, Exception("database is locked"))

    monkeypatch.setattr(SequenceCounterService, "increment_and_get", increment_then_fail)
    async with session_factory() as session:
        with pytest.raises(StorageFailure):
            await InvoiceLifecycle(session).mark_paid(invoice.id, MarkPaidRequest())

    async with session_factory() as session:
        assert await SequenceCounterService(session).current("receipt") == 0
        assert await count(session, Receipt) == 0
        assert (await session.get(Invoice, invoice.id)).status == "sent"


async def test_autosave_creates_then_updates_draft(db, profile, bob):
    lifecycle = InvoiceLifecycle(db)
    draft = await lifecycle.open_draft()
    assert draft.invoice_no == f"INV-{YEAR}-001"
    assert draft.due_date == draft.issue_date + timedelta(days=14)

    draft.client_id = bob.id
    draft.items = [LineItem(description="Design", quantity=2, unit_price=50)]
    invoice_id = await lifecycle.autosave(draft)
    assert draft.invoice_id == invoice_id

    draft.items.append(LineItem(description="Hosting", quantity=1, unit_price=20))
    assert await lifecycle.autosave(draft) == invoice_id

    invoice = await lifecycle.get_invoice(invoice_id)
    assert invoice.status == "draft"
    assert invoice.total == 120
    assert invoice.finalized_at is None
    assert await count(db, Invoice) == 1
    assert await count(db, InvoiceItem, InvoiceItem.invoice_id == invoice_id) == 2
    assert await SequenceCounterService(db).current("invoice") == 0


async def test_draft_number_is_only_a_preview(db, profile, bob):
    lifecycle = InvoiceLifecycle(db)
    draft = DraftInvoice(client_id=bob.id)
    await lifecycle.autosave(draft)
    assert draft.invoice_no == f"INV-{YEAR}-001"

    # Another invoice is finalized first and takes 001
    await lifecycle.finalize(invoice_data(bob.id))
    await lifecycle.autosave(draft)
    assert draft.invoice_no == f"INV-{YEAR}-002"

    finalized = await lifecycle.finalize(invoice_data(bob.id), draft.invoice_id)
    assert finalized.invoice_no == f"INV-{YEAR}-002"
    assert finalized.status == "sent"


async def test_item_set_round_trip(db, bob):
    lifecycle = InvoiceLifecycle(db)
    items = [
        LineItem(description="Design", quantity=2, unit_price=50),
        LineItem(description="Hosting", quantity=12, unit_price=9.5),
        LineItem(description="Domain", quantity=1, unit_price=45),
    ]
    invoice = await lifecycle.finalize(invoice_data(bob.id, *items))

    stored = await lifecycle.get_items(invoice.id)
    as_tuples = lambda rows: sorted((r.description, r.quantity, r.unit_price, r.total) for r in rows)  # noqa: E731
    assert as_tuples(stored) == as_tuples(items)

    reopened = await lifecycle.open_draft(invoice.id)
    assert as_tuples(reopened.items) == as_tuples(items)


async def test_delete_invoice_removes_items_and_receipt(db, bob):
    lifecycle = InvoiceLifecycle(db)
    invoice = await lifecycle.finalize(invoice_data(bob.id))
    await lifecycle.mark_paid(invoice.id, MarkPaidRequest())

    await lifecycle.delete_invoice(invoice.id)

    assert await count(db, InvoiceItem, InvoiceItem.invoice_id == invoice.id) == 0
    assert await count(db, Receipt, Receipt.invoice_id == invoice.id) == 0
    with pytest.raises(NotFound):
        await lifecycle.get_invoice(invoice.id)


async def test_reset_counters_restarts_numbering(db, bob):
    lifecycle = InvoiceLifecycle(db)
    for _ in range(3):
        await lifecycle.finalize(invoice_data(bob.id))
    await maintenance.reset_counters(db)
    invoice = await lifecycle.finalize(invoice_data(bob.id))
    assert invoice.invoice_no == f"INV-{YEAR}-001"


async def test_delete_all_data(db, profile, bob):
    lifecycle = InvoiceLifecycle(db)
    invoice = await lifecycle.finalize(invoice_data(bob.id))
    await lifecycle.mark_paid(invoice.id, MarkPaidRequest())

    await maintenance.delete_all_data(db)

    for model in (Invoice, InvoiceItem, Receipt):
        assert await count(db, model) == 0
    counters = SequenceCounterService(db)
    assert await counters.current("invoice") == 0
    assert await counters.current("receipt") == 0
    # Business profile survives the wipe
    assert (await db.get(BusinessSettings, 1)).business_name == "Acme"
    assert (await lifecycle.preview_number()) == f"INV-{YEAR}-001"


async def test_can_autosave_preconditions(db, bob):
    lifecycle = InvoiceLifecycle(db)
    draft = DraftInvoice(client_id=bob.id)
    # No business profile yet
    assert await lifecycle.can_autosave(draft) is False

    async with atomic(db):
        db.add(BusinessSettings(id=1, business_name="Acme"))
    assert await lifecycle.can_autosave(draft) is True
    assert await lifecycle.can_autosave(DraftInvoice(client_id=0)) is False


def test_overdue_is_derived_for_display():
    past_due = Invoice(status="sent", due_date=date(2025, 1, 1))
    assert display_status(past_due, today=date(2025, 1, 2)) == "overdue"
    assert display_status(past_due, today=date(2025, 1, 1)) == "sent"
    paid = Invoice(status="paid", due_date=date(2025, 1, 1))
    assert display_status(paid, today=date(2025, 6, 1)) == "paid"
    draft = Invoice(status="draft", due_date=date(2025, 1, 1))
    assert display_status(draft, today=date(2025, 6, 1)) == "draft"


async def test_concurrent_finalizes_of_one_draft_consume_one_number(session_factory, profile, bob):
    async with session_factory() as session:
        invoice_id = await InvoiceLifecycle(session).autosave(DraftInvoice(client_id=bob.id))

    async def finalize():
        async with session_factory() as session:
            invoice = await InvoiceLifecycle(session).finalize(invoice_data(bob.id), invoice_id)
            return invoice.invoice_no

    results = await asyncio.gather(finalize(), finalize(), return_exceptions=True)

    numbers = [r for r in results if isinstance(r, str)]
    assert numbers
    assert set(numbers) == {f"INV-{YEAR}-001"}
    # The store may refuse the loser outright; it must never number it again
    assert all(isinstance(r, (str, StorageFailure)) for r in results)
    async with session_factory() as session:
        assert await SequenceCounterService(session).current("invoice") == 1
        assert (await session.get(Invoice, invoice_id)).invoice_no == f"INV-{YEAR}-001"


async def test_concurrent_payments_issue_one_receipt(session_factory, bob):
    async with session_factory() as session:
        invoice_id = (await InvoiceLifecycle(session).finalize(invoice_data(bob.id))).id

    async def pay():
        async with session_factory() as session:
            receipt = await InvoiceLifecycle(session).mark_paid(invoice_id, MarkPaidRequest())
            return receipt.receipt_no

    results = await asyncio.gather(pay(), pay(), return_exceptions=True)

    assert [r for r in results if isinstance(r, str)] == [f"RCT-{YEAR}-001"]
    assert all(isinstance(r, (str, InvalidTransition, StorageFailure)) for r in results)
    async with session_factory() as session:
        assert await count(session, Receipt) == 1
        assert await SequenceCounterService(session).current("receipt") == 1


async def test_autosave_keeps_sent_invoice_valid(session_factory, bob):
    async with session_factory() as session:
        invoice = await InvoiceLifecycle(session).finalize(invoice_data(bob.id))
    draft = DraftInvoice(
        invoice_id=invoice.id, invoice_no=invoice.invoice_no, status="sent",
        client_id=bob.id, items=[],
    )

    async with session_factory() as session:
        with pytest.raises(ValidationFailed):
            await InvoiceLifecycle(session).autosave(draft)

    draft.client_id = 0
    draft.items = [LineItem(description="Logo", quantity=1, unit_price=80)]
    async with session_factory() as session:
        with pytest.raises(ValidationFailed):
            await InvoiceLifecycle(session).autosave(draft)

    async with session_factory() as session:
        stored = await session.get(Invoice, invoice.id)
        assert stored.client_id == bob.id
        assert stored.total == 100
        assert await count(session, InvoiceItem, InvoiceItem.invoice_id == invoice.id) == 1


async def test_autosave_after_finalize_keeps_final_number(session_factory, profile, bob):
    draft = DraftInvoice(client_id=bob.id)
    async with session_factory() as session:
        await InvoiceLifecycle(session).autosave(draft)
    async with session_factory() as session:
        # Another invoice takes 001 so the draft's preview moves on
        await InvoiceLifecycle(session).finalize(invoice_data(bob.id))
    async with session_factory() as session:
        await InvoiceLifecycle(session).finalize(invoice_data(bob.id), draft.invoice_id)

    # A late save from the editing session must not bring back a preview number
    draft.items = [LineItem(description="Logo", quantity=1, unit_price=80)]
    async with session_factory() as session:
        await InvoiceLifecycle(session).autosave(draft)

    assert draft.invoice_no == f"INV-{YEAR}-002"
    assert draft.status == "sent"
    async with session_factory() as session:
        stored = await session.get(Invoice, draft.invoice_id)
        assert stored.invoice_no == f"INV-{YEAR}-002"
        assert stored.total == 80
