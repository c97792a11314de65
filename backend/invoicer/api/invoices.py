import io
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.database import get_db
from invoicer.models.db_models import InvoiceStatus
from invoicer.models.schemas import (
    ClientRead,
    InvoiceDetail,
    InvoiceItemRead,
    InvoiceRead,
    InvoiceWrite,
    MarkPaidRequest,
    NextNumberRead,
    ReceiptRead,
    ShareLinks,
)
from invoicer.services.lifecycle import InvoiceLifecycle, can
from invoicer.services.numbering import RECEIPT_COUNTER
from invoicer.services.pdf_generator import PDFGeneratorService
from invoicer.services.reports import list_invoices as query_invoices
from invoicer.services.reports import to_invoice_read
from invoicer.services.sharing import share_links

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/invoices", tags=["invoices"])

pdf_gen = PDFGeneratorService()

STATUS_FILTERS = {s.value for s in InvoiceStatus}


@router.get("", response_model=list[InvoiceRead])
async def list_invoices(
    search: str | None = None,
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[InvoiceRead]:
    """Return invoices newest first, optionally filtered by text and status."""
    if status == "all":
        status = None
    if status is not None and status not in STATUS_FILTERS:
        raise HTTPException(422, f"Unknown status '{status}'.")
    return await query_invoices(db, search=search, status=status)


@router.get("/next-number", response_model=NextNumberRead)
async def next_number(db: AsyncSession = Depends(get_db)) -> NextNumberRead:
    """Preview the numbers the next finalized invoice and receipt would get."""
    lifecycle = InvoiceLifecycle(db)
    return NextNumberRead(
        invoice_no=await lifecycle.preview_number(),
        receipt_no=await lifecycle.preview_number(RECEIPT_COUNTER),
    )


@router.post("", response_model=InvoiceRead, status_code=201)
async def create_invoice(
    body: InvoiceWrite,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    """Create and finalize an invoice in one step (no draft)."""
    lifecycle = InvoiceLifecycle(db)
    invoice = await lifecycle.finalize(body)
    bundle = await lifecycle.load(invoice.id)
    return to_invoice_read(invoice, bundle.client)


@router.get("/{invoice_id}", response_model=InvoiceDetail)
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    bundle = await InvoiceLifecycle(db).load(invoice_id)
    return InvoiceDetail(
        invoice=to_invoice_read(bundle.invoice, bundle.client),
        items=[InvoiceItemRead.model_validate(i) for i in bundle.items],
        client=ClientRead.model_validate(bundle.client) if bundle.client else None,
        receipt=ReceiptRead.model_validate(bundle.receipt) if bundle.receipt else None,
        editable=can("edit", bundle.invoice.status),
    )


@router.put("/{invoice_id}", response_model=InvoiceRead)
async def save_invoice(
    invoice_id: int,
    body: InvoiceWrite,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    """Finalize a draft, or save changes to a sent invoice. Paid invoices are locked."""
    lifecycle = InvoiceLifecycle(db)
    invoice = await lifecycle.finalize(body, invoice_id)
    bundle = await lifecycle.load(invoice.id)
    return to_invoice_read(invoice, bundle.client)


@router.delete("/{invoice_id}", status_code=204)
async def delete_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
) -> None:
    await InvoiceLifecycle(db).delete_invoice(invoice_id)


@router.post("/{invoice_id}/pay", response_model=ReceiptRead, status_code=201)
async def mark_paid(
    invoice_id: int,
    body: MarkPaidRequest,
    db: AsyncSession = Depends(get_db),
) -> ReceiptRead:
    """Record full payment and issue the receipt."""
    receipt = await InvoiceLifecycle(db).mark_paid(invoice_id, body)
    return ReceiptRead.model_validate(receipt)


@router.get("/{invoice_id}/pdf")
async def invoice_pdf(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    bundle = await InvoiceLifecycle(db).load(invoice_id)
    try:
        pdf_bytes = pdf_gen.invoice_pdf(bundle)
    except Exception as exc:
        logger.error("PDF rendering failed: %s", exc, exc_info=True)
        raise HTTPException(500, detail=f"PDF rendering failed: {exc}")

    filename = f"{bundle.invoice.invoice_no}.pdf"
    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{invoice_id}/share", response_model=ShareLinks)
async def share_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
) -> ShareLinks:
    """WhatsApp and e-mail links with the invoice number and total filled in."""
    bundle = await InvoiceLifecycle(db).load(invoice_id)
    return share_links(bundle)
