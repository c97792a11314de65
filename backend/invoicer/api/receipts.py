import io
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.database import get_db
from invoicer.models.db_models import BusinessSettings, Client, Invoice, Receipt
from invoicer.models.schemas import ReceiptRead
from invoicer.services.pdf_generator import PDFGeneratorService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/receipts", tags=["receipts"])

pdf_gen = PDFGeneratorService()


async def _get_receipt(db: AsyncSession, receipt_id: int) -> Receipt:
    receipt = await db.get(Receipt, receipt_id)
    if not receipt:
        raise HTTPException(404, f"Receipt {receipt_id} not found.")
    return receipt


@router.get("/{receipt_id}", response_model=ReceiptRead)
async def get_receipt(
    receipt_id: int,
    db: AsyncSession = Depends(get_db),
) -> ReceiptRead:
    return ReceiptRead.model_validate(await _get_receipt(db, receipt_id))


@router.get("/{receipt_id}/pdf")
async def receipt_pdf(
    receipt_id: int,
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    receipt = await _get_receipt(db, receipt_id)
    invoice = await db.get(Invoice, receipt.invoice_id)
    if invoice is None:
        raise HTTPException(404, f"Invoice {receipt.invoice_id} not found.")
    client = await db.get(Client, invoice.client_id)
    profile = await db.get(BusinessSettings, 1)

    try:
        pdf_bytes = pdf_gen.receipt_pdf(receipt, invoice, client, profile)
    except Exception as exc:
        logger.error("PDF rendering failed: %s", exc, exc_info=True)
        raise HTTPException(500, detail=f"PDF rendering failed: {exc}")

    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{receipt.receipt_no}.pdf"'},
    )
